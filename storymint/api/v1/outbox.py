import logging

from fastapi import APIRouter, Depends, HTTPException

from storymint.core.errors import ServiceError, not_found
from storymint.core.security import require_internal_key
from storymint.events.outbox_store import get_event
from storymint.schemas.mint import OutboxEventResponse
from storymint.schemas.response import SuccessResponse

router = APIRouter(dependencies=[Depends(require_internal_key)])
log = logging.getLogger("storymint.api.outbox")


@router.get("/{event_id}", response_model=SuccessResponse)
async def get_outbox_event_endpoint(event_id: int):
    """Operator view of one outbox event: status, attempts and last error."""
    try:
        event = await get_event(event_id)
        if event is None:
            raise not_found(f"Outbox event {event_id} not found")
        return SuccessResponse(data=OutboxEventResponse.model_validate(event).to_wire())
    except ServiceError:
        raise
    except Exception as e:
        log.error(f"Error fetching outbox event {event_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch outbox event.")
