import logging

from fastapi import APIRouter, Depends, HTTPException, status

from storymint.core.errors import ServiceError
from storymint.core.security import require_session_or_internal_key
from storymint.models.mint_intent import mint_intent_id
from storymint.schemas.mint import MintIntentResponse, MintQueuedResponse, MintRequest
from storymint.schemas.response import SuccessResponse
from storymint.services.mint_service import get_mint_status, request_mint

router = APIRouter(dependencies=[Depends(require_session_or_internal_key)])
log = logging.getLogger("storymint.api.mints")


@router.post("/{story_id}/mint", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def request_mint_endpoint(story_id: str, request_data: MintRequest):
    """
    Queues the mint of a story's NFT. Returns 202 Accepted because submission
    and confirmation happen asynchronously in the outbox dispatcher.
    """
    try:
        event = await request_mint(
            story_id=story_id,
            author_wallet=request_data.author_wallet,
            metadata_uri=request_data.metadata_uri,
            retry_failed=request_data.retry_failed,
        )
        data = MintQueuedResponse(
            event_id=event.id,
            story_id=story_id,
            intent_id=mint_intent_id(story_id),
            message="Mint accepted and is being processed.",
        ).to_wire()
        return SuccessResponse(data=data)
    except ServiceError as e:
        log.warning(f"Mint request for story {story_id} rejected: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error requesting mint for story {story_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to queue the mint.")


@router.get("/{story_id}/mint", response_model=SuccessResponse)
async def get_mint_status_endpoint(story_id: str):
    """Current state of the story's mint intent."""
    try:
        intent = await get_mint_status(story_id)
        return SuccessResponse(data=MintIntentResponse.model_validate(intent).to_wire())
    except ServiceError:
        raise
    except Exception as e:
        log.error(f"Error fetching mint status for story {story_id}: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch mint status.")
