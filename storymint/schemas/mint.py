from datetime import datetime
from typing import Any, Dict, Optional

from storymint.models.mint_intent import MintStatus
from storymint.models.outbox import OutboxStatus
from storymint.schemas.response import CamelModel


class MintRequest(CamelModel):
    """Body of POST /stories/{story_id}/mint."""
    author_wallet: str
    metadata_uri: str
    retry_failed: bool = False


class MintQueuedResponse(CamelModel):
    """Returned with 202 Accepted: the mint runs asynchronously in the dispatcher."""
    event_id: int
    story_id: str
    intent_id: str
    message: str


class MintIntentResponse(CamelModel):
    intent_id: str
    story_id: str
    author_wallet: str
    tx_hash: Optional[str] = None
    token_id: Optional[str] = None
    status: MintStatus
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OutboxEventResponse(CamelModel):
    id: int
    event_type: str
    payload: Dict[str, Any]
    status: OutboxStatus
    attempts: int
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
