from enum import Enum
from tortoise import fields, models


class MintStatus(str, Enum):
    PENDING = "pending"      # Intent recorded, nothing sent to chain yet
    SUBMITTED = "submitted"  # tx_hash persisted, waiting for confirmation
    CONFIRMED = "confirmed"  # Token minted, story projection written
    FAILED = "failed"        # Reverted on chain, terminal


# Allowed forward moves; anything else is rejected
MINT_TRANSITIONS = {
    MintStatus.PENDING: {MintStatus.SUBMITTED},
    MintStatus.SUBMITTED: {MintStatus.CONFIRMED, MintStatus.FAILED},
    MintStatus.CONFIRMED: set(),
    MintStatus.FAILED: set(),
}


def mint_intent_id(story_id: str) -> str:
    """Deterministic idempotency key: every replay for a story resolves to one intent."""
    return f"mint_{story_id}"


class MintIntent(models.Model):
    id = fields.IntField(primary_key=True)
    intent_id = fields.CharField(max_length=128, unique=True)
    story_id = fields.CharField(max_length=64)
    author_wallet = fields.CharField(max_length=42)
    tx_hash = fields.CharField(max_length=66, null=True)
    token_id = fields.CharField(max_length=78, null=True) # uint256 as decimal string
    status = fields.CharEnumField(MintStatus, default=MintStatus.PENDING)
    last_error = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "mint_intents"
        indexes = [
            ("story_id",),
            ("status",),
        ]
