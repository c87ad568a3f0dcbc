from enum import Enum
from tortoise import fields, models


class OutboxStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"  # Claimed by exactly one dispatcher
    COMPLETED = "completed"
    FAILED = "failed"          # Terminal: retries exhausted or non-retryable error


class OutboxEvent(models.Model):
    """
    Durable queue of domain events awaiting processing (Transactional Outbox).
    Rows are never deleted; they only move between statuses and serve as the
    audit trail of every side effect the dispatcher performed.
    """
    id = fields.BigIntField(primary_key=True) # Auto-increment, breaks created_at ties
    event_type = fields.CharField(max_length=128) # e.g., 'MintRequested'
    payload = fields.JSONField() # Interpreted by the handler
    status = fields.CharEnumField(OutboxStatus, default=OutboxStatus.PENDING)
    attempts = fields.IntField(default=0)
    last_error = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    processed_at = fields.DatetimeField(null=True) # Stamped when claimed

    class Meta:
        table = "outbox_events"
        indexes = [
            ("status", "created_at"),  # Claim query: oldest pending first
        ]
