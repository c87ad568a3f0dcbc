from enum import Enum
from tortoise import fields, models


class RoyaltyTransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RoyaltyConfig(models.Model):
    """Royalty policy for exactly one asset: an NFT or a story, never both."""
    id = fields.IntField(primary_key=True)
    nft_id = fields.CharField(max_length=64, null=True, unique=True)
    story_id = fields.CharField(max_length=64, null=True, unique=True)
    creator_wallet = fields.CharField(max_length=42) # Stored lower-case
    royalty_percentage = fields.FloatField(default=5)
    is_active = fields.BooleanField(default=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "royalty_configs"
        indexes = [
            ("creator_wallet",),
            ("creator_wallet", "story_id"),
        ]


class RoyaltyTransaction(models.Model):
    """One secondary sale. Amount and percentage are frozen at record time."""
    id = fields.IntField(primary_key=True)
    nft_id = fields.CharField(max_length=64)
    sale_price = fields.FloatField()
    royalty_amount = fields.FloatField()
    royalty_percentage = fields.FloatField() # Snapshot, not a live reference
    seller_wallet = fields.CharField(max_length=42)
    buyer_wallet = fields.CharField(max_length=42)
    creator_wallet = fields.CharField(max_length=42)
    tx_hash = fields.CharField(max_length=66, null=True)
    status = fields.CharEnumField(RoyaltyTransactionStatus, default=RoyaltyTransactionStatus.PENDING)
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "royalty_transactions"
        indexes = [
            ("creator_wallet", "created_at"),  # Creator history, newest first
            ("nft_id", "created_at"),
            ("status", "created_at"),          # Reconciliation sweep
        ]


class CreatorEarnings(models.Model):
    """Running totals per creator. Only ever changed through atomic increments."""
    id = fields.IntField(primary_key=True)
    creator_wallet = fields.CharField(max_length=42, unique=True)
    total_earned = fields.FloatField(default=0)
    pending_payout = fields.FloatField(default=0)
    paid_out = fields.FloatField(default=0)
    total_sales = fields.IntField(default=0)
    last_updated = fields.DatetimeField(null=True)

    class Meta:
        table = "creator_earnings"
