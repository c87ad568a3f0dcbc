from enum import Enum
from tortoise import fields, models


class StoryStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    MINTED = "minted"  # Written by the mint saga on confirmation


class Story(models.Model):
    """
    Story projection. Content and authoring live elsewhere; this service only
    writes `status`, `nft_token_id` and `nft_tx_hash`.
    """
    id = fields.CharField(max_length=64, primary_key=True)
    title = fields.CharField(max_length=100)
    author_wallet = fields.CharField(max_length=42)
    status = fields.CharEnumField(StoryStatus, default=StoryStatus.PUBLISHED)
    nft_token_id = fields.CharField(max_length=78, null=True)
    nft_tx_hash = fields.CharField(max_length=66, null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "stories"
        indexes = [
            ("author_wallet",),
            ("status",),
        ]
