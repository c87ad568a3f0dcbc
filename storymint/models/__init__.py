# storymint/models/__init__.py
from .outbox import OutboxEvent, OutboxStatus
from .mint_intent import MintIntent, MintStatus
from .story import Story, StoryStatus
from .royalty import CreatorEarnings, RoyaltyConfig, RoyaltyTransaction, RoyaltyTransactionStatus

# Export all models
__all__ = [
    "CreatorEarnings",
    "MintIntent",
    "MintStatus",
    "OutboxEvent",
    "OutboxStatus",
    "RoyaltyConfig",
    "RoyaltyTransaction",
    "RoyaltyTransactionStatus",
    "Story",
    "StoryStatus",
]
