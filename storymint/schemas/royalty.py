from datetime import datetime
from typing import List, Optional

from pydantic import Field

from storymint.models.royalty import RoyaltyTransactionStatus
from storymint.schemas.response import CamelModel


class ConfigureRoyaltyRequest(CamelModel):
    """Body of POST /royalties/configure. Exactly one of nftId / storyId."""
    nft_id: Optional[str] = None
    story_id: Optional[str] = None
    creator_wallet: str
    royalty_percentage: float


class RecordTransactionRequest(CamelModel):
    """Body of POST /royalties/record."""
    nft_id: str
    sale_price: float = Field(..., description="Total sale price in ETH.")
    seller_wallet: str
    buyer_wallet: str
    tx_hash: Optional[str] = None


class RoyaltyConfigResponse(CamelModel):
    id: int
    nft_id: Optional[str] = None
    story_id: Optional[str] = None
    creator_wallet: str
    royalty_percentage: float
    is_active: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RoyaltyTransactionResponse(CamelModel):
    id: int
    nft_id: str
    sale_price: float
    royalty_amount: float
    royalty_percentage: float
    seller_wallet: str
    buyer_wallet: str
    creator_wallet: str
    tx_hash: Optional[str] = None
    status: RoyaltyTransactionStatus
    created_at: Optional[datetime] = None


class CreatorEarningsResponse(CamelModel):
    creator_wallet: str
    total_earned: float
    pending_payout: float
    paid_out: float
    total_sales: int
    last_updated: Optional[datetime] = None


class Pagination(CamelModel):
    total: int
    page: int
    total_pages: int
    limit: int


class TransactionPage(CamelModel):
    transactions: List[RoyaltyTransactionResponse]
    pagination: Pagination
