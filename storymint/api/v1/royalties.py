import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from storymint.core.errors import ServiceError, not_found
from storymint.core.security import require_session, require_session_or_internal_key
from storymint.schemas.response import SuccessResponse
from storymint.schemas.royalty import (
    ConfigureRoyaltyRequest,
    CreatorEarningsResponse,
    Pagination,
    RecordTransactionRequest,
    RoyaltyConfigResponse,
    RoyaltyTransactionResponse,
    TransactionPage,
)
from storymint.services.royalty_service import (
    configure_royalty,
    get_creator_earnings,
    get_creator_transactions,
    get_royalty_config,
    record_royalty_transaction,
)

router = APIRouter()
log = logging.getLogger("storymint.api.royalties")


@router.post("/configure", response_model=SuccessResponse, dependencies=[Depends(require_session)])
async def configure_royalty_endpoint(request_data: ConfigureRoyaltyRequest):
    """Creates or updates the royalty configuration of an NFT or story."""
    try:
        config = await configure_royalty(
            nft_id=request_data.nft_id,
            story_id=request_data.story_id,
            creator_wallet=request_data.creator_wallet,
            royalty_percentage=request_data.royalty_percentage,
        )
        return SuccessResponse(data=RoyaltyConfigResponse.model_validate(config).to_wire())
    except ServiceError as e:
        log.warning(f"Royalty configuration rejected: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error configuring royalty: {e}")
        raise HTTPException(status_code=500, detail="Server failed to configure royalty.")


@router.get("/configure", response_model=SuccessResponse, dependencies=[Depends(require_session)])
async def get_royalty_config_endpoint(
    nft_id: Optional[str] = Query(None, alias="nftId"),
    story_id: Optional[str] = Query(None, alias="storyId"),
    creator_wallet: Optional[str] = Query(None, alias="creatorWallet"),
):
    """Looks up configuration by nftId, storyId, or creatorWallet."""
    try:
        config = await get_royalty_config(nft_id=nft_id, story_id=story_id, creator_wallet=creator_wallet)
        if not config:
            raise not_found("No royalty configuration found")

        if isinstance(config, list):
            data = [RoyaltyConfigResponse.model_validate(c).to_wire() for c in config]
        else:
            data = RoyaltyConfigResponse.model_validate(config).to_wire()
        return SuccessResponse(data=data)
    except ServiceError:
        raise
    except Exception as e:
        log.error(f"Error fetching royalty config: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch royalty configuration.")


@router.post(
    "/record",
    status_code=status.HTTP_201_CREATED,
    response_model=SuccessResponse,
    dependencies=[Depends(require_session_or_internal_key)],
)
async def record_royalty_endpoint(request_data: RecordTransactionRequest):
    """Records a royalty transaction for a secondary sale."""
    try:
        transaction = await record_royalty_transaction(
            nft_id=request_data.nft_id,
            sale_price=request_data.sale_price,
            seller_wallet=request_data.seller_wallet,
            buyer_wallet=request_data.buyer_wallet,
            tx_hash=request_data.tx_hash,
        )
        return SuccessResponse(data=RoyaltyTransactionResponse.model_validate(transaction).to_wire())
    except ServiceError as e:
        log.warning(f"Royalty transaction rejected: {e.message}")
        raise
    except Exception as e:
        log.error(f"Error recording royalty transaction: {e}")
        raise HTTPException(status_code=500, detail="Server failed to record royalty transaction.")


@router.get(
    "/earnings/{wallet}",
    response_model=SuccessResponse,
    dependencies=[Depends(require_session_or_internal_key)],
)
async def get_earnings_endpoint(wallet: str):
    """Earnings summary for a creator; all zeros if they have no sales yet."""
    try:
        earnings = await get_creator_earnings(wallet)
        return SuccessResponse(data=CreatorEarningsResponse.model_validate(earnings).to_wire())
    except ServiceError:
        raise
    except Exception as e:
        log.error(f"Error fetching creator earnings: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch creator earnings.")


@router.get(
    "/transactions/{wallet}",
    response_model=SuccessResponse,
    dependencies=[Depends(require_session_or_internal_key)],
)
async def get_transactions_endpoint(
    wallet: str,
    page: int = 1,
    limit: int = 10,
    tx_status: Optional[str] = Query(None, alias="status"),
):
    """Paginated royalty history for a creator, newest first."""
    try:
        result = await get_creator_transactions(wallet, page=page, limit=limit, status=tx_status)
        data = TransactionPage(
            transactions=[RoyaltyTransactionResponse.model_validate(t) for t in result["transactions"]],
            pagination=Pagination(
                total=result["total"],
                page=result["page"],
                total_pages=result["total_pages"],
                limit=result["limit"],
            ),
        ).to_wire()
        return SuccessResponse(data=data)
    except ServiceError:
        raise
    except Exception as e:
        log.error(f"Error fetching royalty transactions: {e}")
        raise HTTPException(status_code=500, detail="Server failed to fetch royalty transactions.")
