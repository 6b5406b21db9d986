from typing import Optional

from fastapi import APIRouter, Query

from localtrades.models import SearchResponse
from localtrades.routers.errors import raise_trade_http_error
from localtrades.services.marketplace import marketplace
from localtrades.services.trade_store import TradeStoreError

router = APIRouter(tags=["search"])


@router.get("/search", response_model=SearchResponse)
def search_trades(
    postcode: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
):
    try:
        return SearchResponse(trades=marketplace.search(postcode, category))
    except TradeStoreError as exc:
        raise_trade_http_error(exc)
