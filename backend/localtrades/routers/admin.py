from fastapi import APIRouter, Depends

from localtrades.auth import require_admin
from localtrades.models import TradeProfile, User
from localtrades.routers.errors import raise_trade_http_error
from localtrades.services.marketplace import marketplace
from localtrades.services.trade_store import TradeStoreError

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/trades", response_model=list[TradeProfile])
def list_trades(admin: User = Depends(require_admin)):
    return marketplace.list_trades()


@router.post("/trades/{trade_id}/verify", response_model=TradeProfile)
def verify_trade(trade_id: str, admin: User = Depends(require_admin)):
    try:
        return marketplace.set_verified(trade_id, True, actor=admin)
    except TradeStoreError as exc:
        raise_trade_http_error(exc)


@router.delete("/trades/{trade_id}/verify", response_model=TradeProfile)
def unverify_trade(trade_id: str, admin: User = Depends(require_admin)):
    try:
        return marketplace.set_verified(trade_id, False, actor=admin)
    except TradeStoreError as exc:
        raise_trade_http_error(exc)
