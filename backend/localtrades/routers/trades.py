from fastapi import APIRouter, Depends

from localtrades.auth import require_current_user, require_trade_profile
from localtrades.models import (
    ReliabilityScore,
    SubscriptionStatus,
    TradeProfile,
    TradeProfileUpdateRequest,
    TradeProfileView,
    User,
)
from localtrades.routers.errors import raise_trade_http_error
from localtrades.services.marketplace import marketplace
from localtrades.services.trade_store import TradeStoreError

router = APIRouter(prefix="/trades", tags=["trades"])


@router.get("/profile", response_model=TradeProfileView)
def get_profile(
    user: User = Depends(require_current_user),
    profile: TradeProfile = Depends(require_trade_profile),
):
    return TradeProfileView(
        profile=profile,
        reliability=marketplace.score_provider(profile),
        owner_name=user.name,
        owner_email=user.email,
        owner_phone=user.phone,
    )


@router.patch("/profile", response_model=TradeProfile)
def update_profile(request: TradeProfileUpdateRequest, user: User = Depends(require_current_user)):
    try:
        return marketplace.update_profile(user_id=user.id, request=request)
    except TradeStoreError as exc:
        raise_trade_http_error(exc)


@router.get("/profile/reliability", response_model=ReliabilityScore)
def get_reliability(profile: TradeProfile = Depends(require_trade_profile)):
    return marketplace.score_provider(profile)


@router.get("/subscription", response_model=SubscriptionStatus)
def get_subscription(profile: TradeProfile = Depends(require_trade_profile)):
    try:
        return marketplace.subscription_status(profile.id)
    except TradeStoreError as exc:
        raise_trade_http_error(exc)


@router.post("/subscription", response_model=TradeProfile)
def activate_subscription(profile: TradeProfile = Depends(require_trade_profile)):
    try:
        return marketplace.activate_subscription(profile.id)
    except TradeStoreError as exc:
        raise_trade_http_error(exc)


@router.delete("/subscription", response_model=TradeProfile)
def cancel_subscription(profile: TradeProfile = Depends(require_trade_profile)):
    try:
        return marketplace.cancel_subscription(profile.id)
    except TradeStoreError as exc:
        raise_trade_http_error(exc)
