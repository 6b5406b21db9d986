from fastapi import APIRouter, Depends, HTTPException

from localtrades.auth import create_access_token, require_current_user
from localtrades.models import (
    AuthLoginRequest,
    AuthLoginResponse,
    AuthMeResponse,
    RegisterRequest,
    RegisterResponse,
    User,
)
from localtrades.routers.errors import raise_trade_http_error
from localtrades.services.marketplace import marketplace
from localtrades.services.trade_store import TradeStoreError

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=RegisterResponse)
def register(payload: RegisterRequest):
    try:
        user, profile = marketplace.register(payload)
    except TradeStoreError as exc:
        raise_trade_http_error(exc)
    return RegisterResponse(user=user, trade_profile=profile)


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    user = marketplace.authenticate(str(payload.email), payload.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token, expires_at = create_access_token(user_id=user.id)
    return AuthLoginResponse(access_token=token, user_id=user.id, role=user.role, expires_at=expires_at)


@router.get("/me", response_model=AuthMeResponse)
def me(user: User = Depends(require_current_user)):
    return AuthMeResponse(user_id=user.id, email=user.email, name=user.name, role=user.role)
