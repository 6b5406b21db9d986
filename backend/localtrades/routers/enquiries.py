from fastapi import APIRouter, Depends

from localtrades.auth import require_current_user, require_trade_profile
from localtrades.models import Enquiry, EnquiryCreateRequest, EnquiryStatusUpdateRequest, TradeProfile, User
from localtrades.routers.errors import raise_trade_http_error
from localtrades.services.marketplace import marketplace
from localtrades.services.trade_store import TradeStoreError

router = APIRouter(prefix="/enquiries", tags=["enquiries"])


@router.post("", response_model=Enquiry)
def create_enquiry(request: EnquiryCreateRequest, user: User = Depends(require_current_user)):
    try:
        return marketplace.submit_enquiry(
            provider_id=request.trade_profile_id,
            client_id=user.id,
            fields=request,
        )
    except TradeStoreError as exc:
        raise_trade_http_error(exc)


@router.get("", response_model=list[Enquiry])
def list_enquiries(user: User = Depends(require_current_user)):
    return marketplace.list_enquiries(user)


@router.patch("/{enquiry_id}", response_model=Enquiry)
def update_enquiry_status(
    enquiry_id: str,
    request: EnquiryStatusUpdateRequest,
    profile: TradeProfile = Depends(require_trade_profile),
):
    try:
        return marketplace.update_enquiry_status(
            enquiry_id=enquiry_id,
            new_status=request.status,
            caller_provider_id=profile.id,
        )
    except TradeStoreError as exc:
        raise_trade_http_error(exc)
