from fastapi import HTTPException

from localtrades.services.trade_store import (
    EnquiryGateRejectedError,
    TradeStoreConflictError,
    TradeStoreError,
    TradeStoreNotFoundError,
    TradeStorePermissionError,
)


def raise_trade_http_error(exc: TradeStoreError) -> None:
    if isinstance(exc, TradeStoreNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, TradeStorePermissionError):
        raise HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, (TradeStoreConflictError, EnquiryGateRejectedError)):
        raise HTTPException(status_code=409, detail=str(exc))
    raise HTTPException(status_code=400, detail=str(exc))
