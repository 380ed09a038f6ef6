from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from outreach.core.api_docs import error_responses
from outreach.core.config import settings
from outreach.core.deps import get_db
from outreach.core.rate_limit import SlidingWindowRateLimiter
from outreach.schemas.billing import VoucherValidateOut
from outreach.services.checkout_calculator import lookup_voucher

router = APIRouter(prefix="/vouchers", tags=["billing"])

voucher_rate_limiter = SlidingWindowRateLimiter(
    max_requests=settings.voucher_rate_limit_requests,
    window_seconds=settings.voucher_rate_limit_window_seconds,
)


@router.get(
    "/validate/{code}",
    response_model=VoucherValidateOut,
    response_model_exclude_none=True,
    summary="Preview a voucher code",
    responses=error_responses(429, 500),
)
def validate_voucher(
    code: str,
    request: Request,
    db: Session = Depends(get_db),
):
    client_host = request.client.host if request.client else "unknown"
    retry_after = voucher_rate_limiter.check_and_consume(f"voucher:{client_host}")
    if retry_after:
        raise HTTPException(
            status_code=429,
            detail="Too many voucher checks. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    result = lookup_voucher(db, code)
    return VoucherValidateOut(valid=result.valid, discount_percent=result.discount_percent, code=result.code)
