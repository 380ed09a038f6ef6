from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from outreach.core.api_docs import error_responses
from outreach.core.deps import get_db
from outreach.core.security_current import TenantAccess, get_current_tenant
from outreach.models.billing import Subscription
from outreach.models.business import Business
from outreach.schemas.billing import (
    AccessCheckOut,
    CheckoutIn,
    CheckoutOut,
    PaymentListOut,
    PaymentOut,
    PaymentWebhookIn,
    PaymentWebhookOut,
    SubscriptionOut,
)
from outreach.schemas.common import PaginationMeta
from outreach.services import billing_service, subscription_gate
from outreach.services.audit_service import log_audit_event

router = APIRouter(prefix="/billing", tags=["billing"])
webhooks_router = APIRouter(prefix="/billing/webhooks", tags=["billing"])


def _subscription_out(db: Session, business: Business, subscription: Subscription) -> SubscriptionOut:
    summary = subscription_gate.access_summary(db, business)
    return SubscriptionOut(
        id=subscription.id,
        status=subscription.status,
        effective_status=subscription_gate.effective_status(subscription),
        has_access=summary.has_access,
        tier=subscription.tier,
        trial_started_at=subscription.trial_started_at,
        trial_ends_at=subscription.trial_ends_at,
        current_period_start=subscription.current_period_start,
        current_period_end=subscription.current_period_end,
        auto_renew=subscription.auto_renew,
        cancelled_at=subscription.cancelled_at,
        days_left=summary.days_left,
        locked=summary.locked,
    )


@router.get(
    "/subscription",
    response_model=SubscriptionOut,
    summary="Get current subscription",
    responses=error_responses(401, 500),
)
def get_subscription(
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    subscription = subscription_gate.ensure_subscription(db, business_id=access.business.id)
    subscription_gate.refresh_subscription_status(subscription)
    db.commit()
    db.refresh(subscription)
    return _subscription_out(db, access.business, subscription)


@router.get(
    "/check-access",
    response_model=AccessCheckOut,
    summary="Check messaging entitlement",
    responses=error_responses(401, 500),
)
def check_access(
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    summary = subscription_gate.access_summary(db, access.business)
    return AccessCheckOut(
        has_access=summary.has_access,
        status=summary.status,
        days_left=summary.days_left,
        locked=summary.locked,
        lock_type=summary.lock_type,
    )


@router.post(
    "/subscription/cancel",
    response_model=SubscriptionOut,
    summary="Cancel active subscription",
    responses=error_responses(401, 404, 409, 500),
)
def cancel_subscription(
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    subscription = subscription_gate.get_current_subscription(db, business_id=access.business.id)
    if subscription is None:
        raise HTTPException(status_code=404, detail="Subscription not found")
    subscription_gate.cancel_subscription(db, subscription)
    log_audit_event(
        db,
        business_id=access.business.id,
        actor=access.actor,
        action="billing.subscription.cancel",
        target_type="subscription",
        target_id=subscription.id,
    )
    db.commit()
    db.refresh(subscription)
    return _subscription_out(db, access.business, subscription)


@router.get(
    "/payments",
    response_model=PaymentListOut,
    summary="List payment history",
    responses=error_responses(401, 422, 500),
)
def list_payments(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    rows, total = billing_service.list_payments(db, business_id=access.business.id, limit=limit, offset=offset)
    payments = [PaymentOut.model_validate(row) for row in rows]
    count = len(payments)
    return PaymentListOut(
        payments=payments,
        total=total,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.post(
    "/checkout",
    response_model=CheckoutOut,
    summary="Start or renew the paid plan",
    responses=error_responses(400, 401, 402, 422, 500),
)
def create_checkout(
    payload: CheckoutIn,
    db: Session = Depends(get_db),
    access: TenantAccess = Depends(get_current_tenant),
):
    payment, quote = billing_service.start_checkout(
        db,
        business=access.business,
        actor=access.actor,
        voucher_code=payload.voucher_code,
        provider_name=payload.provider,
    )
    db.commit()
    return CheckoutOut(
        payment_id=payment.id,
        amount=float(quote.amount),
        original_amount=float(quote.original_amount),
        discount_percent=quote.discount_percent,
        discount_amount=float(quote.discount_amount),
        voucher_code=quote.voucher_code,
        checkout_url=payment.checkout_url,
        currency=payment.currency,
    )


@webhooks_router.post(
    "/{provider}",
    response_model=PaymentWebhookOut,
    summary="Process payment provider callback",
    responses=error_responses(400, 401, 402, 404, 409, 422, 500),
)
async def process_payment_webhook(
    provider: str,
    payload: PaymentWebhookIn,
    request: Request,
    db: Session = Depends(get_db),
):
    raw_body = await request.body()
    signature = request.headers.get("X-Outreach-Signature")
    if not signature:
        raise HTTPException(status_code=401, detail="Missing webhook signature")
    if not billing_service.verify_webhook_signature(raw_body, signature):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    normalized_provider = provider.strip().lower()
    if not normalized_provider:
        raise HTTPException(status_code=400, detail="Provider is required")

    outcome = billing_service.apply_payment_event(
        db,
        provider=normalized_provider,
        event_type=payload.event_type,
        payment_reference=payload.payment_reference,
        error_message=payload.error_message,
    )
    db.commit()
    return PaymentWebhookOut(
        ok=True,
        duplicate=outcome.duplicate,
        payment_status=outcome.payment.status,
        subscription_status=outcome.subscription.status if outcome.subscription else None,
    )
