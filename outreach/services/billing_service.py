import hashlib
import hmac
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from outreach.core.config import settings
from outreach.core.errors import DomainValidationError, NotFoundError, PaymentError
from outreach.core.observability import log_event
from outreach.models.billing import Payment, Subscription
from outreach.models.business import Business
from outreach.services.audit_service import log_audit_event
from outreach.services.checkout_calculator import CheckoutQuote, compute_checkout
from outreach.services.payment_provider import PaymentInitRequest, get_payment_provider
from outreach.services.subscription_gate import activate_subscription, ensure_subscription, release_payment_lock

logger = logging.getLogger("outreach.billing")

FINAL_PAYMENT_STATUSES = {"completed", "failed"}
_EVENT_STATUSES = {
    "payment.completed": "completed",
    "payment.succeeded": "completed",
    "payment.failed": "failed",
}


@dataclass(frozen=True)
class WebhookOutcome:
    payment: Payment
    subscription: Subscription | None
    duplicate: bool


def build_webhook_signature(payload_bytes: bytes) -> str:
    digest = hmac.new(
        settings.payment_webhook_secret.encode("utf-8"),
        payload_bytes,
        hashlib.sha256,
    ).hexdigest()
    return f"sha256={digest}"


def verify_webhook_signature(payload_bytes: bytes, signature_header: str | None) -> bool:
    if not signature_header:
        return False
    provided = signature_header.strip()
    if not provided.startswith("sha256="):
        provided = f"sha256={provided}"
    return hmac.compare_digest(provided, build_webhook_signature(payload_bytes))


def list_payments(db: Session, *, business_id: str, limit: int, offset: int) -> tuple[list[Payment], int]:
    total = db.execute(
        select(func.count(Payment.id)).where(Payment.business_id == business_id)
    ).scalar_one()
    rows = db.execute(
        select(Payment)
        .where(Payment.business_id == business_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    return list(rows), int(total)


def _subscription_for_checkout(db: Session, *, business_id: str, now: datetime | None) -> Subscription:
    subscription = ensure_subscription(db, business_id=business_id, now=now)
    if subscription.status != "cancelled":
        return subscription
    # Cancelled is terminal; paying again starts a fresh subscription record.
    renewed = Subscription(
        id=str(uuid.uuid4()),
        business_id=business_id,
        status="expired",
        tier=subscription.tier,
        auto_renew=False,
    )
    db.add(renewed)
    db.flush()
    return renewed


def start_checkout(
    db: Session,
    *,
    business: Business,
    actor: str,
    voucher_code: str | None = None,
    provider_name: str | None = None,
    now: datetime | None = None,
) -> tuple[Payment, CheckoutQuote]:
    subscription = _subscription_for_checkout(db, business_id=business.id, now=now)
    quote = compute_checkout(
        db,
        business_id=business.id,
        base_amount=settings.subscription_price,
        voucher_code=voucher_code,
    )
    try:
        provider = get_payment_provider(provider_name or settings.payment_provider_default)
    except ValueError as exc:
        raise DomainValidationError(str(exc)) from exc

    payment_id = str(uuid.uuid4())
    init = provider.initialize_checkout(
        PaymentInitRequest(
            business_id=business.id,
            payment_id=payment_id,
            amount=quote.amount,
            currency=settings.subscription_currency,
            description=f"{settings.app_name} {subscription.tier} plan",
            success_redirect_url=settings.checkout_success_url,
            cancel_redirect_url=settings.checkout_cancel_url,
        )
    )
    payment = Payment(
        id=payment_id,
        business_id=business.id,
        subscription_id=subscription.id,
        amount=quote.amount,
        original_amount=quote.original_amount,
        discount_percent=quote.discount_percent,
        voucher_code=quote.voucher_code,
        currency=settings.subscription_currency,
        status="pending",
        transaction_id=init.payment_reference,
        payment_method=init.provider,
        checkout_url=init.checkout_url,
    )
    db.add(payment)
    db.flush()
    log_audit_event(
        db,
        business_id=business.id,
        actor=actor,
        action="billing.checkout.create",
        target_type="payment",
        target_id=payment.id,
        metadata_json={
            "amount": str(quote.amount),
            "discount_percent": quote.discount_percent,
            "voucher_code": quote.voucher_code,
        },
    )
    return payment, quote


def apply_payment_event(
    db: Session,
    *,
    provider: str,
    event_type: str,
    payment_reference: str,
    error_message: str | None = None,
    now: datetime | None = None,
) -> WebhookOutcome:
    target_status = _EVENT_STATUSES.get((event_type or "").strip().lower())
    if target_status is None:
        raise DomainValidationError(f"Unsupported payment event '{event_type}'")

    payment = db.execute(
        select(Payment).where(Payment.transaction_id == payment_reference)
    ).scalar_one_or_none()
    if payment is None:
        raise NotFoundError("Payment not found for webhook payload")
    subscription = None
    if payment.subscription_id:
        subscription = db.get(Subscription, payment.subscription_id)

    if payment.status in FINAL_PAYMENT_STATUSES:
        if payment.status != target_status:
            raise PaymentError(f"Payment is already {payment.status}", status_code=409)
        return WebhookOutcome(payment=payment, subscription=subscription, duplicate=True)

    if target_status == "completed":
        if subscription is None:
            raise PaymentError("Payment is not linked to a subscription", status_code=409)
        activate_subscription(db, subscription, now=now)
        business = db.get(Business, payment.business_id)
        if business is not None:
            release_payment_lock(business)
        payment.status = "completed"
        payment.paid_at = now or datetime.now(timezone.utc)
        payment.error_message = None
        log_event(
            logger,
            "billing.payment.completed",
            payment_id=payment.id,
            business_id=payment.business_id,
            provider=provider,
            amount=str(payment.amount),
        )
    else:
        payment.status = "failed"
        payment.error_message = (error_message or "Payment failed")[:255]
        log_event(
            logger,
            "billing.payment.failed",
            level=logging.WARNING,
            payment_id=payment.id,
            business_id=payment.business_id,
            provider=provider,
            error=payment.error_message,
        )
    db.flush()
    return WebhookOutcome(payment=payment, subscription=subscription, duplicate=False)
