import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, select
from sqlalchemy.orm import Session

from outreach.core.config import settings
from outreach.core.errors import InvalidStateError, PaymentError
from outreach.core.observability import log_event
from outreach.models.billing import Subscription
from outreach.models.business import Business

logger = logging.getLogger("outreach.billing")

ACCESS_STATUSES = {"trial", "active"}


@dataclass(frozen=True)
class AccessSummary:
    has_access: bool
    status: str
    days_left: int
    locked: bool
    lock_type: str | None = None


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _now(now: datetime | None) -> datetime:
    return _as_utc(now) or datetime.now(timezone.utc)


def access_ends_at(subscription: Subscription) -> datetime | None:
    if subscription.status == "trial":
        return _as_utc(subscription.trial_ends_at)
    if subscription.status == "active":
        return _as_utc(subscription.current_period_end)
    return None


def effective_status(subscription: Subscription, *, now: datetime | None = None) -> str:
    """Stored status adjusted for elapsed trial and billing windows."""
    if subscription.status not in ACCESS_STATUSES:
        return subscription.status
    ends_at = access_ends_at(subscription)
    if ends_at is None or _now(now) >= ends_at:
        return "expired"
    return subscription.status


def get_current_subscription(db: Session, *, business_id: str) -> Subscription | None:
    return db.execute(
        select(Subscription)
        .where(Subscription.business_id == business_id)
        .order_by(
            case((Subscription.status == "cancelled", 1), else_=0),
            Subscription.created_at.desc(),
        )
        .limit(1)
    ).scalar_one_or_none()


def start_trial(db: Session, *, business_id: str, now: datetime | None = None) -> Subscription:
    started = _now(now)
    subscription = Subscription(
        id=str(uuid.uuid4()),
        business_id=business_id,
        status="trial",
        tier="basic",
        trial_started_at=started,
        trial_ends_at=started + timedelta(days=settings.trial_days),
        auto_renew=False,
    )
    db.add(subscription)
    db.flush()
    return subscription


def ensure_subscription(db: Session, *, business_id: str, now: datetime | None = None) -> Subscription:
    subscription = get_current_subscription(db, business_id=business_id)
    if subscription is None:
        subscription = start_trial(db, business_id=business_id, now=now)
    return subscription


def refresh_subscription_status(subscription: Subscription, *, now: datetime | None = None) -> bool:
    computed = effective_status(subscription, now=now)
    if computed == subscription.status:
        return False
    subscription.status = computed
    return True


def subscription_grants_access(db: Session, *, business_id: str, now: datetime | None = None) -> bool:
    subscription = get_current_subscription(db, business_id=business_id)
    if subscription is None:
        return False
    return effective_status(subscription, now=now) in ACCESS_STATUSES


def has_access(db: Session, business: Business, *, now: datetime | None = None) -> bool:
    if business.is_locked:
        return False
    return subscription_grants_access(db, business_id=business.id, now=now)


def access_summary(db: Session, business: Business, *, now: datetime | None = None) -> AccessSummary:
    current = _now(now)
    subscription = get_current_subscription(db, business_id=business.id)
    if subscription is None:
        return AccessSummary(
            has_access=False,
            status="none",
            days_left=0,
            locked=bool(business.is_locked),
            lock_type=business.lock_type,
        )
    status = effective_status(subscription, now=current)
    days_left = 0
    ends_at = access_ends_at(subscription)
    if status in ACCESS_STATUSES and ends_at is not None:
        days_left = max((ends_at - current).days, 0)
    return AccessSummary(
        has_access=not business.is_locked and status in ACCESS_STATUSES,
        status=status,
        days_left=days_left,
        locked=bool(business.is_locked),
        lock_type=business.lock_type,
    )


def activate_subscription(
    db: Session,
    subscription: Subscription,
    *,
    now: datetime | None = None,
) -> Subscription:
    if subscription.status == "cancelled":
        raise PaymentError("Cancelled subscription cannot be reactivated", status_code=409)
    current = _now(now)
    period = timedelta(days=settings.subscription_period_days)
    if effective_status(subscription, now=current) == "active":
        # Renewal while still active extends the running period.
        subscription.current_period_end = _as_utc(subscription.current_period_end) + period
    else:
        subscription.status = "active"
        subscription.current_period_start = current
        subscription.current_period_end = current + period
    db.flush()
    return subscription


def cancel_subscription(
    db: Session,
    subscription: Subscription,
    *,
    now: datetime | None = None,
) -> Subscription:
    current = _now(now)
    if effective_status(subscription, now=current) != "active":
        raise InvalidStateError("Only an active subscription can be cancelled")
    subscription.status = "cancelled"
    subscription.auto_renew = False
    subscription.cancelled_at = current
    db.flush()
    return subscription


def release_payment_lock(business: Business) -> bool:
    if not business.is_locked or business.lock_type != "payment":
        return False
    business.is_locked = False
    business.lock_type = None
    business.locked_reason = None
    business.locked_at = None
    return True


def enforce_subscription_locks(db: Session, *, now: datetime | None = None) -> dict[str, int]:
    """Lock tenants without entitlement and lift payment locks once entitlement returns.

    Dispute and admin locks are only lifted manually. Tenants that never had a
    subscription are skipped; their trial starts on first read.
    """
    current = _now(now)
    locked = 0
    unlocked = 0
    businesses = db.execute(select(Business).order_by(Business.created_at.asc())).scalars().all()
    for business in businesses:
        subscription = get_current_subscription(db, business_id=business.id)
        if subscription is None:
            continue
        entitled = effective_status(subscription, now=current) in ACCESS_STATUSES
        if not business.is_locked and not entitled:
            business.is_locked = True
            business.lock_type = "payment"
            business.locked_reason = "Subscription expired"
            business.locked_at = current
            locked += 1
        elif entitled and release_payment_lock(business):
            unlocked += 1
    db.flush()
    log_event(logger, "subscription.locks.enforced", locked=locked, unlocked=unlocked)
    return {"locked": locked, "unlocked": unlocked}
