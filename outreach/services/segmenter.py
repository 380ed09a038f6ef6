from dataclasses import dataclass

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session

from outreach.core.errors import InvalidSegmentError
from outreach.models.customer import Customer
from outreach.models.order import Order

SEGMENTS = ("all", "completed", "cancelled", "pending", "failed_delivery")

_SEGMENT_STATUSES: dict[str, tuple[str, ...]] = {
    "completed": ("delivered", "completed"),
    "cancelled": ("cancelled", "declined"),
    "pending": ("pending",),
    "failed_delivery": ("returned", "failed", "didnt_pickup", "delivery_failed", "failed_delivery"),
}


@dataclass(frozen=True)
class Recipient:
    contact: str
    name: str | None


def normalize_segment(segment: str | None) -> str:
    normalized = (segment or "").strip().lower()
    if normalized not in SEGMENTS:
        raise InvalidSegmentError(segment or "")
    return normalized


def _segment_condition(segment: str):
    if segment == "all":
        return None
    condition = func.lower(Order.status).in_(_SEGMENT_STATUSES[segment])
    if segment == "failed_delivery":
        condition = or_(condition, func.lower(Order.delivery_status) == "failed")
    return condition


def _matching_orders(business_id: str, segment: str):
    contact = func.trim(Customer.phone)
    conditions = [
        Order.business_id == business_id,
        Customer.business_id == business_id,
        Customer.phone.is_not(None),
        contact != "",
    ]
    segment_condition = _segment_condition(segment)
    if segment_condition is not None:
        conditions.append(segment_condition)
    return contact, and_(*conditions)


def resolve(
    db: Session,
    *,
    business_id: str,
    segment: str,
    limit: int | None = None,
) -> list[Recipient]:
    """Customers with at least one order matching the segment, one entry per contact.

    Most recent matching order first; the name comes from that order's customer.
    """
    normalized = normalize_segment(segment)
    contact, condition = _matching_orders(business_id, normalized)
    rows = db.execute(
        select(contact.label("contact"), Customer.name)
        .select_from(Order)
        .join(Customer, Customer.id == Order.customer_id)
        .where(condition)
        .order_by(Order.created_at.desc(), contact.asc(), Order.id.desc())
    ).all()

    recipients: list[Recipient] = []
    seen: set[str] = set()
    for row in rows:
        if row.contact in seen:
            continue
        seen.add(row.contact)
        recipients.append(Recipient(contact=row.contact, name=(row.name or "").strip() or None))
        if limit is not None and len(recipients) >= limit:
            break
    return recipients


def count_segment(db: Session, *, business_id: str, segment: str) -> int:
    normalized = normalize_segment(segment)
    contact, condition = _matching_orders(business_id, normalized)
    total = db.execute(
        select(func.count(contact.distinct()))
        .select_from(Order)
        .join(Customer, Customer.id == Order.customer_id)
        .where(condition)
    ).scalar_one()
    return int(total or 0)


def count_by_segment(db: Session, *, business_id: str) -> dict[str, int]:
    return {segment: count_segment(db, business_id=business_id, segment=segment) for segment in SEGMENTS}
