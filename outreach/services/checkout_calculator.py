from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from outreach.core.money import ZERO_MONEY, percent_of, to_money
from outreach.models.billing import Payment, Voucher


@dataclass(frozen=True)
class VoucherLookup:
    valid: bool
    discount_percent: int = 0
    code: str | None = None


@dataclass(frozen=True)
class CheckoutQuote:
    amount: Decimal
    original_amount: Decimal
    discount_percent: int
    discount_amount: Decimal
    voucher_code: str | None = None


def normalize_voucher_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _clamp_percent(value: int | None) -> int:
    return max(0, min(100, int(value or 0)))


def lookup_voucher(db: Session, code: str | None) -> VoucherLookup:
    normalized = normalize_voucher_code(code)
    if not normalized:
        return VoucherLookup(valid=False)
    voucher = db.execute(
        select(Voucher).where(Voucher.code == normalized, Voucher.is_active.is_(True))
    ).scalar_one_or_none()
    if voucher is None:
        return VoucherLookup(valid=False)
    return VoucherLookup(
        valid=True,
        discount_percent=_clamp_percent(voucher.discount_percent),
        code=voucher.code,
    )


def has_completed_payment(db: Session, *, business_id: str) -> bool:
    return (
        db.execute(
            select(Payment.id)
            .where(Payment.business_id == business_id, Payment.status == "completed")
            .limit(1)
        ).scalar_one_or_none()
        is not None
    )


def compute_checkout(
    db: Session,
    *,
    business_id: str,
    base_amount: Decimal | int | float | str,
    voucher_code: str | None = None,
) -> CheckoutQuote:
    original = to_money(base_amount)
    lookup = VoucherLookup(valid=False)
    # Vouchers only discount the first paid period.
    if normalize_voucher_code(voucher_code) and not has_completed_payment(db, business_id=business_id):
        lookup = lookup_voucher(db, voucher_code)

    if not lookup.valid or lookup.discount_percent == 0:
        return CheckoutQuote(
            amount=original,
            original_amount=original,
            discount_percent=0,
            discount_amount=ZERO_MONEY,
        )

    discount_amount = percent_of(original, lookup.discount_percent)
    return CheckoutQuote(
        amount=to_money(original - discount_amount),
        original_amount=original,
        discount_percent=lookup.discount_percent,
        discount_amount=discount_amount,
        voucher_code=lookup.code,
    )
