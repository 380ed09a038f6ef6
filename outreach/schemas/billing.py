from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from outreach.schemas.common import PaginationMeta


class SubscriptionOut(BaseModel):
    id: str
    status: str
    effective_status: str
    has_access: bool
    tier: str
    trial_started_at: datetime | None = None
    trial_ends_at: datetime | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    auto_renew: bool
    cancelled_at: datetime | None = None
    days_left: int
    locked: bool


class AccessCheckOut(BaseModel):
    has_access: bool
    status: str
    days_left: int
    locked: bool
    lock_type: str | None = None


class PaymentOut(BaseModel):
    id: str
    subscription_id: str | None = None
    amount: float
    original_amount: float
    discount_percent: int
    voucher_code: str | None = None
    currency: str
    status: str
    transaction_id: str
    payment_method: str
    checkout_url: str | None = None
    paid_at: datetime | None = None
    error_message: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentListOut(BaseModel):
    payments: list[PaymentOut]
    total: int
    pagination: PaginationMeta


class CheckoutIn(BaseModel):
    voucher_code: str | None = Field(
        default=None,
        max_length=40,
        validation_alias=AliasChoices("voucher_code", "voucherCode"),
    )
    provider: str | None = None

    model_config = ConfigDict(json_schema_extra={"example": {"voucher_code": "AHMED20"}})


class CheckoutOut(BaseModel):
    payment_id: str
    amount: float
    original_amount: float
    discount_percent: int
    discount_amount: float
    voucher_code: str | None = None
    checkout_url: str | None = None
    currency: str

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PaymentWebhookIn(BaseModel):
    event_id: str | None = None
    event_type: str
    payment_reference: str
    error_message: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "event_id": "evt_001",
                "event_type": "payment.completed",
                "payment_reference": "stub_4k2m9x7q1c8v3n6b0z",
            }
        }
    )


class PaymentWebhookOut(BaseModel):
    ok: bool
    duplicate: bool = False
    payment_status: str
    subscription_status: str | None = None


class VoucherValidateOut(BaseModel):
    valid: bool
    discount_percent: int = 0
    code: str | None = None
