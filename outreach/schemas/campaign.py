from datetime import datetime

from pydantic import BaseModel, ConfigDict, model_validator


class CampaignCreateIn(BaseModel):
    name: str
    message: str
    target_category: str
    channel: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Win-back October",
                "message": "Hi {name}, we miss you! Here is 10% off your next order.",
                "target_category": "cancelled",
                "channel": "telegram",
            }
        }
    )


class CampaignUpdateIn(BaseModel):
    name: str | None = None
    message: str | None = None
    target_category: str | None = None
    channel: str | None = None

    @model_validator(mode="after")
    def validate_has_field(self) -> "CampaignUpdateIn":
        if (
            self.name is None
            and self.message is None
            and self.target_category is None
            and self.channel is None
        ):
            raise ValueError("At least one field must be provided")
        return self


class CampaignOut(BaseModel):
    id: str
    name: str
    message: str
    target_category: str
    channel: str
    status: str
    recipients_count: int
    sent_count: int
    failed_count: int
    created_at: datetime
    updated_at: datetime | None = None
    sent_at: datetime | None = None


class CampaignDispatchOut(BaseModel):
    sent: int
    failed: int


class CampaignDeleteOut(BaseModel):
    ok: bool


class SegmentCountsOut(BaseModel):
    all: int
    completed: int
    cancelled: int
    pending: int
    failed_delivery: int

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"all": 42, "completed": 30, "cancelled": 6, "pending": 4, "failed_delivery": 2}
        }
    )


class SegmentCustomerOut(BaseModel):
    contact: str
    name: str | None = None


class MessageLogOut(BaseModel):
    id: str
    campaign_id: str
    customer_contact: str
    customer_name: str | None = None
    channel: str
    status: str
    error_message: str | None = None
    provider_message_id: str | None = None
    sent_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
