from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from outreach.db.base import Base


class BotSettings(Base):
    __tablename__ = "bot_settings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("businesses.id"),
        nullable=False,
        unique=True,
        index=True,
    )
    provider: Mapped[str] = mapped_column(String(30), nullable=False, default="telegram", server_default="telegram")
    updates_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    whatsapp_phone_id: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    whatsapp_token: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    telegram_bot_token: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    sms_account_sid: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    sms_auth_token: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    sms_from_number: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )


class CustomerMessagingId(Base):
    __tablename__ = "customer_messaging_ids"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    customer_phone: Mapped[str] = mapped_column(String(40), nullable=False)
    telegram_chat_id: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("business_id", "customer_phone", name="uq_customer_messaging_ids_business_phone"),
        Index("ix_customer_messaging_ids_business_phone", "business_id", "customer_phone"),
    )
