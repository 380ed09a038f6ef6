import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from outreach.core.config import settings
from outreach.core.errors import SubscriptionLockedError
from outreach.models.bot_settings import BotSettings, CustomerMessagingId
from outreach.models.business import Business
from outreach.services.audit_service import log_audit_event
from outreach.services.messaging_provider import ChannelKind, parse_channel
from outreach.services.subscription_gate import has_access

SECRET_FIELDS = ("whatsapp_token", "telegram_bot_token", "sms_auth_token")


def get_bot_settings(db: Session, *, business_id: str) -> BotSettings | None:
    return db.execute(
        select(BotSettings).where(BotSettings.business_id == business_id)
    ).scalar_one_or_none()


def default_channel(bot_settings: BotSettings | None) -> ChannelKind:
    if bot_settings and bot_settings.provider:
        return parse_channel(bot_settings.provider)
    return parse_channel(settings.default_channel)


def update_bot_settings(
    db: Session,
    *,
    business: Business,
    actor: str,
    changes: dict[str, object],
    now: datetime | None = None,
) -> BotSettings:
    if not has_access(db, business, now=now):
        raise SubscriptionLockedError("Subscription inactive. Renew to change bot settings.")

    row = get_bot_settings(db, business_id=business.id)
    if row is None:
        row = BotSettings(
            id=str(uuid.uuid4()),
            business_id=business.id,
            provider=parse_channel(settings.default_channel).value,
            updates_enabled=True,
        )
        db.add(row)

    if "provider" in changes and changes["provider"] is not None:
        changes["provider"] = parse_channel(str(changes["provider"])).value
    for field, value in changes.items():
        if isinstance(value, str):
            value = value.strip() or None
        if field == "provider" and value is None:
            continue
        setattr(row, field, value)
    db.flush()

    log_audit_event(
        db,
        business_id=business.id,
        actor=actor,
        action="bot_settings.update",
        target_type="bot_settings",
        target_id=row.id,
        metadata_json={"fields": sorted(field for field in changes if field not in SECRET_FIELDS)},
    )
    return row


def telegram_chat_ids(db: Session, *, business_id: str, contacts: list[str]) -> dict[str, str]:
    """Map recipient contacts to linked Telegram chat ids, keyed by the original contact."""
    by_digits: dict[str, list[str]] = {}
    for contact in contacts:
        digits = "".join(ch for ch in contact if ch.isdigit())
        if digits:
            by_digits.setdefault(digits, []).append(contact)
    if not by_digits:
        return {}
    rows = db.execute(
        select(CustomerMessagingId.customer_phone, CustomerMessagingId.telegram_chat_id).where(
            CustomerMessagingId.business_id == business_id,
            CustomerMessagingId.customer_phone.in_(list(by_digits)),
            CustomerMessagingId.telegram_chat_id.is_not(None),
        )
    ).all()
    chat_ids: dict[str, str] = {}
    for phone, chat_id in rows:
        for contact in by_digits.get(phone, []):
            chat_ids[contact] = chat_id
    return chat_ids
