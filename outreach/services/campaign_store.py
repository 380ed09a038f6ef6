import uuid

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from outreach.core.errors import CampaignInSendingError, DomainValidationError, InvalidStateError, NotFoundError
from outreach.models.campaign import Campaign, MessageLog
from outreach.services.audit_service import log_audit_event
from outreach.services.bot_settings_service import default_channel, get_bot_settings
from outreach.services.messaging_provider import parse_channel
from outreach.services.segmenter import normalize_segment

NAME_MAX_LENGTH = 120
MESSAGE_MAX_LENGTH = 4000


def _clean_name(value: str | None) -> str:
    name = (value or "").strip()
    if not name:
        raise DomainValidationError("Campaign name is required")
    if len(name) > NAME_MAX_LENGTH:
        raise DomainValidationError(f"Campaign name must be at most {NAME_MAX_LENGTH} characters")
    return name


def _clean_message(value: str | None) -> str:
    message = (value or "").strip()
    if not message:
        raise DomainValidationError("Campaign message is required")
    if len(message) > MESSAGE_MAX_LENGTH:
        raise DomainValidationError(f"Campaign message must be at most {MESSAGE_MAX_LENGTH} characters")
    return message


def get_campaign(db: Session, *, business_id: str, campaign_id: str) -> Campaign:
    row = db.execute(
        select(Campaign).where(
            Campaign.id == campaign_id,
            Campaign.business_id == business_id,
        )
    ).scalar_one_or_none()
    if not row:
        raise NotFoundError("Campaign not found")
    return row


def list_campaigns(db: Session, *, business_id: str) -> list[Campaign]:
    return list(
        db.execute(
            select(Campaign)
            .where(Campaign.business_id == business_id)
            .order_by(Campaign.created_at.desc(), Campaign.id.desc())
        ).scalars().all()
    )


def create_campaign(
    db: Session,
    *,
    business_id: str,
    actor: str,
    name: str,
    message: str,
    segment: str,
    channel: str | None = None,
) -> Campaign:
    clean_name = _clean_name(name)
    clean_message = _clean_message(message)
    target_segment = normalize_segment(segment)

    bot_settings = get_bot_settings(db, business_id=business_id)
    if bot_settings is not None and not bot_settings.updates_enabled:
        raise DomainValidationError("Updates bot is disabled in settings")
    kind = parse_channel(channel) if channel and channel.strip() else default_channel(bot_settings)

    campaign = Campaign(
        id=str(uuid.uuid4()),
        business_id=business_id,
        name=clean_name,
        message_template=clean_message,
        target_segment=target_segment,
        channel=kind.value,
        status="draft",
        recipients_count=0,
        sent_count=0,
        failed_count=0,
        created_by=actor,
    )
    db.add(campaign)
    db.flush()
    log_audit_event(
        db,
        business_id=business_id,
        actor=actor,
        action="campaign.create",
        target_type="campaign",
        target_id=campaign.id,
        metadata_json={"segment": target_segment, "channel": kind.value},
    )
    return campaign


def update_campaign(
    db: Session,
    campaign: Campaign,
    *,
    actor: str,
    name: str | None = None,
    message: str | None = None,
    segment: str | None = None,
    channel: str | None = None,
) -> Campaign:
    if campaign.status != "draft":
        raise InvalidStateError(f"Only draft campaigns can be edited (status: {campaign.status})")

    changed: list[str] = []
    if name is not None:
        campaign.name = _clean_name(name)
        changed.append("name")
    if message is not None:
        campaign.message_template = _clean_message(message)
        changed.append("message")
    if segment is not None:
        campaign.target_segment = normalize_segment(segment)
        changed.append("target_segment")
    if channel is not None:
        campaign.channel = parse_channel(channel).value
        changed.append("channel")
    db.flush()

    log_audit_event(
        db,
        business_id=campaign.business_id,
        actor=actor,
        action="campaign.update",
        target_type="campaign",
        target_id=campaign.id,
        metadata_json={"fields": changed},
    )
    return campaign


def delete_campaign(db: Session, campaign: Campaign, *, actor: str) -> None:
    if campaign.status == "sending":
        raise CampaignInSendingError(campaign.id)

    db.execute(delete(MessageLog).where(MessageLog.campaign_id == campaign.id))
    log_audit_event(
        db,
        business_id=campaign.business_id,
        actor=actor,
        action="campaign.delete",
        target_type="campaign",
        target_id=campaign.id,
        metadata_json={"status": campaign.status, "name": campaign.name},
    )
    db.delete(campaign)
    db.flush()


def list_message_logs(db: Session, *, campaign: Campaign) -> list[MessageLog]:
    return list(
        db.execute(
            select(MessageLog)
            .where(MessageLog.campaign_id == campaign.id)
            .order_by(MessageLog.created_at.desc(), MessageLog.id.asc())
        ).scalars().all()
    )
