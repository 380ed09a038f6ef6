import logging
import threading
import uuid
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.orm import Session

from outreach.core.config import settings
from outreach.core.errors import InvalidStateError, SubscriptionLockedError
from outreach.core.observability import log_event
from outreach.models.business import Business
from outreach.models.campaign import Campaign, MessageLog
from outreach.services.audit_service import log_audit_event
from outreach.services.bot_settings_service import get_bot_settings, telegram_chat_ids
from outreach.services.campaign_store import get_campaign
from outreach.services.messaging_provider import (
    ChannelKind,
    ChannelProvider,
    MessageSendRequest,
    MessageSendResult,
    build_channel_provider,
    parse_channel,
)
from outreach.services.segmenter import Recipient, resolve
from outreach.services.subscription_gate import has_access
from outreach.services.template_renderer import render

logger = logging.getLogger("outreach.dispatch")

DEFAULT_RECIPIENT_NAME = "Valued Customer"


@dataclass(frozen=True)
class DispatchSummary:
    sent: int
    failed: int


class _Tally:
    def __init__(self):
        self._lock = threading.Lock()
        self.sent = 0
        self.failed = 0

    def record(self, ok: bool) -> None:
        with self._lock:
            if ok:
                self.sent += 1
            else:
                self.failed += 1


def _send_one(provider: ChannelProvider, request: MessageSendRequest, tally: _Tally) -> MessageSendResult:
    try:
        result = provider.send_message(request)
    except Exception as exc:
        result = MessageSendResult(provider=provider.name, ok=False, error=str(exc) or exc.__class__.__name__)
    tally.record(result.ok)
    return result


def _recipient_variables(recipient: Recipient, context: Mapping[str, object] | None) -> dict[str, object]:
    variables = dict(context or {})
    variables["name"] = recipient.name or DEFAULT_RECIPIENT_NAME
    variables["phone"] = recipient.contact
    return variables


def _claim_draft(db: Session, *, business_id: str, campaign_id: str) -> None:
    # Only one caller can move a draft to sending; a concurrent send finds no draft row.
    claimed = db.execute(
        update(Campaign)
        .where(
            Campaign.id == campaign_id,
            Campaign.business_id == business_id,
            Campaign.status == "draft",
        )
        .values(status="sending")
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        db.rollback()
        raise InvalidStateError("Campaign is already being sent")
    db.commit()


def dispatch_campaign(
    db: Session,
    *,
    business: Business,
    campaign_id: str,
    actor: str,
    context: Mapping[str, object] | None = None,
    now: datetime | None = None,
) -> DispatchSummary:
    """Send a draft campaign to every customer in its segment.

    The campaign is committed as ``sending`` before the first message goes out,
    and each MessageLog row is committed as soon as its send completes.
    Per-recipient failures are logged and counted; they never abort the batch.
    """
    campaign = get_campaign(db, business_id=business.id, campaign_id=campaign_id)
    if campaign.status != "draft":
        raise InvalidStateError(f"Campaign cannot be sent (status: {campaign.status})")
    if not has_access(db, business, now=now):
        raise SubscriptionLockedError("Subscription inactive. Renew to send campaigns.")
    channel = parse_channel(campaign.channel)
    template = campaign.message_template
    segment = campaign.target_segment
    business_id = business.id

    _claim_draft(db, business_id=business_id, campaign_id=campaign_id)

    recipients = resolve(db, business_id=business_id, segment=segment)
    campaign.recipients_count = len(recipients)
    db.commit()
    log_event(
        logger,
        "campaign.dispatch.started",
        campaign_id=campaign_id,
        business_id=business_id,
        channel=channel.value,
        recipients=len(recipients),
    )

    addresses: dict[str, str] = {}
    if channel is ChannelKind.TELEGRAM:
        addresses = telegram_chat_ids(
            db,
            business_id=business_id,
            contacts=[recipient.contact for recipient in recipients],
        )

    tally = _Tally()
    if recipients:
        provider = build_channel_provider(channel, get_bot_settings(db, business_id=business_id))
        workers = min(settings.campaign_dispatch_concurrency, len(recipients))
        try:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="campaign-dispatch") as pool:
                futures = {}
                for recipient in recipients:
                    request = MessageSendRequest(
                        business_id=business_id,
                        recipient=recipient.contact,
                        content=render(template, _recipient_variables(recipient, context)),
                        address=addresses.get(recipient.contact),
                    )
                    futures[pool.submit(_send_one, provider, request, tally)] = recipient

                # The session stays on this thread; workers only talk to the provider.
                for future in as_completed(futures):
                    recipient = futures[future]
                    result = future.result()
                    if not result.ok:
                        log_event(
                            logger,
                            "campaign.dispatch.recipient_failed",
                            level=logging.WARNING,
                            campaign_id=campaign_id,
                            contact=recipient.contact,
                            error=result.error,
                        )
                    db.add(
                        MessageLog(
                            id=str(uuid.uuid4()),
                            campaign_id=campaign_id,
                            business_id=business_id,
                            customer_contact=recipient.contact,
                            customer_name=recipient.name,
                            channel=channel.value,
                            status="sent" if result.ok else "failed",
                            error_message=None if result.ok else (result.error or "Unknown error")[:500],
                            provider_message_id=result.message_id,
                            sent_at=datetime.now(timezone.utc),
                        )
                    )
                    db.commit()
        finally:
            provider.close()

    campaign.recipients_count = len(recipients)
    campaign.sent_count = tally.sent
    campaign.failed_count = tally.failed
    campaign.status = "sent"
    campaign.sent_at = datetime.now(timezone.utc)
    log_audit_event(
        db,
        business_id=business_id,
        actor=actor,
        action="campaign.dispatch",
        target_type="campaign",
        target_id=campaign_id,
        metadata_json={"recipients": len(recipients), "sent": tally.sent, "failed": tally.failed},
    )
    db.commit()
    log_event(
        logger,
        "campaign.dispatch.completed",
        campaign_id=campaign_id,
        business_id=business_id,
        sent=tally.sent,
        failed=tally.failed,
    )
    return DispatchSummary(sent=tally.sent, failed=tally.failed)
