import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from outreach.core.config import settings
from outreach.core.observability import log_event
from outreach.models.campaign import Campaign, MessageLog
from outreach.services.audit_service import log_audit_event
from outreach.services.subscription_gate import _as_utc, enforce_subscription_locks

logger = logging.getLogger("outreach.maintenance")

SYSTEM_ACTOR = "system"


def _log_counts(db: Session, campaign_id: str) -> tuple[int, int, datetime | None]:
    rows = db.execute(
        select(MessageLog.status, func.count(MessageLog.id), func.max(MessageLog.created_at))
        .where(MessageLog.campaign_id == campaign_id)
        .group_by(MessageLog.status)
    ).all()
    sent = failed = 0
    last_activity: datetime | None = None
    for status, count, latest in rows:
        if status == "sent":
            sent = int(count)
        else:
            failed += int(count)
        latest = _as_utc(latest)
        if latest is not None and (last_activity is None or latest > last_activity):
            last_activity = latest
    return sent, failed, last_activity


def reconcile_stalled_campaigns(
    db: Session,
    *,
    now: datetime | None = None,
    stale_after: timedelta | None = None,
) -> int:
    """Finish campaigns left in ``sending`` by a dispatch that never completed.

    A campaign is stalled when neither the campaign row nor any of its logs
    changed within ``stale_after``. Counters are rebuilt from the committed
    MessageLog rows, so ``recipients_count`` becomes the number of recipients
    that were actually attempted.
    """
    current = _as_utc(now) or datetime.now(timezone.utc)
    cutoff = current - (stale_after or timedelta(minutes=settings.stalled_campaign_minutes))
    campaigns = db.execute(
        select(Campaign).where(Campaign.status == "sending").order_by(Campaign.created_at.asc())
    ).scalars().all()

    reconciled = 0
    for campaign in campaigns:
        sent, failed, last_log_at = _log_counts(db, campaign.id)
        last_activity = max(
            (value for value in (_as_utc(campaign.updated_at), last_log_at) if value is not None),
            default=None,
        )
        if last_activity is not None and last_activity > cutoff:
            continue
        planned = campaign.recipients_count
        campaign.sent_count = sent
        campaign.failed_count = failed
        campaign.recipients_count = sent + failed
        campaign.status = "sent"
        campaign.sent_at = current
        log_audit_event(
            db,
            business_id=campaign.business_id,
            actor=SYSTEM_ACTOR,
            action="campaign.dispatch.reconcile",
            target_type="campaign",
            target_id=campaign.id,
            metadata_json={"planned": planned, "sent": sent, "failed": failed},
        )
        log_event(
            logger,
            "campaign.dispatch.reconciled",
            level=logging.WARNING,
            campaign_id=campaign.id,
            business_id=campaign.business_id,
            planned=planned,
            sent=sent,
            failed=failed,
        )
        reconciled += 1
    db.flush()
    return reconciled


def run_maintenance(session_factory: Callable[[], Session], *, now: datetime | None = None) -> dict[str, int]:
    db = session_factory()
    try:
        locks = enforce_subscription_locks(db, now=now)
        reconciled = reconcile_stalled_campaigns(db, now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    return {**locks, "reconciled": reconciled}


class MaintenanceWorker:
    """Runs ``run_maintenance`` once on start, then every ``interval_seconds``."""

    def __init__(self, session_factory: Callable[[], Session], *, interval_seconds: float):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.cycles = 0
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="outreach-maintenance", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                result = run_maintenance(self.session_factory)
                log_event(logger, "maintenance.cycle.completed", **result)
            except Exception as exc:
                # One failed cycle must not end the loop; the next interval retries.
                log_event(
                    logger,
                    "maintenance.cycle.failed",
                    level=logging.ERROR,
                    error=str(exc) or exc.__class__.__name__,
                )
            self.cycles += 1
            self._stop.wait(self.interval_seconds)
