import json
import threading
import time
import uuid
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from outreach.core.config import settings
from outreach.core.errors import InvalidStateError
from outreach.core.security import create_tenant_access_token
from outreach.db.base import Base
from outreach.models.billing import Subscription
from outreach.models.bot_settings import BotSettings, CustomerMessagingId
from outreach.models.business import Business
from outreach.models.campaign import Campaign, MessageLog
from outreach.models.customer import Customer
from outreach.models.order import Order
from outreach.services import dispatch_engine, segmenter
from outreach.services.dispatch_engine import DispatchSummary, dispatch_campaign
from outreach.services.maintenance import reconcile_stalled_campaigns
from outreach.services.messaging_provider import (
    ChannelKind,
    MessageSendResult,
    TelegramProvider,
    provider_overrides,
)

BASE_TIME = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


class FakeProvider:
    name = "fake"

    def __init__(self, *, fail_contacts: set[str] | None = None):
        self.fail_contacts = fail_contacts or set()
        self.sent: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def send_message(self, request):
        with self._lock:
            self.sent.append((request.recipient, request.content))
        if request.recipient in self.fail_contacts:
            return MessageSendResult(provider=self.name, ok=False, error="Recipient blocked")
        return MessageSendResult(provider=self.name, ok=True, message_id=f"fake-{len(self.sent)}")

    def close(self) -> None:
        return None


def _install_provider(kind: ChannelKind, provider) -> None:
    provider_overrides[kind] = lambda bot_settings: provider


def _auth_headers(business_id: str) -> dict[str, str]:
    token = create_tenant_access_token(business_id, actor="owner@example.com")
    return {"Authorization": f"Bearer {token}"}


def _seed_business(
    session_local,
    *,
    name: str = "Ada Stores",
    trial_ends_at: datetime | None = None,
    is_locked: bool = False,
) -> str:
    now = datetime.now(timezone.utc)
    db = session_local()
    try:
        business = Business(id=str(uuid.uuid4()), name=name, is_locked=is_locked)
        if is_locked:
            business.lock_type = "dispute"
            business.locked_reason = "Chargeback under review"
            business.locked_at = now
        db.add(business)
        db.flush()
        db.add(
            Subscription(
                id=str(uuid.uuid4()),
                business_id=business.id,
                status="trial",
                tier="basic",
                trial_started_at=now - timedelta(days=1),
                trial_ends_at=trial_ends_at or now + timedelta(days=29),
            )
        )
        db.commit()
        return business.id
    finally:
        db.close()


def _seed_customer(session_local, *, business_id: str, name: str, phone: str | None) -> str:
    db = session_local()
    try:
        customer = Customer(id=str(uuid.uuid4()), business_id=business_id, name=name, phone=phone)
        db.add(customer)
        db.commit()
        return customer.id
    finally:
        db.close()


def _seed_order(
    session_local,
    *,
    business_id: str,
    customer_id: str,
    status: str,
    created_at: datetime,
    delivery_status: str | None = None,
) -> None:
    db = session_local()
    try:
        db.add(
            Order(
                id=str(uuid.uuid4()),
                business_id=business_id,
                customer_id=customer_id,
                status=status,
                delivery_status=delivery_status,
                total_amount=120,
                created_at=created_at,
            )
        )
        db.commit()
    finally:
        db.close()


def _seed_order_history(session_local, *, business_id: str) -> None:
    sara = _seed_customer(session_local, business_id=business_id, name="Sara", phone="+201000000001")
    omar = _seed_customer(session_local, business_id=business_id, name="Omar", phone="+201000000002")
    lina = _seed_customer(session_local, business_id=business_id, name="Lina", phone="+201000000003")
    kofi = _seed_customer(session_local, business_id=business_id, name="Kofi", phone="+201000000004")
    sara_again = _seed_customer(session_local, business_id=business_id, name="Sara B", phone=" +201000000001 ")
    no_phone = _seed_customer(session_local, business_id=business_id, name="Noor", phone=None)

    _seed_order(session_local, business_id=business_id, customer_id=sara, status="completed", created_at=BASE_TIME + timedelta(hours=1))
    _seed_order(session_local, business_id=business_id, customer_id=sara, status="cancelled", created_at=BASE_TIME + timedelta(hours=2))
    _seed_order(session_local, business_id=business_id, customer_id=omar, status="pending", created_at=BASE_TIME + timedelta(hours=3))
    _seed_order(
        session_local,
        business_id=business_id,
        customer_id=lina,
        status="shipped",
        delivery_status="failed",
        created_at=BASE_TIME + timedelta(hours=4),
    )
    _seed_order(session_local, business_id=business_id, customer_id=kofi, status="delivered", created_at=BASE_TIME + timedelta(hours=5))
    _seed_order(session_local, business_id=business_id, customer_id=sara_again, status="completed", created_at=BASE_TIME + timedelta(hours=6))
    _seed_order(session_local, business_id=business_id, customer_id=no_phone, status="completed", created_at=BASE_TIME + timedelta(hours=7))


def _create_campaign(client, business_id: str, **overrides) -> dict:
    payload = {
        "name": "October promo",
        "message": "Hi {name} #{orderId}",
        "target_category": "all",
        "channel": "sms",
    }
    payload.update(overrides)
    res = client.post("/campaigns", json=payload, headers=_auth_headers(business_id))
    assert res.status_code == 200, res.text
    return res.json()


def test_segment_counts_match_resolved_recipients(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    _seed_order_history(session_local, business_id=business_id)

    res = client.get("/campaigns/segments", headers=_auth_headers(business_id))
    assert res.status_code == 200, res.text
    counts = res.json()
    assert counts == {"all": 4, "completed": 2, "cancelled": 1, "pending": 1, "failed_delivery": 1}

    for segment, expected in counts.items():
        preview = client.get(f"/campaigns/segments/{segment}/customers", headers=_auth_headers(business_id))
        assert preview.status_code == 200, preview.text
        assert len(preview.json()) == expected

    db = session_local()
    try:
        resolved = {
            segment: segmenter.resolve(db, business_id=business_id, segment=segment)
            for segment in segmenter.SEGMENTS
        }
        assert segmenter.count_by_segment(db, business_id=business_id) == {
            segment: len(recipients) for segment, recipients in resolved.items()
        }
    finally:
        db.close()

    completed = [(row.contact, row.name) for row in resolved["completed"]]
    assert completed == [("+201000000001", "Sara B"), ("+201000000004", "Kofi")]
    assert [row.contact for row in resolved["all"]] == [
        "+201000000001",
        "+201000000004",
        "+201000000003",
        "+201000000002",
    ]


def test_customer_with_mixed_orders_appears_in_each_segment(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    _seed_order_history(session_local, business_id=business_id)

    completed = client.get("/campaigns/segments/completed/customers", headers=_auth_headers(business_id)).json()
    cancelled = client.get("/campaigns/segments/cancelled/customers", headers=_auth_headers(business_id)).json()

    assert "+201000000001" in {row["contact"] for row in completed}
    assert "+201000000001" in {row["contact"] for row in cancelled}


def test_segments_are_scoped_to_tenant(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    other_id = _seed_business(session_local, name="Other Store")
    _seed_order_history(session_local, business_id=other_id)

    res = client.get("/campaigns/segments", headers=_auth_headers(business_id))
    assert res.status_code == 200, res.text
    assert res.json() == {"all": 0, "completed": 0, "cancelled": 0, "pending": 0, "failed_delivery": 0}


def test_unknown_segment_is_rejected(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)

    preview = client.get("/campaigns/segments/vip/customers", headers=_auth_headers(business_id))
    assert preview.status_code == 400, preview.text
    assert preview.json()["error"]["code"] == "invalid_segment"

    create = client.post(
        "/campaigns",
        json={"name": "VIP", "message": "Hi {name}", "target_category": "vip"},
        headers=_auth_headers(business_id),
    )
    assert create.status_code == 400, create.text
    assert create.json()["error"]["code"] == "invalid_segment"


def test_create_campaign_validates_before_persisting(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    headers = _auth_headers(business_id)

    blank_name = client.post(
        "/campaigns",
        json={"name": "   ", "message": "Hi", "target_category": "all"},
        headers=headers,
    )
    assert blank_name.status_code == 400, blank_name.text
    assert blank_name.json()["error"]["code"] == "bad_request"

    missing_message = client.post("/campaigns", json={"name": "Promo", "target_category": "all"}, headers=headers)
    assert missing_message.status_code == 422, missing_message.text
    assert missing_message.json()["error"]["code"] == "validation_error"

    bad_channel = client.post(
        "/campaigns",
        json={"name": "Promo", "message": "Hi", "target_category": "all", "channel": "pigeon"},
        headers=headers,
    )
    assert bad_channel.status_code == 400, bad_channel.text

    db = session_local()
    try:
        assert db.execute(select(func.count(Campaign.id))).scalar_one() == 0
    finally:
        db.close()

    default_channel = _create_campaign(client, business_id, channel=None)
    assert default_channel["status"] == "draft"
    assert default_channel["channel"] == "telegram"

    legacy_alias = _create_campaign(client, business_id, name="WhatsApp promo", channel="whatsapp")
    assert legacy_alias["channel"] == "whatsapp_cloud"

    listed = client.get("/campaigns", headers=headers)
    assert listed.status_code == 200, listed.text
    assert {row["id"] for row in listed.json()} == {default_channel["id"], legacy_alias["id"]}


def test_create_campaign_requires_updates_bot_enabled(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    db = session_local()
    try:
        db.add(BotSettings(id=str(uuid.uuid4()), business_id=business_id, provider="sms", updates_enabled=False))
        db.commit()
    finally:
        db.close()

    res = client.post(
        "/campaigns",
        json={"name": "Promo", "message": "Hi", "target_category": "all"},
        headers=_auth_headers(business_id),
    )
    assert res.status_code == 400, res.text
    assert res.json()["error"]["message"] == "Updates bot is disabled in settings"


def test_dispatch_records_partial_failures_and_reaches_sent(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    _seed_order_history(session_local, business_id=business_id)
    provider = FakeProvider(fail_contacts={"+201000000002"})
    _install_provider(ChannelKind.SMS, provider)
    campaign = _create_campaign(client, business_id)

    res = client.post(f"/campaigns/{campaign['id']}/send", headers=_auth_headers(business_id))
    assert res.status_code == 200, res.text
    assert res.json() == {"sent": 3, "failed": 1}

    assert ("+201000000001", "Hi Sara B #{orderId}") in provider.sent
    assert len(provider.sent) == 4

    listed = client.get("/campaigns", headers=_auth_headers(business_id)).json()
    row = next(item for item in listed if item["id"] == campaign["id"])
    assert row["status"] == "sent"
    assert row["recipients_count"] == 4
    assert row["sent_count"] + row["failed_count"] == row["recipients_count"]
    assert row["sent_at"] is not None

    logs = client.get(f"/campaigns/{campaign['id']}/logs", headers=_auth_headers(business_id))
    assert logs.status_code == 200, logs.text
    log_rows = logs.json()
    assert len(log_rows) == 4
    failed = [item for item in log_rows if item["status"] == "failed"]
    assert len(failed) == 1
    assert failed[0]["customer_contact"] == "+201000000002"
    assert failed[0]["error_message"] == "Recipient blocked"
    assert failed[0]["sent_at"] is not None
    assert all(item["channel"] == "sms" for item in log_rows)


def test_sent_campaign_cannot_be_dispatched_again(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    _seed_order_history(session_local, business_id=business_id)
    _install_provider(ChannelKind.SMS, FakeProvider())
    campaign = _create_campaign(client, business_id)

    first = client.post(f"/campaigns/{campaign['id']}/send", headers=_auth_headers(business_id))
    assert first.status_code == 200, first.text

    second = client.post(f"/campaigns/{campaign['id']}/send", headers=_auth_headers(business_id))
    assert second.status_code == 409, second.text
    assert second.json()["error"]["code"] == "invalid_state"

    db = session_local()
    try:
        log_count = db.execute(
            select(func.count(MessageLog.id)).where(MessageLog.campaign_id == campaign["id"])
        ).scalar_one()
    finally:
        db.close()
    assert log_count == 4


def test_dispatch_with_no_recipients_still_completes(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    _install_provider(ChannelKind.SMS, FakeProvider())
    campaign = _create_campaign(client, business_id, target_category="cancelled")

    res = client.post(f"/campaigns/{campaign['id']}/send", headers=_auth_headers(business_id))
    assert res.status_code == 200, res.text
    assert res.json() == {"sent": 0, "failed": 0}

    row = client.get("/campaigns", headers=_auth_headers(business_id)).json()[0]
    assert row["status"] == "sent"
    assert row["recipients_count"] == 0


def test_dispatch_denied_when_trial_elapsed(test_context):
    client, session_local = test_context
    business_id = _seed_business(
        session_local,
        trial_ends_at=datetime.now(timezone.utc) - timedelta(days=1),
    )
    _seed_order_history(session_local, business_id=business_id)
    provider = FakeProvider()
    _install_provider(ChannelKind.SMS, provider)
    campaign = _create_campaign(client, business_id)

    res = client.post(f"/campaigns/{campaign['id']}/send", headers=_auth_headers(business_id))
    assert res.status_code == 403, res.text
    assert res.json()["error"]["code"] == "subscription_locked"
    assert provider.sent == []

    row = client.get("/campaigns", headers=_auth_headers(business_id)).json()[0]
    assert row["status"] == "draft"
    assert row["sent_at"] is None


def test_dispatch_denied_for_locked_tenant(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local, is_locked=True)
    _seed_order_history(session_local, business_id=business_id)
    _install_provider(ChannelKind.SMS, FakeProvider())
    campaign = _create_campaign(client, business_id)

    res = client.post(f"/campaigns/{campaign['id']}/send", headers=_auth_headers(business_id))
    assert res.status_code == 403, res.text
    assert res.json()["error"]["code"] == "subscription_locked"


def test_delete_rejected_while_sending(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    campaign = _create_campaign(client, business_id)

    db = session_local()
    try:
        row = db.get(Campaign, campaign["id"])
        row.status = "sending"
        db.add(
            MessageLog(
                id=str(uuid.uuid4()),
                campaign_id=row.id,
                business_id=business_id,
                customer_contact="+201000000001",
                customer_name="Sara",
                channel="sms",
                status="sent",
            )
        )
        db.commit()
    finally:
        db.close()

    res = client.delete(f"/campaigns/{campaign['id']}", headers=_auth_headers(business_id))
    assert res.status_code == 409, res.text
    assert res.json()["error"]["code"] == "invalid_state"

    db = session_local()
    try:
        row = db.get(Campaign, campaign["id"])
        assert row is not None
        assert row.status == "sending"
        assert db.execute(
            select(func.count(MessageLog.id)).where(MessageLog.campaign_id == campaign["id"])
        ).scalar_one() == 1
    finally:
        db.close()

    edit = client.patch(f"/campaigns/{campaign['id']}", json={"name": "Renamed"}, headers=_auth_headers(business_id))
    assert edit.status_code == 409, edit.text


def test_delete_sent_campaign_removes_logs(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    _seed_order_history(session_local, business_id=business_id)
    _install_provider(ChannelKind.SMS, FakeProvider())
    campaign = _create_campaign(client, business_id)
    sent = client.post(f"/campaigns/{campaign['id']}/send", headers=_auth_headers(business_id))
    assert sent.status_code == 200, sent.text

    res = client.delete(f"/campaigns/{campaign['id']}", headers=_auth_headers(business_id))
    assert res.status_code == 200, res.text
    assert res.json() == {"ok": True}

    db = session_local()
    try:
        assert db.get(Campaign, campaign["id"]) is None
        assert db.execute(select(func.count(MessageLog.id))).scalar_one() == 0
    finally:
        db.close()

    missing = client.get(f"/campaigns/{campaign['id']}/logs", headers=_auth_headers(business_id))
    assert missing.status_code == 404, missing.text


def test_edit_draft_campaign(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    campaign = _create_campaign(client, business_id)

    res = client.patch(
        f"/campaigns/{campaign['id']}",
        json={"name": "Renamed", "target_category": "pending", "channel": "whatsapp"},
        headers=_auth_headers(business_id),
    )
    assert res.status_code == 200, res.text
    body = res.json()
    assert body["name"] == "Renamed"
    assert body["target_category"] == "pending"
    assert body["channel"] == "whatsapp_cloud"

    empty = client.patch(f"/campaigns/{campaign['id']}", json={}, headers=_auth_headers(business_id))
    assert empty.status_code == 422, empty.text


def test_campaign_of_other_tenant_is_not_found(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    other_id = _seed_business(session_local, name="Other Store")
    campaign = _create_campaign(client, other_id)

    for method, path in (
        ("post", f"/campaigns/{campaign['id']}/send"),
        ("delete", f"/campaigns/{campaign['id']}"),
        ("get", f"/campaigns/{campaign['id']}/logs"),
    ):
        res = client.request(method.upper(), path, headers=_auth_headers(business_id))
        assert res.status_code == 404, res.text
        assert res.json()["error"]["code"] == "not_found"


def test_campaign_endpoints_require_bearer_token(test_context):
    client, _ = test_context

    res = client.get("/campaigns")
    assert res.status_code == 401, res.text
    assert res.json()["error"]["code"] == "unauthorized"

    bad = client.get("/campaigns", headers={"Authorization": "Bearer not-a-token"})
    assert bad.status_code == 401, bad.text


def test_telegram_dispatch_uses_linked_chat_ids(test_context):
    client, session_local = test_context
    business_id = _seed_business(session_local)
    _seed_order_history(session_local, business_id=business_id)
    db = session_local()
    try:
        db.add(
            BotSettings(
                id=str(uuid.uuid4()),
                business_id=business_id,
                provider="telegram",
                telegram_bot_token="123:abc",
            )
        )
        db.add(
            CustomerMessagingId(
                id=str(uuid.uuid4()),
                business_id=business_id,
                customer_phone="201000000001",
                telegram_chat_id="555",
            )
        )
        db.commit()
    finally:
        db.close()

    calls: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/bot123:abc/sendMessage"
        body = json.loads(request.content)
        calls.append(body)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 42}})

    provider_overrides[ChannelKind.TELEGRAM] = lambda bot_settings: TelegramProvider(
        bot_settings.telegram_bot_token,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    campaign = _create_campaign(client, business_id, channel=None, message="Hello {name}")
    assert campaign["channel"] == "telegram"

    res = client.post(f"/campaigns/{campaign['id']}/send", headers=_auth_headers(business_id))
    assert res.status_code == 200, res.text
    assert res.json() == {"sent": 1, "failed": 3}
    assert calls == [{"chat_id": "555", "text": "Hello Sara B"}]

    logs = client.get(f"/campaigns/{campaign['id']}/logs", headers=_auth_headers(business_id)).json()
    sent = [item for item in logs if item["status"] == "sent"]
    assert sent[0]["provider_message_id"] == "42"
    failed_reasons = {item["error_message"] for item in logs if item["status"] == "failed"}
    assert failed_reasons == {"Customer not connected on Telegram"}


class SlowProvider:
    name = "slow"

    def __init__(self, *, raise_for: str, delay: float = 0.1):
        self.raise_for = raise_for
        self.delay = delay
        self.calls = 0
        self.in_flight = 0
        self.peak = 0
        self._lock = threading.Lock()

    def send_message(self, request):
        with self._lock:
            self.calls += 1
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        try:
            time.sleep(self.delay)
            if request.recipient == self.raise_for:
                raise TimeoutError("sms gateway timed out")
            return MessageSendResult(provider=self.name, ok=True, message_id=f"slow-{request.recipient}")
        finally:
            with self._lock:
                self.in_flight -= 1

    def close(self) -> None:
        return None


def _seed_draft(session_local, *, business_id: str, segment: str = "all", channel: str = "sms") -> str:
    db = session_local()
    try:
        campaign = Campaign(
            id=str(uuid.uuid4()),
            business_id=business_id,
            name="October promo",
            message_template="Hi {name}",
            target_segment=segment,
            channel=channel,
            status="draft",
        )
        db.add(campaign)
        db.commit()
        return campaign.id
    finally:
        db.close()


def _log_count(session_local, campaign_id: str) -> int:
    db = session_local()
    try:
        return db.execute(
            select(func.count(MessageLog.id)).where(MessageLog.campaign_id == campaign_id)
        ).scalar_one()
    finally:
        db.close()


def test_dispatch_fans_out_on_bounded_pool(test_context, monkeypatch):
    client, session_local = test_context
    monkeypatch.setattr(settings, "campaign_dispatch_concurrency", 2)
    business_id = _seed_business(session_local)
    _seed_order_history(session_local, business_id=business_id)
    provider = SlowProvider(raise_for="+201000000003")
    _install_provider(ChannelKind.SMS, provider)
    campaign = _create_campaign(client, business_id)

    res = client.post(f"/campaigns/{campaign['id']}/send", headers=_auth_headers(business_id))
    assert res.status_code == 200, res.text
    assert res.json() == {"sent": 3, "failed": 1}

    assert provider.calls == 4
    assert provider.peak == 2
    assert provider.in_flight == 0

    logs = client.get(f"/campaigns/{campaign['id']}/logs", headers=_auth_headers(business_id)).json()
    assert len(logs) == 4
    failed = [item for item in logs if item["status"] == "failed"]
    assert [item["customer_contact"] for item in failed] == ["+201000000003"]
    assert failed[0]["error_message"] == "sms gateway timed out"
    assert failed[0]["sent_at"] is not None

    row = client.get("/campaigns", headers=_auth_headers(business_id)).json()[0]
    assert (row["sent_count"], row["failed_count"], row["recipients_count"]) == (3, 1, 4)


def test_concurrent_sends_of_one_draft_deliver_once(tmp_path, monkeypatch):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'outreach.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)
    try:
        business_id = _seed_business(session_local)
        _seed_order_history(session_local, business_id=business_id)
        campaign_id = _seed_draft(session_local, business_id=business_id)
        provider = FakeProvider()
        _install_provider(ChannelKind.SMS, provider)

        # Both senders pass the draft and entitlement checks before either claims the campaign.
        barrier = threading.Barrier(2)
        real_has_access = dispatch_engine.has_access

        def has_access_together(db, business, *, now=None):
            allowed = real_has_access(db, business, now=now)
            barrier.wait(timeout=10)
            return allowed

        monkeypatch.setattr(dispatch_engine, "has_access", has_access_together)

        outcomes: list[DispatchSummary] = []
        rejected: list[InvalidStateError] = []

        def send() -> None:
            db = session_local()
            try:
                business = db.get(Business, business_id)
                outcomes.append(
                    dispatch_campaign(db, business=business, campaign_id=campaign_id, actor="owner@example.com")
                )
            except InvalidStateError as exc:
                rejected.append(exc)
            finally:
                db.close()

        threads = [threading.Thread(target=send) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert outcomes == [DispatchSummary(sent=4, failed=0)]
        assert len(rejected) == 1
        assert len(provider.sent) == 4
        assert _log_count(session_local, campaign_id) == 4

        db = session_local()
        try:
            campaign = db.get(Campaign, campaign_id)
            assert campaign.status == "sent"
            assert campaign.recipients_count == 4
        finally:
            db.close()
    finally:
        provider_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


def test_logs_survive_a_dispatch_that_dies_before_completion(test_context, monkeypatch):
    _, session_local = test_context
    business_id = _seed_business(session_local)
    _seed_order_history(session_local, business_id=business_id)
    campaign_id = _seed_draft(session_local, business_id=business_id)
    provider = FakeProvider(fail_contacts={"+201000000002"})
    _install_provider(ChannelKind.SMS, provider)

    def database_went_away(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(dispatch_engine, "log_audit_event", database_went_away)

    db = session_local()
    try:
        business = db.get(Business, business_id)
        with pytest.raises(RuntimeError):
            dispatch_campaign(db, business=business, campaign_id=campaign_id, actor="owner@example.com")
    finally:
        db.close()

    assert len(provider.sent) == 4
    assert _log_count(session_local, campaign_id) == 4

    db = session_local()
    try:
        campaign = db.get(Campaign, campaign_id)
        assert campaign.status == "sending"
        assert campaign.recipients_count == 4

        assert reconcile_stalled_campaigns(db) == 0
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        assert reconcile_stalled_campaigns(db, now=later) == 1
        db.commit()
    finally:
        db.close()

    db = session_local()
    try:
        campaign = db.get(Campaign, campaign_id)
        assert campaign.status == "sent"
        assert (campaign.sent_count, campaign.failed_count, campaign.recipients_count) == (3, 1, 4)
        assert campaign.sent_at is not None
    finally:
        db.close()
