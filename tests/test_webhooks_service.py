"""
Tests for src/services/webhooks.py - subscription matching, signed delivery and
the retry state machine.
"""
import asyncio
import json
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from sqlalchemy import select, update

from src.config import get_settings
from src.models.enums import DeliveryStatus, EventType
from src.models.webhook import WebhookDelivery
from src.services import webhooks as webhook_service
from src.services.integration_clients import create_client
from src.services.webhooks import (
    AttemptResult,
    dispatch,
    find_matching_subscriptions,
    list_deliveries,
    process_delivery,
    reset_for_redelivery,
    settle_attempt,
)
from src.utils import background
from src.utils.webhook_signatures import verify_signature

SECRET = "receiver-shared-secret"
NOW = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Receiver:
    """Records requests and answers with a fixed status, or raises a transport error."""

    def __init__(self, status_code: int = 200, error: bool = False):
        self.status_code = status_code
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(self.status_code, json={"ok": self.status_code < 300})


@pytest.fixture
def receiver():
    recv = Receiver()
    with patch.object(
        webhook_service,
        "_build_http_client",
        lambda timeout: httpx.AsyncClient(transport=httpx.MockTransport(recv), timeout=timeout),
    ):
        yield recv


@pytest.fixture
async def client(db):
    c = await create_client(db, "Courier Portal")
    await db.commit()
    return c


@pytest.fixture
async def subscription(db, client):
    sub = await webhook_service.create_subscription(
        db, client.id, "ticket feed", "https://receiver.example.com/hook",
        SECRET, [EventType.TICKET_CREATED],
    )
    await db.commit()
    return sub


async def _pending_delivery(db, subscription, payload=None) -> WebhookDelivery:
    delivery = WebhookDelivery(
        subscription_id=subscription.id,
        event_type=EventType.TICKET_CREATED,
        payload=payload or {"ticket_id": "t-1", "status": "NEW"},
        status=DeliveryStatus.PENDING,
        attempts=0,
        next_retry_at=datetime.now(timezone.utc),
    )
    db.add(delivery)
    await db.commit()
    return delivery


async def _reload(session_factory, delivery_id) -> WebhookDelivery:
    async with session_factory() as fresh:
        return await fresh.get(WebhookDelivery, delivery_id)


async def _make_due(session_factory, delivery_id) -> None:
    """Skip the backoff wait so the next attempt can be claimed now."""
    async with session_factory() as fresh:
        await fresh.execute(
            update(WebhookDelivery)
            .where(WebhookDelivery.id == delivery_id)
            .values(next_retry_at=datetime.now(timezone.utc) - timedelta(seconds=1))
        )
        await fresh.commit()


# ---------------------------------------------------------------------------
# State machine (pure)
# ---------------------------------------------------------------------------


class TestSettleAttempt:
    def _delivery(self, attempts):
        return WebhookDelivery(status=DeliveryStatus.PENDING, attempts=attempts)

    def test_success(self):
        d = self._delivery(attempts=1)
        status = settle_attempt(d, AttemptResult(ok=True, status_code=204), now=NOW)
        assert status == DeliveryStatus.SUCCESS
        assert d.attempts == 1
        assert d.last_response_status == 204
        assert d.next_retry_at is None
        assert d.last_error is None

    def test_first_failure_schedules_retry(self):
        d = self._delivery(attempts=1)
        status = settle_attempt(d, AttemptResult(ok=False, status_code=500, error="HTTP 500"), now=NOW)
        assert status == DeliveryStatus.PENDING
        assert d.next_retry_at == NOW + timedelta(seconds=2)
        assert d.last_error == "HTTP 500"

    def test_fifth_failure_still_pending(self):
        d = self._delivery(attempts=5)
        settle_attempt(d, AttemptResult(ok=False, error="boom"), now=NOW)
        assert d.status == DeliveryStatus.PENDING
        assert d.next_retry_at == NOW + timedelta(seconds=32)

    def test_sixth_failure_is_terminal(self):
        d = self._delivery(attempts=6)
        status = settle_attempt(d, AttemptResult(ok=False, error="boom"), now=NOW)
        assert status == DeliveryStatus.FAILED
        assert d.next_retry_at is None


# ---------------------------------------------------------------------------
# Subscriptions and fan-out
# ---------------------------------------------------------------------------


class TestSubscriptions:
    async def test_secret_not_stored_in_clear_when_key_configured(self, db, client, monkeypatch):
        from cryptography.fernet import Fernet
        monkeypatch.setenv("ENCRYPTION_KEY", Fernet.generate_key().decode())
        get_settings.cache_clear()

        sub = await webhook_service.create_subscription(
            db, client.id, "feed", "https://x.example.com", SECRET, [EventType.TICKET_CREATED],
        )
        assert sub.secret_encrypted.startswith("fernet:")

        from src.utils.encryption import open_secret
        assert open_secret(sub.secret_encrypted) == SECRET

    async def test_matching_filters_event_and_active(self, db, client):
        created = await webhook_service.create_subscription(
            db, client.id, "created", "https://a.example.com", SECRET, [EventType.TICKET_CREATED],
        )
        await webhook_service.create_subscription(
            db, client.id, "resolved", "https://b.example.com", SECRET, [EventType.TICKET_RESOLVED],
        )
        inactive = await webhook_service.create_subscription(
            db, client.id, "off", "https://c.example.com", SECRET, [EventType.TICKET_CREATED],
        )
        inactive.is_active = False
        await db.commit()

        matches = await find_matching_subscriptions(db, client.id, EventType.TICKET_CREATED)
        assert [s.id for s in matches] == [created.id]

    async def test_other_clients_subscriptions_ignored(self, db, subscription):
        assert await find_matching_subscriptions(db, uuid.uuid4(), EventType.TICKET_CREATED) == []


class TestDispatch:
    async def test_no_subscriptions_creates_nothing(self, db, client, receiver):
        ids = await dispatch(client.id, EventType.TICKET_CREATED, {"ticket_id": "t-1"})
        assert ids == []
        assert receiver.requests == []

    async def test_delivers_signed_payload(self, db, subscription, receiver, session_factory):
        payload = {"ticket_id": "t-1", "order_number": "ORD-1", "status": "NEW"}
        ids = await dispatch(subscription.client_id, EventType.TICKET_CREATED, payload)
        assert len(ids) == 1
        await background.drain(timeout=5)

        assert len(receiver.requests) == 1
        request = receiver.requests[0]
        assert json.loads(request.content) == payload
        assert request.headers["X-Event-Type"] == EventType.TICKET_CREATED
        assert request.headers["X-Delivery-Id"] == str(ids[0])
        assert verify_signature(request.content, SECRET, request.headers["X-Signature"])

        delivery = await _reload(session_factory, ids[0])
        assert delivery.status == DeliveryStatus.SUCCESS
        assert delivery.attempts == 1
        assert delivery.last_response_status == 200


# ---------------------------------------------------------------------------
# Single attempts
# ---------------------------------------------------------------------------


class TestProcessDelivery:
    async def test_unreachable_target_retries_then_fails(self, db, subscription, receiver, session_factory):
        receiver.error = True
        delivery = await _pending_delivery(db, subscription)

        with patch("src.utils.alerting.send_alert", new_callable=AsyncMock) as alert:
            assert await process_delivery(delivery.id) == DeliveryStatus.PENDING
            first = await _reload(session_factory, delivery.id)
            assert first.attempts == 1
            assert first.next_retry_at is not None
            assert "ConnectError" in first.last_error
            alert.assert_not_awaited()

            for _ in range(4):
                await _make_due(session_factory, delivery.id)
                assert await process_delivery(delivery.id) == DeliveryStatus.PENDING
            await _make_due(session_factory, delivery.id)
            assert await process_delivery(delivery.id) == DeliveryStatus.FAILED
            alert.assert_awaited_once()

        final = await _reload(session_factory, delivery.id)
        assert final.attempts == 6
        assert final.status == DeliveryStatus.FAILED
        assert final.next_retry_at is None
        assert len(receiver.requests) == 6

    async def test_non_2xx_is_failure(self, db, subscription, receiver, session_factory):
        receiver.status_code = 503
        delivery = await _pending_delivery(db, subscription)

        assert await process_delivery(delivery.id) == DeliveryStatus.PENDING
        reloaded = await _reload(session_factory, delivery.id)
        assert reloaded.last_response_status == 503
        assert reloaded.last_error == "HTTP 503"

    async def test_unreadable_secret_is_failed_attempt(self, db, subscription, receiver, session_factory):
        subscription.secret_encrypted = "fernet:not-a-token"
        await db.commit()
        delivery = await _pending_delivery(db, subscription)

        assert await process_delivery(delivery.id) == DeliveryStatus.PENDING
        assert receiver.requests == []
        reloaded = await _reload(session_factory, delivery.id)
        assert reloaded.attempts == 1
        assert "ENCRYPTION_KEY" in reloaded.last_error

    async def test_malformed_key_is_failed_attempt(
        self, db, subscription, receiver, session_factory, monkeypatch,
    ):
        subscription.secret_encrypted = "fernet:gAAAAA"
        await db.commit()
        delivery = await _pending_delivery(db, subscription)
        monkeypatch.setenv("ENCRYPTION_KEY", "not-a-fernet-key")
        get_settings.cache_clear()

        assert await process_delivery(delivery.id) == DeliveryStatus.PENDING
        assert receiver.requests == []
        reloaded = await _reload(session_factory, delivery.id)
        assert reloaded.attempts == 1
        assert "not a valid Fernet key" in reloaded.last_error

    async def test_terminal_delivery_skipped(self, db, subscription, receiver):
        delivery = await _pending_delivery(db, subscription)
        delivery.status = DeliveryStatus.SUCCESS
        await db.commit()

        assert await process_delivery(delivery.id) == DeliveryStatus.SUCCESS
        assert receiver.requests == []

    async def test_missing_delivery(self, db, receiver):
        assert await process_delivery(uuid.uuid4()) is None


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class TestOperations:
    async def test_list_filters_by_status(self, db, subscription):
        ok = await _pending_delivery(db, subscription)
        ok.status = DeliveryStatus.SUCCESS
        await _pending_delivery(db, subscription)
        await db.commit()

        pending = await list_deliveries(db, subscription.id, DeliveryStatus.PENDING)
        assert len(pending) == 1
        assert len(await list_deliveries(db, subscription.id)) == 2

    async def test_redeliver_resets_failed(self, db, subscription):
        delivery = await _pending_delivery(db, subscription)
        delivery.status = DeliveryStatus.FAILED
        delivery.attempts = 6
        delivery.next_retry_at = None
        await db.commit()

        reset = await reset_for_redelivery(db, delivery.id)
        assert reset.status == DeliveryStatus.PENDING
        assert reset.attempts == 6
        assert reset.next_retry_at is not None

    async def test_redeliver_leaves_success_untouched(self, db, subscription):
        delivery = await _pending_delivery(db, subscription)
        delivery.status = DeliveryStatus.SUCCESS
        await db.commit()

        reset = await reset_for_redelivery(db, delivery.id)
        assert reset.status == DeliveryStatus.SUCCESS

    async def test_redeliver_unknown(self, db):
        assert await reset_for_redelivery(db, uuid.uuid4()) is None


class TestIngestionFanOut:
    async def test_created_ticket_is_delivered(self, db, subscription, receiver, session_factory):
        from src.schemas.integrations import CreateIssueRequest
        from src.services.integrations import process_inbound_issue

        result = await process_inbound_issue(db, subscription.client_id, CreateIssueRequest(
            source="courier_portal", external_id="EXT-9", order_number="ORD-9",
            issue_type="COD", title="COD mismatch", description="Collected amount differs",
        ))
        await background.drain(timeout=5)

        body = json.loads(receiver.requests[0].content)
        assert body == {
            "ticket_id": str(result.ticket_id),
            "order_number": "ORD-9",
            "status": "NEW",
            "external_id": "EXT-9",
        }

        async with session_factory() as fresh:
            deliveries = (await fresh.execute(select(WebhookDelivery))).scalars().all()
        assert [d.status for d in deliveries] == [DeliveryStatus.SUCCESS]

    async def test_resubmission_is_delivered_once(self, db, subscription, receiver, session_factory):
        from src.schemas.integrations import CreateIssueRequest
        from src.services.integrations import process_inbound_issue

        issue = CreateIssueRequest(
            source="e2e", external_id="ord_1", order_number="ORD-1",
            issue_type="DELIVERY", title="Parcel late", description="Still in transit",
        )
        first = await process_inbound_issue(db, subscription.client_id, issue)
        second = await process_inbound_issue(db, subscription.client_id, issue)
        await background.drain(timeout=5)

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.ticket_id == first.ticket_id
        assert len(receiver.requests) == 1
        async with session_factory() as fresh:
            deliveries = (await fresh.execute(select(WebhookDelivery))).scalars().all()
        assert len(deliveries) == 1
        assert deliveries[0].attempts == 1


# ---------------------------------------------------------------------------
# Claiming
# ---------------------------------------------------------------------------


class SlowReceiver:
    """Answers after a delay so overlapping attempts would both reach it."""

    def __init__(self, status_code: int = 500, delay: float = 0.2):
        self.status_code = status_code
        self.delay = delay
        self.requests: list[httpx.Request] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        await asyncio.sleep(self.delay)
        return httpx.Response(self.status_code)


@pytest.fixture
def slow_receiver():
    recv = SlowReceiver()
    with patch.object(
        webhook_service,
        "_build_http_client",
        lambda timeout: httpx.AsyncClient(transport=httpx.MockTransport(recv), timeout=timeout),
    ):
        yield recv


class TestClaiming:
    async def test_retry_worker_does_not_resend_in_flight_delivery(
        self, db, subscription, slow_receiver, session_factory,
    ):
        from src.workers.webhook_retry import process_due_deliveries

        ids = await dispatch(subscription.client_id, EventType.TICKET_CREATED, {"ticket_id": "t-1"})
        await process_due_deliveries(50)
        await background.drain(timeout=5)

        assert len(slow_receiver.requests) == 1
        delivery = await _reload(session_factory, ids[0])
        assert delivery.attempts == 1
        assert delivery.status == DeliveryStatus.PENDING

    async def test_concurrent_attempts_send_once(self, db, subscription, slow_receiver, session_factory):
        delivery = await _pending_delivery(db, subscription)

        await asyncio.gather(process_delivery(delivery.id), process_delivery(delivery.id))

        assert len(slow_receiver.requests) == 1
        assert (await _reload(session_factory, delivery.id)).attempts == 1

    async def test_not_due_delivery_is_skipped(self, db, subscription, receiver, session_factory):
        delivery = await _pending_delivery(db, subscription)
        delivery.next_retry_at = datetime.now(timezone.utc) + timedelta(minutes=5)
        await db.commit()

        assert await process_delivery(delivery.id) == DeliveryStatus.PENDING
        assert receiver.requests == []
        assert (await _reload(session_factory, delivery.id)).attempts == 0

    async def test_claim_counts_attempt_and_sets_lease(self, db, subscription, session_factory):
        delivery = await _pending_delivery(db, subscription)
        async with session_factory() as session:
            assert await webhook_service.claim_delivery(session, delivery.id, lease_seconds=40) == 1
        async with session_factory() as session:
            assert await webhook_service.claim_delivery(session, delivery.id, lease_seconds=40) is None

        claimed = await _reload(session_factory, delivery.id)
        assert claimed.attempts == 1
        lease_end = claimed.next_retry_at
        if lease_end.tzinfo is None:
            lease_end = lease_end.replace(tzinfo=timezone.utc)
        assert lease_end > datetime.now(timezone.utc) + timedelta(seconds=30)

    async def test_crashed_attempt_is_settled(self, db, subscription, session_factory):
        delivery = await _pending_delivery(db, subscription)

        with patch.object(webhook_service, "send_webhook", AsyncMock(side_effect=RuntimeError("bad payload"))):
            assert await process_delivery(delivery.id) == DeliveryStatus.PENDING

        reloaded = await _reload(session_factory, delivery.id)
        assert reloaded.attempts == 1
        assert reloaded.last_error == "RuntimeError: bad payload"
