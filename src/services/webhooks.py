"""
Outbound webhook dispatcher.

dispatch() fans a committed domain event out to every active subscription of a
client that listens for it, persisting one PENDING delivery per subscription.
process_delivery() claims a due delivery, performs exactly one signed POST and records
the outcome:

    PENDING --2xx--> SUCCESS
    PENDING --error, retries left--> PENDING (next_retry_at = now + 2**attempts s)
    PENDING --error, retries exhausted--> FAILED

Later attempts are driven by the retry worker; nothing here sleeps or waits
for a retry. No database transaction is held open across the network call.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.enums import DeliveryStatus
from src.models.webhook import WebhookDelivery, WebhookSubscription
from src.utils.background import spawn
from src.utils.backoff import calculate_backoff
from src.utils.encryption import open_secret, seal_secret
from src.utils.errors import SecretUnavailableError
from src.utils.webhook_signatures import SIGNATURE_HEADER, serialize_payload, sign_payload

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000
# Claim lease beyond the transport timeout before a stalled attempt can be retaken
DELIVERY_LEASE_GRACE_SECONDS = 30


@dataclass(frozen=True)
class AttemptResult:
    ok: bool
    status_code: Optional[int] = None
    error: Optional[str] = None


def _build_http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, follow_redirects=False)


# === SUBSCRIPTIONS ===

async def create_subscription(
    db: AsyncSession,
    client_id: uuid.UUID,
    name: str,
    target_url: str,
    secret: str,
    events: list[str],
) -> WebhookSubscription:
    subscription = WebhookSubscription(
        client_id=client_id,
        name=name,
        target_url=target_url,
        secret_encrypted=seal_secret(secret),
        events=list(dict.fromkeys(events)),
        is_active=True,
    )
    db.add(subscription)
    await db.flush()
    logger.info(
        "Webhook subscription %s created for client %s: %s",
        str(subscription.id)[:8], str(client_id)[:8], ",".join(subscription.events),
    )
    return subscription


async def find_matching_subscriptions(
    db: AsyncSession,
    client_id: uuid.UUID,
    event_type: str,
) -> list[WebhookSubscription]:
    """Active subscriptions of a client that listen for event_type."""
    result = await db.execute(
        select(WebhookSubscription)
        .where(
            WebhookSubscription.client_id == client_id,
            WebhookSubscription.is_active.is_(True),
        )
        .order_by(WebhookSubscription.created_at)
    )
    # events is a JSON list; membership is checked here so the query stays portable
    return [sub for sub in result.scalars().all() if event_type in (sub.events or [])]


# === DISPATCH ===

async def dispatch(client_id: uuid.UUID, event_type: str, payload: dict) -> list[uuid.UUID]:
    """
    Create a PENDING delivery per matching subscription and schedule the first
    attempt of each in the background. Returns the created delivery ids.
    """
    from src.database import async_session_factory

    async with async_session_factory() as db:
        subscriptions = await find_matching_subscriptions(db, client_id, event_type)
        if not subscriptions:
            logger.debug(
                "No webhook subscriptions for client %s event %s",
                str(client_id)[:8], event_type,
            )
            return []

        now = datetime.now(timezone.utc)
        deliveries = []
        for sub in subscriptions:
            delivery = WebhookDelivery(
                id=uuid.uuid4(),
                subscription_id=sub.id,
                event_type=event_type,
                payload=payload,
                status=DeliveryStatus.PENDING,
                attempts=0,
                next_retry_at=now,
            )
            db.add(delivery)
            deliveries.append(delivery)
        await db.commit()

    delivery_ids = [d.id for d in deliveries]
    logger.info(
        "Dispatching %s to %d subscription(s) for client %s",
        event_type, len(delivery_ids), str(client_id)[:8],
        extra={"event_type": event_type},
    )
    for delivery_id in delivery_ids:
        spawn(process_delivery(delivery_id), name=f"webhook_delivery:{delivery_id}")
    return delivery_ids


# === DELIVERY STATE MACHINE ===

def build_headers(event_type: str, delivery_id: uuid.UUID, signature: str) -> dict:
    return {
        "Content-Type": "application/json",
        "X-Event-Type": event_type,
        "X-Delivery-Id": str(delivery_id),
        SIGNATURE_HEADER: signature,
    }


async def send_webhook(
    target_url: str,
    secret: str,
    event_type: str,
    delivery_id: uuid.UUID,
    payload: dict,
    timeout: float,
) -> AttemptResult:
    """One signed POST. Transport errors and non-2xx responses become failed results."""
    body = serialize_payload(payload)
    headers = build_headers(event_type, delivery_id, sign_payload(body, secret))

    try:
        async with _build_http_client(timeout) as client:
            response = await client.post(target_url, content=body, headers=headers)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        return AttemptResult(ok=False, error=f"{type(e).__name__}: {e}"[:MAX_ERROR_LENGTH])

    if 200 <= response.status_code < 300:
        return AttemptResult(ok=True, status_code=response.status_code)
    return AttemptResult(
        ok=False,
        status_code=response.status_code,
        error=f"HTTP {response.status_code}",
    )


def settle_attempt(
    delivery: WebhookDelivery,
    result: AttemptResult,
    now: Optional[datetime] = None,
    max_retries: int = 5,
    base_seconds: int = 2,
) -> str:
    """
    Set the outcome of an attempt already counted in delivery.attempts.
    Returns the new status.
    """
    now = now or datetime.now(timezone.utc)
    delivery.last_response_status = result.status_code

    if result.ok:
        delivery.status = DeliveryStatus.SUCCESS
        delivery.last_error = None
        delivery.next_retry_at = None
        return delivery.status

    delivery.last_error = result.error
    next_retry = calculate_backoff(delivery.attempts, now, max_retries, base_seconds)
    if next_retry is None:
        delivery.status = DeliveryStatus.FAILED
        delivery.next_retry_at = None
    else:
        delivery.status = DeliveryStatus.PENDING
        delivery.next_retry_at = next_retry
    return delivery.status


async def claim_delivery(db: AsyncSession, delivery_id: uuid.UUID, lease_seconds: float) -> Optional[int]:
    """
    Atomically take a due PENDING delivery for one attempt: the attempt is
    counted and next_retry_at is pushed past the lease so no other worker or
    spawned task picks the row up meanwhile. Returns the attempt number, or
    None when the row is not due, not PENDING or already claimed. Commits.
    """
    now = datetime.now(timezone.utc)
    result = await db.execute(
        update(WebhookDelivery)
        .where(
            WebhookDelivery.id == delivery_id,
            WebhookDelivery.status == DeliveryStatus.PENDING,
            WebhookDelivery.next_retry_at.is_not(None),
            WebhookDelivery.next_retry_at <= now,
        )
        .values(
            attempts=WebhookDelivery.attempts + 1,
            last_attempt_at=now,
            next_retry_at=now + timedelta(seconds=lease_seconds),
        )
        .returning(WebhookDelivery.attempts)
        .execution_options(synchronize_session=False)
    )
    attempt = result.scalar_one_or_none()
    await db.commit()
    return attempt


async def process_delivery(delivery_id: uuid.UUID) -> Optional[str]:
    """
    Perform a single attempt for a delivery. Safe to invoke repeatedly and
    concurrently; only the caller that claims the row sends. Missing, terminal,
    not-yet-due and already-claimed deliveries are skipped. Returns the status.
    """
    from src.config import get_settings
    from src.database import async_session_factory

    settings = get_settings()
    lease_seconds = settings.webhook_timeout_seconds + DELIVERY_LEASE_GRACE_SECONDS

    # Claim and snapshot what the attempt needs, then release the session before the network call
    async with async_session_factory() as db:
        delivery = await db.get(WebhookDelivery, delivery_id)
        if delivery is None or delivery.subscription is None:
            logger.info("Webhook delivery %s not found - skipping", str(delivery_id)[:8])
            return None
        if delivery.status != DeliveryStatus.PENDING:
            logger.debug(
                "Webhook delivery %s already %s - skipping",
                str(delivery_id)[:8], delivery.status,
            )
            return delivery.status

        subscription = delivery.subscription
        target_url = subscription.target_url
        stored_secret = subscription.secret_encrypted
        event_type = delivery.event_type
        payload = delivery.payload

        attempt = await claim_delivery(db, delivery_id, lease_seconds)
        if attempt is None:
            logger.debug("Webhook delivery %s not due or claimed elsewhere - skipping", str(delivery_id)[:8])
            return DeliveryStatus.PENDING

    try:
        secret = open_secret(stored_secret)
    except SecretUnavailableError as e:
        # Counts as a failed attempt; retries follow the normal schedule
        result = AttemptResult(ok=False, error=str(e))
    else:
        try:
            result = await send_webhook(
                target_url, secret, event_type, delivery_id, payload,
                timeout=settings.webhook_timeout_seconds,
            )
        except Exception as e:
            # The attempt is already counted; settle it so the retry budget still applies
            logger.error("Webhook delivery %s attempt crashed: %s", str(delivery_id)[:8], str(e), exc_info=True)
            result = AttemptResult(ok=False, error=f"{type(e).__name__}: {e}"[:MAX_ERROR_LENGTH])

    async with async_session_factory() as db:
        delivery = await db.get(WebhookDelivery, delivery_id)
        if delivery is None:
            return None
        if delivery.status != DeliveryStatus.PENDING or delivery.attempts != attempt:
            # Lease ran out and another attempt took over; its outcome stands
            logger.warning(
                "Webhook delivery %s attempt %d outcome dropped, row moved on to attempt %d",
                str(delivery_id)[:8], attempt, delivery.attempts,
            )
            return delivery.status
        status = settle_attempt(
            delivery,
            result,
            max_retries=settings.webhook_max_retries,
            base_seconds=settings.webhook_backoff_base_seconds,
        )
        attempts = delivery.attempts
        next_retry_at = delivery.next_retry_at
        await db.commit()

    log_extra = {"delivery_id": str(delivery_id), "event_type": event_type, "attempts": attempts}
    if status == DeliveryStatus.SUCCESS:
        logger.info(
            "Webhook delivery %s succeeded (HTTP %s, attempt %d)",
            str(delivery_id)[:8], result.status_code, attempts, extra=log_extra,
        )
    elif status == DeliveryStatus.PENDING:
        logger.warning(
            "Webhook delivery %s failed (attempt %d): %s - retry at %s",
            str(delivery_id)[:8], attempts, result.error, next_retry_at.isoformat(),
            extra=log_extra,
        )
    else:
        logger.error(
            "Webhook delivery %s exhausted retries after %d attempts: %s",
            str(delivery_id)[:8], attempts, result.error, extra=log_extra,
        )
        from src.utils.alerting import AlertType, send_alert
        await send_alert(
            AlertType.WEBHOOK_DELIVERY_FAILED,
            f"Webhook delivery {delivery_id} to {target_url} failed after {attempts} attempts",
            extra={"last_error": result.error, "event_type": event_type},
        )
    return status


# === OPERATIONS ===

async def list_deliveries(
    db: AsyncSession,
    subscription_id: uuid.UUID,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[WebhookDelivery]:
    query = select(WebhookDelivery).where(WebhookDelivery.subscription_id == subscription_id)
    if status:
        query = query.where(WebhookDelivery.status == status)
    query = query.order_by(WebhookDelivery.created_at.desc()).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def reset_for_redelivery(db: AsyncSession, delivery_id: uuid.UUID) -> Optional[WebhookDelivery]:
    """
    Put a FAILED delivery back in the queue for one more attempt. Attempt
    history is kept. Returns None if the delivery does not exist.
    """
    delivery = await db.get(WebhookDelivery, delivery_id)
    if delivery is None:
        return None
    if delivery.status == DeliveryStatus.FAILED:
        delivery.status = DeliveryStatus.PENDING
        delivery.next_retry_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("Webhook delivery %s reset for redelivery", str(delivery_id)[:8])
    return delivery
