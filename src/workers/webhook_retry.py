"""
Webhook retry worker - re-attempts PENDING deliveries whose backoff has elapsed.
Polls every WEBHOOK_RETRY_POLL_SECONDS, oldest due delivery first.
"""
import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy import select

logger = logging.getLogger(__name__)

WORKER_NAME = "webhook_retry_worker"


async def run_webhook_retry_worker():
    """Main retry worker loop. Runs until cancelled."""
    from src.config import get_settings
    from src.utils.heartbeat import record_heartbeat

    settings = get_settings()
    logger.info(
        "Webhook retry worker started (poll=%ss batch=%d)",
        settings.webhook_retry_poll_seconds, settings.webhook_retry_batch_size,
    )

    while True:
        try:
            processed = await process_due_deliveries(settings.webhook_retry_batch_size)
            if processed > 0:
                logger.info("Webhook retry worker attempted %d deliveries", processed)
        except Exception as e:
            logger.error("Webhook retry worker error: %s", str(e), exc_info=True)
            from src.utils.alerting import AlertType, send_alert
            await send_alert(AlertType.RETRY_WORKER_ERROR, f"Webhook retry cycle failed: {e}")

        await record_heartbeat(WORKER_NAME)
        await asyncio.sleep(settings.webhook_retry_poll_seconds)


async def find_due_deliveries(limit: int) -> list:
    """Ids of PENDING deliveries whose next_retry_at has passed, oldest first."""
    from src.database import async_session_factory
    from src.models.enums import DeliveryStatus
    from src.models.webhook import WebhookDelivery

    now = datetime.now(timezone.utc)
    async with async_session_factory() as db:
        result = await db.execute(
            select(WebhookDelivery.id)
            .where(
                WebhookDelivery.status == DeliveryStatus.PENDING,
                WebhookDelivery.next_retry_at.is_not(None),
                WebhookDelivery.next_retry_at <= now,
            )
            .order_by(WebhookDelivery.next_retry_at)
            .limit(limit)
        )
        return list(result.scalars().all())


async def process_due_deliveries(limit: int = 50) -> int:
    """Attempt each due delivery once. Returns count attempted."""
    from src.services.webhooks import process_delivery

    delivery_ids = await find_due_deliveries(limit)
    processed = 0
    for delivery_id in delivery_ids:
        try:
            await process_delivery(delivery_id)
            processed += 1
        except Exception as e:
            # One broken delivery must not stall the rest of the batch
            logger.warning(
                "Retry of webhook delivery %s errored: %s",
                str(delivery_id)[:8], str(e),
                extra={"delivery_id": str(delivery_id)},
            )
    return processed
