"""
Seed an integration client with an API key and, optionally, a webhook subscription.
Prints the plaintext API key once; it is not recoverable afterwards.

Usage:
    python scripts/seed_integration_client.py --name "Courier Portal"
    python scripts/seed_integration_client.py --name "Courier Portal" \
        --webhook-url https://example.com/hooks/tickets --webhook-secret s3cr3t-value
"""
import argparse
import asyncio
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from src.config import get_settings
from src.models.enums import EventType
from src.services.integration_auth import SCOPE_ISSUES_WRITE, create_api_key
from src.services.integration_clients import get_client_by_name, create_client
from src.services.webhooks import create_subscription

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def seed(name: str, webhook_url: str, webhook_secret: str) -> None:
    settings = get_settings()
    engine = create_async_engine(settings.database_url, echo=False)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with async_session() as session:
        client = await get_client_by_name(session, name)
        if client:
            logger.info("Client %s already exists (id=%s). Adding a new key.", name, client.id)
        else:
            client = await create_client(session, name)
            logger.info("Created client %s (id=%s)", name, client.id)

        created = await create_api_key(session, client, [SCOPE_ISSUES_WRITE])

        if webhook_url:
            sub = await create_subscription(
                session,
                client_id=client.id,
                name=f"{name} ticket feed",
                target_url=webhook_url,
                secret=webhook_secret,
                events=[EventType.TICKET_CREATED],
            )
            logger.info("Webhook subscription %s -> %s", sub.id, webhook_url)

        await session.commit()

    await engine.dispose()

    print(f"\nAPI key (store it now, it will not be shown again):\n  {created['key']}\n")


async def main():
    parser = argparse.ArgumentParser(description="Seed an integration client")
    parser.add_argument("--name", default="Test Courier Portal")
    parser.add_argument("--webhook-url", default="")
    parser.add_argument("--webhook-secret", default="change-me-please")
    args = parser.parse_args()

    await seed(args.name, args.webhook_url, args.webhook_secret)


if __name__ == "__main__":
    asyncio.run(main())
