"""
Integration client records, including the well-known internal client that
owns events created by the system itself.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.integration_client import IntegrationClient
from src.utils.errors import DuplicateClientError

logger = logging.getLogger(__name__)


async def get_client(db: AsyncSession, client_id: uuid.UUID) -> Optional[IntegrationClient]:
    return await db.get(IntegrationClient, client_id)


async def get_client_by_name(db: AsyncSession, name: str) -> Optional[IntegrationClient]:
    result = await db.execute(
        select(IntegrationClient).where(IntegrationClient.name == name)
    )
    return result.scalar_one_or_none()


async def create_client(db: AsyncSession, name: str) -> IntegrationClient:
    if await get_client_by_name(db, name):
        raise DuplicateClientError(f"Integration client '{name}' already exists")

    client = IntegrationClient(name=name, is_active=True)
    db.add(client)
    try:
        await db.flush()
    except IntegrityError as e:
        raise DuplicateClientError(f"Integration client '{name}' already exists") from e

    logger.info("Integration client created: %s (%s)", name, str(client.id)[:8])
    return client


async def get_or_create_internal_client(db: AsyncSession, name: str) -> IntegrationClient:
    """
    Idempotent lookup-or-create of the internal client by its well-known name.
    Runs in the caller's transaction so it commits or rolls back with the ticket.
    """
    client = await get_client_by_name(db, name)
    if client:
        return client

    client = IntegrationClient(name=name, is_active=True)
    db.add(client)
    await db.flush()
    logger.info("Created internal integration client %s", name)
    return client
