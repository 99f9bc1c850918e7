"""
Integration credential store - API keys for external clients.

Raw key format: "<key_id>.<secret>". The key id is the row's UUID; only an argon2id
hash of the secret is persisted, and the plaintext is returned exactly once at
creation time.
"""
import asyncio
import logging
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.integration_client import IntegrationApiKey, IntegrationClient
from src.utils.background import spawn

logger = logging.getLogger(__name__)

SECRET_BYTES = 32  # 256 bits of entropy
SCOPE_ISSUES_WRITE = "issues:write"

# Argon2id with the library defaults (memory-hard); verify compares in constant time
_hasher = PasswordHasher()


@dataclass(frozen=True)
class ApiKeyIdentity:
    key_id: uuid.UUID
    client_id: uuid.UUID
    client_name: str
    scopes: frozenset = field(default_factory=frozenset)

    def has_scope(self, scope: str) -> bool:
        """Keys minted without scopes are unrestricted."""
        return not self.scopes or scope in self.scopes


def parse_raw_key(raw_key: Optional[str]) -> Optional[tuple[str, str]]:
    """Split "<key_id>.<secret>" on the first dot. Any other shape is None."""
    if not raw_key or "." not in raw_key:
        return None
    key_id, secret = raw_key.split(".", 1)
    if not key_id or not secret:
        return None
    return key_id, secret


def hash_secret(secret: str) -> str:
    return _hasher.hash(secret)


def verify_secret(secret: str, key_hash: str) -> bool:
    try:
        return _hasher.verify(key_hash, secret)
    except (VerificationError, InvalidHashError):
        # Mismatch, or a stored hash argon2 cannot parse
        return False


async def validate_api_key(db: AsyncSession, raw_key: Optional[str]) -> Optional[ApiKeyIdentity]:
    """
    Resolve a raw bearer token to the client it belongs to.
    Returns None for any malformed, unknown, inactive or mismatching key.
    """
    parsed = parse_raw_key(raw_key)
    if parsed is None:
        return None
    key_id, secret = parsed

    try:
        key_uuid = uuid.UUID(key_id)
    except ValueError:
        return None

    record = await db.get(IntegrationApiKey, key_uuid)
    if not record or not record.is_active:
        return None
    if record.client is None or not record.client.is_active:
        return None

    # argon2 is deliberately slow; keep it off the event loop
    is_valid = await asyncio.to_thread(verify_secret, secret, record.key_hash)
    if not is_valid:
        logger.warning("API key secret mismatch for key %s", key_id[:8])
        return None

    spawn(touch_last_used(record.id), name="api_key_last_used")

    return ApiKeyIdentity(
        key_id=record.id,
        client_id=record.client_id,
        client_name=record.client.name,
        scopes=frozenset(record.scopes or []),
    )


async def touch_last_used(key_id: uuid.UUID) -> None:
    """Best-effort last_used_at update in its own session. Never raises."""
    from src.database import async_session_factory

    try:
        async with async_session_factory() as db:
            await db.execute(
                update(IntegrationApiKey)
                .where(IntegrationApiKey.id == key_id)
                .values(last_used_at=datetime.now(timezone.utc))
            )
            await db.commit()
    except Exception as e:
        logger.warning("Failed to update last_used_at for key %s: %s", str(key_id)[:8], str(e))


async def create_api_key(
    db: AsyncSession,
    client: IntegrationClient,
    scopes: Optional[list[str]] = None,
) -> dict:
    """
    Mint a new key for a client. The returned "key" is the only time the
    plaintext secret is ever available.
    """
    secret = secrets.token_hex(SECRET_BYTES)
    key_hash = await asyncio.to_thread(hash_secret, secret)

    record = IntegrationApiKey(
        id=uuid.uuid4(),
        client_id=client.id,
        key_hash=key_hash,
        scopes=list(scopes or []),
        is_active=True,
    )
    db.add(record)
    await db.flush()

    logger.info(
        "API key %s created for client %s", str(record.id)[:8], client.name,
    )
    return {
        "key": f"{record.id}.{secret}",
        "id": record.id,
        "client_id": record.client_id,
        "scopes": record.scopes,
        "is_active": record.is_active,
        "created_at": record.created_at,
    }


async def revoke_api_key(db: AsyncSession, key_id: uuid.UUID) -> Optional[IntegrationApiKey]:
    record = await db.get(IntegrationApiKey, key_id)
    if record is None:
        return None
    record.is_active = False
    await db.flush()
    logger.info("API key %s revoked", str(key_id)[:8])
    return record
