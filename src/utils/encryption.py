"""
At-rest protection for webhook signing secrets.

Stored forms:
    "fernet:<token>"  sealed with ENCRYPTION_KEY
    "plain:<secret>"  written while ENCRYPTION_KEY was not configured
    "<secret>"        rows from before stored forms were tagged; read as-is

ENCRYPTION_KEY may hold several comma-separated Fernet keys. The first one seals
new secrets; all of them can open existing ones. Rotating a key is therefore:
prepend the new key, redeploy, re-save subscriptions, drop the old key.
"""
import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from src.utils.errors import SecretUnavailableError

logger = logging.getLogger(__name__)

SEALED_PREFIX = "fernet:"
PLAIN_PREFIX = "plain:"


def _get_cipher() -> Optional[MultiFernet]:
    """MultiFernet over the configured keys, or None when encryption is off."""
    from src.config import get_settings

    keys = [k.strip() for k in get_settings().encryption_key.split(",") if k.strip()]
    if not keys:
        return None
    try:
        return MultiFernet([Fernet(k.encode()) for k in keys])
    except ValueError as e:
        raise SecretUnavailableError(f"ENCRYPTION_KEY is not a valid Fernet key list: {e}") from e


def is_sealed(stored: Optional[str]) -> bool:
    return bool(stored) and stored.startswith(SEALED_PREFIX)


def seal_secret(secret: str) -> str:
    """Encrypt a secret for storage. Without a key the secret is stored tagged as plaintext."""
    cipher = _get_cipher()
    if cipher is None:
        logger.warning("ENCRYPTION_KEY not configured - storing webhook secret unencrypted")
        return PLAIN_PREFIX + secret
    return SEALED_PREFIX + cipher.encrypt(secret.encode()).decode()


def open_secret(stored: str) -> str:
    """
    Recover a stored secret. Plaintext forms are returned unchanged; sealed
    values that no configured key can open raise SecretUnavailableError, as
    does a malformed ENCRYPTION_KEY.
    """
    if stored.startswith(PLAIN_PREFIX):
        return stored[len(PLAIN_PREFIX):]
    if not is_sealed(stored):
        return stored

    cipher = _get_cipher()
    if cipher is None:
        raise SecretUnavailableError("Secret is encrypted but ENCRYPTION_KEY is not configured")

    try:
        return cipher.decrypt(stored[len(SEALED_PREFIX):].encode()).decode()
    except InvalidToken as e:
        raise SecretUnavailableError("No configured ENCRYPTION_KEY opens this secret") from e
