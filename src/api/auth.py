"""
Auth dependencies.

- get_api_client: integration API keys ("Bearer <key_id>.<secret>")
- get_current_admin: HS256 JWTs issued by the ticketing app; role must be ADMIN
"""
import logging
import uuid
from typing import Optional
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.models.enums import UserRole
from src.models.user import User
from src.services.integration_auth import ApiKeyIdentity, validate_api_key

logger = logging.getLogger(__name__)

# auto_error=False so a missing header can fall through to internal ingestion
api_key_scheme = HTTPBearer(auto_error=False)
admin_bearer_scheme = HTTPBearer()

UNAUTHORIZED_HEADERS = {"WWW-Authenticate": "Bearer"}


async def get_api_client(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(api_key_scheme),
    db: AsyncSession = Depends(get_db),
) -> Optional[ApiKeyIdentity]:
    """
    Resolve the calling integration client from its API key.
    Returns None (internal origin) only when ALLOW_INTERNAL_INGESTION is on
    and no credentials were sent at all.
    """
    from src.config import get_settings

    if credentials is None:
        if get_settings().allow_internal_ingestion:
            return None
        raise HTTPException(
            status_code=401,
            detail="Missing or invalid Authorization header",
            headers=UNAUTHORIZED_HEADERS,
        )

    identity = await validate_api_key(db, credentials.credentials)
    if identity is None:
        raise HTTPException(status_code=401, detail="Invalid API Key", headers=UNAUTHORIZED_HEADERS)
    return identity


async def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(admin_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Dependency to extract and verify an ADMIN user from a JWT Bearer token."""
    import jwt as pyjwt
    from src.config import get_settings
    settings = get_settings()

    try:
        payload = pyjwt.decode(
            credentials.credentials,
            settings.admin_jwt_secret or settings.app_secret_key,
            algorithms=["HS256"],
        )
    except pyjwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired", headers=UNAUTHORIZED_HEADERS)
    except pyjwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token", headers=UNAUTHORIZED_HEADERS)

    user_id = payload.get("sub") or payload.get("user_id")
    try:
        user_uuid = uuid.UUID(str(user_id))
    except (ValueError, TypeError):
        raise HTTPException(status_code=401, detail="Invalid token payload", headers=UNAUTHORIZED_HEADERS)

    user = await db.get(User, user_uuid)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found", headers=UNAUTHORIZED_HEADERS)
    if user.role != UserRole.ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
