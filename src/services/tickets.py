"""
Ticket store - the slice of the ticketing domain the integration core writes to.
Every function works inside the caller's session and only flushes; committing is
the caller's decision so ticket, ledger and audit rows land atomically.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.enums import TicketStatus, UserRole
from src.models.notification import Notification
from src.models.ticket import Ticket
from src.models.ticket_event import TicketEvent
from src.models.ticket_reason import TicketReason
from src.models.user import User

logger = logging.getLogger(__name__)

SYSTEM_USER_NAME = "System Integration"
SYSTEM_PASSWORD_HASH = "system_managed"  # not a valid password hash, so it can never log in


async def get_reason(db: AsyncSession, reason_id) -> Optional[TicketReason]:
    if reason_id is None:
        return None
    if not isinstance(reason_id, uuid.UUID):
        try:
            reason_id = uuid.UUID(str(reason_id))
        except ValueError:
            return None
    return await db.get(TicketReason, reason_id)


async def get_or_create_system_user(db: AsyncSession, email: str) -> User:
    """
    Look up the system integration account by its well-known email, creating it
    on first use. Runs in the caller's transaction.
    """
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user:
        return user

    user = User(
        name=SYSTEM_USER_NAME,
        email=email,
        password_hash=SYSTEM_PASSWORD_HASH,
        role=UserRole.ADMIN,
        is_active=True,
    )
    db.add(user)
    await db.flush()
    logger.info("Created system integration user %s", email)
    return user


async def find_earliest_active_user(db: AsyncSession, role: str) -> Optional[uuid.UUID]:
    """Earliest-created active user holding a role. Stable, not load-balanced."""
    result = await db.execute(
        select(User.id)
        .where(User.role == role, User.is_active.is_(True))
        .order_by(User.created_at.asc(), User.id.asc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def create_ticket(
    db: AsyncSession,
    *,
    order_number: str,
    issue_type: str,
    priority: str,
    description: str,
    created_by: uuid.UUID,
    assigned_to: Optional[uuid.UUID] = None,
    reason_id: Optional[uuid.UUID] = None,
    courier_company: Optional[str] = None,
) -> Ticket:
    ticket = Ticket(
        order_number=order_number,
        courier_company=courier_company or "Unknown",
        issue_type=issue_type,
        priority=priority,
        status=TicketStatus.ASSIGNED if assigned_to else TicketStatus.NEW,
        description=description,
        created_by=created_by,
        assigned_to=assigned_to,
        reason_id=reason_id,
    )
    db.add(ticket)
    await db.flush()
    return ticket


async def record_ticket_event(
    db: AsyncSession,
    ticket_id: uuid.UUID,
    actor_id: uuid.UUID,
    event_type: str,
    meta: Optional[dict] = None,
) -> TicketEvent:
    event = TicketEvent(
        ticket_id=ticket_id,
        actor_id=actor_id,
        event_type=event_type,
        meta=meta or {},
    )
    db.add(event)
    await db.flush()
    return event


async def create_notification(
    db: AsyncSession,
    user_id: uuid.UUID,
    type: str,
    title: str,
    body: str,
    link: Optional[str] = None,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        body=body,
        link=link,
    )
    db.add(notification)
    await db.flush()
    return notification
