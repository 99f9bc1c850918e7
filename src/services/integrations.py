"""
Inbound issue ingestion - the transactional core of the integration API.

Per request:
    RECEIVED -> DEDUPED                       (ledger already has a ticket)
    RECEIVED -> ROUTED -> COMMITTED -> DISPATCHED (async, after commit)

Ticket, ledger entry, audit events and the assignee notification are written in
one transaction. Concurrent duplicates are stopped by the ledger's unique
constraint on (client_id, source, external_id), not by application locks: the
loser of the race sees an IntegrityError, rolls back, and answers from the
winner's ledger row.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.models.enums import EventType, NotificationType
from src.models.integration_inbox import IntegrationInbox, LEDGER_UNIQUE_CONSTRAINT
from src.schemas.integrations import CreateIssueRequest
from src.services import tickets as ticket_store
from src.services.integration_clients import get_client_by_name, get_or_create_internal_client
from src.services.routing import resolve_routing
from src.services.webhooks import dispatch
from src.utils.background import spawn
from src.utils.errors import LedgerInconsistencyError
from src.utils.logging import get_correlation_id

logger = logging.getLogger(__name__)

AUTO_ROUTING_REASON = "Auto-routing by Reason"
SQLITE_LEDGER_UNIQUE_PREFIX = "UNIQUE constraint failed: integration_inbox."


@dataclass(frozen=True)
class IssueResult:
    ticket_id: uuid.UUID
    duplicate: bool


def is_ledger_conflict(error: IntegrityError) -> bool:
    """True when an IntegrityError comes from the ledger's unique constraint."""
    message = str(getattr(error, "orig", None) or error)
    # PostgreSQL names the constraint; SQLite lists the ledger columns
    return LEDGER_UNIQUE_CONSTRAINT in message or SQLITE_LEDGER_UNIQUE_PREFIX in message


async def find_ledger_entry(
    db: AsyncSession,
    client_id: uuid.UUID,
    source: str,
    external_id: str,
) -> Optional[IntegrationInbox]:
    result = await db.execute(
        select(IntegrationInbox)
        .where(
            IntegrationInbox.client_id == client_id,
            IntegrationInbox.source == source,
            IntegrationInbox.external_id == external_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def process_inbound_issue(
    db: AsyncSession,
    client_id: Optional[uuid.UUID],
    issue: CreateIssueRequest,
) -> IssueResult:
    """
    Turn an inbound issue into exactly one ticket per (client, source, external_id).
    A missing client_id means the issue originates from the system itself.
    """
    # Two passes at most: a clash on a lazily created singleton row (internal
    # client, system user) is resolved by simply running the unit again.
    attempt = 0
    while True:
        attempt += 1
        try:
            return await _ingest(db, client_id, issue)
        except IntegrityError as e:
            await db.rollback()
            if is_ledger_conflict(e):
                return await _recover_from_race(db, client_id, issue)
            if attempt >= 2:
                raise
            logger.warning(
                "Ingestion transaction hit a non-ledger conflict, retrying once: %s",
                str(e.orig)[:200],
            )


async def _resolve_client_id(db: AsyncSession, client_id: Optional[uuid.UUID]) -> uuid.UUID:
    if client_id is not None:
        return client_id
    settings = get_settings()
    internal = await get_or_create_internal_client(db, settings.internal_client_name)
    return internal.id


async def _ingest(
    db: AsyncSession,
    client_id: Optional[uuid.UUID],
    issue: CreateIssueRequest,
) -> IssueResult:
    settings = get_settings()
    final_client_id = await _resolve_client_id(db, client_id)
    log_extra = {
        "client_id": str(final_client_id),
        "source": issue.source,
        "external_id": issue.external_id,
    }

    # 1. Idempotency check
    existing = await find_ledger_entry(db, final_client_id, issue.source, issue.external_id)
    if existing and existing.ticket_id:
        logger.info(
            "Duplicate issue %s:%s -> ticket %s",
            issue.source, issue.external_id, str(existing.ticket_id)[:8],
            extra=log_extra,
        )
        return IssueResult(ticket_id=existing.ticket_id, duplicate=True)

    # 2. Routing
    reason = None
    if issue.reason_id:
        reason = await ticket_store.get_reason(db, issue.reason_id)
        if reason is None:
            logger.warning(
                "Unknown reason_id %s on issue %s:%s - routing without reason",
                issue.reason_id, issue.source, issue.external_id, extra=log_extra,
            )

    routing = await resolve_routing(
        reason,
        explicit_priority=issue.priority,
        find_candidate=lambda role: ticket_store.find_earliest_active_user(db, role),
    )

    # 3. Atomic commit: ticket + ledger + audit trail
    system_user = await ticket_store.get_or_create_system_user(db, settings.system_user_email)

    ticket = await ticket_store.create_ticket(
        db,
        order_number=issue.order_number,
        issue_type=issue.issue_type,
        priority=routing.priority,
        description=issue.description,
        created_by=system_user.id,
        assigned_to=routing.assignee_id,
        reason_id=reason.id if reason else None,
        courier_company=issue.courier_company,
    )

    db.add(IntegrationInbox(
        client_id=final_client_id,
        source=issue.source,
        external_id=issue.external_id,
        ticket_id=ticket.id,
        payload=issue.model_dump(mode="json"),
        correlation_id=get_correlation_id(),
    ))

    await ticket_store.record_ticket_event(
        db, ticket.id, system_user.id, EventType.TICKET_CREATED,
        meta={
            "source": issue.source,
            "external_id": issue.external_id,
            "order_number": ticket.order_number,
            "auto_assigned": routing.auto_assigned,
        },
    )

    if routing.assignee_id:
        await ticket_store.record_ticket_event(
            db, ticket.id, system_user.id, EventType.TICKET_ASSIGNED,
            meta={"assigned_to": str(routing.assignee_id), "reason": AUTO_ROUTING_REASON},
        )
        await ticket_store.create_notification(
            db,
            user_id=routing.assignee_id,
            type=NotificationType.TICKET_ASSIGNED,
            title="New Ticket Assigned",
            body=f"You have been assigned to ticket {ticket.order_number} (Auto-assigned)",
            link=f"/tickets/{ticket.id}",
        )

    await db.flush()
    await db.commit()

    logger.info(
        "Ticket %s created from %s:%s (priority=%s assignee=%s)",
        str(ticket.id)[:8], issue.source, issue.external_id, ticket.priority,
        str(routing.assignee_id)[:8] if routing.assignee_id else None,
        extra={**log_extra, "ticket_id": str(ticket.id)},
    )

    # 4. Post-commit fan-out. Never blocks or fails the response.
    spawn(
        dispatch(final_client_id, EventType.TICKET_CREATED, {
            "ticket_id": str(ticket.id),
            "order_number": ticket.order_number,
            "status": ticket.status,
            "external_id": issue.external_id,
        }),
        name=f"webhook_dispatch:{ticket.id}",
    )

    return IssueResult(ticket_id=ticket.id, duplicate=False)


async def _recover_from_race(
    db: AsyncSession,
    client_id: Optional[uuid.UUID],
    issue: CreateIssueRequest,
) -> IssueResult:
    """
    A concurrent request committed the same ledger key first. Answer from its
    row; re-query a few times in case its commit is not yet visible.
    """
    settings = get_settings()
    attempts = max(settings.ledger_race_requery_attempts, 1)
    delay = settings.ledger_race_requery_delay_ms / 1000

    final_client_id = client_id
    for attempt in range(attempts):
        if final_client_id is None:
            internal = await get_client_by_name(db, settings.internal_client_name)
            final_client_id = internal.id if internal else None

        if final_client_id is not None:
            entry = await find_ledger_entry(db, final_client_id, issue.source, issue.external_id)
            if entry and entry.ticket_id:
                logger.info(
                    "Ledger race on %s:%s resolved -> ticket %s",
                    issue.source, issue.external_id, str(entry.ticket_id)[:8],
                    extra={"client_id": str(final_client_id), "ticket_id": str(entry.ticket_id)},
                )
                return IssueResult(ticket_id=entry.ticket_id, duplicate=True)

        if attempt < attempts - 1:
            await asyncio.sleep(delay)

    logger.error(
        "Ledger conflict on %s:%s but no ticket found after %d re-queries",
        issue.source, issue.external_id, attempts,
    )
    from src.utils.alerting import AlertType, send_alert
    spawn(
        send_alert(
            AlertType.LEDGER_INCONSISTENCY,
            f"Ledger conflict without ticket for {issue.source}:{issue.external_id}",
            extra={"client_id": str(final_client_id)},
        ),
        name="ledger_inconsistency_alert",
    )
    raise LedgerInconsistencyError(final_client_id, issue.source, issue.external_id)
