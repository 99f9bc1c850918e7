"""
Routing resolver - decides priority and assignee for a new ticket.

Pure given its inputs: the reason is passed in and the candidate-user lookup is
injected, so the precedence rules can be tested without a database.

Priority:  explicit > reason.default_priority > LOW
Assignee:  explicit > earliest active user holding the target role > None
Target role: reason.default_assign_role, else derived from reason.category.
"""
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from src.models.enums import Priority, ReasonCategory, UserRole

DEFAULT_PRIORITY = Priority.LOW

CATEGORY_ROLE_MAP = {
    ReasonCategory.ACCOUNTING: UserRole.ACCOUNTING,
    ReasonCategory.SHIPPING: UserRole.CS,
    ReasonCategory.CS: UserRole.CS,
}

CandidateLookup = Callable[[str], Awaitable[Optional[uuid.UUID]]]


@dataclass(frozen=True)
class RoutingDecision:
    assignee_id: Optional[uuid.UUID]
    priority: str
    target_role: Optional[str] = None
    auto_assigned: bool = False


def role_for_category(category: Optional[str]) -> Optional[str]:
    return CATEGORY_ROLE_MAP.get(category)


def resolve_priority(reason, explicit_priority: Optional[str] = None) -> str:
    if explicit_priority:
        return explicit_priority
    if reason is not None and reason.default_priority:
        return reason.default_priority
    return DEFAULT_PRIORITY


def target_role_for(reason) -> Optional[str]:
    if reason is None:
        return None
    if reason.default_assign_role:
        return reason.default_assign_role
    return role_for_category(reason.category)


async def resolve_routing(
    reason,
    explicit_assignee: Optional[uuid.UUID] = None,
    explicit_priority: Optional[str] = None,
    find_candidate: Optional[CandidateLookup] = None,
) -> RoutingDecision:
    """
    Resolve assignee and priority for a ticket.

    `reason` is any object exposing category, default_assign_role and
    default_priority (a TicketReason row in production). `find_candidate(role)`
    returns the chosen user id for a role, or None.
    """
    priority = resolve_priority(reason, explicit_priority)

    if explicit_assignee is not None:
        return RoutingDecision(assignee_id=explicit_assignee, priority=priority)

    role = target_role_for(reason)
    if role is None or find_candidate is None:
        return RoutingDecision(assignee_id=None, priority=priority, target_role=role)

    assignee = await find_candidate(role)
    return RoutingDecision(
        assignee_id=assignee,
        priority=priority,
        target_role=role,
        auto_assigned=assignee is not None,
    )
