"""
Enumerated string values shared by the ticket store and the integration core.
Stored as plain strings so the ticketing app and this service agree on the wire format.
"""


class UserRole:
    ADMIN = "ADMIN"
    ACCOUNTING = "ACCOUNTING"
    CS = "CS"

    ALL = (ADMIN, ACCOUNTING, CS)


class Priority:
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"

    ALL = (LOW, MEDIUM, HIGH, URGENT)


class IssueType:
    ACCOUNTING = "ACCOUNTING"
    DELIVERY = "DELIVERY"
    COD = "COD"
    RETURNS = "RETURNS"
    ADDRESS = "ADDRESS"
    DUPLICATE = "DUPLICATE"
    OTHER = "OTHER"

    ALL = (ACCOUNTING, DELIVERY, COD, RETURNS, ADDRESS, DUPLICATE, OTHER)


class TicketStatus:
    NEW = "NEW"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    WAITING = "WAITING"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"
    REOPENED = "REOPENED"


class ReasonCategory:
    SHIPPING = "SHIPPING"
    ACCOUNTING = "ACCOUNTING"
    CS = "CS"
    OTHER = "OTHER"


class EventType:
    """Ticket audit events. Webhook subscriptions subscribe to the same names."""
    TICKET_CREATED = "TICKET_CREATED"
    TICKET_ASSIGNED = "TICKET_ASSIGNED"
    STATUS_CHANGED = "STATUS_CHANGED"
    MESSAGE_SENT = "MESSAGE_SENT"
    TICKET_RESOLVED = "TICKET_RESOLVED"
    TICKET_REOPENED = "TICKET_REOPENED"
    TICKET_UPDATED = "TICKET_UPDATED"

    ALL = (
        TICKET_CREATED, TICKET_ASSIGNED, STATUS_CHANGED, MESSAGE_SENT,
        TICKET_RESOLVED, TICKET_REOPENED, TICKET_UPDATED,
    )


class NotificationType:
    TICKET_ASSIGNED = "TICKET_ASSIGNED"
    MESSAGE_RECEIVED = "MESSAGE_RECEIVED"
    STATUS_CHANGED = "STATUS_CHANGED"
    TICKET_REASSIGNED = "TICKET_REASSIGNED"


class DeliveryStatus:
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    ALL = (PENDING, SUCCESS, FAILED)
