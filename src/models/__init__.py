"""
Database models - import all models here so Alembic can discover them.
"""
from src.models.user import User
from src.models.ticket_reason import TicketReason
from src.models.ticket import Ticket
from src.models.ticket_event import TicketEvent
from src.models.notification import Notification
from src.models.integration_client import IntegrationClient, IntegrationApiKey
from src.models.integration_inbox import IntegrationInbox
from src.models.webhook import WebhookSubscription, WebhookDelivery

__all__ = [
    "User",
    "TicketReason",
    "Ticket",
    "TicketEvent",
    "Notification",
    "IntegrationClient",
    "IntegrationApiKey",
    "IntegrationInbox",
    "WebhookSubscription",
    "WebhookDelivery",
]
