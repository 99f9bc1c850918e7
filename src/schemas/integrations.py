"""
Request/response schemas for the integration API and its admin surface.
"""
import uuid
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

IssueTypeLiteral = Literal["ACCOUNTING", "DELIVERY", "COD", "RETURNS", "ADDRESS", "DUPLICATE", "OTHER"]
PriorityLiteral = Literal["LOW", "MEDIUM", "HIGH", "URGENT"]
EventTypeLiteral = Literal[
    "TICKET_CREATED", "TICKET_ASSIGNED", "STATUS_CHANGED", "MESSAGE_SENT",
    "TICKET_RESOLVED", "TICKET_REOPENED", "TICKET_UPDATED",
]
DeliveryStatusLiteral = Literal["PENDING", "SUCCESS", "FAILED"]


# === INGESTION ===

class CreateIssueRequest(BaseModel):
    """An issue pushed by an external system. (source, external_id) is its idempotency key."""
    model_config = ConfigDict(str_strip_whitespace=True)

    source: str = Field(..., min_length=1, max_length=100)
    external_id: str = Field(..., min_length=1, max_length=255)
    order_number: str = Field(..., min_length=1, max_length=100)
    issue_type: IssueTypeLiteral
    priority: Optional[PriorityLiteral] = None
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    courier_company: Optional[str] = Field(default=None, max_length=100)
    meta: Optional[dict] = None
    reason_id: Optional[uuid.UUID] = None


class IssueResultData(BaseModel):
    ticket_id: str
    duplicate: bool


class IssueResponse(BaseModel):
    request_id: str
    data: IssueResultData


# === ADMIN ===

class CreateClientRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=255)


class ClientResponse(BaseModel):
    id: str
    name: str
    is_active: bool
    created_at: Optional[datetime] = None


class CreateApiKeyRequest(BaseModel):
    scopes: list[str] = Field(default_factory=list)


class ApiKeyCreatedResponse(BaseModel):
    """Returned once. `key` is the only copy of the plaintext secret."""
    key: str
    id: str
    client_id: str
    scopes: list[str]
    is_active: bool
    created_at: Optional[datetime] = None


class ApiKeyResponse(BaseModel):
    id: str
    client_id: str
    scopes: list[str]
    is_active: bool
    last_used_at: Optional[datetime] = None


class CreateWebhookRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    client_id: uuid.UUID = Field(..., alias="clientId")
    name: str = Field(..., min_length=1, max_length=255)
    url: str = Field(..., min_length=1)
    secret: str = Field(..., min_length=8)
    events: list[EventTypeLiteral] = Field(..., min_length=1)

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must be an http(s) URL")
        return value


class WebhookSubscriptionResponse(BaseModel):
    """Subscription as shown to admins. The signing secret is never echoed back."""
    id: str
    client_id: str
    name: str
    target_url: str
    events: list[str]
    is_active: bool
    created_at: Optional[datetime] = None


class WebhookDeliveryResponse(BaseModel):
    id: str
    subscription_id: str
    event_type: str
    status: str
    attempts: int
    last_error: Optional[str] = None
    last_response_status: Optional[int] = None
    next_retry_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
