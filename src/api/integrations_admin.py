"""
Integration admin API - manage clients, API keys and webhook subscriptions.
All routes require an ADMIN bearer token.
"""
import logging
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_current_admin
from src.database import get_db
from src.models.webhook import WebhookDelivery, WebhookSubscription
from src.schemas.integrations import (
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    ClientResponse,
    CreateApiKeyRequest,
    CreateClientRequest,
    CreateWebhookRequest,
    DeliveryStatusLiteral,
    WebhookDeliveryResponse,
    WebhookSubscriptionResponse,
)
from src.services.integration_auth import create_api_key, revoke_api_key
from src.services.integration_clients import create_client, get_client
from src.services import webhooks as webhook_service
from src.utils.background import spawn
from src.utils.errors import DuplicateClientError, SecretUnavailableError

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/admin/integrations",
    tags=["integrations-admin"],
    dependencies=[Depends(get_current_admin)],
)


def _subscription_response(sub: WebhookSubscription) -> WebhookSubscriptionResponse:
    return WebhookSubscriptionResponse(
        id=str(sub.id),
        client_id=str(sub.client_id),
        name=sub.name,
        target_url=sub.target_url,
        events=list(sub.events or []),
        is_active=sub.is_active,
        created_at=sub.created_at,
    )


def _delivery_response(delivery: WebhookDelivery) -> WebhookDeliveryResponse:
    return WebhookDeliveryResponse(
        id=str(delivery.id),
        subscription_id=str(delivery.subscription_id),
        event_type=delivery.event_type,
        status=delivery.status,
        attempts=delivery.attempts,
        last_error=delivery.last_error,
        last_response_status=delivery.last_response_status,
        next_retry_at=delivery.next_retry_at,
        last_attempt_at=delivery.last_attempt_at,
        created_at=delivery.created_at,
    )


@router.post("/clients", response_model=ClientResponse)
async def create_integration_client(
    payload: CreateClientRequest,
    db: AsyncSession = Depends(get_db),
):
    try:
        client = await create_client(db, payload.name)
    except DuplicateClientError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return ClientResponse(
        id=str(client.id),
        name=client.name,
        is_active=client.is_active,
        created_at=client.created_at,
    )


@router.post("/clients/{client_id}/keys", response_model=ApiKeyCreatedResponse)
async def generate_key(
    client_id: uuid.UUID,
    payload: Optional[CreateApiKeyRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """Mint an API key. The plaintext key is in this response and nowhere else."""
    client = await get_client(db, client_id)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")

    scopes = payload.scopes if payload else []
    created = await create_api_key(db, client, scopes)
    return ApiKeyCreatedResponse(
        key=created["key"],
        id=str(created["id"]),
        client_id=str(created["client_id"]),
        scopes=created["scopes"],
        is_active=created["is_active"],
        created_at=created["created_at"],
    )


@router.delete("/keys/{key_id}", response_model=ApiKeyResponse)
async def revoke_key(
    key_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    record = await revoke_api_key(db, key_id)
    if not record:
        raise HTTPException(status_code=404, detail="API key not found")
    return ApiKeyResponse(
        id=str(record.id),
        client_id=str(record.client_id),
        scopes=list(record.scopes or []),
        is_active=record.is_active,
        last_used_at=record.last_used_at,
    )


@router.post("/webhooks", response_model=WebhookSubscriptionResponse)
async def create_webhook(
    payload: CreateWebhookRequest,
    db: AsyncSession = Depends(get_db),
):
    client = await get_client(db, payload.client_id)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")

    try:
        subscription = await webhook_service.create_subscription(
            db,
            client_id=client.id,
            name=payload.name,
            target_url=payload.url,
            secret=payload.secret,
            events=list(payload.events),
        )
    except SecretUnavailableError as e:
        logger.error("Cannot seal webhook secret: %s", str(e))
        raise HTTPException(status_code=503, detail="Secret encryption is misconfigured")
    return _subscription_response(subscription)


@router.get(
    "/webhooks/{subscription_id}/deliveries",
    response_model=list[WebhookDeliveryResponse],
)
async def list_webhook_deliveries(
    subscription_id: uuid.UUID,
    status: Optional[DeliveryStatusLiteral] = None,
    limit: int = Query(default=50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    subscription = await db.get(WebhookSubscription, subscription_id)
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")

    deliveries = await webhook_service.list_deliveries(db, subscription_id, status, limit)
    return [_delivery_response(d) for d in deliveries]


@router.post("/deliveries/{delivery_id}/redeliver", response_model=WebhookDeliveryResponse)
async def redeliver(
    delivery_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Re-queue a FAILED delivery and attempt it once more in the background."""
    delivery = await webhook_service.reset_for_redelivery(db, delivery_id)
    if not delivery:
        raise HTTPException(status_code=404, detail="Delivery not found")

    # The attempt runs in its own session; the reset must be visible to it
    await db.commit()
    spawn(webhook_service.process_delivery(delivery.id), name=f"webhook_redelivery:{delivery.id}")
    return _delivery_response(delivery)
