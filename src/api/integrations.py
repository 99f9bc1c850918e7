"""
Integration ingestion API - external systems push issues that become tickets.
"""
import logging
import uuid
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.auth import get_api_client
from src.database import get_db
from src.schemas.integrations import CreateIssueRequest, IssueResponse, IssueResultData
from src.services.integration_auth import ApiKeyIdentity, SCOPE_ISSUES_WRITE
from src.services.integrations import process_inbound_issue
from src.utils.errors import LedgerInconsistencyError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/integrations", tags=["integrations"])


@router.post("/issues", response_model=IssueResponse)
async def create_issue(
    payload: CreateIssueRequest,
    db: AsyncSession = Depends(get_db),
    identity: Optional[ApiKeyIdentity] = Depends(get_api_client),
):
    """
    Ingest an issue. Idempotent per (client, source, external_id): resubmissions
    return the original ticket with duplicate=true.
    """
    if identity is not None and not identity.has_scope(SCOPE_ISSUES_WRITE):
        raise HTTPException(status_code=403, detail=f"API key lacks scope {SCOPE_ISSUES_WRITE}")

    client_id = identity.client_id if identity else None

    try:
        result = await process_inbound_issue(db, client_id, payload)
    except LedgerInconsistencyError as e:
        logger.error("Ingestion aborted: %s", str(e))
        raise HTTPException(
            status_code=503,
            detail="Issue could not be recorded, please retry",
            headers={"Retry-After": "1"},
        )

    return IssueResponse(
        request_id=str(uuid.uuid4()),
        data=IssueResultData(ticket_id=str(result.ticket_id), duplicate=result.duplicate),
    )
