# app/api/v1/certificates.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Path

from app.api.deps import get_orchestrator
from app.schemas.certificate import (
    BatchIssuanceResult,
    BatchIssueRequest,
    IssueRequest,
    LedgerActionResult,
    RenewRequest,
    StatusUpdateRequest,
)
from app.services.issuance import IssuanceOrchestrator

router = APIRouter()
batch_router = APIRouter()

# --------------------------- issue ---------------------------

@router.post("", response_model=LedgerActionResult, status_code=201)
async def issue_one(body: IssueRequest, orchestrator: IssuanceOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.issue_single(body.issuer_id, body.record)

@router.post("/batch", response_model=BatchIssuanceResult, status_code=201)
async def issue_batch(body: BatchIssueRequest, orchestrator: IssuanceOrchestrator = Depends(get_orchestrator)):
    return await orchestrator.issue_batch(
        body.issuer_id, body.records, body.artifacts,
        expiration_date=body.expiration_date, options=body.options,
    )

# ------------------------- lifecycle -------------------------

@router.post("/{number}/renew", response_model=LedgerActionResult)
async def renew(
    body: RenewRequest,
    number: str = Path(..., min_length=1, max_length=64),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    # batch members are re-issued as single certificates
    return await orchestrator.renew(body.issuer_id, number, body.expiration_date)

@router.post("/{number}/status", response_model=LedgerActionResult)
async def update_status(
    body: StatusUpdateRequest,
    number: str = Path(..., min_length=1, max_length=64),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.update_status(body.issuer_id, number, body.status)

# -------------------------- batches --------------------------

@batch_router.post("/{batch_id}/renew", response_model=LedgerActionResult)
async def renew_batch(
    body: RenewRequest,
    batch_id: int = Path(..., ge=1),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.renew_batch(body.issuer_id, batch_id, body.expiration_date)

@batch_router.post("/{batch_id}/status", response_model=LedgerActionResult)
async def update_batch_status(
    body: StatusUpdateRequest,
    batch_id: int = Path(..., ge=1),
    orchestrator: IssuanceOrchestrator = Depends(get_orchestrator),
):
    return await orchestrator.update_batch_status(body.issuer_id, batch_id, body.status)
