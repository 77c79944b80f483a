from fastapi import Depends, Request
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.services.batch_jobs import BatchJobProcessor
from app.services.issuance import IssuanceOrchestrator
from app.services.ledger import LedgerGateway
from app.services.verification import VerificationEngine

# ----------------------------------------------------------------------
# Ledger gateway and job processor are built once in main.py and kept on
# app.state; services are per request since they hold the DB session.
# ----------------------------------------------------------------------
def get_gateway(request: Request) -> LedgerGateway:
    return request.app.state.ledger_gateway

def get_processor(request: Request) -> BatchJobProcessor:
    return request.app.state.batch_processor

def get_orchestrator(
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_gateway),
    processor: BatchJobProcessor = Depends(get_processor),
) -> IssuanceOrchestrator:
    return IssuanceOrchestrator(db, gateway, processor=processor)

def get_verifier(
    db: Session = Depends(get_db),
    gateway: LedgerGateway = Depends(get_gateway),
) -> VerificationEngine:
    return VerificationEngine(db, gateway)
