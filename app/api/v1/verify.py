# app/api/v1/verify.py
# Public verification: no issuer needed.
from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_verifier
from app.schemas.certificate import VerificationResult
from app.services.verification import VerificationEngine

router = APIRouter()

@router.get("", response_model=VerificationResult)
async def verify_link(q: str = Query(..., min_length=1), verifier: VerificationEngine = Depends(get_verifier)):
    # target of the encrypted deep link: /verify?q=<token>
    return await verifier.verify(q)

@router.get("/{identifier:path}", response_model=VerificationResult)
async def verify(identifier: str, verifier: VerificationEngine = Depends(get_verifier)):
    if not identifier.strip():
        raise HTTPException(status_code=422, detail="Empty identifier")
    return await verifier.verify(identifier)
