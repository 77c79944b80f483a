# app/api/v1/router.py
from fastapi import APIRouter
from app.api.v1 import certificates, verify

api_router = APIRouter()

api_router.include_router(certificates.router,       prefix="/certificates", tags=["certificates"])
api_router.include_router(certificates.batch_router, prefix="/batches",      tags=["batches"])
api_router.include_router(verify.router,             prefix="/verify",       tags=["verify"])
