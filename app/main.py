import logging
import os

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.exc import IntegrityError
from starlette.requests import Request

from app.api.v1.router import api_router
from app.core import messages
from app.core.config import settings
from app.core.errors import AppError
from app.core.logging import setup_logging
from app.db.bootstrap import run_migrations
from app.services.batch_jobs import BatchJobProcessor
from app.services.ledger import LedgerGateway
from app.services.ledger_memory import InMemoryLedgerClient

setup_logging()
logger = logging.getLogger("app")

def build_gateway() -> LedgerGateway:
    # in-process ledger; a chain binding implementing LedgerClient replaces it in deployment
    client = InMemoryLedgerClient()
    for issuer in settings.DEV_ISSUER_IDS:
        client.grant_role(settings.LEDGER_ISSUER_ROLE, issuer)
    return LedgerGateway(client)

api = FastAPI(
    title="Certificate Issuance & Verification API",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    swagger_ui_parameters={"displayRequestDuration": True},
)
api.state.ledger_gateway = build_gateway()
api.state.batch_processor = BatchJobProcessor()

api.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # restrict to known origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# /metrics (Prometheus)
Instrumentator().instrument(api).expose(api, include_in_schema=False, should_gzip=True)

api.include_router(api_router, prefix="/api/v1")

# published artifacts: /static/certificates/<file>
STATIC_DIR = os.path.join(settings.DATA_DIR, "public")
os.makedirs(STATIC_DIR, exist_ok=True)
api.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

@api.get("/healthz", tags=["health"])
def healthz():
    return {"status": "ok"}

@api.on_event("startup")
def startup():
    run_migrations()

@api.exception_handler(AppError)
def handle_app_error(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

@api.exception_handler(IntegrityError)
def handle_integrity_error(request: Request, exc: IntegrityError):
    return JSONResponse(
        status_code=409,
        content={"code": "UNIQUE_VIOLATION", "message": messages.CERT_ALREADY_ISSUED,
                 "details": str(getattr(exc, "orig", exc))},
    )

@api.exception_handler(Exception)
def handle_unexpected(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"code": "INTERNAL_ERROR", "message": messages.INTERNAL_ERROR, "details": str(exc)},
    )
