# app/core/errors.py
"""
Error taxonomy shared by services and the HTTP layer.

Every error carries an HTTP status code, a short code, a human readable
message and, when the provider reported one, the raw reason in ``details``.
Ledger errors are classified once, in app.services.ledger, and propagate
unchanged from there.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class AppError(Exception):
    status_code: int = 400
    code: str = "ERROR"

    def __init__(self, message: str, details: Any = None, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(AppError):
    """Bad or duplicate input, raised before any ledger call."""
    status_code = 422
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class AuthorizationError(AppError):
    """Issuer lacks the on-chain role or the contract is paused."""
    status_code = 403
    code = "UNAUTHORIZED"


class LedgerError(AppError):
    status_code = 502
    code = "LEDGER_ERROR"


class LedgerRejection(LedgerError):
    """The ledger reverted with a structured reason. The reason is the message."""
    status_code = 400
    code = "LEDGER_REJECTED"

    def __init__(self, reason: str, details: Any = None):
        super().__init__(reason, details)
        self.reason = reason


class LedgerTransient(LedgerError):
    status_code = 503
    code = "LEDGER_TIMEOUT"


class LedgerTerminal(LedgerError):
    status_code = 409
    code = "LEDGER_TERMINAL"


class LedgerFailure(LedgerError):
    code = "LEDGER_FAILED"


class PersistenceError(AppError):
    """Local store write failed after the ledger accepted the transaction."""
    status_code = 500
    code = "PERSISTENCE_ERROR"


class DataIntegrityError(AppError):
    status_code = 422
    code = "DATA_INTEGRITY_ERROR"


class ArtifactError(AppError):
    """QR / PDF / raster step failed for one document."""
    status_code = 500
    code = "ARTIFACT_ERROR"
