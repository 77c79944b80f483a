# app/services/verification.py
"""
Read-only verification.

The local store is consulted first (single table, then batch table), then the
ledger. A ledger failure never yields VALID: the result is UNKNOWN and carries
the classified error in ``details``.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from app.core import messages
from app.core.config import settings
from app.core.crypto import read_deep_link
from app.core.errors import LedgerError
from app.crud import certificate as crud
from app.db.session import run_in_session
from app.models.certificate import BatchCertificate, CertificateStatus, SingleCertificate
from app.schemas.certificate import (
    BatchCertificateOut,
    SingleCertificateOut,
    TransactionStatus,
    VerificationOutcome,
    VerificationResult,
)
from app.services.ledger import LedgerGateway, is_infinite_epoch
from app.services.merkle import DATE_FORMAT, INFINITE_EXPIRATION

logger = logging.getLogger(__name__)

# every Fernet token starts with the base64 of its version byte and timestamp
FERNET_PREFIX = "gAAAAA"

OUTCOME_MESSAGES = {
    VerificationOutcome.VALID: messages.CERT_VALID,
    VerificationOutcome.EXPIRED: messages.CERT_EXPIRED,
    VerificationOutcome.REVOKED: messages.CERT_REVOKED,
    VerificationOutcome.UNKNOWN: messages.CERT_NOT_CONFIRMED,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _result(outcome: VerificationOutcome, kind: str, **kwargs: Any) -> VerificationResult:
    kwargs.setdefault("message", OUTCOME_MESSAGES[outcome])
    return VerificationResult(outcome=outcome, kind=kind, **kwargs)


class VerificationEngine:
    def __init__(self, db: Session, gateway: LedgerGateway, *, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.gateway = gateway
        self.clock = clock

    @staticmethod
    def resolve(identifier: str) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
        """Certificate number plus the decrypted payload when a deep link was given."""
        text = (identifier or "").strip()
        base = settings.SHORT_URL_BASE
        if base and text.startswith(base):
            return text[len(base):] or None, None
        if "?q=" in text or text.startswith(FERNET_PREFIX):
            payload = read_deep_link(text)
            if payload is None:
                return None, None
            return payload.get("Certificate_Number"), payload
        return text or None, None

    async def verify(self, identifier: str) -> VerificationResult:
        number, payload = self.resolve(identifier)
        kind, row = None, None
        if number:
            kind, row = await run_in_session(self.db, crud.find_certificate, self.db, number)
        if row is None:
            return self._from_payload(number, payload)

        try:
            if kind == "single":
                result = await self._verify_single(row)
            else:
                result = await self._verify_batch(row)
        except LedgerError as exc:
            logger.warning("verification of %s fell back to unknown: %s", number, exc.message)
            result = _result(VerificationOutcome.UNKNOWN, kind, details=exc.to_dict())

        result.certificate_number = row.certificate_number
        result.certificate = self._describe(row)
        result.artifact_url = row.artifact_url or await self._short_url(row.certificate_number)
        result.explorer_link = self.gateway.explorer_link(row.transaction_hash)
        if row.status != CertificateStatus.VALIDATED_NO_CHAIN_CHECK:
            result.transaction_status = await self.gateway.transaction_status(row.transaction_hash)
        return result

    # ---------------------------------------------------------------- single

    async def _verify_single(self, row: SingleCertificate) -> VerificationResult:
        if row.status == CertificateStatus.REVOKED:
            return _result(VerificationOutcome.REVOKED, "single")
        if row.status == CertificateStatus.VALIDATED_NO_CHAIN_CHECK:
            return _result(VerificationOutcome.VALID, "single")

        verification = await self.gateway.verify_single(row.certificate_number)
        chain_status = await self.gateway.single_status(row.certificate_number)
        infinite = row.expiration_date is None
        if CertificateStatus.REVOKED in (chain_status, verification.status):
            return _result(VerificationOutcome.REVOKED, "single")
        if verification.status == CertificateStatus.EXPIRED_ON_CHAIN and not infinite:
            return _result(VerificationOutcome.EXPIRED, "single")
        if verification.exists:
            return _result(VerificationOutcome.VALID, "single")
        return _result(VerificationOutcome.UNKNOWN, "single",
                       details={"exists": verification.exists, "status": verification.status})

    # ----------------------------------------------------------------- batch

    async def _verify_batch(self, row: BatchCertificate) -> VerificationResult:
        if row.status == CertificateStatus.REVOKED:
            return _result(VerificationOutcome.REVOKED, "batch")
        if row.status == CertificateStatus.VALIDATED_NO_CHAIN_CHECK:
            return _result(VerificationOutcome.VALID, "batch")

        # membership first: a ledger may only index the alternate key after a proof checked out
        membership = await self.gateway.verify_batch_membership(row.batch_id - 1, row.certificate_hash, row.proof)
        if not row.proof:
            return self._sole_member(membership)
        alt_status = await self.gateway.verify_batch_alt_key(row.encoded_proof)
        infinite = row.expiration_date is None
        if alt_status == CertificateStatus.REVOKED or (membership.exists and membership.status == CertificateStatus.REVOKED):
            return _result(VerificationOutcome.REVOKED, "batch")
        if alt_status == CertificateStatus.EXPIRED_ON_CHAIN and not infinite:
            return _result(VerificationOutcome.EXPIRED, "batch")
        if membership.exists and alt_status != 0:
            return _result(VerificationOutcome.VALID, "batch")
        # the two lookups disagree
        return _result(VerificationOutcome.UNKNOWN, "batch",
                       details={"membership": membership.exists, "alt_status": alt_status})

    def _sole_member(self, membership) -> VerificationResult:
        """One-record batch: the root carries the status, the shared empty-proof key is ignored."""
        if not membership.exists:
            return _result(VerificationOutcome.UNKNOWN, "batch", details={"membership": False})
        if membership.status == CertificateStatus.REVOKED:
            return _result(VerificationOutcome.REVOKED, "batch")
        epoch = membership.expiration_epoch
        if not is_infinite_epoch(epoch) and epoch < self.clock().timestamp():
            return _result(VerificationOutcome.EXPIRED, "batch")
        return _result(VerificationOutcome.VALID, "batch")

    # --------------------------------------------------------------- payload

    def _from_payload(self, number: Optional[str], payload: Optional[Dict[str, Any]]) -> VerificationResult:
        if payload is None:
            return _result(VerificationOutcome.UNKNOWN, "none", message=messages.CERT_NOT_FOUND,
                           certificate_number=number)
        outcome = VerificationOutcome.VALID
        expiration = str(payload.get("Expiration_Date") or INFINITE_EXPIRATION)
        if expiration != INFINITE_EXPIRATION:
            try:
                if datetime.strptime(expiration, DATE_FORMAT).date() < self.clock().date():
                    outcome = VerificationOutcome.EXPIRED
            except ValueError:
                outcome = VerificationOutcome.UNKNOWN
        return _result(outcome, "payload", certificate_number=number, certificate=payload,
                       caveat=messages.PAYLOAD_ONLY, explorer_link=payload.get("polygonLink") or None)

    # --------------------------------------------------------------- helpers

    def _describe(self, row) -> Dict[str, Any]:
        schema = SingleCertificateOut if isinstance(row, SingleCertificate) else BatchCertificateOut
        return schema.model_validate(row).model_dump(mode="json")

    async def _short_url(self, number: str) -> Optional[str]:
        short = await run_in_session(self.db, crud.get_short_url, self.db, number)
        return short.url if short else None
