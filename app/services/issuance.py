# app/services/issuance.py
"""
Issuance state machine.

    NonExistent -> Issued -> {Renewed, Revoked} -> Reactivated -> ...

``ExpiredOnChain`` is reported by the ledger, never written locally. Every
operation validates locally first, then checks the issuer against the ledger,
then writes to the ledger and finally persists. A ledger write is never rolled
back: if the local write fails afterwards the result carries ``persisted=False``.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from app.core import messages
from app.core.config import settings
from app.core.errors import (
    AuthorizationError,
    LedgerError,
    LedgerTransient,
    NotFoundError,
    ValidationError,
)
from app.crud import certificate as crud
from app.db.session import run_in_session
from app.models.certificate import (
    RENEWABLE_STATUSES,
    BatchCertificate,
    CertificateStatus,
    SingleCertificate,
)
from app.schemas.certificate import (
    BatchIssuanceResult,
    FinalizationOptions,
    LedgerActionResult,
    Record,
    SingleCertificateOut,
)
from app.services.batch_jobs import BatchJobProcessor, BatchSubmission
from app.services.ledger import INFINITE_EXPIRATION_EPOCH, LedgerGateway, is_infinite_epoch
from app.services.merkle import commit_records, format_date, single_certificate_hash
from app.services.qr import qr_data_uri, verification_links, verification_payload

logger = logging.getLogger(__name__)

ALLOWED_STATUS_UPDATES = (CertificateStatus.REVOKED, CertificateStatus.REACTIVATED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_epoch(value: Optional[date]) -> int:
    if value is None:
        return INFINITE_EXPIRATION_EPOCH
    return int(datetime.combine(value, time.min, tzinfo=timezone.utc).timestamp())


def single_fields(number: str, holder_name: str, title: str,
                  grant_date: date, expiration_date: Optional[date]) -> Dict[str, str]:
    return {
        "Certificate_Number": number,
        "name": holder_name,
        "courseName": title,
        "Grant_Date": format_date(grant_date),
        "Expiration_Date": format_date(expiration_date),
    }


class IssuanceOrchestrator:
    def __init__(
        self,
        db: Session,
        gateway: LedgerGateway,
        *,
        processor: Optional[BatchJobProcessor] = None,
        clock: Callable[[], datetime] = utcnow,
        guard_days: Optional[int] = None,
        write_retries: Optional[int] = None,
    ):
        self.db = db
        self.gateway = gateway
        self.processor = processor or BatchJobProcessor()
        self.clock = clock
        self.guard_days = settings.RENEWAL_GUARD_DAYS if guard_days is None else guard_days
        self.write_retries = gateway.retries if write_retries is None else write_retries

    # ------------------------------------------------------------ validation

    def _today(self) -> date:
        return self.clock().date()

    def _check_guard(self, expiration: Optional[date]) -> None:
        if expiration is None:
            return
        if expiration < self._today() + timedelta(days=self.guard_days):
            raise ValidationError(messages.INVALID_EXPIRATION.format(days=self.guard_days),
                                  {"expiration_date": expiration.isoformat()})

    def _check_dates(self, grant: date, expiration: Optional[date]) -> None:
        if expiration is not None and grant > expiration:
            raise ValidationError(messages.INVALID_DATES, {"grant_date": grant.isoformat(),
                                                           "expiration_date": expiration.isoformat()})
        self._check_guard(expiration)

    def _locally_expired(self, row) -> bool:
        return row.expiration_date is not None and row.expiration_date < self._today()

    def _epoch_expired(self, epoch: int) -> bool:
        return not is_infinite_epoch(epoch) and epoch < self.clock().timestamp()

    async def _ensure_can_write(self, issuer_id: str) -> None:
        if await self.gateway.is_paused():
            raise AuthorizationError(messages.OPS_RESTRICTED)
        if not await self.gateway.has_role(settings.LEDGER_ISSUER_ROLE, issuer_id):
            raise AuthorizationError(messages.ISSUER_UNAUTHORIZED, {"issuer_id": issuer_id})

    async def _batch_root(self, batch_id: int):
        length = await self.gateway.root_length()
        if not 1 <= batch_id <= length:
            raise ValidationError(messages.INVALID_BATCH, {"batch_id": batch_id, "root_length": length})
        root = await self.gateway.verify_batch_root(batch_id - 1)
        if not root.exists:
            raise ValidationError(messages.INVALID_BATCH, {"batch_id": batch_id})
        return root

    # ---------------------------------------------------------------- writes

    async def _submit(
        self,
        name: str,
        write: Callable[[], Awaitable[str]],
        applied: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> Optional[str]:
        """
        Runs a ledger write, retrying on timeout only. Before each retry the
        ledger is asked whether the previous attempt landed anyway; in that
        case no transaction hash is known and None is returned.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                return await write()
            except LedgerTransient:
                if attempt > self.write_retries:
                    raise
                if applied is not None and await applied():
                    logger.warning("%s: timed out but the ledger already applied it", name)
                    return None
                logger.warning("%s: timed out, retrying (%d/%d)", name, attempt, self.write_retries)
                await self.gateway.backoff()

    async def _db(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await run_in_session(self.db, fn, self.db, *args, **kwargs)

    async def _persist(self, action: str, number: Optional[str], tx_hash: Optional[str],
                       fn: Callable[[], Any]) -> tuple[bool, Optional[str], Any]:
        try:
            return True, None, await run_in_session(self.db, fn)
        except Exception as exc:
            await run_in_session(self.db, self.db.rollback)
            logger.error("%s: ledger accepted tx %s but storing %s failed: %s", action, tx_hash, number, exc)
            return False, messages.DB_FAILED, None

    async def _log(self, **kwargs: Any) -> None:
        try:
            await self._db(crud.log_event, **kwargs)
        except Exception as exc:
            await run_in_session(self.db, self.db.rollback)
            logger.error("could not record %s event: %s", kwargs.get("action"), exc)

    # ---------------------------------------------------------------- single

    async def _known_on_ledger(self, number: str) -> bool:
        verification = await self.gateway.verify_single(number)
        return verification.exists or verification.status != 0

    async def issue_single(self, issuer_id: str, record: Record) -> LedgerActionResult:
        number = record.document_id
        self._check_dates(record.grant_date, record.expiration_date)
        taken = await self._db(crud.existing_numbers, [number])
        if taken:
            raise ValidationError(messages.CERT_ALREADY_ISSUED, {"certificate_numbers": taken})

        await self._ensure_can_write(issuer_id)
        await self._db(crud.reserve_numbers, [number], "single")

        fields = single_fields(number, record.holder_name, record.title, record.grant_date, record.expiration_date)
        cert_hash = single_certificate_hash(fields)
        epoch = to_epoch(record.expiration_date)
        try:
            tx_hash = await self._submit(
                "issue_single",
                lambda: self.gateway.issue_single(number, cert_hash, epoch),
                lambda: self._known_on_ledger(number),
            )
        except LedgerError:
            await self._db(crud.release_numbers, [number])
            raise

        explorer = self.gateway.explorer_link(tx_hash)
        payload = verification_payload(
            certificate_number=number, holder_name=record.holder_name, title=record.title,
            grant_date=record.grant_date, expiration_date=record.expiration_date, explorer_link=explorer,
        )
        links = verification_links(payload)

        def store() -> SingleCertificate:
            crud.save_short_url(self.db, number=number, issuer_id=issuer_id, url=links["deep_link"])
            return crud.create_single(self.db, {
                "certificate_number": number,
                "issuer_id": issuer_id,
                "holder_name": record.holder_name,
                "title": record.title,
                "grant_date": record.grant_date,
                "expiration_date": record.expiration_date,
                "certificate_hash": cert_hash,
                "transaction_hash": tx_hash,
                "status": int(CertificateStatus.ISSUED),
            })

        persisted, warning, row = await self._persist("issue_single", number, tx_hash, store)
        if persisted:
            await self._log(issuer_id=issuer_id, action="issued", certificate_number=number,
                            status=CertificateStatus.ISSUED, transaction_hash=tx_hash)
        logger.info("issued certificate %s (tx %s)", number, tx_hash)
        return LedgerActionResult(
            message=messages.CERT_ISSUED,
            certificate_number=number,
            transaction_hash=tx_hash,
            explorer_link=explorer,
            status=int(CertificateStatus.ISSUED),
            expiration_date=record.expiration_date,
            persisted=persisted,
            warning=warning,
            certificate=SingleCertificateOut.model_validate(row).model_dump(mode="json") if row else None,
            qr_code=qr_data_uri(links["qr_data"]),
        )

    async def renew(self, issuer_id: str, number: str, expiration_date: Optional[date]) -> LedgerActionResult:
        kind, row = await self._db(crud.find_certificate, number)
        if row is None:
            raise NotFoundError(messages.CERT_NOT_FOUND, {"certificate_number": number})
        if kind == "batch":
            return await self.promote(issuer_id, row, expiration_date)

        if row.status == CertificateStatus.REVOKED:
            raise ValidationError(messages.NOT_POSSIBLE_ON_REVOKED, {"certificate_number": number})
        if row.status not in RENEWABLE_STATUSES:
            raise ValidationError(messages.BAD_RENEW_STATUS, {"status": row.status})
        if row.expiration_date is None:
            raise ValidationError(messages.CERT_NO_EXPIRATION, {"certificate_number": number})
        if self._locally_expired(row):
            raise ValidationError(messages.CERT_EXPIRED, {"certificate_number": number})
        if expiration_date is not None and expiration_date <= row.expiration_date:
            raise ValidationError(messages.EXPIRATION_MUST_BE_GREATER,
                                  {"current": row.expiration_date.isoformat(),
                                   "requested": expiration_date.isoformat()})
        self._check_guard(expiration_date)

        await self._ensure_can_write(issuer_id)
        chain_status = await self.gateway.single_status(number)
        if chain_status == CertificateStatus.REVOKED:
            raise ValidationError(messages.NOT_POSSIBLE_ON_REVOKED, {"certificate_number": number})
        verification = await self.gateway.verify_single(number)
        if not verification.exists:
            if verification.status == CertificateStatus.EXPIRED_ON_CHAIN:
                raise ValidationError(messages.CERT_EXPIRED, {"certificate_number": number})
            raise ValidationError(messages.BAD_RENEW_STATUS, {"status": verification.status})

        cert_hash = single_certificate_hash(
            single_fields(number, row.holder_name, row.title, row.grant_date, expiration_date))
        epoch = to_epoch(expiration_date)

        async def applied() -> bool:
            return (await self.gateway.verify_single(number)).expiration_epoch == epoch

        tx_hash = await self._submit("renew", lambda: self.gateway.renew_single(number, cert_hash, epoch), applied)

        persisted, warning, row = await self._persist("renew", number, tx_hash, lambda: crud.single_certificates.update(
            self.db, row, {
                "certificate_hash": cert_hash,
                "expiration_date": expiration_date,
                "transaction_hash": tx_hash or row.transaction_hash,
                "status": int(CertificateStatus.RENEWED),
                "issue_date": utcnow(),
            }))
        if persisted:
            await self._log(issuer_id=issuer_id, action="renewed", certificate_number=number,
                            status=CertificateStatus.RENEWED, transaction_hash=tx_hash,
                            details={"expiration_date": format_date(expiration_date)})
        return LedgerActionResult(
            message=messages.CERT_RENEWED,
            certificate_number=number,
            transaction_hash=tx_hash,
            explorer_link=self.gateway.explorer_link(tx_hash),
            status=int(CertificateStatus.RENEWED),
            expiration_date=expiration_date,
            persisted=persisted,
            warning=warning,
            certificate=SingleCertificateOut.model_validate(row).model_dump(mode="json") if row else None,
        )

    async def promote(self, issuer_id: str, member: BatchCertificate,
                      expiration_date: Optional[date]) -> LedgerActionResult:
        """
        Renews a batch member by re-issuing it on the ledger as a single
        certificate. Locally the batch row becomes a single row in one
        transaction; later renewals take the single path.
        """
        number = member.certificate_number
        if member.status == CertificateStatus.REVOKED:
            raise ValidationError(messages.NOT_POSSIBLE_ON_REVOKED, {"certificate_number": number})
        if member.status not in RENEWABLE_STATUSES:
            raise ValidationError(messages.BAD_RENEW_STATUS, {"status": member.status})
        if self._locally_expired(member):
            raise ValidationError(messages.CERT_EXPIRED, {"certificate_number": number})
        if expiration_date is None and member.expiration_date is None:
            raise ValidationError(messages.EXPIRATION_MUST_BE_GREATER, {"certificate_number": number})
        if (member.expiration_date is not None and expiration_date is not None
                and expiration_date <= member.expiration_date):
            raise ValidationError(messages.EXPIRATION_MUST_BE_GREATER,
                                  {"current": member.expiration_date.isoformat(),
                                   "requested": expiration_date.isoformat()})
        self._check_guard(expiration_date)

        await self._ensure_can_write(issuer_id)
        root = await self.gateway.verify_batch_root(member.batch_id - 1)
        if not root.exists:
            raise ValidationError(messages.INVALID_BATCH, {"batch_id": member.batch_id})
        if root.status == CertificateStatus.REVOKED:
            raise ValidationError(messages.NOT_POSSIBLE_ON_REVOKED, {"batch_id": member.batch_id})
        if self._epoch_expired(root.expiration_epoch):
            raise ValidationError(messages.CERT_EXPIRED, {"certificate_number": number})
        if member.proof and await self.gateway.verify_batch_alt_key(member.encoded_proof) == CertificateStatus.REVOKED:
            raise ValidationError(messages.NOT_POSSIBLE_ON_REVOKED, {"certificate_number": number})

        cert_hash = single_certificate_hash(
            single_fields(number, member.holder_name, member.title, member.grant_date, expiration_date))
        epoch = to_epoch(expiration_date)
        tx_hash = await self._submit(
            "promote",
            lambda: self.gateway.issue_single(number, cert_hash, epoch),
            lambda: self._known_on_ledger(number),
        )

        batch_id = member.batch_id
        persisted, warning, row = await self._persist("promote", number, tx_hash, lambda: crud.promote_member(
            self.db, member, {
                "certificate_hash": cert_hash,
                "expiration_date": expiration_date,
                "transaction_hash": tx_hash,
                "status": int(CertificateStatus.RENEWED),
            }))
        if persisted:
            await self._log(issuer_id=issuer_id, action="promoted", certificate_number=number, batch_id=batch_id,
                            status=CertificateStatus.RENEWED, transaction_hash=tx_hash,
                            details={"expiration_date": format_date(expiration_date)})
        logger.info("batch %s member %s re-issued as single certificate (tx %s)", batch_id, number, tx_hash)
        return LedgerActionResult(
            message=messages.CERT_PROMOTED,
            certificate_number=number,
            batch_id=batch_id,
            transaction_hash=tx_hash,
            explorer_link=self.gateway.explorer_link(tx_hash),
            status=int(CertificateStatus.RENEWED),
            expiration_date=expiration_date,
            persisted=persisted,
            warning=warning,
            certificate=SingleCertificateOut.model_validate(row).model_dump(mode="json") if row else None,
        )

    async def update_status(self, issuer_id: str, number: str, status: int) -> LedgerActionResult:
        if status not in ALLOWED_STATUS_UPDATES:
            raise ValidationError(messages.STATUS_NOT_ALLOWED, {"status": status})
        status = CertificateStatus(status)
        kind, row = await self._db(crud.find_certificate, number)
        if row is None:
            raise NotFoundError(messages.CERT_NOT_FOUND, {"certificate_number": number})
        if self._locally_expired(row):
            raise ValidationError(messages.NOT_POSSIBLE_ON_REVOKED, {"certificate_number": number})
        if row.status == status:
            raise ValidationError(messages.STATUS_ALREADY_EXISTS, {"status": int(status)})
        if status == CertificateStatus.REACTIVATED and row.status != CertificateStatus.REVOKED:
            raise ValidationError(messages.REACTIVATION_NOT_POSSIBLE, {"status": row.status})

        await self._ensure_can_write(issuer_id)
        if kind == "single":
            verification = await self.gateway.verify_single(number)
            if verification.status == 0:
                raise NotFoundError(messages.CERT_NOT_FOUND, {"certificate_number": number})
            if verification.status == CertificateStatus.EXPIRED_ON_CHAIN:
                raise ValidationError(messages.NOT_POSSIBLE_ON_REVOKED, {"certificate_number": number})
            if await self.gateway.single_status(number) == status:
                raise ValidationError(messages.STATUS_ALREADY_EXISTS, {"status": int(status)})

            async def applied() -> bool:
                return await self.gateway.single_status(number) == status

            tx_hash = await self._submit("update_status",
                                         lambda: self.gateway.update_single_status(number, status), applied)
        else:
            membership = await self.gateway.verify_batch_membership(row.batch_id - 1, row.certificate_hash,
                                                                    row.proof)
            if not membership.exists:
                raise NotFoundError(messages.CERT_NOT_FOUND, {"certificate_number": number})
            batch_index = row.batch_id - 1
            if not row.proof:
                # sole member of its batch: the empty proof's alternate key is shared by
                # every such batch, so the status goes on the root
                if self._epoch_expired(membership.expiration_epoch):
                    raise ValidationError(messages.NOT_POSSIBLE_ON_REVOKED, {"certificate_number": number})
                if membership.status == status:
                    raise ValidationError(messages.STATUS_ALREADY_EXISTS, {"status": int(status)})

                async def applied() -> bool:
                    return (await self.gateway.verify_batch_root(batch_index)).status == status

                tx_hash = await self._submit("update_status",
                                             lambda: self.gateway.update_batch_status(batch_index, status), applied)
            else:
                alt_status = await self.gateway.verify_batch_alt_key(row.encoded_proof)
                if alt_status == CertificateStatus.EXPIRED_ON_CHAIN:
                    raise ValidationError(messages.NOT_POSSIBLE_ON_REVOKED, {"certificate_number": number})

                async def applied() -> bool:
                    return await self.gateway.verify_batch_alt_key(row.encoded_proof) == status

                tx_hash = await self._submit("update_status",
                                             lambda: self.gateway.update_batch_member_status(row.encoded_proof,
                                                                                             status),
                                             applied)

        batch_id = getattr(row, "batch_id", None)
        persisted, warning, _ = await self._persist("update_status", number, tx_hash, lambda: (
            crud.single_certificates if kind == "single" else crud.batch_certificates
        ).update(self.db, row, {"status": int(status)}))
        if persisted:
            await self._log(issuer_id=issuer_id, action="status_updated", certificate_number=number, batch_id=batch_id,
                            status=status, transaction_hash=tx_hash)
        logger.info("certificate %s status -> %s (tx %s)", number, status.name, tx_hash)
        return LedgerActionResult(
            message=messages.STATUS_UPDATED,
            certificate_number=number,
            batch_id=batch_id,
            transaction_hash=tx_hash,
            explorer_link=self.gateway.explorer_link(tx_hash),
            status=int(status),
            persisted=persisted,
            warning=warning,
        )

    # ----------------------------------------------------------------- batch

    async def issue_batch(
        self,
        issuer_id: str,
        records: Sequence[Record],
        artifacts: Mapping[str, str],
        *,
        expiration_date: Optional[date] = None,
        options: Optional[FinalizationOptions] = None,
    ) -> BatchIssuanceResult:
        if not records:
            raise ValidationError(messages.EMPTY_BATCH)
        numbers = [r.document_id for r in records]
        duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
        if duplicates:
            raise ValidationError(messages.DUPLICATE_IN_BATCH, {"certificate_numbers": duplicates})
        for record in records:
            self._check_dates(record.grant_date, record.expiration_date)
        self._check_guard(expiration_date)
        taken = await self._db(crud.existing_numbers, numbers)
        if taken:
            raise ValidationError(messages.CERT_ALREADY_ISSUED, {"certificate_numbers": taken})

        await self._ensure_can_write(issuer_id)
        await self._db(crud.reserve_numbers, numbers, "batch")

        commitment = commit_records(records)
        epoch = to_epoch(expiration_date)
        try:
            # the batch id is the root's position, so nothing else may append in between
            async with self.gateway.root_append_lock():
                length_before = await self.gateway.root_length()

                async def applied() -> bool:
                    return await self.gateway.root_length() > length_before

                tx_hash = await self._submit("issue_batch",
                                             lambda: self.gateway.issue_batch_root(commitment.root_hex, epoch),
                                             applied)
        except LedgerError:
            await self._db(crud.release_numbers, numbers)
            raise

        # roots are appended, so this batch sits right after the previous length
        batch_id = length_before + 1
        explorer = self.gateway.explorer_link(tx_hash)
        logger.info("batch %s: root %s on ledger (tx %s), %d records",
                    batch_id, commitment.root_hex, tx_hash, len(records))
        await self._log(issuer_id=issuer_id, action="batch_issued", batch_id=batch_id,
                        status=CertificateStatus.ISSUED, transaction_hash=tx_hash,
                        details={"root": commitment.root_hex, "size": len(records)})

        submission = BatchSubmission(batch_id=batch_id, issuer_id=issuer_id, transaction_hash=tx_hash,
                                     explorer_link=explorer, commitment=commitment, records=list(records))
        report = await self.processor.finalize(self.db, submission, artifacts, options or FinalizationOptions())
        reserved = set(numbers)
        failed = [i.document_id for i in report.failed if i.document_id in reserved]
        if failed:
            # unpublished members can be issued again
            await self._db(crud.release_numbers, failed)
            logger.warning("batch %s: released %d unpublished numbers", batch_id, len(failed))

        return BatchIssuanceResult(
            message=messages.BATCH_ISSUED if report.ok else messages.BATCH_PARTIAL,
            batch_id=batch_id,
            transaction_hash=tx_hash,
            explorer_link=explorer,
            status=int(CertificateStatus.ISSUED),
            expiration_date=expiration_date,
            persisted=report.ok,
            warning=None if report.ok else messages.BATCH_PARTIAL,
            root=commitment.root_hex,
            report=report,
        )

    async def renew_batch(self, issuer_id: str, batch_id: int, expiration_date: Optional[date]) -> LedgerActionResult:
        if expiration_date is None:
            raise ValidationError(messages.BATCH_NO_EXPIRATION, {"batch_id": batch_id})
        self._check_guard(expiration_date)

        await self._ensure_can_write(issuer_id)
        root = await self._batch_root(batch_id)
        if is_infinite_epoch(root.expiration_epoch):
            raise ValidationError(messages.BATCH_NO_EXPIRATION, {"batch_id": batch_id})
        if root.status == CertificateStatus.REVOKED:
            raise ValidationError(messages.BATCH_REVOKED, {"batch_id": batch_id})
        if self._epoch_expired(root.expiration_epoch):
            raise ValidationError(messages.BATCH_EXPIRED, {"batch_id": batch_id})
        epoch = to_epoch(expiration_date)
        if epoch <= root.expiration_epoch:
            raise ValidationError(messages.EXPIRATION_MUST_BE_GREATER, {"batch_id": batch_id})

        async def applied() -> bool:
            return (await self.gateway.verify_batch_root(batch_id - 1)).expiration_epoch == epoch

        tx_hash = await self._submit("renew_batch", lambda: self.gateway.renew_batch_root(batch_id - 1, epoch),
                                     applied)
        persisted, warning, updated = await self._persist("renew_batch", f"batch {batch_id}", tx_hash, lambda: (
            crud.update_batch_members(self.db, batch_id, {
                "expiration_date": expiration_date,
                "status": int(CertificateStatus.RENEWED),
                "transaction_hash": tx_hash,
            })))
        if persisted:
            await self._log(issuer_id=issuer_id, action="batch_renewed", batch_id=batch_id,
                            status=CertificateStatus.RENEWED, transaction_hash=tx_hash,
                            details={"expiration_date": format_date(expiration_date), "rows": updated})
        return LedgerActionResult(
            message=messages.BATCH_RENEWED,
            batch_id=batch_id,
            transaction_hash=tx_hash,
            explorer_link=self.gateway.explorer_link(tx_hash),
            status=int(CertificateStatus.RENEWED),
            expiration_date=expiration_date,
            persisted=persisted,
            warning=warning,
        )

    async def update_batch_status(self, issuer_id: str, batch_id: int, status: int) -> LedgerActionResult:
        if status not in ALLOWED_STATUS_UPDATES:
            raise ValidationError(messages.STATUS_NOT_ALLOWED, {"status": status})
        status = CertificateStatus(status)

        await self._ensure_can_write(issuer_id)
        root = await self._batch_root(batch_id)
        if is_infinite_epoch(root.expiration_epoch):
            raise ValidationError(messages.BATCH_NO_EXPIRATION, {"batch_id": batch_id})
        if self._epoch_expired(root.expiration_epoch):
            raise ValidationError(messages.BATCH_EXPIRED, {"batch_id": batch_id})
        if root.status == status:
            raise ValidationError(messages.STATUS_ALREADY_EXISTS, {"status": int(status)})
        if status == CertificateStatus.REACTIVATED and root.status != CertificateStatus.REVOKED:
            raise ValidationError(messages.REACTIVATION_NOT_POSSIBLE, {"status": root.status})

        async def applied() -> bool:
            return (await self.gateway.verify_batch_root(batch_id - 1)).status == status

        tx_hash = await self._submit("update_batch_status",
                                     lambda: self.gateway.update_batch_status(batch_id - 1, status), applied)
        persisted, warning, updated = await self._persist("update_batch_status", f"batch {batch_id}", tx_hash, lambda: (
            crud.update_batch_members(self.db, batch_id, {"status": int(status)})))
        if persisted:
            await self._log(issuer_id=issuer_id, action="batch_status_updated", batch_id=batch_id, status=status,
                            transaction_hash=tx_hash, details={"rows": updated})
        return LedgerActionResult(
            message=messages.BATCH_STATUS_UPDATED,
            batch_id=batch_id,
            transaction_hash=tx_hash,
            explorer_link=self.gateway.explorer_link(tx_hash),
            status=int(status),
            persisted=persisted,
            warning=warning,
        )
