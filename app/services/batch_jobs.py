# app/services/batch_jobs.py
"""
Per-document finalization of a batch whose root is already on the ledger.

One task per source PDF runs concurrently; the join waits for all of them and
reports one outcome per document instead of aborting on the first failure.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from app.core import messages
from app.core.config import settings
from app.core.errors import AppError, ArtifactError, DataIntegrityError, PersistenceError
from app.crud import certificate as crud
from app.db.session import run_in_session
from app.models.certificate import CertificateStatus
from app.schemas.certificate import (
    BatchFinalizationReport,
    FinalizationOptions,
    FinalizationOutcome,
    JobState,
    Record,
)
from app.services import pdf
from app.services.merkle import MerkleCommitment, encode_proof, record_digest, to_hex
from app.services.qr import qr_png, verification_links, verification_payload

logger = logging.getLogger(__name__)

Publisher = Callable[[str, str], str]


@dataclass
class FinalizationJob:
    document_id: str
    source_path: str
    proof_index: Optional[int]
    state: JobState = JobState.queued


@dataclass(frozen=True)
class BatchSubmission:
    """What the ledger accepted: the commitment and the records in proof-index order."""
    batch_id: int
    issuer_id: str
    transaction_hash: Optional[str]
    explorer_link: Optional[str]
    commitment: MerkleCommitment
    records: Sequence[Record]


def _error_dict(exc: BaseException) -> Dict[str, Any]:
    if isinstance(exc, AppError):
        return exc.to_dict()
    return {"code": "INTERNAL_ERROR", "message": messages.INTERNAL_ERROR, "details": str(exc)}


class BatchJobProcessor:
    def __init__(
        self,
        *,
        publisher: Publisher = pdf.publish_file,
        raster_retries: int = 3,
        retry_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.publisher = publisher
        self.raster_retries = raster_retries
        self.retry_delay = settings.LEDGER_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay
        self._sleep = sleep

    async def finalize(
        self,
        db: Session,
        submission: BatchSubmission,
        artifacts: Mapping[str, str],
        options: FinalizationOptions,
    ) -> BatchFinalizationReport:
        index_of = {r.document_id: i for i, r in enumerate(submission.records)}
        jobs = [FinalizationJob(document_id=doc_id, source_path=path, proof_index=index_of.get(doc_id))
                for doc_id, path in artifacts.items()]

        results = await asyncio.gather(
            *(self._run(db, submission, job, options) for job in jobs), return_exceptions=True
        )

        items: List[FinalizationOutcome] = []
        for job, result in zip(jobs, results):
            if isinstance(result, BaseException):
                job.state = JobState.failed
                logger.error("batch %s: document %s failed: %s", submission.batch_id, job.document_id, result)
                items.append(FinalizationOutcome(document_id=job.document_id, state=job.state,
                                                 proof_index=job.proof_index, error=_error_dict(result)))
            else:
                items.append(result)

        # records the caller sent no document for
        for doc_id in index_of:
            if doc_id not in artifacts:
                items.append(FinalizationOutcome(
                    document_id=doc_id, state=JobState.failed, proof_index=index_of[doc_id],
                    error=DataIntegrityError(messages.NO_ARTIFACT, {"document_id": doc_id}).to_dict(),
                ))

        report = BatchFinalizationReport(batch_id=submission.batch_id, items=items)
        logger.info("batch %s finalized: %d ok, %d failed", submission.batch_id,
                    len(items) - len(report.failed), len(report.failed))
        return report

    async def _run(self, db: Session, submission: BatchSubmission, job: FinalizationJob,
                   options: FinalizationOptions) -> FinalizationOutcome:
        if job.proof_index is None:
            # upstream drift between the record list and the uploaded documents
            raise DataIntegrityError(messages.NO_ENTRY_MATCH, {"document_id": job.document_id})
        source = pdf.resolve_upload(job.source_path)
        if not os.path.isfile(source):
            raise DataIntegrityError(messages.INVALID_PDF, {"document_id": job.document_id,
                                                            "path": job.source_path})
        job.state = JobState.processing
        record = submission.records[job.proof_index]
        proof = submission.commitment.proof(job.proof_index)

        payload = verification_payload(
            certificate_number=record.document_id, holder_name=record.holder_name, title=record.title,
            grant_date=record.grant_date, expiration_date=record.expiration_date,
            explorer_link=submission.explorer_link, extra_fields=record.extra_fields,
        )
        links = verification_links(payload)

        work = pdf.work_dir()
        stamped = os.path.join(work, f"{record.document_id}.stamped.pdf")
        png_path = os.path.join(work, f"{record.document_id}.png")
        artifact_url: Optional[str] = None
        pdf_path: Optional[str] = None
        try:
            image = await asyncio.to_thread(qr_png, links["qr_data"])
            await asyncio.to_thread(
                pdf.embed_link_and_qr, source, stamped,
                link_text=submission.explorer_link or links["qr_data"], qr_image=image,
                x=options.qr_x, y=options.qr_y, size=options.qr_size,
            )
            if options.zip_store:
                pdf_path = os.path.join(pdf.completed_dir(), f"{record.document_id}.pdf")
                shutil.copyfile(stamped, pdf_path)
            elif options.rasterize:
                await self._rasterize_with_retry(stamped, png_path)
                artifact_url = self.publisher(png_path, f"{record.document_id}.png")
            else:
                artifact_url = self.publisher(stamped, f"{record.document_id}.pdf")

            await run_in_session(db, self._persist, db, submission, record, proof, links, artifact_url)
        finally:
            # the upload is consumed whether or not the document made it
            pdf.remove_quietly(source, stamped, png_path)

        job.state = JobState.completed
        return FinalizationOutcome(document_id=job.document_id, state=job.state, proof_index=job.proof_index,
                                   artifact_url=artifact_url, pdf_path=pdf_path)

    async def _rasterize_with_retry(self, pdf_path: str, png_path: str) -> str:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await asyncio.to_thread(pdf.rasterize_first_page, pdf_path, png_path)
            except Exception as exc:
                if attempt > self.raster_retries:
                    raise ArtifactError(messages.IMAGE_ERROR, {"path": pdf_path, "error": str(exc)}) from exc
                logger.warning("rasterizing %s failed, retrying (%d/%d)", pdf_path, attempt, self.raster_retries)
                await self._sleep(self.retry_delay)

    def _persist(self, db: Session, submission: BatchSubmission, record: Record,
                 proof: List[bytes], links: Dict[str, Optional[str]], artifact_url: Optional[str]) -> None:
        try:
            crud.save_short_url(db, number=record.document_id, issuer_id=submission.issuer_id,
                                url=links["deep_link"])
            crud.create_batch_member(db, {
                "certificate_number": record.document_id,
                "issuer_id": submission.issuer_id,
                "batch_id": submission.batch_id,
                "proof": [to_hex(p) for p in proof],
                "encoded_proof": encode_proof(proof),
                "certificate_hash": record_digest(record),
                "transaction_hash": submission.transaction_hash,
                "status": int(CertificateStatus.ISSUED),
                "holder_name": record.holder_name,
                "title": record.title,
                "grant_date": record.grant_date,
                "expiration_date": record.expiration_date,
                "extra_fields": dict(record.extra_fields) or None,
                "artifact_url": artifact_url,
            })
        except Exception as exc:
            db.rollback()
            logger.error("batch %s: ledger has root (tx %s) but row for %s was not stored: %s",
                         submission.batch_id, submission.transaction_hash, record.document_id, exc)
            raise PersistenceError(messages.DB_FAILED, {
                "certificate_number": record.document_id,
                "transaction_hash": submission.transaction_hash,
                "error": str(exc),
            }) from exc
