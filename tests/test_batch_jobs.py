# FILE: tests/test_batch_jobs.py
"""
Tests for app/services/batch_jobs.py
Per-document finalization: QR embedding, publishing, partial failure report.
"""
import os
from datetime import date, timedelta

import pytest
from pypdf import PdfReader

from app.core import messages
from app.core.config import settings
from app.core.errors import DataIntegrityError
from app.crud import certificate as crud
from app.schemas.certificate import FinalizationOptions, JobState
from app.services import pdf
from app.services.batch_jobs import BatchJobProcessor, BatchSubmission
from app.services.merkle import commit_records, record_digest

from conftest import ISSUER


def _submission(records, batch_id=1):
    return BatchSubmission(batch_id=batch_id, issuer_id=ISSUER, transaction_hash="0x" + "aa" * 32,
                           explorer_link="https://explorer.example/tx/0xaa",
                           commitment=commit_records(records), records=records)


class TestFinalize:
    @pytest.mark.asyncio
    async def test_all_documents_published(self, db, processor, make_record, make_pdf):
        records = [make_record(n) for n in ("B-1", "B-2", "B-3")]
        sources = {r.document_id: make_pdf(r.document_id) for r in records}

        report = await processor.finalize(db, _submission(records), sources, FinalizationOptions())

        assert report.ok
        assert sorted(report.artifact_urls) == [f"/static/certificates/B-{i}.png" for i in (1, 2, 3)]
        for url in report.artifact_urls:
            assert os.path.exists(os.path.join(settings.DATA_DIR, "public", url[len("/static/"):]))
        # sources are consumed
        assert not any(os.path.exists(p) for p in sources.values())

        member = crud.get_batch_member(db, "B-2")
        assert member.batch_id == 1
        assert member.proof == _submission(records).commitment.proof_hex(1)
        assert member.certificate_hash == record_digest(records[1])
        assert crud.get_short_url(db, "B-2").url.startswith(settings.VERIFY_URL_BASE)

    @pytest.mark.asyncio
    async def test_one_bad_pdf_does_not_abort_the_batch(self, db, processor, make_record, make_pdf, upload_dir):
        records = [make_record(n) for n in ("P-1", "P-2", "P-3")]
        broken = upload_dir / "P-2.pdf"
        broken.write_bytes(b"this is not a pdf")
        sources = {"P-1": make_pdf("P-1"), "P-2": str(broken), "P-3": make_pdf("P-3")}

        report = await processor.finalize(db, _submission(records), sources, FinalizationOptions())

        assert not report.ok
        states = {i.document_id: i.state for i in report.items}
        assert states == {"P-1": JobState.completed, "P-2": JobState.failed, "P-3": JobState.completed}
        failed = report.failed[0]
        assert failed.proof_index == 1
        assert failed.error["code"]
        assert crud.get_batch_member(db, "P-2") is None
        assert crud.get_batch_member(db, "P-3") is not None
        # a failed upload is consumed too
        assert not broken.exists()

    @pytest.mark.asyncio
    async def test_unmatched_document_is_reported(self, db, processor, make_record, make_pdf):
        records = [make_record("M-1"), make_record("M-2")]
        sources = {"M-1": make_pdf("M-1"), "GHOST": make_pdf("GHOST"), "M-2": make_pdf("M-2")}

        report = await processor.finalize(db, _submission(records), sources, FinalizationOptions())

        ghost = next(i for i in report.items if i.document_id == "GHOST")
        assert ghost.state is JobState.failed
        assert ghost.error["message"] == messages.NO_ENTRY_MATCH
        assert len([i for i in report.items if i.state is JobState.completed]) == 2

    @pytest.mark.asyncio
    async def test_record_without_document_is_reported(self, db, processor, make_record, make_pdf):
        records = [make_record("N-1"), make_record("N-2")]
        report = await processor.finalize(db, _submission(records), {"N-1": make_pdf("N-1")},
                                          FinalizationOptions())
        missing = next(i for i in report.items if i.document_id == "N-2")
        assert missing.state is JobState.failed
        assert missing.error["message"] == messages.NO_ARTIFACT

    @pytest.mark.asyncio
    async def test_pdf_output_keeps_qr_stamp(self, db, make_record, make_pdf):
        published = {}

        def publisher(path, filename):
            target = os.path.join(pdf.work_dir(), "published-" + filename)
            with open(path, "rb") as src, open(target, "wb") as dst:
                dst.write(src.read())
            published[filename] = target
            return f"/files/{filename}"

        processor = BatchJobProcessor(publisher=publisher, retry_delay=0)
        record = make_record("Q-1")
        report = await processor.finalize(db, _submission([record]), {"Q-1": make_pdf("Q-1")},
                                          FinalizationOptions(rasterize=False))

        assert report.items[0].artifact_url == "/files/Q-1.pdf"
        page = PdfReader(published["Q-1.pdf"]).pages[0]
        assert "/XObject" in page["/Resources"]

    @pytest.mark.asyncio
    async def test_zip_store_keeps_pdf_locally(self, db, processor, make_record, make_pdf):
        record = make_record("Z-1", expiration_date=None)
        report = await processor.finalize(db, _submission([record]), {"Z-1": make_pdf("Z-1")},
                                          FinalizationOptions(zip_store=True))
        item = report.items[0]
        assert item.artifact_url is None
        assert item.pdf_path and os.path.exists(item.pdf_path)
        assert crud.get_batch_member(db, "Z-1").expiration_date is None


class TestRasterRetry:
    @pytest.mark.asyncio
    async def test_raster_failure_is_retried_then_reported(self, db, make_record, make_pdf, monkeypatch):
        attempts = []

        def broken(pdf_path, png_path, zoom=2.0):
            attempts.append(pdf_path)
            raise RuntimeError("renderer crashed")

        monkeypatch.setattr(pdf, "rasterize_first_page", broken)
        delays = []

        async def sleep(delay):
            delays.append(delay)

        processor = BatchJobProcessor(raster_retries=3, retry_delay=2.0, sleep=sleep)
        record = make_record("R-1", expiration_date=date.today() + timedelta(days=90))
        report = await processor.finalize(db, _submission([record]), {"R-1": make_pdf("R-1")},
                                          FinalizationOptions())

        assert len(attempts) == 4
        assert delays == [2.0, 2.0, 2.0]
        assert report.items[0].error["message"] == messages.IMAGE_ERROR
        assert crud.get_batch_member(db, "R-1") is None


class TestSourcePaths:
    @pytest.mark.asyncio
    async def test_file_name_is_resolved_in_upload_dir(self, db, processor, make_record, make_pdf):
        record = make_record("F-1")
        make_pdf("F-1")
        report = await processor.finalize(db, _submission([record]), {"F-1": "F-1.pdf"}, FinalizationOptions())
        assert report.ok

    @pytest.mark.asyncio
    async def test_path_outside_upload_dir_is_rejected(self, db, processor, make_record, tmp_path):
        outside = tmp_path / "elsewhere.pdf"
        outside.write_bytes(b"keep me")
        report = await processor.finalize(db, _submission([make_record("F-2")]), {"F-2": str(outside)},
                                          FinalizationOptions())

        assert report.items[0].state is JobState.failed
        assert report.items[0].error["message"] == messages.INVALID_ARTIFACT_PATH
        assert outside.read_bytes() == b"keep me"

    @pytest.mark.asyncio
    async def test_parent_traversal_is_rejected(self, db, processor, make_record, tmp_path):
        outside = tmp_path / "secret.pdf"
        outside.write_bytes(b"keep me")
        report = await processor.finalize(db, _submission([make_record("F-3")]), {"F-3": "../secret.pdf"},
                                          FinalizationOptions())

        assert report.items[0].error["message"] == messages.INVALID_ARTIFACT_PATH
        assert outside.exists()

    @pytest.mark.parametrize("name", ["", ".", "../uploads"])
    def test_upload_dir_itself_is_not_a_source(self, name):
        with pytest.raises(DataIntegrityError):
            pdf.resolve_upload(name)
