# FILE: tests/test_verification.py
"""
Tests for app/services/verification.py
Tri-state verification against the store and the ledger.
"""
import pytest

from app.core import messages
from app.core.config import settings
from app.crud import certificate as crud
from app.models.certificate import CertificateStatus
from app.schemas.certificate import TransactionStatus, VerificationOutcome
from app.services.ledger import LedgerCallError
from app.services.merkle import to_hex, sha256
from app.services.qr import verification_links, verification_payload

from conftest import ISSUER


def _deep_link(number, **overrides):
    from datetime import date

    data = dict(certificate_number=number, holder_name="Ada", title="Math", grant_date=date(2024, 1, 5),
                expiration_date=None, explorer_link="https://explorer.example/tx/0x01")
    data.update(overrides)
    return verification_links(verification_payload(**data))["deep_link"]


class TestSingle:
    @pytest.mark.asyncio
    async def test_issued_certificate_is_valid(self, orchestrator, verifier, make_record):
        issued = await orchestrator.issue_single(ISSUER, make_record("V-1"))
        result = await verifier.verify("V-1")

        assert result.outcome is VerificationOutcome.VALID
        assert result.valid and result.kind == "single"
        assert result.message == messages.CERT_VALID
        assert result.transaction_status is TransactionStatus.confirmed
        assert result.explorer_link == issued.explorer_link
        assert result.certificate["holder_name"] == "Holder V-1"

    @pytest.mark.asyncio
    async def test_revoked_after_revoke(self, orchestrator, verifier, make_record):
        await orchestrator.issue_single(ISSUER, make_record("V-2"))
        await orchestrator.update_status(ISSUER, "V-2", CertificateStatus.REVOKED)
        result = await verifier.verify("V-2")
        assert result.outcome is VerificationOutcome.REVOKED

    @pytest.mark.asyncio
    async def test_revoked_on_ledger_only(self, orchestrator, verifier, ledger, make_record):
        await orchestrator.issue_single(ISSUER, make_record("V-3"))
        ledger.certificates["V-3"]["status"] = int(CertificateStatus.REVOKED)
        assert (await verifier.verify("V-3")).outcome is VerificationOutcome.REVOKED

    @pytest.mark.asyncio
    async def test_expired_on_ledger(self, orchestrator, verifier, ledger_clock, make_record):
        await orchestrator.issue_single(ISSUER, make_record("V-4"))
        ledger_clock.advance(400)
        result = await verifier.verify("V-4")
        assert result.outcome is VerificationOutcome.EXPIRED

    @pytest.mark.asyncio
    async def test_infinite_expiration_never_expires(self, orchestrator, verifier, ledger_clock, make_record):
        await orchestrator.issue_single(ISSUER, make_record("V-5", expiration_date=None))
        ledger_clock.advance(365 * 100)
        assert (await verifier.verify("V-5")).outcome is VerificationOutcome.VALID

    @pytest.mark.asyncio
    async def test_no_chain_check_status_skips_the_ledger(self, orchestrator, verifier, ledger, db, make_record):
        await orchestrator.issue_single(ISSUER, make_record("V-6"))
        row = crud.get_single(db, "V-6")
        crud.single_certificates.update(db, row, {"status": int(CertificateStatus.VALIDATED_NO_CHAIN_CHECK)})
        before = sum(ledger.calls.values())

        result = await verifier.verify("V-6")

        assert result.outcome is VerificationOutcome.VALID
        assert sum(ledger.calls.values()) == before

    @pytest.mark.asyncio
    async def test_pending_transaction(self, orchestrator, verifier, ledger, make_record):
        ledger.confirm_immediately = False
        await orchestrator.issue_single(ISSUER, make_record("V-7"))
        result = await verifier.verify("V-7")
        assert result.outcome is VerificationOutcome.VALID
        assert result.transaction_status is TransactionStatus.pending

    @pytest.mark.asyncio
    async def test_ledger_failure_is_never_valid(self, orchestrator, verifier, ledger, make_record):
        await orchestrator.issue_single(ISSUER, make_record("V-8"))
        ledger.fail_next("verify_certificate_by_id", LedgerCallError("node unavailable"))
        result = await verifier.verify("V-8")
        assert result.outcome is VerificationOutcome.UNKNOWN
        assert result.details["code"] == "LEDGER_FAILED"


class TestBatch:
    @pytest.mark.asyncio
    async def test_member_is_valid(self, issue_batch, verifier):
        await issue_batch(["W-1", "W-2", "W-3"])
        result = await verifier.verify("W-3")
        assert result.outcome is VerificationOutcome.VALID
        assert result.kind == "batch"
        assert result.artifact_url == "/static/certificates/W-3.png"

    @pytest.mark.asyncio
    async def test_revoked_member(self, issue_batch, orchestrator, verifier):
        await issue_batch(["W-4", "W-5"])
        await orchestrator.update_status(ISSUER, "W-4", CertificateStatus.REVOKED)
        assert (await verifier.verify("W-4")).outcome is VerificationOutcome.REVOKED
        assert (await verifier.verify("W-5")).outcome is VerificationOutcome.VALID

    @pytest.mark.asyncio
    async def test_expired_batch(self, issue_batch, verifier, ledger_clock):
        await issue_batch(["W-6", "W-7"])
        await verifier.verify("W-6")
        ledger_clock.advance(400)
        assert (await verifier.verify("W-6")).outcome is VerificationOutcome.EXPIRED

    @pytest.mark.asyncio
    async def test_infinite_batch_never_expires(self, issue_batch, verifier, ledger_clock):
        await issue_batch(["W-8", "W-9"], infinite=True)
        ledger_clock.advance(365 * 100)
        assert (await verifier.verify("W-9")).outcome is VerificationOutcome.VALID

    @pytest.mark.asyncio
    async def test_tampered_proof_is_not_valid(self, issue_batch, verifier, db):
        await issue_batch(["W-10", "W-11", "W-12"])
        member = crud.get_batch_member(db, "W-11")
        crud.batch_certificates.update(db, member, {"proof": [to_hex(sha256(b"forged"))] + member.proof[1:]})

        result = await verifier.verify("W-11")
        assert result.outcome is VerificationOutcome.UNKNOWN
        assert result.details["membership"] is False

    @pytest.mark.asyncio
    async def test_keys_disagree(self, issue_batch, verifier, db):
        await issue_batch(["W-13", "W-14"])
        assert (await verifier.verify("W-13")).valid
        member = crud.get_batch_member(db, "W-13")
        crud.batch_certificates.update(db, member, {"certificate_hash": to_hex(sha256(b"other"))})

        result = await verifier.verify("W-13")
        assert result.outcome is VerificationOutcome.UNKNOWN
        assert result.details["alt_status"] != 0


class TestIdentifiers:
    @pytest.mark.asyncio
    async def test_short_link(self, orchestrator, verifier, make_record, monkeypatch):
        monkeypatch.setattr(settings, "SHORT_URL_BASE", "https://c.example/v/")
        await orchestrator.issue_single(ISSUER, make_record("X-1"))
        result = await verifier.verify("https://c.example/v/X-1")
        assert result.certificate_number == "X-1"
        assert result.valid

    @pytest.mark.asyncio
    async def test_deep_link_resolves_to_stored_certificate(self, orchestrator, verifier, make_record):
        await orchestrator.issue_single(ISSUER, make_record("X-2"))
        result = await verifier.verify(_deep_link("X-2"))
        assert result.kind == "single" and result.valid

    @pytest.mark.asyncio
    async def test_payload_only_is_valid_with_caveat(self, verifier):
        result = await verifier.verify(_deep_link("ELSEWHERE-1"))
        assert result.outcome is VerificationOutcome.VALID
        assert result.kind == "payload"
        assert result.caveat == messages.PAYLOAD_ONLY
        assert result.certificate["name"] == "Ada"

    @pytest.mark.asyncio
    async def test_expired_payload(self, verifier):
        from datetime import date

        result = await verifier.verify(_deep_link("ELSEWHERE-2", expiration_date=date(2020, 1, 1)))
        assert result.outcome is VerificationOutcome.EXPIRED
        assert result.caveat == messages.PAYLOAD_ONLY

    @pytest.mark.asyncio
    @pytest.mark.parametrize("identifier", ["UNKNOWN-NUMBER", "https://x.example/verify?q=garbage", "gAAAAAnope"])
    async def test_unresolvable(self, verifier, identifier):
        result = await verifier.verify(identifier)
        assert result.outcome is VerificationOutcome.UNKNOWN
        assert not result.valid


class TestSoleMemberBatch:
    @pytest.mark.asyncio
    async def test_one_record_batch_is_valid(self, issue_batch, verifier, db):
        await issue_batch(["O-1"])
        assert crud.get_batch_member(db, "O-1").proof == []
        result = await verifier.verify("O-1")
        assert result.outcome is VerificationOutcome.VALID
        assert result.kind == "batch"

    @pytest.mark.asyncio
    async def test_revoking_one_leaves_the_other_valid(self, issue_batch, orchestrator, verifier, ledger):
        await issue_batch(["X-1"])
        await issue_batch(["Y-1"])
        await orchestrator.update_status(ISSUER, "Y-1", CertificateStatus.REVOKED)

        assert (await verifier.verify("Y-1")).outcome is VerificationOutcome.REVOKED
        assert (await verifier.verify("X-1")).outcome is VerificationOutcome.VALID
        assert ledger.member_status == {}

    @pytest.mark.asyncio
    async def test_expired_root(self, issue_batch, verifier, ledger_clock):
        await issue_batch(["O-2"])
        ledger_clock.advance(400)
        assert (await verifier.verify("O-2")).outcome is VerificationOutcome.EXPIRED

    @pytest.mark.asyncio
    async def test_infinite_root_never_expires(self, issue_batch, verifier, ledger_clock):
        await issue_batch(["O-3"], infinite=True)
        ledger_clock.advance(365 * 100)
        assert (await verifier.verify("O-3")).outcome is VerificationOutcome.VALID

    @pytest.mark.asyncio
    async def test_wrong_digest_is_unknown(self, issue_batch, verifier, db):
        await issue_batch(["O-4"])
        member = crud.get_batch_member(db, "O-4")
        crud.batch_certificates.update(db, member, {"certificate_hash": "00" * 32})

        result = await verifier.verify("O-4")
        assert result.outcome is VerificationOutcome.UNKNOWN
        assert result.details == {"membership": False}
