from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import messages
from app.core.errors import ValidationError
from app.crud.base import CRUDBase
from app.models.audit import CertificateEvent
from app.models.certificate import BatchCertificate, CertificateNumber, SingleCertificate
from app.models.short_url import ShortUrl

single_certificates = CRUDBase(SingleCertificate)
batch_certificates = CRUDBase(BatchCertificate)
short_urls = CRUDBase(ShortUrl)

AnyCertificate = Union[SingleCertificate, BatchCertificate]

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

# ------------------------------ lookup ------------------------------

def get_single(db: Session, number: str) -> Optional[SingleCertificate]:
    return single_certificates.get_by(db, certificate_number=number)

def get_batch_member(db: Session, number: str) -> Optional[BatchCertificate]:
    return batch_certificates.get_by(db, certificate_number=number)

def find_certificate(db: Session, number: str) -> Tuple[Optional[str], Optional[AnyCertificate]]:
    # single table first, then batch
    single = get_single(db, number)
    if single is not None:
        return "single", single
    member = get_batch_member(db, number)
    if member is not None:
        return "batch", member
    return None, None

def batch_members(db: Session, batch_id: int) -> List[BatchCertificate]:
    return batch_certificates.list_by(db, batch_id=batch_id)

def existing_numbers(db: Session, numbers: Iterable[str]) -> List[str]:
    numbers = list(numbers)
    if not numbers:
        return []
    found = set(db.execute(
        select(CertificateNumber.certificate_number).where(CertificateNumber.certificate_number.in_(numbers))
    ).scalars())
    found.update(db.execute(
        select(SingleCertificate.certificate_number).where(SingleCertificate.certificate_number.in_(numbers))
    ).scalars())
    found.update(db.execute(
        select(BatchCertificate.certificate_number).where(BatchCertificate.certificate_number.in_(numbers))
    ).scalars())
    return sorted(found)

# --------------------------- number registry ---------------------------

def reserve_numbers(db: Session, numbers: Iterable[str], kind: str) -> None:
    """
    Claims certificate numbers before anything is written to the ledger.
    The primary key on certificate_numbers makes a concurrent duplicate fail here.
    """
    numbers = list(numbers)
    taken = existing_numbers(db, numbers)
    if taken:
        raise ValidationError(messages.CERT_ALREADY_ISSUED, {"certificate_numbers": taken})
    try:
        db.add_all([CertificateNumber(certificate_number=n, kind=kind) for n in numbers])
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError(messages.CERT_ALREADY_ISSUED,
                              {"certificate_numbers": numbers, "error": str(exc.orig)}) from exc

def release_numbers(db: Session, numbers: Iterable[str]) -> None:
    numbers = list(numbers)
    if not numbers:
        return
    db.execute(delete(CertificateNumber).where(CertificateNumber.certificate_number.in_(numbers)))
    db.commit()

# ------------------------------ writes ------------------------------

def create_single(db: Session, data: Dict[str, Any]) -> SingleCertificate:
    return single_certificates.create(db, data, extra={"issue_date": data.get("issue_date") or utcnow()})

def create_batch_member(db: Session, data: Dict[str, Any]) -> BatchCertificate:
    return batch_certificates.create(db, data, extra={"issue_date": data.get("issue_date") or utcnow()})

def update_batch_members(db: Session, batch_id: int, values: Dict[str, Any]) -> int:
    result = db.execute(update(BatchCertificate).where(BatchCertificate.batch_id == batch_id).values(**values))
    db.commit()
    return result.rowcount or 0

def promote_member(db: Session, member: BatchCertificate, values: Dict[str, Any]) -> SingleCertificate:
    """
    Moves a batch member to the single table in one transaction.
    The certificate number and its registry row are kept.
    """
    number = member.certificate_number
    data = {
        "certificate_number": number,
        "issuer_id": member.issuer_id,
        "holder_name": member.holder_name,
        "title": member.title,
        "grant_date": member.grant_date,
        "expiration_date": member.expiration_date,
        "artifact_url": member.artifact_url,
        "issue_date": utcnow(),
    }
    data.update(values)
    try:
        db.delete(member)
        db.flush()
        single = SingleCertificate(**data)
        db.add(single)
        registry = db.get(CertificateNumber, number)
        if registry is None:
            db.add(CertificateNumber(certificate_number=number, kind="single"))
        else:
            registry.kind = "single"
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(single)
    return single

# ---------------------------- short urls ----------------------------

def save_short_url(db: Session, *, number: str, issuer_id: str, url: str) -> ShortUrl:
    row = short_urls.get_by(db, certificate_number=number)
    if row is None:
        return short_urls.create(db, {"certificate_number": number, "issuer_id": issuer_id, "url": url})
    return short_urls.update(db, row, {"url": url, "issuer_id": issuer_id})

def get_short_url(db: Session, number: str) -> Optional[ShortUrl]:
    return short_urls.get_by(db, certificate_number=number)

# ------------------------------ events ------------------------------

def log_event(
    db: Session,
    *,
    issuer_id: str,
    action: str,
    certificate_number: Optional[str] = None,
    batch_id: Optional[int] = None,
    status: Optional[int] = None,
    transaction_hash: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> CertificateEvent:
    event = CertificateEvent(
        issuer_id=issuer_id, action=action, certificate_number=certificate_number, batch_id=batch_id,
        status=int(status) if status is not None else None, transaction_hash=transaction_hash,
        details_json=details,
    )
    db.add(event); db.commit()
    return event
