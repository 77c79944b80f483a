from enum import IntEnum
from datetime import date, datetime
from typing import Any, List, Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Date, DateTime, Integer, JSON, func
from app.db.base import Base

class CertificateStatus(IntEnum):
    ISSUED = 1
    RENEWED = 2
    REVOKED = 3
    REACTIVATED = 4
    EXPIRED_ON_CHAIN = 5
    VALIDATED_NO_CHAIN_CHECK = 6

RENEWABLE_STATUSES = (CertificateStatus.ISSUED, CertificateStatus.RENEWED, CertificateStatus.REACTIVATED)

class CertificateNumber(Base):
    """Global registry: one row per number, whichever table holds the certificate."""
    __tablename__ = "certificate_numbers"
    certificate_number: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(10))  # single | batch
    reserved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

class SingleCertificate(Base):
    __tablename__ = "single_certificates"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    certificate_number: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    issuer_id: Mapped[str] = mapped_column(String(64), index=True)
    holder_name: Mapped[str] = mapped_column(String(200))
    title: Mapped[str] = mapped_column(String(200))
    grant_date: Mapped[date] = mapped_column(Date)
    # None means the certificate never expires
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    certificate_hash: Mapped[str] = mapped_column(String(80))
    transaction_hash: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    status: Mapped[int] = mapped_column(Integer, default=CertificateStatus.ISSUED)
    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    artifact_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

class BatchCertificate(Base):
    __tablename__ = "batch_certificates"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    certificate_number: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    issuer_id: Mapped[str] = mapped_column(String(64), index=True)
    batch_id: Mapped[int] = mapped_column(Integer, index=True)
    proof: Mapped[List[str]] = mapped_column(JSON, default=list)
    encoded_proof: Mapped[str] = mapped_column(String(80), index=True)
    certificate_hash: Mapped[str] = mapped_column(String(80))
    transaction_hash: Mapped[Optional[str]] = mapped_column(String(80), nullable=True)
    status: Mapped[int] = mapped_column(Integer, default=CertificateStatus.ISSUED)
    holder_name: Mapped[str] = mapped_column(String(200))
    title: Mapped[str] = mapped_column(String(200))
    grant_date: Mapped[date] = mapped_column(Date)
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    extra_fields: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    issue_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    artifact_url: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
