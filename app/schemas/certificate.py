from __future__ import annotations

from datetime import date, datetime
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ------------------------------ input ------------------------------

class Record(BaseModel):
    """One validated row handed over by the spreadsheet layer."""
    model_config = ConfigDict(frozen=True)

    # used as a file name for the stamped artifacts
    document_id: str = Field(..., min_length=1, max_length=64, pattern=r"^[A-Za-z0-9._-]+$")
    holder_name: str = Field(..., min_length=1, max_length=200)
    title: str = Field(..., min_length=1, max_length=200)
    grant_date: date
    expiration_date: Optional[date] = None  # None -> never expires
    extra_fields: Dict[str, str] = Field(default_factory=dict)

    @field_validator("document_id")
    @classmethod
    def _not_a_directory(cls, v: str) -> str:
        if v in (".", ".."):
            raise ValueError("document_id cannot be . or ..")
        return v

class FinalizationOptions(BaseModel):
    qr_x: float = 40.0
    qr_y: float = 40.0
    qr_size: Optional[int] = None
    rasterize: bool = True
    zip_store: bool = False

class IssueRequest(BaseModel):
    issuer_id: str
    record: Record

class BatchIssueRequest(BaseModel):
    issuer_id: str
    records: List[Record]
    # document_id -> file name of the source PDF under the upload folder
    artifacts: Dict[str, str]
    expiration_date: Optional[date] = None
    options: FinalizationOptions = Field(default_factory=FinalizationOptions)

class RenewRequest(BaseModel):
    issuer_id: str
    expiration_date: Optional[date] = None

class StatusUpdateRequest(BaseModel):
    issuer_id: str
    status: int = Field(..., ge=1, le=6)

# ------------------------------ output ------------------------------

class SingleCertificateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    certificate_number: str
    issuer_id: str
    holder_name: str
    title: str
    grant_date: date
    expiration_date: Optional[date]
    certificate_hash: str
    transaction_hash: Optional[str]
    status: int
    issue_date: datetime
    artifact_url: Optional[str] = None

class BatchCertificateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    certificate_number: str
    issuer_id: str
    batch_id: int
    proof: List[str]
    encoded_proof: str
    certificate_hash: str
    transaction_hash: Optional[str]
    status: int
    holder_name: str
    title: str
    grant_date: date
    expiration_date: Optional[date]
    issue_date: datetime
    artifact_url: Optional[str] = None

class LedgerActionResult(BaseModel):
    """Outcome of a ledger write driven by the orchestrator."""
    message: str
    certificate_number: Optional[str] = None
    batch_id: Optional[int] = None
    transaction_hash: Optional[str] = None
    explorer_link: Optional[str] = None
    status: Optional[int] = None
    expiration_date: Optional[date] = None
    persisted: bool = True
    warning: Optional[str] = None
    certificate: Optional[Dict[str, Any]] = None
    qr_code: Optional[str] = None

class JobState(str, Enum):
    queued = "queued"
    processing = "processing"
    completed = "completed"
    failed = "failed"

class FinalizationOutcome(BaseModel):
    document_id: str
    state: JobState
    proof_index: Optional[int] = None
    artifact_url: Optional[str] = None
    pdf_path: Optional[str] = None
    error: Optional[Dict[str, Any]] = None

class BatchFinalizationReport(BaseModel):
    batch_id: int
    items: List[FinalizationOutcome]

    @property
    def ok(self) -> bool:
        return all(i.state == JobState.completed for i in self.items)

    @property
    def failed(self) -> List[FinalizationOutcome]:
        return [i for i in self.items if i.state == JobState.failed]

    @property
    def artifact_urls(self) -> List[str]:
        return [i.artifact_url for i in self.items if i.artifact_url]

class BatchIssuanceResult(LedgerActionResult):
    root: str
    report: BatchFinalizationReport

class VerificationOutcome(IntEnum):
    UNKNOWN = 0
    VALID = 1
    EXPIRED = 2
    REVOKED = 3

class TransactionStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    unknown = "unknown"

class VerificationResult(BaseModel):
    outcome: VerificationOutcome
    kind: str  # single | batch | payload | none
    message: str
    certificate_number: Optional[str] = None
    certificate: Optional[Dict[str, Any]] = None
    artifact_url: Optional[str] = None
    caveat: Optional[str] = None
    transaction_status: TransactionStatus = TransactionStatus.unknown
    explorer_link: Optional[str] = None
    details: Optional[Dict[str, Any]] = None

    @property
    def valid(self) -> bool:
        return self.outcome == VerificationOutcome.VALID
