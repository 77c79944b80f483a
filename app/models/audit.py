from typing import Any, Dict
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import Integer, String, JSON, DateTime, func
from app.db.base import Base

class CertificateEvent(Base):
    __tablename__ = "certificate_events"
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    issuer_id: Mapped[str] = mapped_column(String(64))
    certificate_number: Mapped[str | None] = mapped_column(String(64), index=True, nullable=True)
    batch_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    action: Mapped[str] = mapped_column(String(30))
    status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    transaction_hash: Mapped[str | None] = mapped_column(String(80), nullable=True)
    details_json: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
