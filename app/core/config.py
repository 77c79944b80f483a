# app/core/config.py
import os
from typing import ClassVar, List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

def _default_database_url() -> str:
    data_dir = os.path.abspath(os.getenv("DATA_DIR", "./data"))
    os.makedirs(data_dir, exist_ok=True)
    return os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(data_dir, 'certificates.db')}")

def _optional(name: str) -> Optional[str]:
    value = os.getenv(name, "").strip()
    return value or None

def _csv(name: str) -> List[str]:
    return [s.strip() for s in os.getenv(name, "").split(",") if s.strip()]

class Settings(BaseModel):
    # Constant (not a pydantic field)
    DATA_DIR: ClassVar[str] = os.path.abspath(os.getenv("DATA_DIR", "./data"))

    DATABASE_URL: str = Field(default_factory=_default_database_url)
    LOG_LEVEL: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    # Ledger
    LEDGER_ISSUER_ROLE: str = Field(default_factory=lambda: os.getenv("LEDGER_ISSUER_ROLE", "ISSUER_ROLE"))
    LEDGER_NETWORK: str = Field(default_factory=lambda: os.getenv("LEDGER_NETWORK", "amoy.polygonscan.com"))
    LEDGER_RETRY_ATTEMPTS: int = Field(default_factory=lambda: int(os.getenv("LEDGER_RETRY_ATTEMPTS", "3")))
    LEDGER_RETRY_DELAY_SECONDS: float = Field(default_factory=lambda: float(os.getenv("LEDGER_RETRY_DELAY_SECONDS", "2")))
    LEDGER_CALL_TIMEOUT_SECONDS: float = Field(default_factory=lambda: float(os.getenv("LEDGER_CALL_TIMEOUT_SECONDS", "30")))

    # Issuance rules
    RENEWAL_GUARD_DAYS: int = Field(default_factory=lambda: int(os.getenv("RENEWAL_GUARD_DAYS", "32")))

    # Verification links / QR
    SHORT_URL_BASE: Optional[str] = Field(default_factory=lambda: _optional("SHORT_URL_BASE"))
    VERIFY_URL_BASE: str = Field(default_factory=lambda: os.getenv("VERIFY_URL_BASE", "http://localhost:8000/api/v1/verify"))
    LINK_ENCRYPTION_KEY: str = Field(default_factory=lambda: os.getenv("LINK_ENCRYPTION_KEY", "CHANGE_ME_LINK_SECRET"))
    QR_SIZE: int = Field(default_factory=lambda: int(os.getenv("QR_SIZE", "120")))

    # Uploaded source documents; batch artifacts are file names under this folder
    UPLOAD_DIR: str = Field(default_factory=lambda: os.path.abspath(
        os.getenv("UPLOAD_DIR", os.path.join(os.getenv("DATA_DIR", "./data"), "uploads"))))

    # Issuers granted the issuer role on the in-process ledger (development only)
    DEV_ISSUER_IDS: List[str] = Field(default_factory=lambda: _csv("DEV_ISSUER_IDS"))

settings = Settings()
