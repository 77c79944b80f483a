# app/core/crypto.py
import base64
import hashlib
import json
from functools import lru_cache
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

from cryptography.fernet import Fernet, InvalidToken

from app.core.config import settings

# ---------- SYMMETRIC ENCRYPTION ----------
def get_cipher(master_key: bytes) -> Fernet:
    key = base64.urlsafe_b64encode(hashlib.sha256(master_key).digest())
    return Fernet(key)

@lru_cache(maxsize=1)
def _link_cipher() -> Fernet:
    return get_cipher(settings.LINK_ENCRYPTION_KEY.encode("utf-8"))

def encrypt_payload(payload: Dict[str, Any], cipher: Fernet | None = None) -> str:
    raw = json.dumps(payload, separators=(",", ":"), default=str).encode("utf-8")
    return (cipher or _link_cipher()).encrypt(raw).decode("ascii")

def decrypt_payload(token: str, cipher: Fernet | None = None) -> Optional[Dict[str, Any]]:
    try:
        raw = (cipher or _link_cipher()).decrypt(token.encode("ascii"))
    except (InvalidToken, UnicodeEncodeError, ValueError):
        return None
    try:
        data = json.loads(raw)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None

# ---------- DEEP LINKS ----------
def build_deep_link(payload: Dict[str, Any], base_url: str | None = None,
                    cipher: Fernet | None = None) -> str:
    base = (base_url or settings.VERIFY_URL_BASE).rstrip("/")
    return f"{base}?q={encrypt_payload(payload, cipher)}"

def read_deep_link(link: str, cipher: Fernet | None = None) -> Optional[Dict[str, Any]]:
    # accepts either the full link or the bare token
    token = link.strip()
    if "?" in token:
        token = (parse_qs(urlparse(token).query).get("q") or [""])[0]
    if not token:
        return None
    return decrypt_payload(token, cipher)
