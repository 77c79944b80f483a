import base64
import io
import json
from typing import Any, Dict, Optional

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from app.core.config import settings
from app.core.crypto import build_deep_link
from app.services.merkle import format_date


def verification_payload(
    *,
    certificate_number: str,
    holder_name: str,
    title: str,
    grant_date,
    expiration_date,
    explorer_link: Optional[str],
    extra_fields: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Self-contained data carried (encrypted) by a deep link."""
    payload: Dict[str, Any] = {
        "Certificate_Number": certificate_number,
        "name": holder_name,
        "courseName": title,
        "Grant_Date": format_date(grant_date),
        "Expiration_Date": format_date(expiration_date),
        "polygonLink": explorer_link or "",
    }
    if extra_fields:
        payload["customFields"] = json.dumps(
            {k: v for k, v in extra_fields.items() if v not in (None, "")}, separators=(",", ":")
        )
    return payload


def short_link(certificate_number: str) -> Optional[str]:
    if not settings.SHORT_URL_BASE:
        return None
    return f"{settings.SHORT_URL_BASE}{certificate_number}"


def verification_links(payload: Dict[str, Any]) -> Dict[str, Optional[str]]:
    # QR carries the short link when short links are configured, the deep link otherwise
    deep = build_deep_link(payload)
    short = short_link(payload["Certificate_Number"])
    return {"deep_link": deep, "short_link": short, "qr_data": short or deep}


def qr_png(text: str) -> bytes:
    qr = qrcode.QRCode(error_correction=ERROR_CORRECT_H, border=1)
    qr.add_data(text)
    qr.make(fit=True)
    img = qr.make_image()
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def qr_data_uri(text: str) -> str:
    b64 = base64.b64encode(qr_png(text)).decode("ascii")
    return f"data:image/png;base64,{b64}"
