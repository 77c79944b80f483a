# app/services/pdf.py
"""Artifact primitives: QR/link embedding, page-1 rasterization, publishing."""
from __future__ import annotations

import io
import logging
import os
import shutil
from typing import Optional

import fitz  # PyMuPDF
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from app.core import messages
from app.core.config import settings
from app.core.errors import DataIntegrityError

logger = logging.getLogger(__name__)

LINK_FONT = "Helvetica"
LINK_FONT_SIZE = 6

# -------------------------- directories --------------------------

def _data_dir() -> str:
    # published under /static/certificates/<file>
    base = os.path.join(settings.DATA_DIR, "public", "certificates")
    os.makedirs(base, exist_ok=True)
    return base

def work_dir() -> str:
    path = os.path.join(settings.DATA_DIR, "work")
    os.makedirs(path, exist_ok=True)
    return path

def completed_dir() -> str:
    path = os.path.join(settings.DATA_DIR, "completed")
    os.makedirs(path, exist_ok=True)
    return path

def upload_dir() -> str:
    path = os.path.realpath(settings.UPLOAD_DIR)
    os.makedirs(path, exist_ok=True)
    return path

def resolve_upload(name: str) -> str:
    """Absolute path of an uploaded source document; it must live under the upload folder."""
    base = upload_dir()
    path = os.path.realpath(os.path.join(base, name or ""))
    if path == base or os.path.commonpath([base, path]) != base:
        raise DataIntegrityError(messages.INVALID_ARTIFACT_PATH, {"path": name})
    return path

# ---------------------------- embedding ----------------------------

def _overlay(width: float, height: float, link_text: str, qr_image: bytes,
             x: float, y: float, size: float) -> bytes:
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=(width, height))
    c.drawImage(ImageReader(io.BytesIO(qr_image)), x, y, width=size, height=size, mask="auto")
    c.setFont(LINK_FONT, LINK_FONT_SIZE)
    c.drawString(x, max(y - LINK_FONT_SIZE - 2, 0), link_text)
    c.showPage()
    c.save()
    return buf.getvalue()

def embed_link_and_qr(source_pdf: str, output_pdf: str, *, link_text: str, qr_image: bytes,
                      x: float, y: float, size: Optional[float] = None) -> str:
    """Stamps link text and QR image on page 1 at (x, y), PDF points from bottom-left."""
    size = size or settings.QR_SIZE
    try:
        reader = PdfReader(source_pdf)
        if not reader.pages:
            raise DataIntegrityError(messages.INVALID_PDF, {"path": source_pdf, "error": "no pages"})
        first = reader.pages[0]
        width, height = float(first.mediabox.width), float(first.mediabox.height)
        stamp = PdfReader(io.BytesIO(_overlay(width, height, link_text, qr_image, x, y, size))).pages[0]
        first.merge_page(stamp)

        writer = PdfWriter()
        for page in reader.pages:
            writer.add_page(page)
        with open(output_pdf, "wb") as f:
            writer.write(f)
    except (PdfReadError, OSError) as exc:
        raise DataIntegrityError(messages.INVALID_PDF, {"path": source_pdf, "error": str(exc)}) from exc
    return output_pdf

# --------------------------- rasterizing ---------------------------

def rasterize_first_page(pdf_path: str, png_path: str, zoom: float = 2.0) -> str:
    doc = fitz.open(pdf_path)
    try:
        pix = doc[0].get_pixmap(matrix=fitz.Matrix(zoom, zoom))
        pix.save(png_path)
    finally:
        doc.close()
    return png_path

# ---------------------------- publishing ----------------------------

def publish_file(path: str, filename: str) -> str:
    """Copies into the static folder and returns the public URL."""
    target = os.path.join(_data_dir(), filename)
    shutil.copyfile(path, target)
    # URL served by StaticFiles (see main.py)
    return f"/static/certificates/{filename}"

def remove_quietly(*paths: Optional[str]) -> None:
    for p in paths:
        if p and os.path.exists(p):
            try:
                os.remove(p)
            except OSError as exc:
                logger.warning("could not delete %s: %s", p, exc)
