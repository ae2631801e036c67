"""Render a drawn signature into a PDF.

With a quotation, the signature goes on the bottom-right of its final page; without
one, a fresh A4 page carries the signature alone. Rendering errors raise
UpstreamError so the caller can abort the approval before anything is written.
"""
from __future__ import annotations
import logging
from io import BytesIO
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from prflow.errors import UpstreamError, ValidationError

logger = logging.getLogger(__name__)

MARGIN = 50
STAMP_WIDTH = 150
STANDALONE_WIDTH = 300


def load_signature(png_bytes: bytes) -> Image.Image:
    if not png_bytes:
        raise ValidationError('signature image required')
    try:
        img = Image.open(BytesIO(png_bytes))
        img.load()
    except (UnidentifiedImageError, OSError):
        raise ValidationError('signature must be a PNG or JPEG image')
    if img.width == 0 or img.height == 0:
        raise ValidationError('signature image is empty')
    if img.mode not in ('RGB', 'RGBA'):
        img = img.convert('RGBA')
    return img


def _fit(img: Image.Image, width: float) -> Tuple[float, float]:
    return width, img.height / img.width * width


def _draw(img: Image.Image, pagesize, x: float, y: float, w: float, h: float) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=pagesize)
    c.drawImage(ImageReader(img), x, y, width=w, height=h, mask='auto')
    c.showPage()
    c.save()
    return buf.getvalue()


def stamp_quotation(pdf_bytes: bytes, img: Image.Image) -> bytes:
    try:
        reader = PdfReader(BytesIO(pdf_bytes))
        writer = PdfWriter()
        for page in reader.pages:
            writer.add_page(page)
    except (PdfReadError, ValueError) as exc:
        raise UpstreamError(f'Quotation PDF could not be read: {exc}') from exc
    if not writer.pages:
        raise UpstreamError('Quotation PDF has no pages')
    target = writer.pages[-1]
    box = target.mediabox
    left, bottom = float(box.left), float(box.bottom)
    width, height = float(box.width), float(box.height)
    w, h = _fit(img, STAMP_WIDTH)
    overlay_bytes = _draw(img, (left + width, bottom + height),
                          left + width - w - MARGIN, bottom + MARGIN, w, h)
    target.merge_page(PdfReader(BytesIO(overlay_bytes)).pages[0])
    out = BytesIO()
    writer.write(out)
    return out.getvalue()


def signature_page(img: Image.Image) -> bytes:
    width, height = A4
    w, h = _fit(img, STANDALONE_WIDTH)
    return _draw(img, A4, MARGIN, height - h - MARGIN, w, h)


def render_signed_document(signature_png: bytes, quotation_pdf: Optional[bytes] = None) -> bytes:
    img = load_signature(signature_png)
    try:
        if quotation_pdf is not None:
            return stamp_quotation(quotation_pdf, img)
        return signature_page(img)
    except (UpstreamError, ValidationError):
        raise
    except Exception as exc:
        logger.exception('Signature rendering failed')
        raise UpstreamError('Signature rendering failed') from exc


__all__ = ['load_signature', 'stamp_quotation', 'signature_page', 'render_signed_document']
