# Signature compositing using pypdf + reportlab.
# Every call works on a freshly parsed copy of the original bytes; nothing is
# returned until the whole chain (parse, decode, draw, serialize) succeeded.

import logging
from io import BytesIO
from typing import NamedTuple

from PIL import Image, UnidentifiedImageError
from pypdf import PdfReader, PdfWriter
from reportlab.pdfgen import canvas
from reportlab.lib.utils import ImageReader

from .errors import DocumentLoadError, PageIndexError, ImageDecodeError
from .placement import Placement, Size
from .utils import decode_data_url

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("PNG", "JPEG")


class SignatureImage(NamedTuple):
    data: bytes
    format: str
    width: int
    height: int


def load_document(pdf_bytes: bytes) -> PdfReader:
    if not pdf_bytes:
        raise DocumentLoadError("empty PDF input")
    try:
        reader = PdfReader(BytesIO(pdf_bytes))
        page_count = len(reader.pages)
    except Exception as exc:
        raise DocumentLoadError(f"could not parse PDF: {exc}") from exc
    if page_count == 0:
        raise DocumentLoadError("PDF has no pages")
    return reader


def page_size(reader: PdfReader, index: int = 0) -> Size:
    check_page_index(reader, index)
    box = reader.pages[index].mediabox
    width, height = float(box.width), float(box.height)
    if width <= 0 or height <= 0:
        raise DocumentLoadError(f"page {index} has a degenerate media box ({width} x {height})")
    return Size(width=width, height=height)


def decode_signature_image(data_url: str) -> SignatureImage:
    try:
        _, data = decode_data_url(data_url)
    except ValueError as exc:
        raise ImageDecodeError(str(exc)) from exc
    if not data:
        raise ImageDecodeError("empty signature image")
    try:
        with Image.open(BytesIO(data)) as candidate:
            fmt = candidate.format
            candidate.verify()
        # verify() leaves the image unusable; reopen for the dimensions
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError) as exc:
        raise ImageDecodeError(f"signature is not a readable image: {exc}") from exc
    if fmt not in SUPPORTED_FORMATS:
        raise ImageDecodeError(f"unsupported signature format {fmt}; expected PNG or JPEG")
    return SignatureImage(data=data, format=fmt, width=width, height=height)


def check_page_index(reader: PdfReader, page_index: int):
    page_count = len(reader.pages)
    if page_index < 0 or page_index >= page_count:
        raise PageIndexError(page_index, page_count)


def _overlay_page(width: float, height: float, image: SignatureImage, placement: Placement) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=(width, height))
    c.drawImage(
        ImageReader(BytesIO(image.data)),
        placement.pdf_position.x,
        placement.pdf_position.y,
        width=placement.pdf_size.width,
        height=placement.pdf_size.height,
        mask="auto",
    )
    c.showPage()
    c.save()
    return buf.getvalue()


def composite_signature(reader: PdfReader, image: SignatureImage, page_index: int, placement: Placement) -> bytes:
    check_page_index(reader, page_index)
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)
    if reader.metadata:
        writer.add_metadata(reader.metadata)

    target = reader.pages[page_index]
    width = float(target.mediabox.width)
    height = float(target.mediabox.height)
    overlay_reader = PdfReader(BytesIO(_overlay_page(width, height, image, placement)))
    writer.pages[page_index].merge_page(overlay_reader.pages[0])

    out = BytesIO()
    writer.write(out)
    return out.getvalue()


def sign_pdf(pdf_bytes: bytes, data_url: str, page_index: int, placement: Placement) -> bytes:
    reader = load_document(pdf_bytes)
    image = decode_signature_image(data_url)
    check_page_index(reader, page_index)
    signed = composite_signature(reader, image, page_index, placement)
    logger.info(
        "signed page %s of %s at (%.2f, %.2f) size %.2fx%.2f",
        page_index, len(reader.pages),
        placement.pdf_position.x, placement.pdf_position.y,
        placement.pdf_size.width, placement.pdf_size.height,
    )
    return signed
