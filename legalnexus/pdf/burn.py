"""
Field burning with PyMuPDF (fitz).

Draws submitted signing values (text or signature images) onto the
original document and returns a new PDF. Raster originals are first
turned into a one-page PDF of the image's pixel size, so every input
goes through the same drawing path.

Field coordinates are fractions of the page with origin at the top-left
(as placed in the browser editor). FieldRect holds them in PDF user
space (origin bottom-left, points); to_fitz_rect() converts to
PyMuPDF's top-left page space for drawing.
"""
import base64
import binascii
import io
import logging
import os
import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence, Tuple

import fitz  # PyMuPDF
from PIL import Image, UnidentifiedImageError

from legalnexus.exceptions import FieldBurnError
from legalnexus.models import SigningField, SigningFieldType, normalize_media_type

logger = logging.getLogger(__name__)

# Unicode fonts with Hebrew coverage
# Installed in the Docker image: fonts-dejavu-core, fonts-freefont-ttf
FONT_PATHS = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/truetype/freefont/FreeSans.ttf",
    "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
]

TEXT_PADDING = 2.0
MAX_TEXT_SIZE = 12.0
TEXT_SIZE_RATIO = 0.7
MAX_FALLBACK_SIZE = 10.0
FALLBACK_SIZE_RATIO = 0.6
FALLBACK_COLOR = (0.3, 0.3, 0.3)
UNICODE_FONT_NAME = "F-unicode"

_DATA_URL = re.compile(r"^data:(image/[A-Za-z0-9.+-]+);base64,(.+)$", re.DOTALL)
_NON_PRINTABLE_ASCII = re.compile(r"[^\x20-\x7E]")
_HEBREW = re.compile("[\u0590-\u05FF]")
_LTR_RUN = re.compile(r"[A-Za-z0-9@._:/+\-]+(?: [A-Za-z0-9@._:/+\-]+)*")


def _find_font() -> Optional[str]:
    """Find a font file with Hebrew support."""
    for path in FONT_PATHS:
        if os.path.exists(path):
            return path
    return None


def is_pdf(mime_type: Optional[str], path: Optional[str] = None) -> bool:
    """Decide the input shape from the stored media type, falling back to the path."""
    if mime_type and "pdf" in normalize_media_type(mime_type):
        return True
    return bool(path) and path.lower().endswith(".pdf")


@dataclass(frozen=True)
class FieldRect:
    """Rectangle in PDF user space: origin bottom-left, units in points."""
    x: float
    y: float
    width: float
    height: float

    def to_fitz_rect(self, page_height: float) -> fitz.Rect:
        top = page_height - self.y - self.height
        return fitz.Rect(self.x, top, self.x + self.width, top + self.height)


def compute_field_rect(field: SigningField, page_width: float, page_height: float) -> FieldRect:
    """
    Map normalized field coordinates onto a page.

    Stored y is measured from the top, PDF y from the bottom:
    y_pdf = H - y*H - h*H.
    """
    return FieldRect(
        x=field.x * page_width,
        y=page_height - field.y * page_height - field.height * page_height,
        width=field.width * page_width,
        height=field.height * page_height,
    )


def fit_image_rect(rect: FieldRect, image_width: float, image_height: float) -> FieldRect:
    """Uniform scale into rect, left aligned and vertically centered."""
    scale = min(rect.width / image_width, rect.height / image_height)
    draw_width = image_width * scale
    draw_height = image_height * scale
    return FieldRect(
        x=rect.x,
        y=rect.y + (rect.height - draw_height) / 2,
        width=draw_width,
        height=draw_height,
    )


def decode_data_url(value: str) -> Tuple[str, bytes]:
    """
    Decode data:image/<type>;base64,<payload>.
    Raises ValueError for anything else.
    """
    match = _DATA_URL.match(value.strip())
    if not match:
        raise ValueError("Signature value is not an image data URL")
    try:
        data = base64.b64decode(match.group(2), validate=False)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 in data URL: {e}") from e
    if not data:
        raise ValueError("Empty image in data URL")
    return match.group(1).lower(), data


def _as_embeddable_image(data: bytes) -> Tuple[bytes, int, int]:
    """
    Probe an image with Pillow. Returns (bytes, width, height) where bytes
    is JPEG/PNG as given, or a PNG re-encoding for any other format.
    """
    with Image.open(io.BytesIO(data)) as img:
        img.load()
        width, height = img.size
        if img.format in ("JPEG", "PNG"):
            return data, width, height
        mode = "RGBA" if img.mode in ("RGBA", "LA", "P") else "RGB"
        buf = io.BytesIO()
        img.convert(mode).save(buf, format="PNG")
        return buf.getvalue(), width, height


def visual_order(text: str) -> str:
    """
    Reorder a right-to-left string for a renderer without bidi support.

    Hebrew runs are reversed; embedded Latin/digit runs keep their
    direction; run order is reversed. Text without Hebrew is unchanged.
    """
    if not _HEBREW.search(text):
        return text
    parts: List[str] = []
    pos = 0
    for match in _LTR_RUN.finditer(text):
        if match.start() > pos:
            parts.append(text[pos:match.start()][::-1])
        parts.append(match.group())
        pos = match.end()
    if pos < len(text):
        parts.append(text[pos:][::-1])
    return "".join(reversed(parts))


def ascii_fallback(value: str) -> str:
    """Replace anything outside printable ASCII; blank becomes "X"."""
    replaced = _NON_PRINTABLE_ASCII.sub("?", value)
    return replaced if replaced.strip() else "X"


@dataclass
class BurnResult:
    pdf_bytes: bytes
    drawn: int = 0
    skipped: int = 0
    failed: List[str] = field(default_factory=list)


class FieldBurner:
    """Draws field values onto PDF or raster originals."""

    def __init__(self, font_path: Optional[str] = None):
        self.font_path = font_path if font_path is not None else _find_font()
        self._font: Optional[fitz.Font] = None

    @property
    def font(self) -> Optional[fitz.Font]:
        if self._font is None and self.font_path:
            try:
                self._font = fitz.Font(fontfile=self.font_path)
            except Exception as e:
                logger.warning(f"Font {self.font_path} failed to load: {e}")
                self.font_path = None
        return self._font

    def burn(
        self,
        original: bytes,
        mime_type: Optional[str],
        fields: Sequence[SigningField],
        values: Mapping[str, str],
        path: Optional[str] = None,
    ) -> BurnResult:
        """
        Produce a flattened PDF with every present value drawn.

        Raises FieldBurnError only when the original cannot be loaded.
        A field that fails to draw is logged and counted in failed.
        """
        doc = self._load(original, mime_type, path)
        try:
            result = BurnResult(pdf_bytes=b"")
            page_count = doc.page_count

            for signing_field in fields:
                value = values.get(signing_field.id)
                if not value:
                    result.skipped += 1
                    continue

                page_index = min(max(signing_field.page, 1), page_count) - 1
                page = doc[page_index]
                page_height = page.rect.height
                rect = compute_field_rect(signing_field, page.rect.width, page_height)

                try:
                    if signing_field.type == SigningFieldType.SIGNATURE:
                        self._draw_signature(page, rect, value)
                    else:
                        self._draw_text(page, rect, value, signing_field)
                    result.drawn += 1
                except Exception as e:
                    logger.warning(
                        f"burn: field {signing_field.id} ({signing_field.type.value}) "
                        f"on page {page_index + 1} failed: {type(e).__name__}: {e}"
                    )
                    result.failed.append(signing_field.id)

            result.pdf_bytes = doc.tobytes(garbage=4, deflate=True, encryption=fitz.PDF_ENCRYPT_NONE)
        finally:
            doc.close()

        logger.info(
            f"burn: drawn={result.drawn}, skipped={result.skipped}, failed={len(result.failed)}, "
            f"pages={page_count}, size={len(result.pdf_bytes)}"
        )
        return result

    def _load(self, original: bytes, mime_type: Optional[str], path: Optional[str]) -> fitz.Document:
        if not original:
            raise FieldBurnError("Original document is empty")

        if is_pdf(mime_type, path):
            try:
                doc = fitz.open(stream=original, filetype="pdf")
            except Exception as e:
                raise FieldBurnError(f"Invalid PDF file: {e}") from e
            if doc.needs_pass and not doc.authenticate(""):
                doc.close()
                raise FieldBurnError("PDF is password protected")
            if doc.page_count == 0:
                doc.close()
                raise FieldBurnError("PDF has no pages")
            return doc

        try:
            image_bytes, width, height = _as_embeddable_image(original)
        except (UnidentifiedImageError, OSError, ValueError) as e:
            raise FieldBurnError(f"Unreadable image: {e}") from e

        doc = fitz.open()
        page = doc.new_page(width=width, height=height)
        page.insert_image(page.rect, stream=image_bytes)
        return doc

    def _draw_signature(self, page: fitz.Page, rect: FieldRect, value: str) -> None:
        _, data = decode_data_url(value)
        image_bytes, width, height = _as_embeddable_image(data)
        target = fit_image_rect(rect, width, height)
        page.insert_image(target.to_fitz_rect(page.rect.height), stream=image_bytes, keep_proportion=False)

    def _draw_text(self, page: fitz.Page, rect: FieldRect, value: str, signing_field: SigningField) -> None:
        max_width = rect.width - 2 * TEXT_PADDING
        size = min(MAX_TEXT_SIZE, rect.height * TEXT_SIZE_RATIO)
        font = self.font

        if font is not None and self._covers(font, value):
            text = self._clip(visual_order(value), font, size, max_width, rtl=bool(_HEBREW.search(value)))
            if text:
                page.insert_text(
                    self._baseline(page, rect, size),
                    text,
                    fontname=UNICODE_FONT_NAME,
                    fontfile=self.font_path,
                    fontsize=size,
                    color=(0, 0, 0),
                )
            return

        helv = fitz.Font("helv")
        if self._helvetica_renders(helv, value):
            text = self._clip(value, helv, size, max_width, rtl=False)
            if text:
                page.insert_text(
                    self._baseline(page, rect, size),
                    text,
                    fontname="helv",
                    fontsize=size,
                    color=(0, 0, 0),
                )
            return

        logger.info(f"burn: field {signing_field.id} has glyphs outside the font, using ASCII fallback")
        size = min(MAX_FALLBACK_SIZE, rect.height * FALLBACK_SIZE_RATIO)
        text = self._clip(ascii_fallback(value), helv, size, max_width, rtl=False)
        if text:
            page.insert_text(
                self._baseline(page, rect, size),
                text,
                fontname="helv",
                fontsize=size,
                color=FALLBACK_COLOR,
            )

    @staticmethod
    def _covers(font: fitz.Font, value: str) -> bool:
        return all(font.has_glyph(ord(ch)) for ch in value if not ch.isspace())

    @classmethod
    def _helvetica_renders(cls, helv: fitz.Font, value: str) -> bool:
        # Base-14 text is written WinAnsi-encoded, so Latin-1 is the ceiling
        return all(ord(ch) < 256 for ch in value) and cls._covers(helv, value)

    @staticmethod
    def _clip(text: str, font: fitz.Font, size: float, max_width: float, rtl: bool) -> str:
        """Drop characters until the text fits; RTL text loses its visual left end."""
        if max_width <= 0:
            return ""
        while text and font.text_length(text, fontsize=size) > max_width:
            text = text[1:] if rtl else text[:-1]
        return text

    @staticmethod
    def _baseline(page: fitz.Page, rect: FieldRect, size: float) -> fitz.Point:
        # Baseline sits a third of the font size below the field's vertical center
        baseline_pdf = rect.y + rect.height / 2 - size / 3
        return fitz.Point(rect.x + TEXT_PADDING, page.rect.height - baseline_pdf)


# Singleton instance
_field_burner: Optional[FieldBurner] = None


def get_field_burner() -> FieldBurner:
    """Get the field burner singleton."""
    global _field_burner
    if _field_burner is None:
        _field_burner = FieldBurner()
    return _field_burner
