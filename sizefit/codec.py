"""
Codec and container primitives.

Everything that touches Pillow's encoders or PyMuPDF lives here so the
search and batch code only see plain Pillow images and bytes.
"""
from __future__ import annotations

import io
import logging

import pymupdf as fitz
from PIL import Image

from .errors import DecodeError, EncodeError


log = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"
# PDF pages are rendered at their native 72 dpi: one point -> one pixel.
PDF_RENDER_DPI = 72


class PillowCodec:
    """JPEG encode / generic decode / resize backed by Pillow."""

    def __init__(
        self,
        optimize: bool = False,
        background: tuple[int, int, int] = (255, 255, 255),
        resample: Image.Resampling = Image.Resampling.BILINEAR,
    ) -> None:
        self.optimize = optimize
        self.background = background
        self.resample = resample

    def encode(self, im: Image.Image, quality: int) -> bytes:
        rgb = to_rgb(im, self.background)
        buf = io.BytesIO()
        try:
            rgb.save(buf, format="JPEG", quality=int(quality), optimize=self.optimize)
        except (OSError, ValueError) as exc:
            raise EncodeError(f"JPEG encode failed at quality {quality}: {exc}") from exc
        finally:
            if rgb is not im:
                rgb.close()
        return buf.getvalue()

    def decode(self, data: bytes) -> Image.Image:
        try:
            im = Image.open(io.BytesIO(data))
            im.load()
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Cannot decode image data: {exc}") from exc
        return im

    def resize(self, im: Image.Image, width: int, height: int) -> Image.Image:
        return im.resize((max(1, int(width)), max(1, int(height))), self.resample)


class PdfContainer:
    """Build and read PDFs whose pages are single raster images."""

    def __init__(self, garbage: int = 3, deflate: bool = True) -> None:
        self.garbage = garbage
        self.deflate = deflate

    # ----- Writing -----
    def new_document(self) -> fitz.Document:
        return fitz.open()

    def add_page(self, doc: fitz.Document, im: Image.Image, page_index: int = -1) -> fitz.Page:
        """
        Append a page sized to the image (1px = 1pt) and draw the pixels.

        Pixels are embedded raw (Flate), not as JPEG, which is why pages
        must be pre-degraded before they get here.
        """
        rgb = to_rgb(im)
        try:
            pix = fitz.Pixmap(fitz.csRGB, rgb.width, rgb.height, rgb.tobytes(), False)
        finally:
            if rgb is not im:
                rgb.close()
        page = doc.new_page(pno=page_index, width=im.width, height=im.height)
        page.insert_image(page.rect, pixmap=pix)
        return page

    def serialize(self, doc: fitz.Document) -> bytes:
        return doc.tobytes(garbage=self.garbage, deflate=self.deflate)

    # ----- Reading -----
    def page_count(self, data: bytes) -> int:
        with self._open(data) as doc:
            try:
                return doc.page_count
            except (RuntimeError, ValueError) as exc:
                raise DecodeError(f"Cannot read PDF page tree: {exc}") from exc

    def render_page(self, data: bytes, index: int) -> Image.Image:
        with self._open(data) as doc:
            try:
                page = doc.load_page(index)
                pix = page.get_pixmap(dpi=PDF_RENDER_DPI, colorspace=fitz.csRGB, alpha=False)
            except (RuntimeError, ValueError, IndexError) as exc:
                raise DecodeError(f"Cannot render PDF page {index + 1}: {exc}") from exc
            return Image.frombytes("RGB", (pix.width, pix.height), pix.samples)

    def _open(self, data: bytes) -> fitz.Document:
        try:
            return fitz.open(stream=data, filetype="pdf")
        except (RuntimeError, ValueError) as exc:
            raise DecodeError(f"Cannot open PDF: {exc}") from exc


def is_pdf(data: bytes) -> bool:
    return data[:1024].lstrip().startswith(PDF_MAGIC)


def has_alpha(im: Image.Image) -> bool:
    if im.mode in ("RGBA", "LA"):
        return True
    if im.mode == "P" and "transparency" in im.info:
        return True
    return False


def flatten_alpha(im: Image.Image, background_rgb: tuple[int, int, int]) -> Image.Image:
    # Ensure we are in RGBA so alpha exists
    rgba = im.convert("RGBA")
    bg = Image.new("RGBA", rgba.size, background_rgb + (255,))
    comp = Image.alpha_composite(bg, rgba)
    return comp.convert("RGB")


def to_rgb(im: Image.Image, background_rgb: tuple[int, int, int] = (255, 255, 255)) -> Image.Image:
    """Return im itself when already RGB, otherwise a new RGB copy."""
    if im.mode == "RGB":
        return im
    if has_alpha(im):
        return flatten_alpha(im, background_rgb)
    return im.convert("RGB")
