"""
Sampled decoding of inputs.

Sources are read at a power-of-two reduction so that huge photos never
sit in memory at full size before the search even starts.
"""
from __future__ import annotations

import contextlib
import io
import logging
import threading
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

from PIL import Image, ImageOps

from .codec import PdfContainer, flatten_alpha, has_alpha, is_pdf
from .errors import DecodeError
from .results import FULL_COLOR, REDUCED_COLOR, SourceImage


log = logging.getLogger(__name__)

# Image.MAX_IMAGE_PIXELS is process-wide.
_limit_lock = threading.Lock()


@dataclass(frozen=True)
class PendingPage:
    """One page found while probing an input; decoded later, on demand."""
    origin: str
    data: bytes
    kind: str  # "img" or "pdf"
    page_no: int = 1
    total_pages: int = 1


def compute_sample_size(width: int, height: int, max_w: int, max_h: int) -> int:
    """
    Largest power-of-two reduction that keeps both dimensions at or above
    the working bounds.

    4000x3000 into 1024x1024 -> 2 (2000x1500 still covers the bounds).
    """
    s = 1
    if height > max_h or width > max_w:
        half_h = height // 2
        half_w = width // 2
        while half_h // s >= max_h and half_w // s >= max_w:
            s *= 2
    return s


class SampledDecoder:
    def __init__(
        self,
        max_width: int = 4096,
        max_height: int = 4096,
        auto_orient: bool = True,
        background: tuple[int, int, int] = (255, 255, 255),
        container: Optional[PdfContainer] = None,
    ) -> None:
        self.max_width = max_width
        self.max_height = max_height
        self.auto_orient = auto_orient
        self.background = background
        self.container = container or PdfContainer()

    # ----- Probing -----
    def probe(self, origin: str, data: bytes) -> List[PendingPage]:
        """
        Classify an input without decoding pixels.

        PDFs expand to one PendingPage per page. Raise DecodeError when the
        bytes are neither a raster image nor a PDF.
        """
        if is_pdf(data):
            total = self.container.page_count(data)
            if total <= 0:
                raise DecodeError(f"{origin}: PDF has no pages")
            return [
                PendingPage(origin, data, "pdf", page_no=i + 1, total_pages=total)
                for i in range(total)
            ]

        self.decode_bounds(data)
        return [PendingPage(origin, data, "img")]

    def decode_bounds(self, data: bytes) -> Tuple[int, int]:
        try:
            with _pixel_limit_lifted():
                im = Image.open(io.BytesIO(data))
            with im:
                return im.size
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Not a decodable image: {exc}") from exc

    # ----- Decoding -----
    def load(self, page: PendingPage, reduced_color: bool = False) -> SourceImage:
        if page.kind == "pdf":
            im = self.container.render_page(page.data, page.page_no - 1)
            return SourceImage(
                im,
                origin=page.origin,
                page_no=page.page_no,
                total_pages=page.total_pages,
                source_format="pdf",
                pixel_format=FULL_COLOR,
            )

        w, h = self.decode_bounds(page.data)
        sample = compute_sample_size(w, h, self.max_width, self.max_height)
        im = self.decode_scaled(page.data, sample, reduced_color)
        log.debug("%s: %dx%d decoded at 1/%d -> %dx%d", page.origin, w, h, sample, im.width, im.height)
        return SourceImage(
            im,
            origin=page.origin,
            source_format="img",
            pixel_format=REDUCED_COLOR if reduced_color else FULL_COLOR,
        )

    def decode_scaled(self, data: bytes, sample: int, reduced_color: bool = False) -> Image.Image:
        try:
            with _pixel_limit_lifted() as limit:
                im = Image.open(io.BytesIO(data))
            target = (max(1, im.width // sample), max(1, im.height // sample))
            if sample > 1 and im.format == "JPEG":
                # DCT scaling: libjpeg decodes straight at 1/2, 1/4 or 1/8.
                im.draft("RGB", target)
            # Same threshold Pillow errors at, but counted after DCT scaling.
            if limit and im.width * im.height > 2 * limit:
                im.close()
                raise DecodeError(f"Image too large to decode: {im.width}x{im.height} pixels")
            im.load()
        except (OSError, ValueError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Cannot decode image: {exc}") from exc

        # Palette and CMYK sources must be converted before averaging pixels.
        im = self._convert(im, reduced_color)

        remaining = im.width // target[0]
        if remaining > 1:
            im = _swap(im, im.reduce(remaining))

        if self.auto_orient:
            im = _swap(im, ImageOps.exif_transpose(im))

        return im

    def _convert(self, im: Image.Image, reduced_color: bool) -> Image.Image:
        if reduced_color:
            # Alpha is dropped here: only safe when the output is JPEG.
            if has_alpha(im):
                flat = flatten_alpha(im, self.background)
                if "exif" in im.info:
                    flat.info["exif"] = im.info["exif"]
                return _swap(im, flat)
            if im.mode != "RGB":
                return _swap(im, im.convert("RGB"))
            return im

        want = "RGBA" if has_alpha(im) else "RGB"
        if im.mode != want:
            return _swap(im, im.convert(want))
        return im


def _swap(old: Image.Image, new: Image.Image) -> Image.Image:
    """Hand over from old to new, closing old unless it is the same object."""
    if new is not old:
        old.close()
    return new


@contextlib.contextmanager
def _pixel_limit_lifted() -> Iterator[Optional[int]]:
    """
    Open images without Pillow's decompression bomb check.

    Pillow counts full-size pixels inside Image.open, before draft() can
    shrink a JPEG. Yields the limit in force so callers can apply it to
    the pixels they will actually decode.
    """
    with _limit_lock:
        limit = Image.MAX_IMAGE_PIXELS
        Image.MAX_IMAGE_PIXELS = None
        try:
            yield limit
        finally:
            Image.MAX_IMAGE_PIXELS = limit
