from __future__ import annotations

import io

import pytest
from PIL import Image

from sizefit.codec import PdfContainer
from sizefit.errors import EncodeError


def make_photo(width: int = 320, height: int = 240, noise: bool = True) -> Image.Image:
    """Busy RGB test image; noise makes it expensive to compress."""
    r = Image.linear_gradient("L").resize((width, height))
    g = Image.effect_mandelbrot((width, height), (-2.0, -1.25, 0.75, 1.25), 60)
    if noise:
        b = Image.effect_noise((width, height), 80)
    else:
        b = Image.radial_gradient("L").resize((width, height))
    return Image.merge("RGB", (r, g, b))


def image_bytes(im: Image.Image, fmt: str = "JPEG", **kwargs) -> bytes:
    buf = io.BytesIO()
    im.save(buf, format=fmt, **kwargs)
    return buf.getvalue()


def pdf_bytes(*images: Image.Image) -> bytes:
    container = PdfContainer()
    doc = container.new_document()
    try:
        for im in images:
            container.add_page(doc, im)
        return container.serialize(doc)
    finally:
        doc.close()


class FakeImage:
    def __init__(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self.closed = False

    def close(self) -> None:
        self.closed = True


class FakeCodec:
    """
    Encoded size is 10 + width * height * quality // 100 bytes.

    fail_widths: encodes of images this wide raise EncodeError.
    """

    def __init__(self, fail_widths=()) -> None:
        self.fail_widths = set(fail_widths)
        self.calls = []
        self.resized = []

    def encode(self, im, quality: int) -> bytes:
        self.calls.append((im.width, im.height, quality))
        if im.width in self.fail_widths:
            raise EncodeError(f"refusing width {im.width}")
        return b"x" * (10 + im.width * im.height * quality // 100)

    def resize(self, im, width: int, height: int) -> FakeImage:
        out = FakeImage(max(1, width), max(1, height))
        self.resized.append(out)
        return out


@pytest.fixture
def photo() -> Image.Image:
    im = make_photo()
    yield im
    im.close()


@pytest.fixture
def fake_codec() -> FakeCodec:
    return FakeCodec()
