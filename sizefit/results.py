from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from PIL import Image


FULL_COLOR = "full"
REDUCED_COLOR = "reduced"


class SourceImage:
    """
    A decoded page plus where it came from.

    Exactly one stage owns it at a time. Whoever holds it last calls
    release() (or uses it as a context manager) once the pixels have been
    encoded or drawn onto a page.
    """

    def __init__(
        self,
        image: Image.Image,
        origin: str,
        page_no: int = 1,
        total_pages: int = 1,
        source_format: str = "img",
        pixel_format: str = FULL_COLOR,
    ) -> None:
        self.image = image
        self.origin = origin
        self.page_no = page_no
        self.total_pages = total_pages
        self.source_format = source_format
        self.pixel_format = pixel_format
        self._released = False

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height

    @property
    def pixels(self) -> int:
        return self.image.width * self.image.height

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self.image.close()

    def __enter__(self) -> "SourceImage":
        return self

    def __exit__(self, *exc) -> None:
        self.release()

    def __repr__(self) -> str:
        return (
            f"SourceImage({self.origin!r}, page {self.page_no}/{self.total_pages}, "
            f"{self.image.width}x{self.image.height}, {self.pixel_format})"
        )


@dataclass(frozen=True)
class EncodeResult:
    """
    Output of one budget search.

    best_effort=False guarantees size <= budget (for budget > 0).
    best_effort=True means the target was missed or the image had to be
    downscaled to hit it; callers must surface that to the user.
    """
    data: bytes
    best_effort: bool
    quality: Optional[int] = None
    scale: float = 1.0

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class OutputArtifact:
    """One file the sink has durably written."""
    file_name: str
    location: str
    size_bytes: int
    path: Optional[Path] = None
    best_effort: bool = False
    actual_format: str = ""

    def flagged(self, best_effort: bool, actual_format: str) -> "OutputArtifact":
        return replace(self, best_effort=best_effort, actual_format=actual_format)
