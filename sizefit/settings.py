from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

from .errors import UnsupportedFormatError


# Output formats we support.
# "jpeg" is accepted as an alias of "jpg".
OutputFormat = Literal["jpg", "pdf"]
BudgetScope = Literal["total", "per_file"]

SUPPORTED_FORMATS = {
    "jpg": "jpg",
    "jpeg": "jpg",
    "pdf": "pdf",
}


def normalize_format(fmt: Optional[str]) -> str:
    """Map a user-supplied format name onto "jpg" or "pdf".

    Raises UnsupportedFormatError for anything else so callers fail
    before touching any input.
    """
    key = (fmt or "jpg").strip().lower().lstrip(".")
    try:
        return SUPPORTED_FORMATS[key]
    except KeyError:
        raise UnsupportedFormatError(key, "Only JPG and PDF formats supported.") from None


@dataclass(frozen=True)
class ContainerTuning:
    """
    Empirical constants for fitting pages into a PDF.

    These were tuned for JPEG pages embedded as raw pixels and are not
    expected to carry over to other codec/container pairs.
    """

    # Bytes reserved for the document structure itself.
    overhead_bytes: int = 10 * 1024
    # Smallest budget left for pages after the overhead is removed.
    min_budget_bytes: int = 2 * 1024
    # Share of the page budget given to the JPEG pre-degrade pass.
    # Embedded pixels take roughly 2x the size of the JPEG they came from.
    codec_budget_fraction: float = 0.40
    # Pixel ceiling: page budget / this = max pixels allowed on the page.
    bytes_per_pixel: float = 2.2


@dataclass(frozen=True)
class CompressSettings:
    """
    All user-configurable knobs for one compress run.

    Pure data: the batch reads it, the CLI builds it.
    """

    # ----- Output handling -----
    output_dir: Path
    target_format: str = "jpg"
    overwrite: bool = False

    # Naming. None -> derive from the input file name.
    custom_name: Optional[str] = None

    # ----- Budget -----
    # Bytes. 0 means "no constraint": one minimal-loss encode per item.
    target_size: int = 0
    # True: target_size is shared by every output item.
    # False: every output item gets the full target_size.
    total_size_mode: bool = True

    # ----- Modes -----
    # True selects the aggressive search ("Very Good" / pixelated);
    # False selects the smooth search.
    high_quality_mode: bool = True
    # PDF only: one merged document vs one document per page.
    merge_mode: bool = True

    # ----- Decoding -----
    max_width: int = 4096
    max_height: int = 4096
    auto_orient: bool = True

    # ----- JPEG encoding -----
    unconstrained_quality: int = 95
    jpeg_optimize: bool = False
    # Background used when flattening transparency for JPEG.
    jpeg_background: tuple[int, int, int] = (255, 255, 255)

    # ----- PDF tuning -----
    container: ContainerTuning = field(default_factory=ContainerTuning)

    @property
    def budget_scope(self) -> BudgetScope:
        return "total" if self.total_size_mode else "per_file"

    @property
    def strategy_name(self) -> str:
        return "aggressive" if self.high_quality_mode else "smooth"
