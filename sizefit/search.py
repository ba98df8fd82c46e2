"""
Budget-fitting search over scale x JPEG quality.

Both strategies share one loop: shrink the image step by step and, at each
scale, binary-search the quality range for the highest level whose output
still fits the budget. They differ only in how fast the scale decays, which
quality range is searched and what is returned when nothing fits.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Optional, Protocol

from PIL import Image

from .codec import PillowCodec
from .errors import EncodeError
from .results import EncodeResult


log = logging.getLogger(__name__)

# Quality used for the last-resort encodes.
FLOOR_QUALITY = 1

# "original": give up and encode the unscaled image at FLOOR_QUALITY.
# "smallest": encode every scale at FLOOR_QUALITY, keep the smallest buffer.
FallbackPolicy = Literal["original", "smallest"]


class Codec(Protocol):
    def encode(self, im: Image.Image, quality: int) -> bytes: ...

    def resize(self, im: Image.Image, width: int, height: int) -> Image.Image: ...


@dataclass(frozen=True)
class SearchStrategy:
    name: str
    scale_decay: float
    scale_floor: float
    min_quality: int
    max_quality: int
    fallback: FallbackPolicy


# Prefer lower quality over losing resolution.
SMOOTH = SearchStrategy(
    name="smooth",
    scale_decay=0.85,
    scale_floor=0.05,
    min_quality=10,
    max_quality=90,
    fallback="original",
)

# Drop resolution early but never go below quality 40 while searching.
AGGRESSIVE = SearchStrategy(
    name="aggressive",
    scale_decay=0.6,
    scale_floor=0.01,
    min_quality=40,
    max_quality=95,
    fallback="smallest",
)

STRATEGIES = {s.name: s for s in (SMOOTH, AGGRESSIVE)}


def get_strategy(name: str) -> SearchStrategy:
    try:
        return STRATEGIES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown search strategy: {name}") from None


def fit_to_budget(
    im: Image.Image,
    budget: int,
    strategy: SearchStrategy,
    codec: Optional[Codec] = None,
    unconstrained_quality: int = 95,
) -> EncodeResult:
    """
    Encode im so the result is at most budget bytes.

    budget <= 0 means unconstrained: a single encode at
    unconstrained_quality. Any result that needed downscaling, or that
    still misses the budget, comes back with best_effort=True.
    """
    codec = codec or PillowCodec()

    if budget <= 0:
        data = codec.encode(im, unconstrained_quality)
        return EncodeResult(data, best_effort=False, quality=unconstrained_quality)

    smallest: Optional[EncodeResult] = None
    scale = 1.0

    while scale > strategy.scale_floor:
        if scale == 1.0:
            scaled = im
        else:
            scaled = codec.resize(im, int(im.width * scale), int(im.height * scale))

        try:
            found = _search_quality(scaled, budget, strategy, codec)
            if found is not None:
                data, quality = found
                log.debug(
                    "%s: fit %d/%d bytes at scale %.3f quality %d",
                    strategy.name, len(data), budget, scale, quality,
                )
                return EncodeResult(data, best_effort=scale < 1.0, quality=quality, scale=scale)

            if strategy.fallback == "smallest":
                try:
                    data = codec.encode(scaled, FLOOR_QUALITY)
                except EncodeError as exc:
                    log.debug("%s: floor encode failed at scale %.3f: %s", strategy.name, scale, exc)
                else:
                    if smallest is None or len(data) < smallest.size:
                        smallest = EncodeResult(data, best_effort=True, quality=FLOOR_QUALITY, scale=scale)
        finally:
            if scaled is not im:
                scaled.close()

        scale *= strategy.scale_decay

    if smallest is not None:
        log.debug("%s: budget %d unreachable, smallest is %d bytes", strategy.name, budget, smallest.size)
        return smallest

    log.debug("%s: budget %d unreachable, falling back to quality %d", strategy.name, budget, FLOOR_QUALITY)
    data = codec.encode(im, FLOOR_QUALITY)
    return EncodeResult(data, best_effort=True, quality=FLOOR_QUALITY)


def _search_quality(
    im: Image.Image,
    budget: int,
    strategy: SearchStrategy,
    codec: Codec,
) -> Optional[tuple[bytes, int]]:
    """Highest quality in the strategy's range that fits, or None."""
    low, high = strategy.min_quality, strategy.max_quality
    best: Optional[tuple[bytes, int]] = None

    while low <= high:
        mid = (low + high) // 2
        try:
            data = codec.encode(im, mid)
        except EncodeError as exc:
            # Abandon this scale; no retry at the same parameters.
            log.debug("%s: encode failed at quality %d: %s", strategy.name, mid, exc)
            break

        if len(data) <= budget:
            best = (data, mid)
            low = mid + 1  # try a higher (better) quality
        else:
            high = mid - 1  # need stronger compression

    return best


def smooth_fit(im: Image.Image, budget: int, codec: Optional[Codec] = None) -> EncodeResult:
    return fit_to_budget(im, budget, SMOOTH, codec)


def aggressive_fit(im: Image.Image, budget: int, codec: Optional[Codec] = None) -> EncodeResult:
    return fit_to_budget(im, budget, AGGRESSIVE, codec)
