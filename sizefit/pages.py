"""Fitting pages into a PDF byte budget."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from PIL import Image

from .codec import PillowCodec
from .search import AGGRESSIVE, fit_to_budget
from .settings import BudgetScope, ContainerTuning


log = logging.getLogger(__name__)


@dataclass
class PageResult:
    image: Image.Image
    best_effort: bool = False


def plan_page_budgets(
    total_budget: int,
    page_count: int,
    scope: BudgetScope = "total",
    tuning: Optional[ContainerTuning] = None,
) -> int:
    """
    Byte budget for each page of a document.

    The document overhead is reserved first and the rest floored at
    tuning.min_budget_bytes. "total" splits that across all pages,
    "per_file" hands every page the whole amount.
    """
    tuning = tuning or ContainerTuning()

    if total_budget <= 0:
        return 0
    if page_count <= 0:
        raise ValueError("page_count must be positive")

    effective = max(total_budget - tuning.overhead_bytes, tuning.min_budget_bytes)
    if scope == "total":
        # A positive budget never turns into the unconstrained sentinel.
        return max(1, effective // page_count)
    return effective


def codec_budget_for(page_budget: int, tuning: Optional[ContainerTuning] = None) -> int:
    tuning = tuning or ContainerTuning()
    return int(page_budget * tuning.codec_budget_fraction)


def process_page_for_container(
    im: Image.Image,
    page_budget: int,
    tuning: Optional[ContainerTuning] = None,
    codec: Optional[PillowCodec] = None,
) -> PageResult:
    """
    Degrade a page so it fits page_budget once embedded.

    The input is not released here; the returned image is a new object
    unless page_budget <= 0, in which case im itself comes back.
    """
    tuning = tuning or ContainerTuning()
    codec = codec or PillowCodec()

    if page_budget <= 0:
        return PageResult(im, best_effort=False)

    # Step 1: hard JPEG degrade, then back to pixels for embedding.
    sub_budget = codec_budget_for(page_budget, tuning)
    res = fit_to_budget(im, sub_budget, AGGRESSIVE, codec)
    degraded = codec.decode(res.data)
    best_effort = res.best_effort

    # Step 2: pixel-count safety net.
    max_pixels = int(page_budget / tuning.bytes_per_pixel)
    current = degraded.width * degraded.height
    if current > max_pixels:
        scale = math.sqrt(max_pixels / current)
        new_w = max(1, int(degraded.width * scale))
        new_h = max(1, int(degraded.height * scale))
        log.debug("page over pixel ceiling (%d > %d), scaling to %dx%d", current, max_pixels, new_w, new_h)
        scaled = codec.resize(degraded, new_w, new_h)
        degraded.close()
        degraded = scaled
        best_effort = True

    return PageResult(degraded, best_effort=best_effort)
