from __future__ import annotations

import pytest

from conftest import make_photo
import sizefit.pages as pages_mod
from sizefit.pages import codec_budget_for, plan_page_budgets, process_page_for_container
from sizefit.settings import ContainerTuning


@pytest.mark.parametrize("count", [1, 2, 5, 40])
@pytest.mark.parametrize("scope", ["total", "per_file"])
def test_zero_budget_is_unconstrained(count, scope):
    assert plan_page_budgets(0, count, scope) == 0


@pytest.mark.parametrize("total", [10241, 20000, 307200, 5 * 1024 * 1024])
@pytest.mark.parametrize("count", [1, 2, 3, 7, 64])
def test_total_mode_never_exceeds_budget(total, count):
    per_page = plan_page_budgets(total, count, "total")
    assert per_page * count <= total


@pytest.mark.parametrize("total", [1, 2048, 5000, 10240, 12000])
def test_small_budgets_are_floored(total):
    assert plan_page_budgets(total, 1, "per_file") == 2048
    assert plan_page_budgets(total, 1, "total") == 2048


def test_tiny_total_budget_stays_constrained():
    # 2048 floor spread over more pages than bytes.
    assert plan_page_budgets(5000, 3000, "total") == 1


def test_per_file_gives_every_page_the_remainder():
    assert plan_page_budgets(300 * 1024, 3, "per_file") == 300 * 1024 - 10240


def test_merge_sub_budget_for_three_pages():
    page_budget = plan_page_budgets(300 * 1024, 3, "total")

    assert page_budget == (300 * 1024 - 10240) // 3
    assert codec_budget_for(page_budget) == int((300 * 1024 - 10240) / 3 * 0.40)


def test_tuning_is_configurable():
    tuning = ContainerTuning(overhead_bytes=0, min_budget_bytes=1, codec_budget_fraction=0.5)
    assert plan_page_budgets(1000, 4, "total", tuning) == 250
    assert codec_budget_for(1000, tuning) == 500


def test_page_count_must_be_positive():
    with pytest.raises(ValueError):
        plan_page_budgets(50000, 0, "total")


def test_unconstrained_page_is_untouched(photo):
    res = process_page_for_container(photo, 0)

    assert res.image is photo
    assert res.best_effort is False


def test_page_processor_uses_forty_percent_sub_budget(photo, monkeypatch):
    seen = []
    real_fit = pages_mod.fit_to_budget

    def spy(im, budget, strategy, codec=None, *args, **kwargs):
        seen.append((budget, strategy.name))
        return real_fit(im, budget, strategy, codec, *args, **kwargs)

    monkeypatch.setattr(pages_mod, "fit_to_budget", spy)
    page_budget = plan_page_budgets(300 * 1024, 3, "total")

    res = process_page_for_container(photo, page_budget)
    res.image.close()

    assert seen == [(int(page_budget * 0.40), "aggressive")]


def test_pixel_ceiling_downscales_and_flags():
    im = make_photo(600, 400)
    page_budget = 50000

    res = process_page_for_container(im, page_budget)

    max_pixels = int(page_budget / 2.2)
    assert res.image.width * res.image.height <= max_pixels
    assert res.best_effort is True
    assert res.image is not im
    # aspect ratio survives the uniform scale
    assert res.image.width / res.image.height == pytest.approx(1.5, rel=0.05)


def test_roomy_page_keeps_resolution():
    im = make_photo(300, 200, noise=False)

    res = process_page_for_container(im, 5 * 1024 * 1024)

    assert res.image.size == (300, 200)
    assert res.best_effort is False
    assert res.image.mode == "RGB"
