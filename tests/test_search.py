from __future__ import annotations

import pytest

from conftest import FakeCodec, FakeImage, make_photo
from sizefit.codec import PillowCodec
from sizefit.errors import EncodeError
from sizefit.search import (
    AGGRESSIVE,
    SMOOTH,
    aggressive_fit,
    fit_to_budget,
    get_strategy,
    smooth_fit,
)


# ----- Behaviour with the size-predictable fake codec -----

def test_smooth_finds_highest_fitting_quality_at_full_scale(fake_codec):
    # 100x100 -> 10 + 100 * q bytes; q=49 is the last that fits 4910.
    res = smooth_fit(FakeImage(100, 100), 4910, fake_codec)

    assert res.quality == 49
    assert res.scale == 1.0
    assert res.best_effort is False
    assert res.size <= 4910


def test_smooth_downscale_marks_best_effort(fake_codec):
    res = smooth_fit(FakeImage(100, 100), 500, fake_codec)

    assert res.size <= 500
    assert 0.0 < res.scale < 1.0
    assert res.best_effort is True
    assert SMOOTH.min_quality <= res.quality <= SMOOTH.max_quality


def test_smooth_unreachable_falls_back_to_original_at_quality_one(fake_codec):
    res = smooth_fit(FakeImage(100, 100), 5, fake_codec)

    assert res.best_effort is True
    assert res.quality == 1
    assert res.scale == 1.0
    assert res.size == 10 + 100 * 100 // 100
    assert fake_codec.calls[-1] == (100, 100, 1)


def test_aggressive_unreachable_keeps_smallest_across_scales(fake_codec):
    res = aggressive_fit(FakeImage(100, 100), 5, fake_codec)

    assert res.best_effort is True
    assert res.quality == 1
    assert res.size == 10
    # 0.6 ** 5 is the first scale whose floor encode reaches 10 bytes.
    assert res.scale == pytest.approx(0.6 ** 5)


def test_aggressive_is_never_larger_than_smooth_when_unreachable():
    smooth = smooth_fit(FakeImage(100, 100), 5, FakeCodec())
    aggressive = aggressive_fit(FakeImage(100, 100), 5, FakeCodec())

    assert aggressive.size <= smooth.size


def test_quality_ceiling_per_strategy(fake_codec):
    big = 10 ** 9
    assert smooth_fit(FakeImage(50, 50), big, fake_codec).quality == SMOOTH.max_quality
    assert aggressive_fit(FakeImage(50, 50), big, fake_codec).quality == AGGRESSIVE.max_quality


def test_aggressive_does_not_search_below_quality_floor(fake_codec):
    aggressive_fit(FakeImage(100, 100), 500, fake_codec)

    searched = [q for _, _, q in fake_codec.calls if q != 1]
    assert searched
    assert min(searched) >= AGGRESSIVE.min_quality


def test_scale_loop_stops_at_floor(fake_codec):
    smooth_fit(FakeImage(1000, 1000), 1, fake_codec)

    widths = sorted({w for w, _, _ in fake_codec.calls if w != 1000})
    # smallest scale tried is still above 0.05
    assert min(widths) >= int(1000 * 0.05)


def test_encode_failure_abandons_scale_without_retry():
    codec = FakeCodec(fail_widths={100})
    res = smooth_fit(FakeImage(100, 100), 5000, codec)

    full_scale_attempts = [c for c in codec.calls if c[0] == 100]
    assert len(full_scale_attempts) == 1
    assert res.scale == pytest.approx(0.85)
    assert res.best_effort is True
    assert res.size <= 5000


def test_final_fallback_failure_propagates():
    codec = FakeCodec(fail_widths={100})
    with pytest.raises(EncodeError):
        smooth_fit(FakeImage(100, 100), 1, codec)


def test_scaled_intermediates_are_closed(fake_codec):
    aggressive_fit(FakeImage(100, 100), 5, fake_codec)

    assert fake_codec.resized
    assert all(im.closed for im in fake_codec.resized)


def test_unconstrained_budget_is_single_pass(fake_codec):
    res = fit_to_budget(FakeImage(100, 100), 0, SMOOTH, fake_codec, unconstrained_quality=95)

    assert fake_codec.calls == [(100, 100, 95)]
    assert res.best_effort is False
    assert res.scale == 1.0


def test_get_strategy():
    assert get_strategy("Smooth") is SMOOTH
    assert get_strategy("aggressive") is AGGRESSIVE
    with pytest.raises(ValueError):
        get_strategy("lossless")


# ----- Real JPEG encoding -----

@pytest.mark.parametrize("budget", [1500, 6000, 25000, 120000])
@pytest.mark.parametrize("fit", [smooth_fit, aggressive_fit])
def test_fits_budget_or_flags_best_effort(photo, fit, budget):
    res = fit(photo, budget)

    assert res.size <= budget or res.best_effort
    if res.scale < 1.0:
        assert res.best_effort


def test_generous_budget_keeps_full_resolution(photo):
    res = smooth_fit(photo, 10 ** 7)

    assert res.best_effort is False
    assert res.scale == 1.0
    assert res.quality == SMOOTH.max_quality


def test_encoding_is_deterministic(photo):
    codec = PillowCodec()
    assert codec.encode(photo, 42) == codec.encode(photo, 42)

    first = smooth_fit(photo, 20000)
    second = smooth_fit(photo, 20000)
    assert first == second


def test_unconstrained_real_encode(photo):
    res = aggressive_fit(photo, 0)

    assert res.best_effort is False
    assert res.data[:2] == b"\xff\xd8"


def test_large_photo_meets_budget():
    budget = 200 * 1024
    res = smooth_fit(make_photo(4000, 3000), budget)

    assert res.size <= budget
    if res.scale < 1.0:
        assert res.best_effort
