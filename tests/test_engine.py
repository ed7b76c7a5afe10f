"""Tests for the size-targeted compression engine."""

import time

import pytest
from PIL import Image
from pydantic import ValidationError

from compression.base import FormatStrategy
from compression.engine import SizeSearch, compress_bytes_to_size, compress_to_size, default_target
from compression.jpeg import JpegStrategy
from exceptions import CodecFailureError
from schemas import CompressionResult, CompressionTarget
from tests.helpers import make_image, make_noisy_image
from utils.format_detect import ImageFormat


class LinearStrategy(FormatStrategy):
    """Encoded size is exactly ``quality * bytes_per_step``."""

    format = ImageFormat.JPEG

    def __init__(self, bytes_per_step=100, delay=0.0):
        self.bytes_per_step = bytes_per_step
        self.delay = delay
        self.calls = []

    def probe(self, img, quality):
        self.calls.append(quality)
        if self.delay:
            time.sleep(self.delay)
        return b"x" * (quality * self.bytes_per_step)


class BrokenStrategy(FormatStrategy):
    format = ImageFormat.JPEG

    def probe(self, img, quality):
        raise OSError("encoder exploded")


@pytest.fixture
def img():
    return Image.new("RGB", (8, 8))


def _target(target_bytes, fmt=ImageFormat.JPEG):
    return CompressionTarget(target_bytes=target_bytes, format=fmt, min_quality=10, max_quality=100)


# --- Search behavior ---


def test_converges_inside_tolerance_band(img):
    strategy = LinearStrategy()
    result = compress_to_size(img, _target(5250), strategy=strategy, max_trials=10, tolerance=0.05, time_budget=0)
    assert result.converged
    assert result.target_met
    assert result.achieved_bytes == 5200
    assert result.trials <= 10


def test_in_band_result_over_budget_is_not_reported_as_met(img):
    strategy = LinearStrategy()
    result = compress_to_size(img, _target(5000), strategy=strategy, max_trials=10, tolerance=0.05, time_budget=0)
    assert result.achieved_bytes == 5200
    assert result.converged
    assert not result.target_met
    assert result.diagnostics()["target_met"] == "false"
    assert result.diagnostics()["converged"] == "true"


def test_probes_best_quality_then_high_quality_floor(img):
    strategy = LinearStrategy()
    compress_to_size(img, _target(5000), strategy=strategy, time_budget=0)
    assert strategy.calls[:2] == [100, 95]


def test_oversized_budget_keeps_best_quality(img):
    """Target above the best-quality size: no degradation to hit the budget."""
    strategy = LinearStrategy()
    result = compress_to_size(img, _target(50_000), strategy=strategy, time_budget=0)
    assert result.quality_used == 100
    assert result.trials == 1
    assert result.target_met


def test_budget_above_q95_size_never_drops_below_95(img):
    strategy = LinearStrategy()
    q95_size = 95 * strategy.bytes_per_step
    result = compress_to_size(img, _target(q95_size + 1), strategy=strategy, time_budget=0)
    assert result.quality_used >= 95


def test_trial_cap_is_respected(img):
    strategy = LinearStrategy()
    result = compress_to_size(img, _target(1234), strategy=strategy, max_trials=3, time_budget=0)
    assert result.trials <= 3
    assert len(strategy.calls) == result.trials


def test_never_exceeds_ten_trials(img):
    strategy = LinearStrategy(bytes_per_step=37)
    for target in (1, 500, 1111, 2222, 3001, 3699):
        strategy.calls.clear()
        result = compress_to_size(img, _target(target), strategy=strategy, max_trials=10, time_budget=0)
        assert result.trials <= 10


def test_unreachable_budget_returns_smallest_observed(img):
    strategy = LinearStrategy()
    result = compress_to_size(img, _target(1), strategy=strategy, time_budget=0)
    assert not result.target_met
    assert not result.converged
    assert result.achieved_bytes > 1
    assert result.achieved_bytes == min(q * 100 for q in strategy.calls)


def test_prefers_closest_candidate_under_budget(img):
    strategy = LinearStrategy()
    search = SizeSearch(strategy, _target(4321), max_trials=10, tolerance=0.0)
    result = search.run(img)
    # Zero tolerance: the search exhausts the range and keeps the closest from below
    assert result.achieved_bytes == 4300
    assert result.quality_used == 43


def test_time_budget_stops_search(img):
    strategy = LinearStrategy(delay=0.01)
    result = compress_to_size(img, _target(4321), strategy=strategy, time_budget=1e-6)
    assert result.timed_out
    assert result.trials == 1


def test_encoder_error_becomes_codec_failure(img):
    with pytest.raises(CodecFailureError):
        compress_to_size(img, _target(1000), strategy=BrokenStrategy(), time_budget=0)


# --- Real codecs ---


def test_jpeg_hits_byte_budget_within_tolerance():
    img = make_noisy_image((600, 400))
    strategy = JpegStrategy()
    target_bytes = len(strategy.probe(img, 60))
    result = compress_to_size(img, _target(target_bytes), time_budget=0)
    assert result.format == ImageFormat.JPEG
    assert abs(result.achieved_bytes - target_bytes) <= 0.05 * target_bytes
    assert 10 <= result.quality_used <= 95


def test_unreachable_png_target_is_flagged_not_raised():
    """50x50 solid PNG with a 1-byte budget returns the smallest encoding."""
    data = make_image("PNG", size=(50, 50), color=(0, 128, 255))
    result = compress_bytes_to_size(data, _target(1, ImageFormat.PNG), time_budget=0)
    assert isinstance(result, CompressionResult)
    assert not result.target_met
    assert not result.converged
    assert result.achieved_bytes > 1
    assert result.achieved_bytes == len(result.encoded_bytes)
    assert result.trials <= 10


def test_webp_budget():
    img = make_noisy_image((300, 200))
    result = compress_to_size(img, _target(6000, ImageFormat.WEBP), time_budget=0)
    assert result.format == ImageFormat.WEBP
    assert result.encoded_bytes[:4] == b"RIFF"


def test_compress_bytes_rejects_garbage():
    with pytest.raises(CodecFailureError):
        compress_bytes_to_size(b"\x89PNG\r\n\x1a\nnot really", _target(1000))


# --- Models ---


def test_target_rejects_inverted_bounds():
    with pytest.raises(ValidationError):
        CompressionTarget(target_bytes=100, min_quality=90, max_quality=20)


def test_target_rejects_zero_budget():
    with pytest.raises(ValidationError):
        CompressionTarget(target_bytes=0)


def test_target_rejects_format_without_strategy():
    with pytest.raises(ValidationError):
        CompressionTarget(target_bytes=100, format=ImageFormat.GIF)


def test_result_size_must_match_bytes():
    with pytest.raises(ValidationError):
        CompressionResult(
            encoded_bytes=b"abc",
            quality_used=50,
            achieved_bytes=4,
            target_bytes=10,
            format=ImageFormat.JPEG,
            converged=False,
            target_met=True,
            trials=1,
        )


def test_default_target_uses_configured_bounds():
    target = default_target(2048, ImageFormat.PNG)
    assert target.min_quality == 10
    assert target.max_quality == 100
    assert target.format == ImageFormat.PNG
