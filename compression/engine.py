"""Size-targeted compression: search the quality knob for a byte budget.

Codecs expose no cheap size estimator, so every probe is a full encode.
Quality is a small integer domain and size is monotone in quality in
practice (not by contract), so a bounded binary search keeps the cost at
O(log range) encodes while tolerating the occasional non-monotone step.
"""

import io
import time
from dataclasses import dataclass

from PIL import Image, ImageOps

from compression.base import FormatStrategy
from compression.jpeg import JpegStrategy
from compression.png import PngStrategy
from compression.webp import WebpStrategy
from config import settings
from exceptions import CodecFailureError
from schemas import CompressionResult, CompressionTarget
from utils.format_detect import ImageFormat
from utils.logging import get_logger

logger = get_logger("compression")

# Quality the engine never drops below when that quality already fits
HIGH_QUALITY_FLOOR = 95

# Strategy registry, initialized once at import time
STRATEGIES: dict[ImageFormat, FormatStrategy] = {
    ImageFormat.JPEG: JpegStrategy(),
    ImageFormat.PNG: PngStrategy(),
    ImageFormat.WEBP: WebpStrategy(),
}


@dataclass
class Trial:
    quality: int
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class SizeSearch:
    """One bounded search over a strategy's quality range.

    Tracks the closest candidate under the budget and the smallest one
    over it, so a best-effort answer exists whatever the outcome.
    """

    def __init__(
        self,
        strategy: FormatStrategy,
        target: CompressionTarget,
        max_trials: int,
        tolerance: float,
        time_budget: float = 0.0,
    ):
        self.strategy = strategy
        self.target = target
        self.max_trials = max(1, max_trials)
        self.tolerance = tolerance
        self.time_budget = time_budget
        self.trials: list[Trial] = []
        self.best_under: Trial | None = None
        self.smallest_over: Trial | None = None
        self.timed_out = False
        self._started = 0.0

    @property
    def band(self) -> float:
        return self.tolerance * self.target.target_bytes

    def in_band(self, trial: Trial) -> bool:
        return abs(trial.size - self.target.target_bytes) < self.band

    def _budget_left(self) -> bool:
        if self.time_budget <= 0 or not self.trials:
            return True
        if time.monotonic() - self._started > self.time_budget:
            self.timed_out = True
            return False
        return True

    def _probe(self, img: Image.Image, quality: int) -> Trial:
        try:
            data = self.strategy.probe(img, quality)
        except (OSError, ValueError) as exc:
            raise CodecFailureError(
                f"{self.strategy.format.value} encode failed at quality {quality}",
                detail=str(exc),
            ) from exc
        trial = Trial(quality=quality, data=data)
        self.trials.append(trial)

        if trial.size <= self.target.target_bytes:
            # Closest from below wins; ties go to the higher quality
            if (
                self.best_under is None
                or trial.size > self.best_under.size
                or (trial.size == self.best_under.size and quality > self.best_under.quality)
            ):
                self.best_under = trial
        elif self.smallest_over is None or trial.size < self.smallest_over.size:
            self.smallest_over = trial

        logger.debug(
            f"Probe q={quality} -> {trial.size} bytes (target {self.target.target_bytes})",
            extra={"context": {"format": self.target.format.value, "trial": len(self.trials)}},
        )
        return trial

    def run(self, img: Image.Image) -> CompressionResult:
        self._started = time.monotonic()
        prepared = self.strategy.prepare(img)
        try:
            return self._search(prepared)
        finally:
            if prepared is not img:
                prepared.close()

    def _search(self, img: Image.Image) -> CompressionResult:
        low, high = self.target.min_quality, self.target.max_quality

        # Best quality first: if it already fits, never degrade to "hit" the budget
        top = self._probe(img, high)
        if top.size <= self.target.target_bytes or self.in_band(top):
            return self._result(top, converged=self.in_band(top))
        high -= 1

        # Second probe at the high-quality floor splits the range so a budget
        # that q95 already fits is only ever searched upward
        mid = HIGH_QUALITY_FLOOR if low <= HIGH_QUALITY_FLOOR <= high else None

        while low <= high and len(self.trials) < self.max_trials and self._budget_left():
            if mid is None:
                mid = (low + high) // 2
            trial = self._probe(img, mid)

            # An over-budget probe inside the band ends the search; an under-budget
            # one keeps climbing so a higher quality that also fits is not skipped
            if trial.size > self.target.target_bytes and self.in_band(trial):
                if self.best_under is not None and self.in_band(self.best_under):
                    return self._result(self.best_under, converged=True)
                return self._result(trial, converged=True)

            if trial.size <= self.target.target_bytes:
                low = mid + 1
            else:
                high = mid - 1
            mid = None

        if self.best_under is not None:
            return self._result(self.best_under, converged=self.in_band(self.best_under))

        # Budget below the format's floor: closest feasible encoding, flagged
        return self._result(self.smallest_over, converged=False)

    def _result(self, trial: Trial, converged: bool) -> CompressionResult:
        result = CompressionResult(
            encoded_bytes=trial.data,
            quality_used=trial.quality,
            achieved_bytes=trial.size,
            target_bytes=self.target.target_bytes,
            format=self.target.format,
            converged=converged,
            target_met=trial.size <= self.target.target_bytes,
            trials=len(self.trials),
            timed_out=self.timed_out,
        )
        if not result.target_met and not result.converged:
            logger.info(
                "Byte budget unreachable, returning smallest encoding",
                extra={
                    "context": {
                        "format": self.target.format.value,
                        "target_bytes": result.target_bytes,
                        "achieved_bytes": result.achieved_bytes,
                        "quality": result.quality_used,
                    }
                },
            )
        return result


def compress_to_size(
    img: Image.Image,
    target: CompressionTarget,
    strategy: FormatStrategy | None = None,
    max_trials: int | None = None,
    tolerance: float | None = None,
    time_budget: float | None = None,
) -> CompressionResult:
    """Encode ``img`` as close to ``target.target_bytes`` as the codec allows.

    Never fails because the budget is unreachable: the result carries
    ``target_met=False`` and the smallest encoding observed instead.

    Args:
        img: Decoded source buffer (not modified).
        target: Byte budget, output format and quality bounds.
        strategy: Override the registered strategy for ``target.format``.
        max_trials: Encode cap, defaults to settings.compression_max_trials.
        tolerance: Convergence band as a fraction of the target.
        time_budget: Seconds before the search stops probing (0 = none).

    Returns:
        CompressionResult with the chosen encoding and search stats.
    """
    search = SizeSearch(
        strategy=strategy or STRATEGIES[target.format],
        target=target,
        max_trials=settings.compression_max_trials if max_trials is None else max_trials,
        tolerance=settings.compression_tolerance if tolerance is None else tolerance,
        time_budget=(
            settings.compression_time_budget_seconds if time_budget is None else time_budget
        ),
    )
    return search.run(img)


def compress_bytes_to_size(data: bytes, target: CompressionTarget, **kwargs) -> CompressionResult:
    """Decode raw upload bytes, then run ``compress_to_size``."""
    try:
        with Image.open(io.BytesIO(data)) as src:
            src.load()
            img = ImageOps.exif_transpose(src)
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise CodecFailureError("Could not decode image", detail=str(exc)) from exc
    try:
        return compress_to_size(img, target, **kwargs)
    finally:
        img.close()


def default_target(target_bytes: int, fmt: ImageFormat = ImageFormat.JPEG) -> CompressionTarget:
    """Target using the configured quality bounds."""
    return CompressionTarget(
        target_bytes=target_bytes,
        format=fmt,
        min_quality=settings.compression_min_quality,
        max_quality=settings.compression_max_quality,
    )
