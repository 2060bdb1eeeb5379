"""Completion time projection from noisy progress samples.

The trend is a Theil-Sen line fit of fraction against time: the slope is the
median of all pairwise slopes and the intercept the median residual. A few
regressive samples (retried sub-tasks, counter resets) shift the medians very
little, unlike least squares or a first-to-last extrapolation.

Only a recent window of the series is fitted, because the recent rate
predicts the remaining work better than the historical average. Every
estimate is computed from scratch; nothing is carried between calls.
"""

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from pvfilt.sampler import Sample
from pvfilt.series import TimeSeries

__all__ = [
    "Estimate",
    "Estimator",
    "estimate_completion",
]

MIN_SAMPLES = 2
# Theil-Sen is quadratic in the sample count
MAX_FIT_SAMPLES = 240
DEFAULT_WINDOW = 300.0


@dataclass(frozen=True)
class Estimate:
    """Projected completion, or unknown with a reason."""

    projected_completion: float | None = None
    rate: float | None = None  # fraction per second
    r_squared: float | None = None
    samples: int = 0
    reason: str | None = None

    @classmethod
    def unknown(cls, reason: str, samples: int = 0) -> "Estimate":
        return cls(samples=samples, reason=reason)

    @property
    def known(self) -> bool:
        return self.projected_completion is not None

    def remaining(self, now: float) -> float | None:
        """Seconds from now until projected completion (negative if overdue)."""
        if self.projected_completion is None:
            return None
        return self.projected_completion - now


def estimate_completion(samples: Sequence[Sample], *, min_samples: int = MIN_SAMPLES) -> Estimate:
    """Fit a robust trend to the samples and project when it reaches 1.0."""
    n = len(samples)
    if n < max(2, min_samples):
        return Estimate.unknown("not enough samples", n)

    # Centre time on the newest sample; monotonic clocks can be large numbers
    origin = samples[-1].timestamp
    t = np.fromiter((s.timestamp - origin for s in samples), dtype=np.float64, count=n)
    y = np.fromiter((s.fraction for s in samples), dtype=np.float64, count=n)

    i, j = np.triu_indices(n, k=1)
    dt = t[j] - t[i]
    distinct = dt > 0
    if not distinct.any():
        return Estimate.unknown("no elapsed time between samples", n)
    slopes = (y[j] - y[i])[distinct] / dt[distinct]
    slope = float(np.median(slopes))
    if not math.isfinite(slope) or slope <= 0:
        return Estimate.unknown("no forward progress", n)
    intercept = float(np.median(y - slope * t))

    residuals = y - (intercept + slope * t)
    ss_tot = float(np.sum((y - y.mean()) ** 2))
    r_squared = 1.0 - float(np.sum(residuals**2)) / ss_tot if ss_tot > 0 else None

    # intercept is the fitted fraction at the newest sample
    projected = origin + (1.0 - intercept) / slope
    return Estimate(
        projected_completion=projected,
        rate=slope,
        r_squared=r_squared,
        samples=n,
    )


class Estimator:
    """Applies the regression window to a series before fitting.

    Args:
        window: Only fit samples from the last ``window`` seconds (None: no limit)
        max_samples: Upper bound on fitted samples (newest kept)
        min_samples: Fewer samples than this yield an unknown estimate
    """

    def __init__(
        self,
        window: float | None = DEFAULT_WINDOW,
        max_samples: int = MAX_FIT_SAMPLES,
        min_samples: int = MIN_SAMPLES,
    ):
        self.window = window
        self.max_samples = max_samples
        self.min_samples = min_samples

    def select(self, series: TimeSeries) -> list[Sample]:
        return series.window(last=self.max_samples, duration=self.window)

    def estimate(self, series: TimeSeries) -> Estimate:
        return estimate_completion(self.select(series), min_samples=self.min_samples)
