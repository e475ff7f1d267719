"""Threshold stop policy: has a sample drifted too far from the baseline?"""

from __future__ import annotations

from ..domain.models import Sample
from ..errors import BaselineZeroError


def drift(baseline: Sample, current: Sample) -> float:
    """Fractional change of ``current`` relative to ``baseline``.

    Raises
    ------
    BaselineZeroError
        When the baseline value is exactly zero (drift is undefined).
    """
    if baseline.value == 0:
        raise BaselineZeroError(
            f"Baseline value for {baseline.subject!r} is zero; drift is undefined"
        )
    return abs(current.value - baseline.value) / abs(baseline.value)


def evaluate(baseline: Sample, current: Sample, threshold_fraction: float) -> bool:
    """Return True when drift strictly exceeds ``threshold_fraction``.

    A move landing exactly on the threshold does not stop the run:
    100 -> 101 at 0.01 is False, 100 -> 101.001 is True.
    """
    return drift(baseline, current) > threshold_fraction


class ThresholdStopPolicy:
    """Stop policy bound to a fixed threshold fraction.

    Instances are callables ``(baseline, current) -> bool`` as expected by
    :class:`~pricewatch.services.polling.PollingFetcher`.
    """

    def __init__(self, threshold_fraction: float) -> None:
        if threshold_fraction < 0:
            raise ValueError("threshold_fraction must be >= 0")
        self.threshold_fraction = threshold_fraction

    def __call__(self, baseline: Sample, current: Sample) -> bool:
        return evaluate(baseline, current, self.threshold_fraction)

    def __repr__(self) -> str:
        return f"ThresholdStopPolicy(threshold_fraction={self.threshold_fraction})"
