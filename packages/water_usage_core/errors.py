# packages/water_usage_core/errors.py
"""
Error taxonomy for the usage distribution engine.

Input errors subclass ValueError; `distribute` turns any DistributionError into
an empty result so the presentation layer only has to handle "nothing to show".
"""

from __future__ import annotations

from .policy import MAX_PRECISION


class DistributionError(ValueError):
    """Base class for everything the engine refuses to compute."""


class InvalidDivisions(DistributionError):
    def __init__(self, bucket_count: int):
        super().__init__(f"bucket_count must be > 0 (got {bucket_count}).")
        self.bucket_count = bucket_count


class InvalidRange(DistributionError):
    def __init__(self, start_value: float, end_value: float):
        super().__init__(f"end_value ({end_value}) must not be below start_value ({start_value}).")
        self.start_value = start_value
        self.end_value = end_value


class InvalidPrecision(DistributionError):
    def __init__(self, precision: int):
        super().__init__(f"precision must be a whole number of decimals from 0 to {MAX_PRECISION} (got {precision}).")
        self.precision = precision


class UnknownProfile(DistributionError):
    def __init__(self, profile: object):
        super().__init__(f"Unknown usage profile {profile!r}.")
        self.profile = profile


class DegenerateWeights(DistributionError):
    """All raw weights summed to zero; recovered with a uniform split."""


class ReconciliationExhausted(DistributionError):
    """Safety cap hit before the remainder settled; best-effort result kept."""

    def __init__(self, leftover_steps: int, iterations: int):
        super().__init__(
            f"Reconciliation stopped after {iterations} iterations with {leftover_steps} step(s) unsettled."
        )
        self.leftover_steps = leftover_steps
        self.iterations = iterations
