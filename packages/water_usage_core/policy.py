# packages/water_usage_core/policy.py
"""
Tuning knobs for the distribution engine.

None of these are physical laws. They are taste rules that keep the output
looking like a real meter curve; override them with `dataclasses.replace`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple


# ------------------------ Named constants ------------------------ #

REALISM_CEILING = 60.0          # soft max for one bucket when the average allows it
CLAMP_JITTER = (0.5, 3.0)       # capped buckets land this far under the ceiling
HEADROOM_MARGIN = 20.0          # recipients of clamped excess sit below ceiling - margin

FRESH_WEIGHT_SHARE = 0.7        # fresh draw vs learned hourly bias (0.7 / 0.3)

NIGHT_BASE = (1.0, 4.0)         # 22:00-04:00
DAY_BASE = (5.0, 12.0)
VOLATILITY_BAND = (0.6, 1.8)
SHORT_VOLATILITY_BAND = (0.2, 3.0)
SHORT_REQUEST_BUCKETS = 6
SPIKE_PROBABILITY = 0.08
SPIKE_MULTIPLIER = (1.5, 2.5)
DROP_PROBABILITY = 0.08
DROP_MULTIPLIER = (0.3, 0.6)

ADJACENT_DIVERGENCE = 0.5       # |a - b| above this fraction of the pair mean gets smoothed
ADJACENT_BLEND = 0.7            # own value weight when smoothing neighbours
BLOCK_SPLIT = (0.35, 0.65)
BLOCK_BLEND = 0.5

PEAK_RATIO = 1.6
SIMPLE_PEAK_RATIO = 1.1
HIGH_RATIO = 1.2
LOW_RATIO = 0.6
TREND_DEADBAND = 0.05

MAX_CLAMP_ROUNDS = 1000
MAX_OVERSHOOT_ITERATIONS = 10000
MAX_PRECISION = 12              # 10**precision must stay well inside float range

METHOD_VERSION = "swe-v1"


@dataclass(frozen=True)
class DistributionPolicy:
    # Constraint clamp
    realism_ceiling: float = REALISM_CEILING
    clamp_jitter: Tuple[float, float] = CLAMP_JITTER
    headroom_margin: float = HEADROOM_MARGIN
    max_clamp_rounds: int = MAX_CLAMP_ROUNDS

    # Raw generator
    fresh_weight_share: float = FRESH_WEIGHT_SHARE
    night_base: Tuple[float, float] = NIGHT_BASE
    day_base: Tuple[float, float] = DAY_BASE
    volatility_band: Tuple[float, float] = VOLATILITY_BAND
    short_volatility_band: Tuple[float, float] = SHORT_VOLATILITY_BAND
    short_request_buckets: int = SHORT_REQUEST_BUCKETS
    spike_probability: float = SPIKE_PROBABILITY
    spike_multiplier: Tuple[float, float] = SPIKE_MULTIPLIER
    drop_probability: float = DROP_PROBABILITY
    drop_multiplier: Tuple[float, float] = DROP_MULTIPLIER

    # Smoother
    adjacent_divergence: float = ADJACENT_DIVERGENCE
    adjacent_blend: float = ADJACENT_BLEND
    block_split: Tuple[float, float] = BLOCK_SPLIT
    block_blend: float = BLOCK_BLEND

    # Reconciler
    max_overshoot_iterations: int = MAX_OVERSHOOT_ITERATIONS

    # Classification
    peak_ratio: float = PEAK_RATIO
    simple_peak_ratio: float = SIMPLE_PEAK_RATIO
    high_ratio: float = HIGH_RATIO
    low_ratio: float = LOW_RATIO
    trend_deadband: float = TREND_DEADBAND

    # Meta
    method_version: str = METHOD_VERSION


DEFAULT_POLICY = DistributionPolicy()
