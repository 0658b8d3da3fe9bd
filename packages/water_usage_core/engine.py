# packages/water_usage_core/engine.py
"""
Smart Water Usage Distribution: engine

What this does:
- Splits one known meter delta (end - start) across hourly buckets.
- Shapes the split like a real consumption curve: residential peak windows,
  day/night base load, bounded volatility with occasional spikes and drops.
- Keeps any single bucket under a soft realism ceiling when the average allows.
- Smooths implausible jumps between neighbours.
- Quantises to the requested decimals with a largest-remainder pass, so the
  buckets add up to the delta exactly and the last reading equals end_value.
- Optionally nudges the draw with per-hour bias learned from earlier runs.

Stages mutate a list of Bucket objects in place:
generate -> clamp -> smooth -> reconcile -> assemble.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from .errors import (
    DegenerateWeights,
    DistributionError,
    InvalidDivisions,
    InvalidPrecision,
    InvalidRange,
    ReconciliationExhausted,
)
from .memory import AdaptiveWeightMemory
from .policy import DEFAULT_POLICY, MAX_PRECISION, DistributionPolicy
from .profiles import PEAK_HOURS, TargetRange, UsageProfile, coerce_profile, is_night, resolve_policy

logger = logging.getLogger(__name__)

_EPS = 1e-9
_READING_DIGITS = 9            # strips float drift from running readings


class RandomSource(Protocol):
    """The slice of numpy.random.Generator the stages draw from."""

    def uniform(self, low: float, high: float) -> float: ...

    def random(self) -> float: ...

    def integers(self, high: int) -> int: ...


# -------------------------- Helpers -------------------------- #

def _r(x: float, nd: int = 2) -> float:
    """Round helper."""
    return round(float(x), nd)


def _ensure_rng(rng: Optional[RandomSource]) -> RandomSource:
    return rng if rng is not None else np.random.default_rng()


def _uniform(rng: RandomSource, lo: float, hi: float) -> float:
    return float(rng.uniform(lo, hi))


# ---------------------- Data Contracts ----------------------- #

@dataclass(frozen=True)
class DistributionRequest:
    start_value: float
    end_value: float
    bucket_count: int
    start_offset: int = 8                     # hour of day of the first bucket
    profile: Union[UsageProfile, str] = UsageProfile.RESIDENTIAL
    precision: int = 1                        # decimals in the output values

    @property
    def total(self) -> float:
        return float(self.end_value) - float(self.start_value)


@dataclass
class Bucket:
    hour: int
    target_range: Optional[TargetRange] = None
    base_weight: float = 0.0
    raw_weight: float = 0.0
    final_value: float = 0.0
    is_peak: bool = False
    fractional_remainder: float = 0.0         # diagnostic, set by reconcile
    steps: int = 0                            # final_value in units of 10^-precision


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class UsageStatus(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    PEAK = "peak"


@dataclass(frozen=True)
class PeriodResult:
    index: int
    label: str
    hour_label: str
    value: float
    cumulative: float
    is_peak: bool
    trend: Trend
    status: UsageStatus
    intensity: float
    percentage_of_total: float
    target_range_label: str = "-"

    def to_dict(self) -> Dict:
        out = asdict(self)
        out["trend"] = self.trend.value
        out["status"] = self.status.value
        return out


# ------------------------- Validation ------------------------ #

def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return None


def validate_request(request: DistributionRequest) -> UsageProfile:
    """
    Raises the matching DistributionError for a request that cannot be computed.
    Returns the resolved profile otherwise.
    """
    bucket_count = _as_int(request.bucket_count)
    if bucket_count is None or bucket_count <= 0:
        raise InvalidDivisions(request.bucket_count)
    try:
        start, end = float(request.start_value), float(request.end_value)
    except (TypeError, ValueError):
        raise InvalidRange(request.start_value, request.end_value)
    if not (math.isfinite(start) and math.isfinite(end)) or end < start:
        raise InvalidRange(request.start_value, request.end_value)
    precision = _as_int(request.precision)
    if precision is None or not 0 <= precision <= MAX_PRECISION:
        raise InvalidPrecision(request.precision)
    return coerce_profile(request.profile)


def build_buckets(request: DistributionRequest, profile: UsageProfile) -> List[Bucket]:
    weight_policy = resolve_policy(profile)
    buckets: List[Bucket] = []
    for i in range(int(request.bucket_count)):
        hour = (int(request.start_offset) + i) % 24
        rule = weight_policy(hour)
        if isinstance(rule, TargetRange):
            buckets.append(Bucket(hour=hour, target_range=rule))
        else:
            buckets.append(Bucket(hour=hour, base_weight=float(rule)))
    return buckets


# ----------------------- Raw generator ----------------------- #

def _volatility(rng: RandomSource, band: Tuple[float, float], policy: DistributionPolicy) -> float:
    v = _uniform(rng, *band)
    if rng.random() < policy.spike_probability:
        v *= _uniform(rng, *policy.spike_multiplier)
    if rng.random() < policy.drop_probability:
        v *= _uniform(rng, *policy.drop_multiplier)
    return v


def _blend_learned_bias(buckets: List[Bucket], memory: AdaptiveWeightMemory, policy: DistributionPolicy) -> None:
    learned = memory.biases()
    if not learned:
        return
    fresh_total = sum(b.raw_weight for b in buckets)
    if fresh_total <= 0:
        return
    fresh = policy.fresh_weight_share
    for b in buckets:
        bias = learned.get(b.hour)
        if bias is None:
            continue
        share = fresh * (b.raw_weight / fresh_total) + (1.0 - fresh) * bias
        b.raw_weight = share * fresh_total


def generate(buckets: List[Bucket],
             profile: Union[UsageProfile, str],
             memory: Optional[AdaptiveWeightMemory] = None,
             rng: Optional[RandomSource] = None,
             policy: DistributionPolicy = DEFAULT_POLICY) -> List[Bucket]:
    """Sets raw_weight (unnormalised) on every bucket."""
    profile = coerce_profile(profile)
    rng = _ensure_rng(rng)
    short = len(buckets) < policy.short_request_buckets
    band = policy.short_volatility_band if short else policy.volatility_band

    for b in buckets:
        if b.target_range is not None:
            b.raw_weight = _uniform(rng, b.target_range.min, b.target_range.max)
            b.is_peak = b.hour in PEAK_HOURS
        elif profile is UsageProfile.FLAT:
            b.raw_weight = b.base_weight
        else:
            base = policy.night_base if is_night(b.hour) else policy.day_base
            b.raw_weight = _uniform(rng, *base) * b.base_weight * _volatility(rng, band, policy)

    if memory is not None and profile is not UsageProfile.FLAT:
        _blend_learned_bias(buckets, memory, policy)
    return buckets


# ---------------------- Constraint clamp --------------------- #

def _shares(weights: Sequence[float]) -> List[float]:
    weight_sum = sum(weights)
    if not (weight_sum > 0.0 and math.isfinite(weight_sum)):
        raise DegenerateWeights("Raw weights sum to zero.")
    return [w / weight_sum for w in weights]


def _ideal_values(buckets: Sequence[Bucket], total: float) -> List[float]:
    try:
        shares = _shares([max(0.0, b.raw_weight) for b in buckets])
    except DegenerateWeights as exc:
        logger.debug("%s Falling back to an equal split.", exc)
        shares = [1.0 / len(buckets)] * len(buckets)
    return [s * total for s in shares]


def clamp(buckets: List[Bucket],
          total: float,
          rng: Optional[RandomSource] = None,
          policy: DistributionPolicy = DEFAULT_POLICY) -> List[Bucket]:
    """
    Scales raw weights to the total, then caps buckets above the realism
    ceiling and hands the excess to buckets with headroom, unevenly.
    Skipped when the average itself is at or above the ceiling.
    """
    n = len(buckets)
    if n == 0:
        return buckets
    for b, ideal in zip(buckets, _ideal_values(buckets, total)):
        b.raw_weight = ideal

    ceiling = policy.realism_ceiling
    if total / n >= ceiling:
        return buckets
    rng = _ensure_rng(rng)

    pool = 0.0
    for b in buckets:
        if b.raw_weight > ceiling:
            cap = ceiling - _uniform(rng, *policy.clamp_jitter)
            pool += b.raw_weight - cap
            b.raw_weight = cap
    if pool <= _EPS:
        return buckets

    # recipients never climb past the lowest possible cap
    soft_cap = ceiling - policy.clamp_jitter[1]
    rounds = 0
    while pool > _EPS and rounds < policy.max_clamp_rounds:
        rounds += 1
        room = {i: soft_cap - b.raw_weight for i, b in enumerate(buckets) if soft_cap - b.raw_weight > _EPS}
        if not room:
            break
        recipients = [i for i in room if buckets[i].raw_weight < ceiling - policy.headroom_margin] or list(room)
        draws = [_uniform(rng, 0.5, 1.5) for _ in recipients]
        norm = sum(draws)
        handed = 0.0
        for i, d in zip(recipients, draws):
            give = min(pool * d / norm, room[i])
            buckets[i].raw_weight += give
            handed += give
        pool -= handed

    if pool > _EPS:
        logger.debug("Clamp left %.6f unplaced after %d rounds; spreading evenly.", pool, rounds)
        for b in buckets:
            b.raw_weight += pool / n
    return buckets


# --------------------------- Smoother ------------------------- #

def smooth(buckets: List[Bucket],
           profile: Union[UsageProfile, str],
           policy: DistributionPolicy = DEFAULT_POLICY) -> List[Bucket]:
    """Pulls divergent neighbours and lopsided pairs toward their mean. Pair sums are preserved."""
    if coerce_profile(profile) is UsageProfile.FLAT or len(buckets) < 2:
        return buckets

    keep = policy.adjacent_blend
    for a, b in zip(buckets, buckets[1:]):
        if a.target_range is not None and b.target_range is not None:
            continue
        mean = (a.raw_weight + b.raw_weight) / 2.0
        if mean <= 0.0:
            continue
        if abs(a.raw_weight - b.raw_weight) > policy.adjacent_divergence * mean:
            a.raw_weight = keep * a.raw_weight + (1.0 - keep) * mean
            b.raw_weight = keep * b.raw_weight + (1.0 - keep) * mean

    lo, hi = policy.block_split
    keep = policy.block_blend
    for i in range(0, len(buckets) - 1, 2):
        a, b = buckets[i], buckets[i + 1]
        if a.is_peak != b.is_peak:
            continue
        pair = a.raw_weight + b.raw_weight
        if pair <= 0.0:
            continue
        ratio = a.raw_weight / pair
        if ratio < lo or ratio > hi:
            mean = pair / 2.0
            a.raw_weight = keep * a.raw_weight + (1.0 - keep) * mean
            b.raw_weight = keep * b.raw_weight + (1.0 - keep) * mean
    return buckets


# --------------------- Exact-sum reconciler ------------------- #

def _remove_overshoot(buckets: List[Bucket], excess: int, rng: RandomSource, max_iterations: int) -> None:
    iterations = 0
    while excess > 0 and iterations < max_iterations:
        iterations += 1
        i = int(rng.integers(len(buckets)))
        if buckets[i].steps > 1:
            buckets[i].steps -= 1
            excess -= 1
    if excess > 0:
        raise ReconciliationExhausted(excess, iterations)


def reconcile(buckets: List[Bucket],
              total: float,
              precision: int,
              rng: Optional[RandomSource] = None,
              policy: DistributionPolicy = DEFAULT_POLICY) -> List[Bucket]:
    """
    Largest-remainder quantisation. Works in integer steps of 10^-precision so
    the bucket sum equals round(total, precision) exactly.
    """
    n = len(buckets)
    if n == 0:
        return buckets
    factor = 10 ** int(precision)
    target_steps = int(round(total * factor))

    for b, ideal in zip(buckets, _ideal_values(buckets, total)):
        scaled = ideal * factor
        b.steps = max(0, math.floor(scaled + _EPS))
        b.fractional_remainder = max(0.0, scaled - b.steps)

    missing = target_steps - sum(b.steps for b in buckets)
    if missing > 0:
        # sorted() is stable: equal remainders keep time order
        order = sorted(range(n), key=lambda i: -buckets[i].fractional_remainder)
        for k in range(missing):
            buckets[order[k % n]].steps += 1
    elif missing < 0:
        try:
            _remove_overshoot(buckets, -missing, _ensure_rng(rng), policy.max_overshoot_iterations)
        except ReconciliationExhausted as exc:
            logger.warning("%s Returning best-effort values.", exc)

    for b in buckets:
        b.final_value = _r(b.steps / factor, int(precision))
    return buckets


# ----------------------- Result assembler --------------------- #

def _trend(value: float, previous: Optional[float], deadband: float) -> Trend:
    if previous is None:
        return Trend.STABLE
    if value > previous * (1.0 + deadband):
        return Trend.UP
    if value < previous * (1.0 - deadband):
        return Trend.DOWN
    return Trend.STABLE


def _status(ratio: float, flagged: bool, policy: DistributionPolicy) -> UsageStatus:
    if flagged or ratio > policy.peak_ratio:
        return UsageStatus.PEAK
    if ratio > policy.high_ratio:
        return UsageStatus.HIGH
    if ratio < policy.low_ratio:
        return UsageStatus.LOW
    return UsageStatus.NORMAL


def assemble(buckets: List[Bucket],
             start_value: float,
             end_value: float,
             precision: int,
             profile: Union[UsageProfile, str] = UsageProfile.RESIDENTIAL,
             policy: DistributionPolicy = DEFAULT_POLICY) -> List[PeriodResult]:
    n = len(buckets)
    if n == 0:
        return []
    precision = int(precision)
    total = float(end_value) - float(start_value)

    values = [b.final_value for b in buckets]
    cumulative: List[float] = []
    running = float(start_value)
    for v in values:
        running += v
        cumulative.append(_r(running, _READING_DIGITS))
    # last reading is the real end meter value; drift lands on the last bucket
    factor = 10 ** precision
    residual = round(total * factor) / factor - sum(values)
    if abs(residual) > _EPS:
        values[-1] = _r(values[-1] + residual, precision)
    cumulative[-1] = float(end_value)

    average = total / n
    peak_ratio = policy.peak_ratio if coerce_profile(profile) is UsageProfile.RESIDENTIAL else policy.simple_peak_ratio
    max_value = max(values)

    results: List[PeriodResult] = []
    previous: Optional[float] = None
    for i, (b, value, reading) in enumerate(zip(buckets, values, cumulative), start=1):
        if average > 0:
            ratio = value / average
            status = _status(ratio, b.is_peak, policy)
        else:
            ratio = 0.0
            status = UsageStatus.PEAK if b.is_peak else UsageStatus.NORMAL
        results.append(PeriodResult(
            index=i,
            label=f"Period {i}",
            hour_label=f"{b.hour:02d}:00",
            value=value,
            cumulative=reading,
            is_peak=b.is_peak or (average > 0 and ratio > peak_ratio),
            trend=_trend(value, previous, policy.trend_deadband),
            status=status,
            intensity=_r(value / max_value * 100.0) if max_value > 0 else 0.0,
            percentage_of_total=_r(value / total * 100.0) if total > 0 else 0.0,
            target_range_label=b.target_range.label if b.target_range is not None else "-",
        ))
        previous = value
    return results


# --------------------------- Public -------------------------- #

def distribute_request(request: DistributionRequest,
                       *,
                       memory: Optional[AdaptiveWeightMemory] = None,
                       rng: Optional[RandomSource] = None,
                       policy: Optional[DistributionPolicy] = None) -> List[PeriodResult]:
    """
    Main entry point.
    Returns one PeriodResult per bucket, or [] when the request cannot be computed.
    """
    policy = policy or DEFAULT_POLICY
    try:
        profile = validate_request(request)
    except DistributionError as exc:
        logger.info("Distribution request rejected: %s", exc)
        return []

    buckets = build_buckets(request, profile)
    total = request.total
    precision = int(request.precision)

    if total == 0:
        return assemble(buckets, request.start_value, request.end_value, precision, profile, policy)

    rng = _ensure_rng(rng)
    generate(buckets, profile, memory, rng, policy)
    clamp(buckets, total, rng, policy)
    smooth(buckets, profile, policy)
    reconcile(buckets, total, precision, rng, policy)
    results = assemble(buckets, request.start_value, request.end_value, precision, profile, policy)

    if memory is not None:
        memory.record_run((b.hour, b.final_value / total) for b in buckets)
    logger.debug("Distributed %.4f over %d bucket(s) (%s).", total, len(results), profile.value)
    return results


def distribute(start_value: float,
               end_value: float,
               bucket_count: int,
               start_offset: int = 8,
               profile: Union[UsageProfile, str] = UsageProfile.RESIDENTIAL,
               precision: int = 1,
               *,
               memory: Optional[AdaptiveWeightMemory] = None,
               rng: Optional[RandomSource] = None,
               policy: Optional[DistributionPolicy] = None) -> List[PeriodResult]:
    request = DistributionRequest(
        start_value=start_value,
        end_value=end_value,
        bucket_count=bucket_count,
        start_offset=start_offset,
        profile=profile,
        precision=precision,
    )
    return distribute_request(request, memory=memory, rng=rng, policy=policy)
