# packages/water_usage_core/profiles.py
"""
Weight policy: which hours are known peaks and how heavily the rest are weighted.

Residential target ranges come from observed morning / midday / afternoon
usage windows (05:30, 06:30, 11:30, 12:30, 15:30, 16:30 readings, bucketed to
the hour they fall in).
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Dict, FrozenSet, NamedTuple, Union

from .errors import UnknownProfile


class UsageProfile(str, Enum):
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"
    FLAT = "flat"


class TargetRange(NamedTuple):
    min: float
    max: float

    @property
    def label(self) -> str:
        return f"{self.min:g} - {self.max:g}"


TARGET_RANGES: Dict[int, TargetRange] = {
    5: TargetRange(15, 28),
    6: TargetRange(15, 29),
    11: TargetRange(34, 52),
    12: TargetRange(34, 52),
    15: TargetRange(22, 36),
    16: TargetRange(22, 36),
}

# Midday ranges are the designated peaks; the other ranges only bound the draw.
PEAK_HOURS: FrozenSet[int] = frozenset({11, 12})

NIGHT_HOURS: FrozenSet[int] = frozenset({22, 23, 0, 1, 2, 3, 4})

#                       00   01   02   03   04   05   06   07   08   09   10   11
RESIDENTIAL_WEIGHTS = (0.35, 0.25, 0.2, 0.2, 0.3, 0.8, 1.3, 1.5, 1.3, 1.0, 0.9, 1.0,
                       1.1, 0.9, 0.8, 0.9, 1.1, 1.3, 1.5, 1.6, 1.4, 1.1, 0.8, 0.5)
#                       12   13   14   15   16   17   18   19   20   21   22   23

COMMERCIAL_WEIGHTS = (0.15, 0.1, 0.1, 0.1, 0.15, 0.25, 0.5, 0.9, 1.4, 1.6, 1.6, 1.5,
                      1.3, 1.5, 1.6, 1.5, 1.3, 1.0, 0.6, 0.4, 0.3, 0.25, 0.2, 0.15)

FLAT_WEIGHT = 1.0

WeightPolicy = Callable[[int], Union[TargetRange, float]]


def _residential(hour: int) -> Union[TargetRange, float]:
    target = TARGET_RANGES.get(hour)
    if target is not None:
        return target
    return RESIDENTIAL_WEIGHTS[hour]


def _commercial(hour: int) -> Union[TargetRange, float]:
    return COMMERCIAL_WEIGHTS[hour]


def _flat(_hour: int) -> Union[TargetRange, float]:
    return FLAT_WEIGHT


POLICIES: Dict[UsageProfile, WeightPolicy] = {
    UsageProfile.RESIDENTIAL: _residential,
    UsageProfile.COMMERCIAL: _commercial,
    UsageProfile.FLAT: _flat,
}


def coerce_profile(profile: Union[UsageProfile, str]) -> UsageProfile:
    try:
        return UsageProfile(profile)
    except ValueError:
        raise UnknownProfile(profile) from None


def resolve_policy(profile: Union[UsageProfile, str]) -> WeightPolicy:
    """Looks up the weight policy once per call; every policy is total over any int hour."""
    policy = POLICIES[coerce_profile(profile)]
    return lambda hour: policy(int(hour) % 24)


def range_or_weight(hour: int, profile: Union[UsageProfile, str]) -> Union[TargetRange, float]:
    return resolve_policy(profile)(hour)


def is_night(hour: int) -> bool:
    return hour % 24 in NIGHT_HOURS
