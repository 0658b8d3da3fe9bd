from dataclasses import replace

import numpy as np
import pytest

from packages.water_usage_core import engine
from packages.water_usage_core.engine import Bucket, _remove_overshoot, clamp, generate, reconcile, smooth
from packages.water_usage_core.errors import ReconciliationExhausted
from packages.water_usage_core.policy import (
    DEFAULT_POLICY,
    DROP_MULTIPLIER,
    SHORT_VOLATILITY_BAND,
    SPIKE_MULTIPLIER,
    VOLATILITY_BAND,
)
from packages.water_usage_core.profiles import COMMERCIAL_WEIGHTS, TargetRange

from rng_stubs import MidpointRng, RecordingRng


def _buckets(weights, start_hour=8):
    return [Bucket(hour=(start_hour + i) % 24, raw_weight=w) for i, w in enumerate(weights)]


def test_reconcile_hands_missing_step_to_first_of_equal_remainders():
    out = reconcile(_buckets([1.0, 1.0, 1.0]), 10, 0)
    assert [b.final_value for b in out] == [4.0, 3.0, 3.0]
    assert all(b.fractional_remainder == pytest.approx(1 / 3) for b in out)


def test_reconcile_prefers_largest_remainder():
    # ideals 2.2, 3.7, 4.1 -> floors 2, 3, 4 -> one step to the 3.7 bucket
    out = reconcile(_buckets([2.2, 3.7, 4.1]), 10, 0)
    assert [b.final_value for b in out] == [2.0, 4.0, 4.0]


def test_reconcile_is_exact_in_steps():
    rng = np.random.default_rng(11)
    for precision in (0, 1, 2, 3):
        weights = rng.uniform(0.1, 50, size=37).tolist()
        out = reconcile(_buckets(weights), 123.456, precision, rng)
        steps = sum(b.steps for b in out)
        assert steps == round(123.456 * 10 ** precision)


def test_reconcile_all_zero_weights_split_evenly():
    out = reconcile(_buckets([0.0, 0.0, 0.0]), 9, 0)
    assert [b.final_value for b in out] == [3.0, 3.0, 3.0]


def test_overshoot_removed_from_buckets_with_room():
    buckets = _buckets([0, 0, 0])
    for b, s in zip(buckets, [1, 5, 1]):
        b.steps = s
    _remove_overshoot(buckets, 2, np.random.default_rng(0), 10000)
    assert [b.steps for b in buckets] == [1, 3, 1]


def test_overshoot_gives_up_at_safety_cap():
    buckets = _buckets([0, 0])
    for b in buckets:
        b.steps = 1
    with pytest.raises(ReconciliationExhausted) as err:
        _remove_overshoot(buckets, 1, np.random.default_rng(0), 50)
    assert err.value.iterations == 50
    assert err.value.leftover_steps == 1


def test_clamp_caps_and_redistributes():
    buckets = _buckets([200, 5, 5, 5, 5, 5, 5, 5, 5, 5])
    clamp(buckets, 300, np.random.default_rng(4))
    values = [b.raw_weight for b in buckets]
    assert max(values) <= 60.0
    assert sum(values) == pytest.approx(300)
    assert 57.0 <= values[0] <= 59.5


def test_clamp_skipped_when_average_is_above_ceiling():
    buckets = _buckets([100, 50])
    clamp(buckets, 150, np.random.default_rng(4))
    assert [b.raw_weight for b in buckets] == pytest.approx([100, 50])


def test_smooth_balances_jagged_neighbours():
    buckets = _buckets([49.0, 11.0])
    smooth(buckets, "residential")
    assert [b.raw_weight for b in buckets] == pytest.approx([36.65, 23.35])


def test_smooth_leaves_two_constrained_neighbours_to_block_pass():
    buckets = _buckets([40.0, 30.0])
    for b in buckets:
        b.target_range = TargetRange(34, 52)
    smooth(buckets, "residential")
    # ratio 0.571 sits inside the block split window
    assert [b.raw_weight for b in buckets] == pytest.approx([40.0, 30.0])


def test_smooth_skips_flat_profile():
    buckets = _buckets([49.0, 11.0])
    smooth(buckets, "flat")
    assert [b.raw_weight for b in buckets] == [49.0, 11.0]


def _day_buckets(count, start_hour=9):
    return [Bucket(hour=start_hour + i, base_weight=COMMERCIAL_WEIGHTS[start_hour + i]) for i in range(count)]


def test_short_request_uses_wide_volatility_band():
    rng = RecordingRng()
    generate(_day_buckets(5), "commercial", rng=rng)
    assert SHORT_VOLATILITY_BAND in rng.bands
    assert VOLATILITY_BAND not in rng.bands

    rng = RecordingRng()
    out = generate(_day_buckets(6), "commercial", rng=rng)
    assert VOLATILITY_BAND in rng.bands
    assert SHORT_VOLATILITY_BAND not in rng.bands
    # day base midpoint 8.5, band midpoint 1.2, no events
    assert [b.raw_weight for b in out] == pytest.approx([8.5 * 1.2 * b.base_weight for b in out])


def test_spike_and_drop_multiply_the_draw():
    rng = RecordingRng(roll=0.0)
    out = generate(_day_buckets(6), "commercial", rng=rng)
    assert SPIKE_MULTIPLIER in rng.bands
    assert DROP_MULTIPLIER in rng.bands
    # band 1.2, spike midpoint 2.0, drop midpoint 0.45
    assert [b.raw_weight for b in out] == pytest.approx([8.5 * 1.2 * 2.0 * 0.45 * b.base_weight for b in out])


def test_reconcile_keeps_best_effort_when_overshoot_cap_hits(monkeypatch, caplog):
    # ideals that floor above the target force the overshoot path
    monkeypatch.setattr(engine, "_ideal_values", lambda buckets, total: [5.0, 5.0, 5.0])
    policy = replace(DEFAULT_POLICY, max_overshoot_iterations=2)
    with caplog.at_level("WARNING", logger="packages.water_usage_core.engine"):
        out = reconcile(_buckets([1.0, 1.0, 1.0]), 10, 0, MidpointRng(), policy)
    # MidpointRng always picks bucket 0: two steps come off, three stay unsettled
    assert [b.final_value for b in out] == [3.0, 5.0, 5.0]
    assert "best-effort" in caplog.text
