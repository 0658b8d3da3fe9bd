# packages/water_usage_core/report.py
"""Read-only views over a finished distribution: headline stats and a copy/paste table."""

from __future__ import annotations

from typing import Dict, Sequence

from .engine import PeriodResult


def format_number(value: float, precision: int = 1) -> str:
    return f"{float(value):.{int(precision)}f}"


def summarize(results: Sequence[PeriodResult], precision: int = 1) -> Dict[str, float]:
    """Peak / average / lowest bucket value, plus the distributed total."""
    if not results:
        return {"peak": 0.0, "average": 0.0, "lowest": 0.0, "total": 0.0}
    values = [r.value for r in results]
    return {
        "peak": max(values),
        "average": round(sum(values) / len(values), int(precision)),
        "lowest": min(values),
        "total": round(sum(values), int(precision)),
    }


def to_clipboard_text(results: Sequence[PeriodResult], precision: int = 1) -> str:
    # Time \t Usage \t Meter reading
    return "\n".join(
        f"{r.hour_label}\t{format_number(r.value, precision)}\t{format_number(r.cumulative, precision)}"
        for r in results
    )
