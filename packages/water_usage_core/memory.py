# packages/water_usage_core/memory.py
"""
Adaptive Weight Memory.

Keeps a running mean of the share of the total each hour of the day has
received in past runs, so later runs lean toward the hours that usually carry
more usage. Stored as one record under a fixed key:

    {"0": {"weightSum": 0.41, "sampleCount": 9}, ..., "23": {...}}

The memory is optional. Any store failure degrades to "no learned bias", and a
run whose read failed is not written back, so stored history is never dropped.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol, Tuple, Union

logger = logging.getLogger(__name__)

MEMORY_KEY = "smart_water_hourly_memory"


class KeyValueStore(Protocol):
    def read(self, key: str) -> Optional[Any]: ...

    def write(self, key: str, value: Any) -> None: ...


# ------------------------- Stores ------------------------- #

class InMemoryStore:
    """Process-local store; contents vanish with the process."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def read(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    def write(self, key: str, value: Any) -> None:
        self._data[key] = value


class JsonFileStore:
    """Durable store: one JSON document, one top-level entry per key."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        with self.path.open("r", encoding="utf-8") as fh:
            doc = json.load(fh)
        if not isinstance(doc, dict):
            raise ValueError(f"{self.path} does not hold a JSON object.")
        return doc

    def read(self, key: str) -> Optional[Any]:
        return self._load().get(key)

    def write(self, key: str, value: Any) -> None:
        doc = self._load()
        doc[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(doc, fh, sort_keys=True)
            os.replace(tmp, self.path)
        except BaseException:
            os.unlink(tmp)
            raise


# --------------------- Adaptive memory -------------------- #

class AdaptiveWeightMemory:
    def __init__(self, store: KeyValueStore, key: str = MEMORY_KEY):
        self.store = store
        self.key = key
        # one writer at a time per memory instance
        self._lock = threading.Lock()

    def _table(self) -> Optional[Dict[str, Dict[str, float]]]:
        """Stored table, {} when nothing is stored yet, None when the store failed."""
        try:
            raw = self.store.read(self.key)
        except Exception:
            logger.warning("Hourly memory unreadable; running without learned bias.", exc_info=True)
            return None
        if not isinstance(raw, dict):
            return {}
        return raw

    @staticmethod
    def _mean(entry: Any) -> Optional[float]:
        try:
            count = int(entry["sampleCount"])
            total = float(entry["weightSum"])
        except (KeyError, TypeError, ValueError):
            return None
        if count <= 0:
            return None
        return total / count

    def bias(self, hour: int) -> Optional[float]:
        """Running mean share for one hour of day, or None if never observed."""
        table = self._table() or {}
        return self._mean(table.get(str(hour % 24)))

    def biases(self) -> Dict[int, float]:
        """All learned hours in one store read."""
        out: Dict[int, float] = {}
        for key, entry in (self._table() or {}).items():
            try:
                hour = int(key)
            except ValueError:
                continue
            mean = self._mean(entry)
            if 0 <= hour <= 23 and mean is not None:
                out[hour] = mean
        return out

    def record(self, hour: int, share: float) -> None:
        self.record_run([(hour, share)])

    def record_run(self, shares: Iterable[Tuple[int, float]]) -> None:
        """Folds a whole run into the running means with a single read-modify-write."""
        with self._lock:
            stored = self._table()
            if stored is None:
                # writing now would drop every hour the failed read could not see
                logger.warning("Hourly memory not updated: stored history could not be read.")
                return
            table = {k: dict(v) for k, v in stored.items() if isinstance(v, dict)}
            for hour, share in shares:
                entry = table.setdefault(str(hour % 24), {"weightSum": 0.0, "sampleCount": 0})
                entry["weightSum"] = float(entry.get("weightSum", 0.0)) + float(share)
                entry["sampleCount"] = int(entry.get("sampleCount", 0)) + 1
            try:
                self.store.write(self.key, table)
            except Exception:
                logger.warning("Hourly memory not updated.", exc_info=True)
