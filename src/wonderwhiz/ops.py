"""Operational utilities for WonderWhiz."""

from __future__ import annotations

import json
from collections import Counter
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Optional


class StructuredLogger:
    """Write JSON lines log entries for parent and operator inspection."""

    def __init__(self, *, path: Path | str | None = None) -> None:
        self.path = Path(path) if path else None
        self._entries: list[dict] = []
        self._lock = Lock()

    def log(self, event_type: str, **fields: object) -> dict:
        entry = {"timestamp": datetime.utcnow().isoformat(), "event": event_type, **fields}
        with self._lock:
            self._entries.append(entry)
            if self.path:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as handle:
                    handle.write(json.dumps(entry, default=str) + "\n")
        return entry

    def tail(self, limit: int = 50) -> tuple[dict, ...]:
        with self._lock:
            return tuple(self._entries[-limit:])

    def events(self, event_type: str) -> tuple[dict, ...]:
        with self._lock:
            return tuple(entry for entry in self._entries if entry["event"] == event_type)


class HealthMonitor:
    """Aggregate runtime health information for the status endpoint."""

    def __init__(self) -> None:
        self.store_online = True
        self._counters: Counter[str] = Counter()
        self.last_generation_failure: Optional[datetime] = None
        self._lock = Lock()

    def record_generation(self, *, succeeded: bool) -> None:
        with self._lock:
            if succeeded:
                self._counters["generated"] += 1
            else:
                self._counters["fallbacks"] += 1
                self.last_generation_failure = datetime.utcnow()

    def record_cache_hit(self) -> None:
        with self._lock:
            self._counters["cache_hits"] += 1

    def record_store_failure(self) -> None:
        with self._lock:
            self.store_online = False
            self._counters["store_failures"] += 1

    def record_store_success(self) -> None:
        self.store_online = True

    def count(self, name: str) -> int:
        return self._counters[name]

    def status(self) -> dict:
        return {
            "store": "ok" if self.store_online else "down",
            "cache_hits": self._counters["cache_hits"],
            "generated": self._counters["generated"],
            "fallbacks": self._counters["fallbacks"],
            "store_failures": self._counters["store_failures"],
            "last_generation_failure": (
                self.last_generation_failure.isoformat() if self.last_generation_failure else None
            ),
        }


__all__ = ["HealthMonitor", "StructuredLogger"]
