"""Feature flags switching optional WonderWhiz behaviour on and off."""

from __future__ import annotations

from threading import Lock
from typing import Dict, Iterable, Mapping, Optional, Tuple

from .models import FeatureFlag

DEFAULT_FLAGS: Tuple[FeatureFlag, ...] = (
    FeatureFlag("achievements", True, "Evaluate badges and queue celebrations after spark changes."),
    FeatureFlag("image_enrichment", True, "Request an illustration after new section text is stored."),
    FeatureFlag("streak_bonus", True, "Pay bonus sparks on every third consecutive day."),
)

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def parse_overrides(raw: str) -> Dict[str, bool]:
    """Parse ``"image_enrichment=off,streak_bonus=on"`` into a mapping."""

    overrides: Dict[str, bool] = {}
    for chunk in (raw or "").split(","):
        if not chunk.strip():
            continue
        key, sep, value = chunk.partition("=")
        key, value = key.strip(), value.strip().lower()
        if not sep or not key:
            raise ValueError(f"Malformed feature flag override: {chunk!r}")
        if value in _TRUE:
            overrides[key] = True
        elif value in _FALSE:
            overrides[key] = False
        else:
            raise ValueError(f"Feature flag {key!r} needs on/off, got {value!r}")
    return overrides


class FeatureFlagRegistry:
    """Thread-safe flag lookup seeded with :data:`DEFAULT_FLAGS`."""

    def __init__(
        self,
        overrides: Optional[Mapping[str, bool]] = None,
        *,
        defaults: Iterable[FeatureFlag] = DEFAULT_FLAGS,
    ) -> None:
        self._flags: Dict[str, FeatureFlag] = {flag.key: flag for flag in defaults}
        self._lock = Lock()
        for key, enabled in (overrides or {}).items():
            self.set(key, enabled)

    def set(self, key: str, enabled: bool) -> FeatureFlag:
        with self._lock:
            current = self._flags.get(key)
            flag = FeatureFlag(key=key, enabled=bool(enabled), description=current.description if current else "")
            self._flags[key] = flag
        return flag

    def enable(self, key: str) -> FeatureFlag:
        return self.set(key, True)

    def disable(self, key: str) -> FeatureFlag:
        return self.set(key, False)

    def is_enabled(self, key: str) -> bool:
        with self._lock:
            flag = self._flags.get(key)
        return bool(flag and flag.enabled)

    def list_flags(self) -> Tuple[FeatureFlag, ...]:
        with self._lock:
            return tuple(sorted(self._flags.values(), key=lambda flag: flag.key))

    def as_dict(self) -> Dict[str, bool]:
        return {flag.key: flag.enabled for flag in self.list_flags()}


__all__ = ["DEFAULT_FLAGS", "FeatureFlagRegistry", "parse_overrides"]
