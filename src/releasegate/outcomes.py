"""Append-only, thread-safe collection of verification outcomes."""

from __future__ import annotations

import threading

from releasegate.types import PlatformTarget, Stage, VerificationOutcome

STAGE_ORDER = {stage: index for index, stage in enumerate(Stage)}


class DuplicateOutcome(ValueError):
    """Raised when a (stage, platform) pair is recorded twice."""


class OutcomeLog:
    """Outcomes keyed by (stage, platform). Entries are never replaced or removed."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[VerificationOutcome] = []
        self._keys: set[tuple[Stage, str | None]] = set()

    def append(self, outcome: VerificationOutcome) -> None:
        with self._lock:
            if outcome.key in self._keys:
                stage, platform = outcome.key
                raise DuplicateOutcome(f"outcome already recorded for {stage.value} ({platform or 'no platform'})")
            self._keys.add(outcome.key)
            self._entries.append(outcome)

    def get(self, stage: Stage, platform: PlatformTarget | None = None) -> VerificationOutcome | None:
        key = (stage, platform.id if platform else None)
        with self._lock:
            for outcome in self._entries:
                if outcome.key == key:
                    return outcome
        return None

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def snapshot(self) -> tuple[VerificationOutcome, ...]:
        with self._lock:
            return tuple(self._entries)

    def ordered(self, platforms: tuple[PlatformTarget, ...]) -> list[VerificationOutcome]:
        """Outcomes sorted by stage, then by position in the platform matrix."""
        platform_order = {p.id: i for i, p in enumerate(platforms)}

        def sort_key(outcome: VerificationOutcome) -> tuple[int, int]:
            position = platform_order.get(outcome.platform.id, len(platform_order)) if outcome.platform else -1
            return (STAGE_ORDER[outcome.stage], position)

        return sorted(self.snapshot(), key=sort_key)
