from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class PointsSnapshot:
    ledger: Dict[str, int]
    conflicts: Dict[str, int]
    redemptions: Dict[str, int]
    expiry: Dict[str, int]
    side_effects: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "ledger": dict(self.ledger),
            "conflicts": dict(self.conflicts),
            "redemptions": dict(self.redemptions),
            "expiry": dict(self.expiry),
            "side_effects": dict(self.side_effects),
        }


class PointsObservabilityStore:
    """Counters for ledger traffic, contention and best-effort side effects."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._ledger: Dict[str, int] = defaultdict(int)
        self._conflicts: Dict[str, int] = defaultdict(int)
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._expiry: Dict[str, int] = defaultdict(int)
        self._side_effects: Dict[str, int] = defaultdict(int)

    def record_ledger_entry(self, entry_type: str, points: int) -> None:
        with self._lock:
            self._ledger[f"entries:{entry_type}"] += 1
            self._ledger[f"points:{entry_type}"] += abs(points)

    def record_insufficient_balance(self) -> None:
        with self._lock:
            self._ledger["insufficient_balance"] += 1

    def record_conflict(self, *, retried: bool) -> None:
        with self._lock:
            self._conflicts["total"] += 1
            self._conflicts["retried" if retried else "surfaced"] += 1

    def record_redemption_transition(self, status: str) -> None:
        with self._lock:
            self._redemptions[status] += 1

    def record_expiry_sweep(self, *, accounts: int, points: int, errors: int) -> None:
        with self._lock:
            self._expiry["sweeps"] += 1
            self._expiry["accounts_processed"] += accounts
            self._expiry["points_expired"] += points
            self._expiry["errors"] += errors

    def record_side_effect(self, kind: str, *, ok: bool) -> None:
        with self._lock:
            self._side_effects[f"{kind}:{'sent' if ok else 'failed'}"] += 1

    def snapshot(self) -> PointsSnapshot:
        with self._lock:
            return PointsSnapshot(
                ledger=dict(self._ledger),
                conflicts=dict(self._conflicts),
                redemptions=dict(self._redemptions),
                expiry=dict(self._expiry),
                side_effects=dict(self._side_effects),
            )

    def reset(self) -> None:
        with self._lock:
            self._ledger.clear()
            self._conflicts.clear()
            self._redemptions.clear()
            self._expiry.clear()
            self._side_effects.clear()


_STORE = PointsObservabilityStore()


def get_points_store() -> PointsObservabilityStore:
    return _STORE


__all__ = ["get_points_store", "PointsObservabilityStore", "PointsSnapshot"]
