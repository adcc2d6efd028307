from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class RewardsSnapshot:
    decisions: Dict[str, int]
    mints: Dict[str, Dict[str, int]]
    store: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "decisions": dict(self.decisions),
            "mints": {key: dict(value) for key, value in self.mints.items()},
            "store": dict(self.store),
        }


class RewardsObservabilityStore:
    """Collect issuance and minting telemetry for the merchant dashboard."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._decisions: Dict[str, int] = defaultdict(int)
        self._mint_outcomes: Dict[str, int] = defaultdict(int)
        self._mint_failures: Dict[str, int] = defaultdict(int)
        self._mint_fallbacks: Dict[str, int] = defaultdict(int)
        self._store: Dict[str, int] = defaultdict(int)

    def record_decision(self, kind: str, reason: str | None = None) -> None:
        with self._lock:
            self._decisions[kind] += 1
            if reason:
                self._decisions[f"{kind}:{reason}"] += 1

    def record_mint_outcome(self, outcome: str, reason: str | None = None) -> None:
        with self._lock:
            self._mint_outcomes[outcome] += 1
            if reason:
                self._mint_failures[reason] += 1

    def record_mint_fallback(self, stage: str) -> None:
        with self._lock:
            self._mint_fallbacks[stage] += 1

    def record_store_recovery(self) -> None:
        with self._lock:
            self._store["mirror_recoveries"] += 1

    def snapshot(self) -> RewardsSnapshot:
        with self._lock:
            decisions = dict(self._decisions)
            mints = {
                "outcomes": dict(self._mint_outcomes),
                "failures": dict(self._mint_failures),
                "fallbacks": dict(self._mint_fallbacks),
            }
            store = dict(self._store)
        return RewardsSnapshot(decisions=decisions, mints=mints, store=store)

    def reset(self) -> None:
        with self._lock:
            self._decisions.clear()
            self._mint_outcomes.clear()
            self._mint_failures.clear()
            self._mint_fallbacks.clear()
            self._store.clear()


_STORE = RewardsObservabilityStore()


def get_rewards_store() -> RewardsObservabilityStore:
    return _STORE


__all__ = ["get_rewards_store", "RewardsObservabilityStore", "RewardsSnapshot"]
