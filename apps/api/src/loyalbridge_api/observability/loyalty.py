from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from threading import Lock
from typing import Dict


@dataclass
class LoyaltySnapshot:
    redemptions: Dict[str, int]
    catalog: Dict[str, int]
    webhooks: Dict[str, int]
    upstream_failures: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "redemptions": dict(self.redemptions),
            "catalog": dict(self.catalog),
            "webhooks": dict(self.webhooks),
            "upstreamFailures": dict(self.upstream_failures),
        }


class LoyaltyObservabilityStore:
    """In-process counters for redemption, catalog sync and webhook activity."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._redemptions: Dict[str, int] = defaultdict(int)
        self._catalog: Dict[str, int] = defaultdict(int)
        self._webhooks: Dict[str, int] = defaultdict(int)
        self._upstream: Dict[str, int] = defaultdict(int)

    def record_redemption(self, outcome: str) -> None:
        with self._lock:
            self._redemptions[outcome] += 1

    def record_catalog_sync(self, *, synced: int, skipped: int) -> None:
        with self._lock:
            self._catalog["runs"] += 1
            self._catalog["synced"] += synced
            self._catalog["skipped"] += skipped

    def record_webhook(self, *, processed_discounts: int, finalize_failures: int, points_awarded: bool) -> None:
        with self._lock:
            self._webhooks["orders"] += 1
            self._webhooks["processed_discounts"] += processed_discounts
            self._webhooks["finalize_failures"] += finalize_failures
            if points_awarded:
                self._webhooks["points_awarded"] += 1

    def record_upstream_failure(self, service: str, operation: str) -> None:
        with self._lock:
            self._upstream[f"{service}:{operation}"] += 1

    def snapshot(self) -> LoyaltySnapshot:
        with self._lock:
            return LoyaltySnapshot(
                redemptions=dict(self._redemptions),
                catalog=dict(self._catalog),
                webhooks=dict(self._webhooks),
                upstream_failures=dict(self._upstream),
            )

    def reset(self) -> None:
        with self._lock:
            self._redemptions.clear()
            self._catalog.clear()
            self._webhooks.clear()
            self._upstream.clear()


_STORE = LoyaltyObservabilityStore()


def get_loyalty_store() -> LoyaltyObservabilityStore:
    return _STORE


__all__ = ["get_loyalty_store", "LoyaltyObservabilityStore", "LoyaltySnapshot"]
