from __future__ import annotations

from dataclasses import dataclass
from threading import Lock

from .reconciler import ReconcileResult


@dataclass
class FleetState:
    key: str
    last_result: ReconcileResult | None = None
    last_error: str | None = None
    consecutive_failures: int = 0
    next_attempt_at: float = 0.0  # time.monotonic()
    authority_outages: int = 0


class RuntimeState:
    """In-memory bookkeeping for the resync loop and the API.

    Reconciliation itself never reads this; it only drives backoff and
    reporting.
    """

    def __init__(self, base_delay_s: float, max_delay_s: float) -> None:
        self.lock = Lock()
        self.base_delay_s = max(1.0, float(base_delay_s))
        self.max_delay_s = max(self.base_delay_s, float(max_delay_s))
        self.fleets: dict[str, FleetState] = {}

    def _get(self, key: str) -> FleetState:
        st = self.fleets.get(key)
        if st is None:
            st = self.fleets[key] = FleetState(key=key)
        return st

    def should_attempt(self, key: str, now: float) -> bool:
        with self.lock:
            st = self.fleets.get(key)
            return st is None or now >= st.next_attempt_at

    def record_success(self, key: str, result: ReconcileResult) -> int:
        """Returns the number of failures that preceded this success."""
        with self.lock:
            st = self._get(key)
            prev = st.consecutive_failures
            st.last_result = result
            st.last_error = None
            st.consecutive_failures = 0
            st.next_attempt_at = 0.0
            if not result.target_resolved:
                st.authority_outages += 1
            return prev

    def record_failure(self, key: str, error: str, now: float) -> int:
        """Schedule the next attempt with exponential backoff. Returns the failure count."""
        with self.lock:
            st = self._get(key)
            st.last_error = error
            st.consecutive_failures += 1
            delay = min(self.max_delay_s, self.base_delay_s * (2 ** min(st.consecutive_failures - 1, 16)))
            st.next_attempt_at = now + delay
            return st.consecutive_failures

    def forget(self, key: str) -> None:
        with self.lock:
            self.fleets.pop(key, None)

    def keys(self) -> list[str]:
        with self.lock:
            return list(self.fleets)

    def snapshot(self) -> list[FleetState]:
        with self.lock:
            return [FleetState(**vars(st)) for st in self.fleets.values()]
