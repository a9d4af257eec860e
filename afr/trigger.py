from __future__ import annotations

import time
from threading import Event, Lock, Thread
from typing import Callable

from . import db
from .alerts import send_fleet_alert
from .models import Fleet
from .polling import PollCancelled
from .reconciler import FleetReconciler, ReconcileResult
from .runtime import RuntimeState
from .settings import settings


class ResyncTrigger:
    """Periodically re-lists AgentFleets and reconciles each one.

    Passes run one at a time. A fleet whose pass failed is retried with
    exponential backoff instead of on every tick.
    """

    def __init__(
        self,
        cluster,
        reconciler: FleetReconciler,
        runtime: RuntimeState | None = None,
        namespace: str | None = None,
        interval_s: int | None = None,
        stop: Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cluster = cluster
        self.reconciler = reconciler
        self.clock = clock
        self.interval_s = interval_s if interval_s is not None else settings.resync_interval_s
        self.runtime = runtime or RuntimeState(self.interval_s, settings.backoff_max_s)
        self.namespace = namespace if namespace is not None else settings.namespace
        self._stop = stop or Event()
        self._pass_lock = Lock()
        self._thr: Thread | None = None

    @property
    def stop_event(self) -> Event:
        return self._stop

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop.clear()
        self._thr = Thread(target=self._loop, daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop.set()

    def _loop(self) -> None:
        db.log_event("INFO", f"Resync loop started for namespace '{self.namespace}'")
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                db.log_event("ERROR", f"Resync tick failed: {type(e).__name__}: {e}")
            self._stop.wait(max(1, self.interval_s))

    def tick(self) -> None:
        fleets = self.cluster.list_fleets(self.namespace)
        seen = {f.key for f in fleets}

        for key in self.runtime.keys():
            if key not in seen:
                # The DaemonSet goes with it through its owner reference.
                db.log_event("INFO", "Fleet deleted", fleet=key)
                self.runtime.forget(key)

        for fleet in fleets:
            if self._stop.is_set():
                return
            if not self.runtime.should_attempt(fleet.key, self.clock()):
                continue
            self.run_once(fleet)

    def run_once(self, fleet: Fleet) -> ReconcileResult | None:
        """Reconcile one fleet, recording the outcome. Never raises."""
        with self._pass_lock:
            try:
                result = self.reconciler.reconcile(fleet)
            except PollCancelled as e:
                # Shutdown, not a fleet failure: the next start begins a fresh pass.
                db.log_event("INFO", f"Reconcile interrupted: {e}", fleet=fleet.key)
                return None
            except Exception as e:
                detail = f"{type(e).__name__}: {e}"
                n = self.runtime.record_failure(fleet.key, detail, self.clock())
                db.log_event("ERROR", f"Reconcile failed (attempt {n}): {detail}", fleet=fleet.key)
                if n == 1:
                    send_fleet_alert(fleet.key, False, detail)
                return None

        prev_failures = self.runtime.record_success(fleet.key, result)
        if prev_failures:
            db.log_event("INFO", f"Reconcile recovered after {prev_failures} failure(s)", fleet=fleet.key)
            send_fleet_alert(fleet.key, True, "Reconcile succeeded")
        return result

    def reconcile_now(self, namespace: str, name: str) -> ReconcileResult:
        """Reconcile one fleet immediately, raising on failure."""
        fleet = self.cluster.get_fleet(namespace, name)
        with self._pass_lock:
            try:
                result = self.reconciler.reconcile(fleet)
            except Exception as e:
                self.runtime.record_failure(fleet.key, f"{type(e).__name__}: {e}", self.clock())
                raise
        self.runtime.record_success(fleet.key, result)
        return result
