from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Event
from typing import Callable

from . import db
from .desired import fleet_labels
from .kube import ClusterError
from .models import Fleet, Pod
from .polling import PollTimeout, poll_until
from .settings import settings


DELETING = "deleting"
POLLING = "polling"
CONFIRMED = "confirmed"
TIMED_OUT = "timed_out"
FAILED = "failed"


class AmbiguousReplacement(Exception):
    pass


class RetirementError(Exception):
    def __init__(self, message: str, retirement: "Retirement"):
        super().__init__(message)
        self.retirement = retirement


class ReadinessTimeout(RetirementError):
    pass


@dataclass
class Retirement:
    pod: str
    node: str
    state: str = DELETING
    replacement: str | None = None
    ticks: int = 0


def is_pod_ready(pod: Pod) -> bool:
    """A pod is ready when every container reports ready."""
    return all(c.ready for c in pod.status.container_statuses)


class RollingRestartEngine:
    """Deletes outdated agent pods one node at a time.

    After each deletion the DaemonSet controller schedules a replacement on
    the same node; the next pod is only touched once that replacement is
    running and ready.
    """

    def __init__(
        self,
        cluster,
        interval_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        stop: Event | None = None,
    ):
        self.cluster = cluster
        self.interval_s = interval_s if interval_s is not None else settings.ready_poll_interval_s
        self.sleep = sleep
        self.stop = stop

    def retire(self, fleet: Fleet, pods: list[Pod], budget_s: float) -> list[Retirement]:
        done: list[Retirement] = []
        for pod in pods:
            done.append(self._retire_one(fleet, pod, budget_s))
        return done

    def _retire_one(self, fleet: Fleet, pod: Pod, budget_s: float) -> Retirement:
        r = Retirement(pod=pod.name, node=pod.node_name)

        db.log_event("INFO", "Deleting pod", fleet=fleet.key, node=r.node, pod=r.pod)
        try:
            self.cluster.delete_pod(pod)
        except ClusterError as e:
            r.state = FAILED
            db.log_event("ERROR", f"Failed to delete pod: {e}", fleet=fleet.key, node=r.node, pod=r.pod)
            raise RetirementError(f"failed to delete pod {r.pod}: {e}", r) from e

        r.state = POLLING
        labels = fleet_labels(fleet)

        def probe() -> Pod | None:
            r.ticks += 1
            found = self.cluster.list_pods(
                fleet.namespace, labels, node_name=r.node, phase="Running", exclude_name=r.pod
            )
            if len(found) > 1:
                raise AmbiguousReplacement(f"too many pods found: expected=1 actual={len(found)}")
            if len(found) == 1 and is_pod_ready(found[0]):
                return found[0]
            return None

        def on_retry(err: BaseException, tick: int) -> None:
            db.log_event("WARN", f"Replacement check {tick} failed: {err}", fleet=fleet.key, node=r.node, pod=r.pod)

        try:
            replacement = poll_until(
                probe,
                interval_s=self.interval_s,
                budget_s=budget_s,
                retry_on=(ClusterError, AmbiguousReplacement),
                sleep=self.sleep,
                stop=self.stop,
                on_retry=on_retry,
            )
        except PollTimeout as e:
            r.state = TIMED_OUT
            db.log_event("WARN", f"Timeout waiting on pod to get ready: {e}", fleet=fleet.key, node=r.node, pod=r.pod)
            raise ReadinessTimeout(f"replacement for pod {r.pod} on node {r.node} not ready: {e}", r) from e

        r.state = CONFIRMED
        r.replacement = replacement.name
        db.log_event("INFO", f"Replacement {replacement.name} is ready", fleet=fleet.key, node=r.node, pod=r.pod)
        return r
