from __future__ import annotations

from dataclasses import dataclass, field

from . import db
from .models import Fleet, InstanceRecord, Pod
from .versions import VersionResolver


@dataclass
class Inventory:
    instances: dict[str, InstanceRecord] = field(default_factory=dict)  # node -> record
    stale: list[Pod] = field(default_factory=list)  # discovery order


def build_inventory(fleet: Fleet, pods: list[Pod], resolver: VersionResolver, target: str) -> Inventory:
    """Record the installed agent version per node and pick pods to retire.

    A pod is stale only when its version was looked up successfully, is
    known, and differs from a known target. When the lookup fails the
    node keeps its last recorded version and the pod is left alone.
    """
    inv = Inventory()
    previous = fleet.status.instances

    for pod in pods:
        node = pod.node_name
        if not node:
            db.log_event("WARN", "Pod is not bound to a node yet, skipping", fleet=fleet.key, pod=pod.name)
            continue

        version, err = resolver.resolve_installed(pod)
        record = InstanceRecord(pod_name=pod.name)
        if err is not None:
            last = previous.get(node)
            if last is not None:
                record.version = last.version
        else:
            record.version = version
            if version and target and version != target:
                db.log_event(
                    "INFO",
                    f"Agent outdated: actual={version} desired={target}",
                    fleet=fleet.key,
                    node=node,
                    pod=pod.name,
                )
                inv.stale.append(pod)
        inv.instances[node] = record

    return inv
