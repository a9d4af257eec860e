import itertools
import os as _os
import sys

import pytest

# Ensure project root is importable (so `import cli` works reliably across environments)
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from afr import db  # noqa: E402
from afr.authority import AuthorityError  # noqa: E402
from afr.desired import fleet_labels  # noqa: E402
from afr.kube import ClusterError, NotFoundError, SecretKeyMissing, SecretNotFound  # noqa: E402
from afr.models import (  # noqa: E402
    ContainerStatus,
    EnvVar,
    Fleet,
    FleetSpec,
    ObjectMeta,
    Pod,
    PodBinding,
    PodMeta,
    PodStatus,
)
from afr.settings import Settings  # noqa: E402


@pytest.fixture(autouse=True)
def event_db(tmp_path, monkeypatch):
    """Isolated sqlite event log per test."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "afr.db")))
    db.init_db()
    return db


def make_fleet(name="agents", namespace="monitoring", status=None, **spec):
    spec.setdefault("api_url", "https://authority.example/api")
    spec.setdefault("image", "registry.example/agent:latest")
    spec.setdefault("tokens", name)
    spec.setdefault("wait_ready_seconds", 30)
    spec.setdefault("env", [EnvVar(name="LOG_LEVEL", value="info")])
    fleet = Fleet(
        api_version="fleet.afr.io/v1alpha1",
        metadata=ObjectMeta(name=name, namespace=namespace, uid="uid-1234"),
        spec=FleetSpec(**spec),
    )
    if status is not None:
        fleet.status = status
    return fleet


def make_pod(name, node, host_ip, fleet=None, phase="Running", ready=True, namespace="monitoring"):
    labels = fleet_labels(fleet) if fleet is not None else {}
    return Pod(
        metadata=PodMeta(name=name, namespace=namespace, labels=labels),
        spec=PodBinding(node_name=node),
        status=PodStatus(phase=phase, host_ip=host_ip, container_statuses=[ContainerStatus(name="agent", ready=ready)]),
    )


class FakeCluster:
    """In-memory control plane.

    Deleting a pod makes the DaemonSet "controller" schedule a ready
    replacement on the same node, unless ``replace_on_delete`` is off.
    """

    def __init__(self, secrets=None):
        self.fleets = {}
        self.workloads = {}
        self.pods = []
        self.secrets = secrets if secrets is not None else {}
        self.calls = []
        self.replace_on_delete = True
        self.replacement_ready = True
        self.extra_replacements = 0
        self.fail_delete = False
        self.fail_list_pods = 0
        self.fail_get_workload = False
        self.fail_update_workload = False
        self.fail_update_fleet = False
        self._seq = itertools.count(1)

    def add_fleet(self, fleet):
        self.fleets[fleet.key] = fleet
        self.secrets.setdefault((fleet.namespace, fleet.spec.tokens or fleet.name), {"apiToken": "api", "paasToken": "paas"})
        return fleet

    def writes(self):
        return [c for c in self.calls if c[0] in {"create_workload", "update_workload", "update_fleet", "delete_pod"}]

    # --- fleets ---

    def list_fleets(self, namespace):
        return [f.model_copy(deep=True) for f in self.fleets.values() if f.namespace == namespace]

    def get_fleet(self, namespace, name):
        key = f"{namespace}/{name}"
        if key not in self.fleets:
            raise NotFoundError(f"fleet {key}: not found", status=404)
        return self.fleets[key].model_copy(deep=True)

    def update_fleet(self, fleet):
        self.calls.append(("update_fleet", fleet.key))
        if self.fail_update_fleet:
            raise ClusterError("resourceVersion conflict", status=409)
        self.fleets[fleet.key] = fleet.model_copy(deep=True)
        return fleet

    # --- workloads ---

    def get_workload(self, namespace, name):
        self.calls.append(("get_workload", f"{namespace}/{name}"))
        if self.fail_get_workload:
            raise ClusterError("apiserver unavailable", status=503)
        key = f"{namespace}/{name}"
        if key not in self.workloads:
            raise NotFoundError(f"daemonset {key}: not found", status=404)
        return self.workloads[key].model_copy(deep=True)

    def create_workload(self, workload):
        self.calls.append(("create_workload", workload.metadata.name))
        self.workloads[f"{workload.metadata.namespace}/{workload.metadata.name}"] = workload.model_copy(deep=True)

    def update_workload(self, workload):
        self.calls.append(("update_workload", workload.metadata.name))
        if self.fail_update_workload:
            raise ClusterError("conflict", status=409)
        self.workloads[f"{workload.metadata.namespace}/{workload.metadata.name}"] = workload.model_copy(deep=True)

    # --- pods ---

    def list_pods(self, namespace, labels, node_name=None, phase=None, exclude_name=None):
        self.calls.append(("list_pods", node_name))
        if self.fail_list_pods:
            self.fail_list_pods -= 1
            raise ClusterError("connection reset", status=500)
        out = []
        for p in self.pods:
            if (p.metadata.namespace or "") != namespace:
                continue
            if any(p.metadata.labels.get(k) != v for k, v in labels.items()):
                continue
            if node_name and p.node_name != node_name:
                continue
            if phase and p.status.phase != phase:
                continue
            if exclude_name and p.name == exclude_name:
                continue
            out.append(p.model_copy(deep=True))
        return out

    def delete_pod(self, pod):
        self.calls.append(("delete_pod", pod.name))
        if self.fail_delete:
            raise ClusterError("forbidden", status=403)
        old = next((p for p in self.pods if p.name == pod.name), None)
        self.pods = [p for p in self.pods if p.name != pod.name]
        if old is None or not self.replace_on_delete:
            return
        for _ in range(1 + self.extra_replacements):
            new = old.model_copy(deep=True)
            new.metadata.name = f"{old.name.rsplit('-', 1)[0]}-r{next(self._seq)}"
            new.status.container_statuses = [ContainerStatus(name="agent", ready=self.replacement_ready)]
            self.pods.append(new)

    # --- secrets ---

    def get_secret_value(self, namespace, name, key):
        data = self.secrets.get((namespace, name))
        if data is None:
            raise SecretNotFound(f"secret {namespace}/{name} not found")
        if key not in data:
            raise SecretKeyMissing(f"secret {namespace}/{name} is missing key {key}")
        return data[key]


class FakeAuthority:
    def __init__(self, latest="1.2.0", installed=None):
        self.latest = latest
        self.installed = installed if installed is not None else {}
        self.calls = []
        self.closed = False

    def latest_recommended(self, os_type="unix", installer_type="default"):
        self.calls.append(("latest", os_type, installer_type))
        if isinstance(self.latest, Exception):
            raise self.latest
        return self.latest

    def installed_at(self, host_ip):
        self.calls.append(("installed", host_ip))
        v = self.installed.get(host_ip)
        if v is None:
            raise AuthorityError(f"no agent found for host {host_ip}")
        if isinstance(v, Exception):
            raise v
        return v

    def close(self):
        self.closed = True


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
def authority():
    return FakeAuthority()


class SleepRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def sleeper():
    return SleepRecorder()
