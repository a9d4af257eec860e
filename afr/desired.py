from __future__ import annotations

from dataclasses import dataclass, field

from . import db
from .kube import NotFoundError
from .models import (
    Container,
    EnvVar,
    EnvVarSource,
    ExecAction,
    Fleet,
    FleetSpec,
    HostPathVolumeSource,
    LabelSelector,
    ObjectMeta,
    OwnerReference,
    PodSpec,
    PodTemplate,
    Probe,
    SecretKeySelector,
    SecurityContext,
    TemplateMeta,
    Toleration,
    Volume,
    VolumeMount,
    Workload,
    WorkloadSpec,
)
from .settings import settings

CREDENTIAL_ENV = "AGENT_INSTALLER_TOKEN"
CREDENTIAL_KEY = "paasToken"
HOST_ROOT_VOLUME = "host-root"
HOST_ROOT_MOUNT = "/mnt/root"


def fleet_labels(fleet: Fleet) -> dict[str, str]:
    """Labels set on every object created for a fleet."""
    return {"app.kubernetes.io/name": "fleet-agent", "fleet": fleet.name}


def credential_env(spec: FleetSpec) -> EnvVar:
    return EnvVar(
        name=CREDENTIAL_ENV,
        value_from=EnvVarSource(secret_key_ref=SecretKeySelector(name=spec.tokens, key=CREDENTIAL_KEY)),
    )


def ensure_credential_reference(spec: FleetSpec) -> bool:
    """Make sure env[0] references the installer token. Returns True if added.

    The entry must come first so later variables can expand it.
    """
    if spec.env and spec.env[0].name == CREDENTIAL_ENV:
        return False
    spec.env.insert(0, credential_env(spec))
    return True


@dataclass
class ControlledFields:
    """The part of the DaemonSet that the AgentFleet resource decides."""

    node_selector: dict[str, str] = field(default_factory=dict)
    tolerations: list[Toleration] = field(default_factory=list)
    image: str = ""
    env: list[dict] = field(default_factory=list)
    args: list[str] = field(default_factory=list)

    def diff(self, other: "ControlledFields") -> list[str]:
        return [name for name in ("node_selector", "tolerations", "image", "env", "args") if getattr(self, name) != getattr(other, name)]


# Env source fields the API server fills in when they are left out.
_ENV_SERVER_DEFAULTS = {"fieldRef": ("apiVersion", "v1"), "resourceFieldRef": ("divisor", "0")}


def comparable_env(env: list[EnvVar]) -> list[dict]:
    out: list[dict] = []
    for e in env:
        wire = e.to_wire()
        source = wire.get("valueFrom") or {}
        for ref, (key, default) in _ENV_SERVER_DEFAULTS.items():
            sel = source.get(ref)
            if isinstance(sel, dict) and key in sel and str(sel[key]) == default:
                del sel[key]
        out.append(wire)
    return out


def controlled_fields(spec: FleetSpec) -> ControlledFields:
    return ControlledFields(
        node_selector=dict(spec.node_selector),
        tolerations=list(spec.tolerations),
        image=spec.image,
        env=comparable_env(spec.env),
        args=list(spec.args),
    )


def workload_controlled_fields(workload: Workload) -> ControlledFields:
    pod = workload.spec.template.spec
    c = workload.agent_container
    return ControlledFields(
        node_selector=dict(pod.node_selector or {}),
        tolerations=list(pod.tolerations or []),
        image=(c.image or "") if c else "",
        env=comparable_env(c.env or []) if c else [],
        args=list(c.args or []) if c else [],
    )


def is_drift_detected(workload: Workload, fleet: Fleet) -> bool:
    actual = workload_controlled_fields(workload)
    desired = controlled_fields(fleet.spec)
    changed = actual.diff(desired)
    if changed:
        db.log_event("INFO", f"DaemonSet drifted from spec: {', '.join(changed)}", fleet=fleet.key)
        return True
    return False


def apply_controlled_fields(workload: Workload, fleet: Fleet) -> None:
    labels = fleet_labels(fleet)
    spec = fleet.spec.model_copy(deep=True)

    workload.metadata.labels = dict(labels)
    workload.spec.selector = LabelSelector(match_labels=dict(labels))
    workload.spec.template.metadata = TemplateMeta(labels=dict(labels))

    pod = workload.spec.template.spec
    pod.node_selector = spec.node_selector
    pod.tolerations = spec.tolerations

    c = workload.agent_container
    if c is None:
        c = Container(name=settings.agent_container)
        pod.containers.append(c)
    c.image = spec.image
    c.env = spec.env
    c.args = spec.args


def apply_defaults(workload: Workload, fleet: Fleet) -> None:
    """Fill a bare DaemonSet with the structural settings the agent needs.

    Only called on creation; updates never touch these fields.
    """
    workload.spec = WorkloadSpec(
        template=PodTemplate(
            spec=PodSpec(
                volumes=[Volume(name=HOST_ROOT_VOLUME, host_path=HostPathVolumeSource(path="/"))],
                host_network=True,
                host_pid=True,
                host_ipc=True,
                containers=[
                    Container(
                        name=settings.agent_container,
                        image_pull_policy="Always",
                        volume_mounts=[VolumeMount(name=HOST_ROOT_VOLUME, mount_path=HOST_ROOT_MOUNT)],
                        security_context=SecurityContext(privileged=True),
                        readiness_probe=Probe(
                            exec_=ExecAction(command=["pgrep", "-f", settings.watchdog_process]),
                            initial_delay_seconds=30,
                            period_seconds=30,
                        ),
                    )
                ],
                service_account_name=settings.service_account,
            )
        )
    )

    owner = OwnerReference(
        api_version=fleet.api_version,
        kind=fleet.kind,
        name=fleet.name,
        uid=fleet.metadata.uid or "",
        controller=True,
        block_owner_deletion=True,
    )
    workload.metadata.owner_references = [*(workload.metadata.owner_references or []), owner]


def new_workload(fleet: Fleet) -> Workload:
    return Workload(metadata=ObjectMeta(name=fleet.name, namespace=fleet.namespace))


def upsert_workload(cluster, fleet: Fleet) -> str:
    """Create the agent DaemonSet or bring its controlled fields in line.

    Returns "created", "updated" or "unchanged". Errors other than
    not-found propagate.
    """
    try:
        live = cluster.get_workload(fleet.namespace, fleet.name)
    except NotFoundError:
        db.log_event("INFO", "Deploying agent DaemonSet", fleet=fleet.key)
        ds = new_workload(fleet)
        apply_defaults(ds, fleet)
        apply_controlled_fields(ds, fleet)
        try:
            cluster.create_workload(ds)
        except Exception as e:
            db.log_event("ERROR", f"Failed to deploy DaemonSet: {e}", fleet=fleet.key)
            raise
        return "created"
    except Exception as e:
        db.log_event("ERROR", f"Failed to get DaemonSet: {e}", fleet=fleet.key)
        raise

    if not is_drift_detected(live, fleet):
        return "unchanged"

    apply_controlled_fields(live, fleet)
    try:
        cluster.update_workload(live)
    except Exception as e:
        db.log_event("ERROR", f"Failed to update DaemonSet: {e}", fleet=fleet.key)
        raise
    db.log_event("INFO", "Updated agent DaemonSet", fleet=fleet.key)
    return "updated"
