"""Resource shapes exchanged with the cluster.

Models use camelCase aliases so they load straight from the Kubernetes JSON
form and dump back to it with ``model_dump(by_alias=True, exclude_none=True)``.

Two flavours:
 - ``KubeModel`` keeps only the declared fields. Used for values the
   controller computes itself (status, pods, selectors).
 - ``OpenKubeModel`` also keeps unknown fields, so anything a user or the
   API server put in an object is written back untouched. Everything copied
   from the AgentFleet spec into the DaemonSet is open.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class KubeModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class OpenKubeModel(KubeModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


# --- shared building blocks ---


class SecretKeySelector(OpenKubeModel):
    name: str
    key: str
    optional: bool | None = None


class ObjectFieldSelector(OpenKubeModel):
    field_path: str


class ConfigMapKeySelector(OpenKubeModel):
    name: str
    key: str
    optional: bool | None = None


class ResourceFieldSelector(OpenKubeModel):
    resource: str
    container_name: str | None = None
    divisor: str | int | None = None


class EnvVarSource(OpenKubeModel):
    secret_key_ref: SecretKeySelector | None = None
    config_map_key_ref: ConfigMapKeySelector | None = None
    field_ref: ObjectFieldSelector | None = None
    resource_field_ref: ResourceFieldSelector | None = None


class EnvVar(OpenKubeModel):
    name: str
    value: str | None = None
    value_from: EnvVarSource | None = None


class Toleration(OpenKubeModel):
    key: str | None = None
    operator: str | None = None
    value: str | None = None
    effect: str | None = None
    toleration_seconds: int | None = None


class OwnerReference(KubeModel):
    api_version: str
    kind: str
    name: str
    uid: str
    controller: bool | None = None
    block_owner_deletion: bool | None = None


class ObjectMeta(OpenKubeModel):
    name: str = ""
    namespace: str | None = None
    uid: str | None = None
    resource_version: str | None = None
    labels: dict[str, str] | None = None
    owner_references: list[OwnerReference] | None = None


# --- AgentFleet custom resource ---


class FleetSpec(OpenKubeModel):
    api_url: str = ""
    skip_cert_check: bool = False
    node_selector: dict[str, str] = Field(default_factory=dict)
    tolerations: list[Toleration] = Field(default_factory=list)
    image: str = ""
    tokens: str = ""
    wait_ready_seconds: int | None = None
    args: list[str] = Field(default_factory=list)
    env: list[EnvVar] = Field(default_factory=list)


class InstanceRecord(KubeModel):
    pod_name: str
    version: str = ""


class FleetStatus(KubeModel):
    version: str = ""
    instances: dict[str, InstanceRecord] = Field(default_factory=dict)
    updated_timestamp: str | None = None


class Fleet(OpenKubeModel):
    api_version: str = ""
    kind: str = "AgentFleet"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: FleetSpec = Field(default_factory=FleetSpec)
    status: FleetStatus = Field(default_factory=FleetStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace or ""

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


# --- agent DaemonSet ---


class HostPathVolumeSource(OpenKubeModel):
    path: str


class Volume(OpenKubeModel):
    name: str
    host_path: HostPathVolumeSource | None = None


class VolumeMount(OpenKubeModel):
    name: str
    mount_path: str


class SecurityContext(OpenKubeModel):
    privileged: bool | None = None


class ExecAction(OpenKubeModel):
    command: list[str] = Field(default_factory=list)


class Probe(OpenKubeModel):
    exec_: ExecAction | None = Field(default=None, alias="exec")
    initial_delay_seconds: int | None = None
    period_seconds: int | None = None


class Container(OpenKubeModel):
    name: str
    image: str | None = None
    image_pull_policy: str | None = None
    args: list[str] | None = None
    env: list[EnvVar] | None = None
    volume_mounts: list[VolumeMount] | None = None
    security_context: SecurityContext | None = None
    readiness_probe: Probe | None = None


class PodSpec(OpenKubeModel):
    containers: list[Container] = Field(default_factory=list)
    volumes: list[Volume] | None = None
    node_selector: dict[str, str] | None = None
    tolerations: list[Toleration] | None = None
    host_network: bool | None = None
    host_pid: bool | None = Field(default=None, alias="hostPID")
    host_ipc: bool | None = Field(default=None, alias="hostIPC")
    service_account_name: str | None = None


class TemplateMeta(OpenKubeModel):
    labels: dict[str, str] | None = None


class PodTemplate(OpenKubeModel):
    metadata: TemplateMeta = Field(default_factory=TemplateMeta)
    spec: PodSpec = Field(default_factory=PodSpec)


class LabelSelector(KubeModel):
    match_labels: dict[str, str] = Field(default_factory=dict)


class WorkloadSpec(OpenKubeModel):
    selector: LabelSelector | None = None
    template: PodTemplate = Field(default_factory=PodTemplate)


class Workload(OpenKubeModel):
    """The per-node agent DaemonSet."""

    api_version: str = "apps/v1"
    kind: str = "DaemonSet"
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)
    spec: WorkloadSpec = Field(default_factory=WorkloadSpec)

    @property
    def agent_container(self) -> Container | None:
        containers = self.spec.template.spec.containers
        return containers[0] if containers else None


# --- pods (read only) ---


class ContainerStatus(KubeModel):
    name: str = ""
    ready: bool = False


class PodStatus(KubeModel):
    phase: str | None = None
    host_ip: str | None = Field(default=None, alias="hostIP")
    container_statuses: list[ContainerStatus] = Field(default_factory=list)


class PodBinding(KubeModel):
    node_name: str | None = None


class PodMeta(KubeModel):
    name: str
    namespace: str | None = None
    labels: dict[str, str] = Field(default_factory=dict)


class Pod(KubeModel):
    metadata: PodMeta
    spec: PodBinding = Field(default_factory=PodBinding)
    status: PodStatus = Field(default_factory=PodStatus)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def node_name(self) -> str:
        return self.spec.node_name or ""

    @property
    def host_ip(self) -> str:
        return self.status.host_ip or ""
