from __future__ import annotations

import base64
from typing import Any

from kubernetes import client, config
from kubernetes.client import ApiException

from .models import Fleet, Pod, Workload
from .settings import settings


class ClusterError(Exception):
    """A control-plane request failed."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class NotFoundError(ClusterError):
    pass


class CredentialError(Exception):
    pass


class SecretNotFound(CredentialError):
    pass


class SecretKeyMissing(CredentialError):
    pass


def _wrap(exc: ApiException, what: str) -> ClusterError:
    if exc.status == 404:
        return NotFoundError(f"{what}: not found", status=404)
    return ClusterError(f"{what}: HTTP {exc.status} {exc.reason}", status=exc.status)


def field_selector(node_name: str | None = None, phase: str | None = None, exclude_name: str | None = None) -> str:
    parts: list[str] = []
    if node_name:
        parts.append(f"spec.nodeName={node_name}")
    if phase:
        parts.append(f"status.phase={phase}")
    if exclude_name:
        parts.append(f"metadata.name!={exclude_name}")
    return ",".join(parts)


def label_selector(labels: dict[str, str]) -> str:
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


class KubeCluster:
    """Control-plane client backed by the official kubernetes library."""

    def __init__(self, api_client: client.ApiClient | None = None):
        if api_client is None:
            if settings.in_cluster:
                config.load_incluster_config()
            else:
                config.load_kube_config()
            api_client = client.ApiClient()
        self.api_client = api_client
        self.core = client.CoreV1Api(api_client)
        self.apps = client.AppsV1Api(api_client)
        self.custom = client.CustomObjectsApi(api_client)

    def _to_dict(self, obj: Any) -> dict:
        if isinstance(obj, dict):
            return obj
        return self.api_client.sanitize_for_serialization(obj)

    # --- AgentFleet resources ---

    def list_fleets(self, namespace: str) -> list[Fleet]:
        try:
            data = self.custom.list_namespaced_custom_object(
                settings.crd_group, settings.crd_version, namespace, settings.crd_plural
            )
        except ApiException as e:
            raise _wrap(e, f"list {settings.crd_plural} in {namespace}") from e
        return [Fleet.model_validate(item) for item in data.get("items", [])]

    def get_fleet(self, namespace: str, name: str) -> Fleet:
        try:
            data = self.custom.get_namespaced_custom_object(
                settings.crd_group, settings.crd_version, namespace, settings.crd_plural, name
            )
        except ApiException as e:
            raise _wrap(e, f"get {settings.crd_plural} {namespace}/{name}") from e
        return Fleet.model_validate(data)

    def update_fleet(self, fleet: Fleet) -> Fleet:
        """Write spec and status back.

        With a status subresource the API server ignores status on the main
        resource, so it is written in a second request.
        """
        body = fleet.to_wire()
        try:
            data = self.custom.replace_namespaced_custom_object(
                settings.crd_group, settings.crd_version, fleet.namespace, settings.crd_plural, fleet.name, body
            )
            if settings.crd_status_subresource:
                data["status"] = body["status"]
                data = self.custom.replace_namespaced_custom_object_status(
                    settings.crd_group, settings.crd_version, fleet.namespace, settings.crd_plural, fleet.name, data
                )
        except ApiException as e:
            raise _wrap(e, f"update {settings.crd_plural} {fleet.key}") from e
        return Fleet.model_validate(data)

    # --- agent DaemonSet ---

    def get_workload(self, namespace: str, name: str) -> Workload:
        try:
            ds = self.apps.read_namespaced_daemon_set(name, namespace)
        except ApiException as e:
            raise _wrap(e, f"get daemonset {namespace}/{name}") from e
        return Workload.model_validate(self._to_dict(ds))

    def create_workload(self, workload: Workload) -> None:
        ns = workload.metadata.namespace or ""
        try:
            self.apps.create_namespaced_daemon_set(ns, workload.to_wire())
        except ApiException as e:
            raise _wrap(e, f"create daemonset {ns}/{workload.metadata.name}") from e

    def update_workload(self, workload: Workload) -> None:
        ns = workload.metadata.namespace or ""
        try:
            self.apps.replace_namespaced_daemon_set(workload.metadata.name, ns, workload.to_wire())
        except ApiException as e:
            raise _wrap(e, f"update daemonset {ns}/{workload.metadata.name}") from e

    # --- pods ---

    def list_pods(
        self,
        namespace: str,
        labels: dict[str, str],
        node_name: str | None = None,
        phase: str | None = None,
        exclude_name: str | None = None,
    ) -> list[Pod]:
        kwargs: dict[str, str] = {"label_selector": label_selector(labels)}
        fields = field_selector(node_name, phase, exclude_name)
        if fields:
            kwargs["field_selector"] = fields
        try:
            pods = self.core.list_namespaced_pod(namespace, **kwargs)
        except ApiException as e:
            raise _wrap(e, f"list pods in {namespace}") from e
        data = self._to_dict(pods)
        return [Pod.model_validate(item) for item in data.get("items") or []]

    def delete_pod(self, pod: Pod) -> None:
        ns = pod.metadata.namespace or ""
        try:
            self.core.delete_namespaced_pod(pod.name, ns)
        except ApiException as e:
            # Already gone: the DaemonSet controller got there first.
            if e.status == 404:
                return
            raise _wrap(e, f"delete pod {ns}/{pod.name}") from e

    # --- credentials ---

    def get_secret_value(self, namespace: str, name: str, key: str) -> str:
        """Return one decoded value from a secret.

        Raises SecretNotFound when the secret is absent and SecretKeyMissing
        when it exists without the key.
        """
        try:
            secret = self.core.read_namespaced_secret(name, namespace)
        except ApiException as e:
            if e.status == 404:
                raise SecretNotFound(f"secret {namespace}/{name} not found") from e
            raise _wrap(e, f"get secret {namespace}/{name}") from e
        data = secret.data or {}
        if key not in data:
            raise SecretKeyMissing(f"secret {namespace}/{name} is missing key {key}")
        return base64.b64decode(data[key]).decode("utf-8").strip()
