from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

from . import db
from .authority import AuthorityError, VersionAuthority
from .db import utc_now
from .desired import ensure_credential_reference, fleet_labels, upsert_workload
from .inventory import build_inventory
from .kube import CredentialError
from .models import Fleet, InstanceRecord
from .restart import RollingRestartEngine
from .settings import settings
from .versions import VersionResolver


@dataclass
class ReconcileResult:
    fleet: str
    workload: str  # created|updated|unchanged
    target_version: str
    target_resolved: bool
    retired: list[str] = field(default_factory=list)
    status_written: bool = False
    finished_at: str = field(default_factory=utc_now)


class FleetReconciler:
    """Runs one reconciliation pass for an AgentFleet.

    Holds no state between passes: everything is recomputed from the fleet
    snapshot and what the cluster reports.
    """

    def __init__(
        self,
        cluster,
        authority_factory: Callable[..., VersionAuthority] = VersionAuthority.for_fleet,
        restart_engine: RollingRestartEngine | None = None,
    ):
        self.cluster = cluster
        self.authority_factory = authority_factory
        self.restart_engine = restart_engine or RollingRestartEngine(cluster)

    def _secret(self, fleet: Fleet, key: str) -> str:
        try:
            return self.cluster.get_secret_value(fleet.namespace, fleet.spec.tokens, key)
        except CredentialError as e:
            db.log_event("ERROR", f"Missing credential {key}: {e}", fleet=fleet.key)
            raise

    def reconcile(self, snapshot: Fleet) -> ReconcileResult:
        fleet = snapshot.model_copy(deep=True)
        key = fleet.key
        update_status = False
        db.log_event("INFO", f"Reconciling fleet (status version={fleet.status.version or '-'})", fleet=key)

        if not fleet.spec.tokens:
            fleet.spec.tokens = fleet.name
            update_status = True

        paas_token = self._secret(fleet, "paasToken")
        api_token = self._secret(fleet, "apiToken")

        if ensure_credential_reference(fleet.spec):
            update_status = True

        workload = upsert_workload(self.cluster, fleet)

        try:
            authority = self.authority_factory(fleet.spec, api_token, paas_token)
        except AuthorityError as e:
            db.log_event("ERROR", f"Failed to set up version authority client: {e}", fleet=key)
            raise
        try:
            resolver = VersionResolver(authority, key)
            desired, err = resolver.resolve_target()
            resolved = err is None
            if resolved and desired and fleet.status.version != desired:
                db.log_event("INFO", f"New version available: {fleet.status.version or '-'} -> {desired}", fleet=key)
                fleet.status.version = desired
                update_status = True
            # Without an answer from the authority nothing is compared against a target.
            target = fleet.status.version if resolved else ""

            try:
                pods = self.cluster.list_pods(fleet.namespace, fleet_labels(fleet))
            except Exception as e:
                db.log_event("ERROR", f"Failed to query pods: {e}", fleet=key)
                raise

            inv = build_inventory(fleet, pods, resolver, target)
        finally:
            authority.close()

        budget = fleet.spec.wait_ready_seconds
        if budget is None:
            budget = settings.default_wait_ready_s
        retirements = self.restart_engine.retire(fleet, inv.stale, budget)
        for r in retirements:
            inv.instances[r.node] = InstanceRecord(pod_name=r.replacement or r.pod, version=target)

        if inv.instances != fleet.status.instances:
            db.log_event("INFO", f"Instances changed: {len(inv.instances)} node(s)", fleet=key)
            fleet.status.instances = inv.instances
            update_status = True

        if update_status:
            fleet.status.updated_timestamp = utc_now()
            db.log_event("INFO", "Updating fleet status", fleet=key)
            try:
                self.cluster.update_fleet(fleet)
            except Exception as e:
                db.log_event("ERROR", f"Failed to update status: {e}", fleet=key)
                raise

        return ReconcileResult(
            fleet=key,
            workload=workload,
            target_version=fleet.status.version,
            target_resolved=resolved,
            retired=[r.pod for r in retirements],
            status_written=update_status,
        )
