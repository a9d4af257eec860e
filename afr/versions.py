from __future__ import annotations

from . import db
from .authority import AuthorityError
from .models import Pod


class VersionResolver:
    """Soft-failing wrapper around the version authority.

    Lookups never raise; failures come back as (version, error) and are
    logged as warnings against the fleet, node and pod involved.
    """

    def __init__(self, authority, fleet_key: str, os_type: str = "unix", installer_type: str = "default"):
        self.authority = authority
        self.fleet_key = fleet_key
        self.os_type = os_type
        self.installer_type = installer_type

    def resolve_target(self) -> tuple[str, AuthorityError | None]:
        try:
            return self.authority.latest_recommended(self.os_type, self.installer_type), None
        except AuthorityError as e:
            db.log_event("WARN", f"Failed to get desired version: {e}", fleet=self.fleet_key)
            return "", e

    def resolve_installed(self, pod: Pod) -> tuple[str, AuthorityError | None]:
        try:
            return self.authority.installed_at(pod.host_ip), None
        except AuthorityError as e:
            db.log_event(
                "WARN",
                f"No agent version for host {pod.host_ip or '?'}: {e}",
                fleet=self.fleet_key,
                node=pod.node_name,
                pod=pod.name,
            )
            return "", e
