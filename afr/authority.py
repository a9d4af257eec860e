from __future__ import annotations

from typing import Any

import httpx

from .models import FleetSpec
from .settings import settings


class AuthorityError(Exception):
    pass


def _format_agent_version(v: dict[str, Any]) -> str:
    return f"{v.get('major', 0)}.{v.get('minor', 0)}.{v.get('revision', 0)}.{v.get('timestamp', '')}".rstrip(".")


class VersionAuthority:
    """Client for the service that knows which agent version should run.

    Two queries are used:
      - the latest recommended installer version for a platform
      - the agent version currently installed on a host (looked up by IP)

    The host list is fetched once per client; a client is created per
    reconciliation pass.
    """

    def __init__(
        self,
        api_url: str,
        api_token: str,
        paas_token: str,
        verify: bool = True,
        timeout_s: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        if not api_url:
            raise AuthorityError("api url is empty")
        self.api_url = api_url.rstrip("/")
        self.api_token = api_token
        self.paas_token = paas_token
        self._http = httpx.Client(
            timeout=timeout_s if timeout_s is not None else settings.authority_timeout_s,
            verify=verify,
            follow_redirects=False,
            transport=transport,
        )
        self._hosts: list[dict[str, Any]] | None = None

    @classmethod
    def for_fleet(cls, spec: FleetSpec, api_token: str, paas_token: str) -> "VersionAuthority":
        return cls(spec.api_url, api_token, paas_token, verify=not spec.skip_cert_check)

    def close(self) -> None:
        self._http.close()

    def _get(self, path: str, token: str, params: dict[str, str] | None = None) -> Any:
        url = f"{self.api_url}{path}"
        try:
            resp = self._http.get(url, params=params, headers={"Authorization": f"Api-Token {token}"})
        except httpx.HTTPError as e:
            raise AuthorityError(f"GET {path}: {type(e).__name__}: {e}") from e
        if resp.status_code != 200:
            raise AuthorityError(f"GET {path}: HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise AuthorityError(f"GET {path}: invalid JSON") from e

    def latest_recommended(self, os_type: str = "unix", installer_type: str = "default") -> str:
        data = self._get(f"/v1/deployment/installer/agent/{os_type}/{installer_type}/latest/metainfo", self.paas_token)
        if not isinstance(data, dict) or "latestAgentVersion" not in data:
            raise AuthorityError(f"unexpected latest version payload: {data!r}")
        return str(data["latestAgentVersion"])

    def installed_at(self, host_ip: str) -> str:
        if not host_ip:
            raise AuthorityError("host ip is empty")
        if self._hosts is None:
            data = self._get("/v1/entity/infrastructure/hosts", self.api_token, params={"includeDetails": "false"})
            if not isinstance(data, list):
                raise AuthorityError(f"unexpected host list payload: {type(data).__name__}")
            self._hosts = data
        for host in self._hosts:
            if not isinstance(host, dict):
                continue
            ips = host.get("ipAddresses")
            if isinstance(ips, list) and host_ip in ips:
                version = host.get("agentVersion")
                if not isinstance(version, dict):
                    raise AuthorityError(f"no agent version reported for host {host_ip}")
                return _format_agent_version(version)
        raise AuthorityError(f"no agent found for host {host_ip}")
