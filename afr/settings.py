from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("AFR_DB_PATH", "afr.db")
    namespace: str = os.getenv("AFR_NAMESPACE", "fleet-agents")
    in_cluster: bool = _env_bool("AFR_IN_CLUSTER", False)
    resync_interval_s: int = _env_int("AFR_RESYNC_INTERVAL_S", 30)
    backoff_max_s: int = _env_int("AFR_BACKOFF_MAX_S", 300)

    # AgentFleet custom resource
    crd_group: str = os.getenv("AFR_CRD_GROUP", "fleet.afr.io")
    crd_version: str = os.getenv("AFR_CRD_VERSION", "v1alpha1")
    crd_plural: str = os.getenv("AFR_CRD_PLURAL", "agentfleets")
    crd_status_subresource: bool = _env_bool("AFR_CRD_STATUS_SUBRESOURCE", True)

    # Rolling restarts
    ready_poll_interval_s: int = _env_int("AFR_READY_POLL_INTERVAL_S", 10)
    default_wait_ready_s: int = _env_int("AFR_WAIT_READY_S", 300)

    # Version authority
    authority_timeout_s: int = _env_int("AFR_AUTHORITY_TIMEOUT_S", 10)

    # Agent workload defaults
    agent_container: str = os.getenv("AFR_AGENT_CONTAINER", "fleet-agent")
    service_account: str = os.getenv("AFR_SERVICE_ACCOUNT", "fleet-agent")
    watchdog_process: str = os.getenv("AFR_WATCHDOG_PROCESS", "agentwatchdog")

    # Email alerting (optional)
    enable_email: bool = _env_bool("AFR_ENABLE_EMAIL", False)
    smtp_host: str = os.getenv("AFR_SMTP_HOST", "smtp.gmail.com")
    smtp_port: int = _env_int("AFR_SMTP_PORT", 587)
    smtp_user: str | None = os.getenv("AFR_SMTP_USER")
    smtp_password: str | None = os.getenv("AFR_SMTP_PASSWORD")
    email_from: str | None = os.getenv("AFR_EMAIL_FROM")
    email_to: str | None = os.getenv("AFR_EMAIL_TO")


settings = Settings()
