"""
Configuration module for M365 Admin Automation.
Defines tunable parameters, API endpoints, polling bounds, and operational settings.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigError(Exception):
    """Raised when the run configuration is incomplete or invalid."""
    pass


# ─── Tenant Authentication ───────────────────────────────────────────────────

AUTH_MODES = ("certificate", "secret", "delegated")


@dataclass
class CertificateAuth:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str          # Path to base64-encoded PFX
    certificate_password: str = "" # Will be prompted if empty


@dataclass
class ClientSecretAuth:
    """Client-secret app-only authentication configuration."""
    tenant_id: str
    client_id: str
    client_secret: str


@dataclass
class DelegatedAuth:
    """Delegated (device code) authentication configuration."""
    tenant_id: str
    client_id: str


@dataclass
class AuthConfig:
    """Authentication configuration — one of the three modes."""
    mode: str = "certificate"
    certificate: Optional[CertificateAuth] = None
    secret: Optional[ClientSecretAuth] = None
    delegated: Optional[DelegatedAuth] = None

    @property
    def tenant_id(self) -> str:
        active = self.active()
        return active.tenant_id if active else ""

    def active(self):
        """Return the credential block selected by ``mode``."""
        return {
            "certificate": self.certificate,
            "secret": self.secret,
            "delegated": self.delegated,
        }.get(self.mode)


# ─── Remote API Settings ────────────────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com/v1.0"
ARM_BASE_URL = "https://management.azure.com"
POWER_PLATFORM_BASE_URL = "https://api.bap.microsoft.com"
POWER_APPS_BASE_URL = "https://api.powerapps.com"

API_BASE_URLS = {
    "graph": GRAPH_BASE_URL,
    "arm": ARM_BASE_URL,
    "powerplatform": POWER_PLATFORM_BASE_URL,
}

API_SCOPES = {
    "graph": "https://graph.microsoft.com/.default",
    "arm": "https://management.azure.com/.default",
    "powerplatform": "https://service.powerapps.com/.default",
}

COST_MANAGEMENT_API_VERSION = "2023-03-01"
BAP_API_VERSION = "2020-10-01"
POWER_APPS_API_VERSION = "2016-11-01"

# Rate limiting / throttling
MAX_CONCURRENT_REQUESTS = 4
MAX_RETRIES = 5
INITIAL_BACKOFF_SECONDS = 2.0
MAX_BACKOFF_SECONDS = 120.0
BACKOFF_MULTIPLIER = 2.0

# Pagination
MAX_PAGES_PER_ENDPOINT = 1000


# ─── Job Polling ────────────────────────────────────────────────────────────

DEFAULT_POLL_INTERVAL_SECONDS = 10
DEFAULT_POLL_MAX_ATTEMPTS = 360   # ~1 hour at the default interval
POLL_HISTORY_LIMIT = 50           # Most recent status checks kept on a PollOutcome


@dataclass
class PollingConfig:
    """Bounds and retry policy for remote job polling."""
    interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_attempts: Optional[int] = DEFAULT_POLL_MAX_ATTEMPTS  # None = poll until terminal
    timeout_seconds: Optional[float] = None
    status_retries: int = 0               # Transient status-check errors retried
    status_retry_backoff_seconds: float = 5.0

    def validate(self):
        if self.interval_seconds <= 0:
            raise ConfigError("Poll interval must be a positive number of seconds.")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ConfigError("Poll max attempts must be at least 1.")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ConfigError("Poll timeout must be positive.")
        if self.status_retries < 0:
            raise ConfigError("Status retries cannot be negative.")


# ─── Reporting ──────────────────────────────────────────────────────────────

TOP_N_DEFAULT = 5


@dataclass
class ReportConfig:
    """Report and export settings."""
    output_dir: str = ""
    top_n: int = TOP_N_DEFAULT
    concurrency: int = MAX_CONCURRENT_REQUESTS  # Per-environment fan-out cap

    def __post_init__(self):
        if not self.output_dir:
            self.output_dir = os.path.join(os.getcwd(), "m365_admin_output")

    @property
    def path(self) -> Path:
        return Path(self.output_dir)


def run_timestamp() -> str:
    """UTC timestamp used in output file names."""
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


# ─── Environment (.env) settings ────────────────────────────────────────────

class TenantSettings(BaseSettings):
    """Key/value tenant settings read from the environment or a local .env file.

    Variable names carry the ``M365_`` prefix, e.g. ``M365_TENANT_ID``.
    """

    model_config = SettingsConfigDict(
        env_prefix="M365_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    cert_path: str = ""
    cert_password: str = ""
    subscription_id: str = ""
    ediscovery_case_id: str = ""


def load_tenant_settings(env_file: Optional[str] = None) -> TenantSettings:
    """Load tenant settings, optionally from an explicit .env path."""
    if env_file:
        if not Path(env_file).exists():
            raise ConfigError(f"Environment file not found: {env_file}")
        return TenantSettings(_env_file=env_file)
    return TenantSettings()


# ─── Master Configuration ───────────────────────────────────────────────────

@dataclass
class EngineConfig:
    """Top-level configuration for one automation run."""
    auth: AuthConfig = field(default_factory=AuthConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    subscription_id: str = ""
    ediscovery_case_id: str = ""
    verbose: bool = False

    @classmethod
    def from_file(cls, path: str) -> "EngineConfig":
        """Load configuration from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        config = cls()
        if "auth" in data:
            auth_data = data["auth"]
            config.auth.mode = auth_data.get("mode", "certificate")
            if "certificate" in auth_data:
                c = auth_data["certificate"]
                config.auth.certificate = CertificateAuth(
                    tenant_id=c["tenant_id"],
                    client_id=c["client_id"],
                    certificate_path=c.get("certificate_path", "./base64.txt"),
                    certificate_password=c.get("certificate_password", ""),
                )
            if "secret" in auth_data:
                s = auth_data["secret"]
                config.auth.secret = ClientSecretAuth(
                    tenant_id=s["tenant_id"],
                    client_id=s["client_id"],
                    client_secret=s.get("client_secret", ""),
                )
            if "delegated" in auth_data:
                d = auth_data["delegated"]
                config.auth.delegated = DelegatedAuth(
                    tenant_id=d["tenant_id"],
                    client_id=d["client_id"],
                )
        for section, target in (("polling", config.polling), ("report", config.report)):
            for k, v in data.get(section, {}).items():
                if hasattr(target, k):
                    setattr(target, k, v)
        config.subscription_id = data.get("subscription_id", "")
        config.ediscovery_case_id = data.get("ediscovery_case_id", "")
        config.verbose = data.get("verbose", False)
        return config

    def apply_settings(self, settings: TenantSettings):
        """Fill credential gaps from .env / environment settings."""
        if settings.subscription_id:
            self.subscription_id = settings.subscription_id
        if settings.ediscovery_case_id:
            self.ediscovery_case_id = settings.ediscovery_case_id
        if not (settings.tenant_id and settings.client_id):
            return
        if settings.client_secret:
            self.auth.secret = ClientSecretAuth(
                tenant_id=settings.tenant_id,
                client_id=settings.client_id,
                client_secret=settings.client_secret,
            )
        if settings.cert_path:
            self.auth.certificate = CertificateAuth(
                tenant_id=settings.tenant_id,
                client_id=settings.client_id,
                certificate_path=settings.cert_path,
                certificate_password=settings.cert_password,
            )
        if not self.auth.delegated:
            self.auth.delegated = DelegatedAuth(
                tenant_id=settings.tenant_id,
                client_id=settings.client_id,
            )
        # A secret alone implies secret mode
        if self.auth.mode == "certificate" and not self.auth.certificate and self.auth.secret:
            self.auth.mode = "secret"

    def validate(self):
        if self.auth.mode not in AUTH_MODES:
            raise ConfigError(f"Unknown auth mode: {self.auth.mode}")
        if self.auth.active() is None:
            raise ConfigError(
                f"No credentials configured for auth mode '{self.auth.mode}'."
            )
        self.polling.validate()
        if self.report.top_n < 1:
            raise ConfigError("Top-N must be at least 1.")
        if self.report.concurrency < 1:
            raise ConfigError("Concurrency must be at least 1.")


# ─── Required API Permissions (application) ─────────────────────────────────

REQUIRED_PERMISSIONS = {
    "eDiscovery.ReadWrite.All": "Create eDiscovery cases, searches and exports",
    "Cost Management Reader": "Azure RBAC role on the subscription for cost queries",
    "Power Platform Administrator": "Entra role to enumerate environments and apps",
}
