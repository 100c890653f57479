"""
Power Platform environments — enumeration and per-environment app inventory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..api.client import AdminApiClient
from ..config import BAP_API_VERSION, POWER_APPS_API_VERSION, POWER_APPS_BASE_URL
from ..jobs.fanout import BatchSummary, run_for_each

logger = logging.getLogger("m365_admin_automation.powerplatform")

ENVIRONMENTS_ENDPOINT = (
    "providers/Microsoft.BusinessAppPlatform/scopes/admin/environments"
    f"?api-version={BAP_API_VERSION}"
)


@dataclass
class Environment:
    name: str                # Environment id (GUID or "Default-<tenant>")
    display_name: str
    location: str = ""
    sku: str = ""
    is_default: bool = False

    @classmethod
    def from_api(cls, item: dict) -> "Environment":
        props = item.get("properties", {})
        return cls(
            name=item.get("name", ""),
            display_name=props.get("displayName", item.get("name", "")),
            location=item.get("location", ""),
            sku=props.get("environmentSku", ""),
            is_default=bool(props.get("isDefault", False)),
        )

    def label(self) -> str:
        default = " [default]" if self.is_default else ""
        return f"{self.display_name} ({self.sku or 'n/a'}, {self.location or 'n/a'}){default}"


@dataclass
class PowerApp:
    environment: str
    name: str
    display_name: str
    owner: str = ""
    created_time: str = ""
    last_modified_time: str = ""

    @classmethod
    def from_api(cls, environment: str, item: dict) -> "PowerApp":
        props = item.get("properties", {})
        owner = props.get("owner") or {}
        return cls(
            environment=environment,
            name=item.get("name", ""),
            display_name=props.get("displayName", ""),
            owner=owner.get("email") or owner.get("displayName", ""),
            created_time=props.get("createdTime", ""),
            last_modified_time=props.get("lastModifiedTime", ""),
        )


class EnvironmentApi:
    """Admin-scope Power Platform environment and app listing."""

    def __init__(self, client: AdminApiClient):
        self.client = client

    async def list_environments(self, name_filter: Optional[str] = None) -> list[Environment]:
        """All environments in listing order, optionally filtered by display-name substring."""
        items = await self.client.get_all_pages(ENVIRONMENTS_ENDPOINT)
        environments = [Environment.from_api(i) for i in items]
        if name_filter:
            needle = name_filter.lower()
            environments = [e for e in environments if needle in e.display_name.lower()]
        logger.info(f"Found {len(environments)} environments")
        return environments

    async def list_apps(self, environment: Environment) -> list[PowerApp]:
        url = (
            f"{POWER_APPS_BASE_URL}/providers/Microsoft.PowerApps/scopes/admin/"
            f"environments/{environment.name}/apps?api-version={POWER_APPS_API_VERSION}"
        )
        items = await self.client.get_all_pages(url)
        return [PowerApp.from_api(environment.display_name, i) for i in items]


async def inventory_apps(
    api: EnvironmentApi,
    environments: list[Environment],
    concurrency: int,
) -> BatchSummary:
    """List apps in every environment; one environment's failure does not stop the rest."""
    return await run_for_each(
        environments,
        api.list_apps,
        name_of=lambda e: e.display_name,
        concurrency=concurrency,
    )
