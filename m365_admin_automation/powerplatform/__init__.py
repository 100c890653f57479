"""Power Platform package — environment enumeration and per-environment inventory."""

from .environments import Environment, EnvironmentApi, PowerApp, inventory_apps

__all__ = ["Environment", "EnvironmentApi", "PowerApp", "inventory_apps"]
