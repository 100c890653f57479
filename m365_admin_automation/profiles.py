"""
Saved tenants for ``--profile``.

A profile names the app registration a run signs in with (tenant, client and,
optionally, a Base64 PFX; without one the client secret comes from .env) and
the Azure subscription that cost reports query by default. All profiles live
in one JSON file in the user's home directory:

    {"default_profile": "contoso",
     "profiles": {"contoso": {"tenant_id": "...", "client_id": "...", ...}}}

Names are matched case-insensitively everywhere; the spelling used when the
profile was saved is the one kept on disk.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .config import ConfigError

logger = logging.getLogger("m365_admin_automation.profiles")

_CONFIG_DIR = Path.home() / ".m365_admin_automation"
_PROFILES_FILE = _CONFIG_DIR / "profiles.json"

IDENTITY_FIELDS = ("tenant_id", "client_id")
PROFILE_FIELDS = IDENTITY_FIELDS + ("cert_path", "subscription_id", "tenant_display_name", "notes")


@dataclass
class TenantProfile:
    name: str
    tenant_id: str
    client_id: str
    cert_path: str = ""
    subscription_id: str = ""
    tenant_display_name: str = ""
    notes: str = ""

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any]) -> "TenantProfile":
        missing = [k for k in IDENTITY_FIELDS if not data.get(k)]
        if missing:
            raise ConfigError(f"Profile '{name}' has no {' or '.join(missing)}.")
        return cls(name=name, **{k: str(data.get(k) or "") for k in PROFILE_FIELDS})

    def to_dict(self) -> dict[str, str]:
        return {k: getattr(self, k) for k in PROFILE_FIELDS}

    @property
    def label(self) -> str:
        return self.tenant_display_name or self.name

    def resolve_cert_path(self) -> str:
        """Absolute certificate path ("" means sign in with the client secret)."""
        if not self.cert_path:
            return ""
        return str(Path.cwd() / Path(self.cert_path).expanduser())


@dataclass
class ProfileStore:
    """The profiles file in memory; every change is written straight back."""
    profiles: dict[str, TenantProfile] = field(default_factory=dict)
    default_profile: str = ""

    @classmethod
    def load(cls) -> "ProfileStore":
        """A missing file is an empty store; an unreadable one is a ConfigError."""
        path = _PROFILES_FILE
        if not path.exists():
            return cls()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigError(f"{path} is not valid JSON: {e}") from e

        entries = data.get("profiles", {}) if isinstance(data, dict) else None
        if not isinstance(entries, dict):
            raise ConfigError(f"{path} must hold a 'profiles' object.")

        store = cls()
        for name, entry in entries.items():
            if not isinstance(entry, dict):
                raise ConfigError(f"Profile '{name}' in {path} is not an object.")
            store.profiles[name] = TenantProfile.from_dict(name, entry)

        default = data.get("default_profile") or ""
        if default and default not in store.profiles:
            logger.warning(f"Default profile '{default}' is not defined in {path}; ignoring it.")
            default = ""
        store.default_profile = default
        return store

    def save(self) -> None:
        _CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        payload = {
            "default_profile": self.default_profile,
            "profiles": {name: p.to_dict() for name, p in self.profiles.items()},
        }
        _PROFILES_FILE.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        logger.debug(f"Saved {len(self.profiles)} profiles to {_PROFILES_FILE}")

    def _stored_name(self, name: str) -> Optional[str]:
        wanted = name.lower()
        return next((n for n in self.profiles if n.lower() == wanted), None)

    def add(self, profile: TenantProfile, set_default: bool = False) -> None:
        """Save ``profile``, replacing any profile with the same name in another case."""
        previous = self._stored_name(profile.name)
        if previous is not None:
            del self.profiles[previous]
            if self.default_profile == previous:
                self.default_profile = profile.name
        self.profiles[profile.name] = profile
        if set_default or not self.default_profile:
            self.default_profile = profile.name
        self.save()

    def remove(self, name: str) -> bool:
        stored = self._stored_name(name)
        if stored is None:
            return False
        del self.profiles[stored]
        if self.default_profile == stored:
            # Oldest remaining profile takes over.
            self.default_profile = next(iter(self.profiles), "")
        self.save()
        return True

    def get(self, name: str) -> Optional[TenantProfile]:
        stored = self._stored_name(name)
        return self.profiles[stored] if stored is not None else None

    def get_default(self) -> Optional[TenantProfile]:
        if self.default_profile:
            return self.profiles.get(self.default_profile)
        return next(iter(self.profiles.values()), None)

    def set_default(self, name: str) -> bool:
        stored = self._stored_name(name)
        if stored is None:
            return False
        self.default_profile = stored
        self.save()
        return True

    def list_profiles(self) -> list[TenantProfile]:
        return sorted(self.profiles.values(), key=lambda p: p.name.lower())


def resolve_profile(profile_name: Optional[str] = None) -> Optional[TenantProfile]:
    """The named profile, or the default one when no name is given."""
    store = ProfileStore.load()
    if profile_name:
        return store.get(profile_name)
    return store.get_default()
