"""
Request Guard — Restricts outbound writes to the endpoints the automations need.
Reads pass, allow-listed writes pass, everything else is blocked and logged.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

logger = logging.getLogger("m365_admin_automation.safety")

# ─── Method classes ──────────────────────────────────────────────────────────

READ_METHODS = {"GET", "HEAD", "OPTIONS"}
WRITE_METHODS = {"POST", "PUT", "PATCH"}
BLOCKED_METHODS = {"DELETE"}

# (method, url pattern) pairs that may mutate remote state
DEFAULT_ALLOWED_WRITES = [
    # eDiscovery: case + search creation, estimate and export operations
    ("POST", re.compile(r"/security/cases/ediscoveryCases$", re.IGNORECASE)),
    ("POST", re.compile(r"/security/cases/ediscoveryCases/[^/]+/searches$", re.IGNORECASE)),
    ("POST", re.compile(
        r"/security/cases/ediscoveryCases/[^/]+/searches/[^/]+/"
        r"(microsoft\.graph\.security\.)?(estimateStatistics|exportResult)$",
        re.IGNORECASE,
    )),
    # Cost Management query is a read expressed as POST
    ("POST", re.compile(r"/providers/Microsoft\.CostManagement/query$", re.IGNORECASE)),
]


class GuardViolation(Exception):
    """Raised when a request falls outside the allowed operations."""
    pass


class RequestGuard:
    """
    Validates every outbound HTTP request before it is sent.
    Keeps an audit record of checks, writes performed, and violations.
    """

    def __init__(self, allowed_writes: Optional[Iterable[tuple[str, re.Pattern]]] = None):
        self.allowed_writes = list(
            DEFAULT_ALLOWED_WRITES if allowed_writes is None else allowed_writes
        )
        self.violations: list[dict] = []
        self.writes: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = _utcnow()

    def validate_request(self, method: str, url: str) -> bool:
        """
        Validate a request.
        Returns True if allowed, raises GuardViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()
        path = url.split("?", 1)[0].rstrip("/")

        if method_upper in READ_METHODS:
            return True

        if method_upper in BLOCKED_METHODS:
            self._record_violation(method_upper, url, "Destructive HTTP method blocked")
            raise GuardViolation(f"Blocked destructive request: {method_upper} {url}")

        if method_upper in WRITE_METHODS:
            for allowed_method, pattern in self.allowed_writes:
                if allowed_method == method_upper and pattern.search(path):
                    self.writes.append({
                        "timestamp": _utcnow(),
                        "method": method_upper,
                        "url": url,
                    })
                    logger.debug(f"Allowed write: {method_upper} {url}")
                    return True
            self._record_violation(method_upper, url, "Write endpoint not allow-listed")
            raise GuardViolation(f"Write not allowed: {method_upper} {url}")

        self._record_violation(method_upper, url, "Unsupported HTTP method")
        raise GuardViolation(f"Unsupported method: {method_upper} {url}")

    def _record_violation(self, method: str, url: str, reason: str):
        self.violations.append({
            "timestamp": _utcnow(),
            "method": method,
            "url": url,
            "reason": reason,
        })
        logger.critical(f"GUARD VIOLATION: {reason}: {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the full request audit record."""
        return {
            "request_guard": {
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "writes_performed": len(self.writes),
                "writes": self.writes,
                "violations_detected": len(self.violations),
                "violations": self.violations,
                "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
            }
        }


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()
