"""
JSON exporter — run summary with metadata header.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

from .. import __version__
from .csv_export import unique_path


def export_run_summary(
    command: str,
    result: dict,
    audit: dict,
    output_dir: Path,
    timestamp: str,
) -> Path:
    """
    Write one run's outcome and request audit to a JSON file.

    Returns:
        Path to the created JSON file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    payload = {
        "metadata": {
            "tool": "M365 Admin Automation",
            "version": __version__,
            "command": command,
            "generated_utc": datetime.now(timezone.utc).isoformat(),
        },
        "result": result,
        "audit": audit,
    }

    filepath = unique_path(output_dir, f"{command.replace('-', '_')}_summary", timestamp, ".json")
    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, default=str, ensure_ascii=False)

    return filepath
