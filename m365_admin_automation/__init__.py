"""
M365 Admin Automation
=====================
Administrative automations for Microsoft cloud services: eDiscovery search and
export jobs, Azure cost reports, and Power Platform environment inventory.

Writes are limited to the allow-listed job endpoints enforced by the request guard.
"""

__version__ = "1.0.0"
