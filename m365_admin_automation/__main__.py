"""
M365 Admin Automation — command line entry point.

Usage:
    python -m m365_admin_automation compliance-search --case-name "HR-2025" \\
        --search-name "Mailbox sweep" --query "subject:'invoice'" --export-format pst
    python -m m365_admin_automation cost-report --subscription-id <GUID> \\
        --resource-group rg-prod --resource-group rg-shared --start 2025-01-01
    python -m m365_admin_automation environments --all-environments --export

Profile management:
    python -m m365_admin_automation profile add <name> --tenant-id ... --client-id ...
    python -m m365_admin_automation profile list
    python -m m365_admin_automation profile remove <name>
    python -m m365_admin_automation profile set-default <name>

Credentials come from (highest first): CLI flags, tenant profile, .env
(M365_TENANT_ID, M365_CLIENT_ID, M365_CLIENT_SECRET, M365_CERT_PATH, ...),
then a JSON --config file.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Callable, Optional

import httpx

from . import __version__
from .api.client import AdminApiError
from .auth.authenticator import AuthenticationError, authenticate
from .compliance.search import (
    DATA_SOURCE_SCOPES,
    EXPORT_FORMATS,
    ComplianceApiError,
    ComplianceSearchApi,
    build_export_spec,
    build_search_spec,
)
from .config import (
    AUTH_MODES,
    CertificateAuth,
    ClientSecretAuth,
    ConfigError,
    DelegatedAuth,
    EngineConfig,
    TenantSettings,
    load_tenant_settings,
    REQUIRED_PERMISSIONS,
    run_timestamp,
)
from .costs import CostManagementApi, CostQueryError, NoData, build_cost_report, subscription_scope
from .jobs import JobError, JobOrchestrator, JobPoller
from .powerplatform import Environment, EnvironmentApi, inventory_apps
from .profiles import ProfileStore, TenantProfile, resolve_profile
from .prompts import confirm, select_items
from .reporting import (
    export_app_inventory_csv,
    export_cost_csv,
    export_run_summary,
    render_batch_summary,
    render_cost_report,
    render_orchestration,
)
from .safety.guardian import GuardViolation

logger = logging.getLogger("m365_admin_automation")

InputFn = Callable[[str], str]


# ---------------------------------------------------------------------------
# Profile management sub-commands
# ---------------------------------------------------------------------------

def _cmd_profile(args: argparse.Namespace) -> int:
    """Handle `profile add|list|remove|set-default` sub-commands."""
    action = args.profile_action

    if action == "list":
        return _profile_list()
    elif action == "add":
        return _profile_add(args)
    elif action == "remove":
        return _profile_remove(args)
    elif action == "set-default":
        return _profile_set_default(args)
    print("Usage: python -m m365_admin_automation profile {add|list|remove|set-default}")
    return 0


def _profile_list() -> int:
    store = ProfileStore.load()
    profiles = store.list_profiles()
    if not profiles:
        print("No profiles configured. Add one with:\n")
        print("  python -m m365_admin_automation profile add <name> \\")
        print("    --tenant-id <GUID> --client-id <GUID> [--cert-path ./base64.txt]")
        return 0

    print(f"\n  {'Name':<20s} {'Tenant ID':<38s} {'Client ID':<38s} {'Subscription':<38s} {'Default'}")
    print(f"  {'─'*20} {'─'*38} {'─'*38} {'─'*38} {'─'*7}")
    for p in profiles:
        default_marker = "  ✓" if p.name == store.default_profile else ""
        name_col = f"{p.name} ({p.tenant_display_name})" if p.tenant_display_name else p.name
        print(f"  {name_col:<20s} {p.tenant_id:<38s} {p.client_id:<38s} "
              f"{p.subscription_id or '-':<38s}{default_marker}")
    print()
    return 0


def _profile_add(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    name = args.profile_name
    if store.get(name):
        print(f"  Profile '{name}' already exists. It will be overwritten.")

    profile = TenantProfile(
        name=name,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        cert_path=args.cert_path or "",
        subscription_id=args.subscription_id or "",
        tenant_display_name=args.display_name or "",
        notes=args.notes or "",
    )
    set_as_default = args.set_default or not store.profiles
    store.add(profile, set_default=set_as_default)
    print(f"  ✅ Profile '{name}' saved.")
    if set_as_default:
        print("  ✅ Set as default profile.")
    return 0


def _profile_remove(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.remove(args.profile_name):
        print(f"  ✅ Profile '{args.profile_name}' removed.")
        return 0
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return 1


def _profile_set_default(args: argparse.Namespace) -> int:
    store = ProfileStore.load()
    if store.set_default(args.profile_name):
        print(f"  ✅ Default profile set to '{args.profile_name}'.")
        return 0
    print(f"  ❌ Profile '{args.profile_name}' not found.")
    return 1


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _add_export_flags(parser: argparse.ArgumentParser):
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--export", dest="export", action="store_true", default=None,
                       help="Export results to CSV without asking")
    group.add_argument("--no-export", dest="export", action="store_false",
                       help="Do not export and do not ask")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="m365_admin_automation",
        description="M365 Admin Automation — compliance jobs, cost reports, Power Platform inventory",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--profile", "-p", default=None,
                        help="Tenant profile name (run 'profile list' to see available)")
    common.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    common.add_argument("--env-file", default=None,
                        help="Path to a .env file (default: ./.env if present)")
    common.add_argument("--auth-mode", choices=AUTH_MODES, default=None,
                        help="Authentication mode (default: certificate, or secret when only a secret is configured)")
    common.add_argument("--tenant-id", default=None, help="Tenant ID (overrides profile)")
    common.add_argument("--client-id", default=None, help="Client ID (overrides profile)")
    common.add_argument("--cert-path", type=Path, default=None,
                        help="Path to base64-encoded PFX certificate (overrides profile)")
    common.add_argument("--output-dir", "-o", type=Path, default=None,
                        help="Directory for exported files")
    common.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # --- profile ---
    prof_parser = subparsers.add_parser("profile", help="Manage tenant profiles")
    prof_sub = prof_parser.add_subparsers(dest="profile_action", help="Profile actions")

    add_p = prof_sub.add_parser("add", help="Add or update a tenant profile")
    add_p.add_argument("profile_name", help="Short name for the profile (e.g. 'contoso-prod')")
    add_p.add_argument("--tenant-id", required=True, help="Entra tenant ID (GUID)")
    add_p.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    add_p.add_argument("--cert-path", default="", help="Path to base64-encoded PFX")
    add_p.add_argument("--subscription-id", help="Default Azure subscription for cost reports")
    add_p.add_argument("--display-name", help="Friendly tenant display name")
    add_p.add_argument("--notes", help="Optional admin notes")
    add_p.add_argument("--set-default", action="store_true", help="Set as default profile")

    prof_sub.add_parser("list", help="List all configured profiles")

    rm_p = prof_sub.add_parser("remove", help="Remove a profile")
    rm_p.add_argument("profile_name", help="Name of the profile to remove")

    sd_p = prof_sub.add_parser("set-default", help="Set the default profile")
    sd_p.add_argument("profile_name", help="Name of the profile to set as default")

    # --- compliance-search ---
    cs = subparsers.add_parser("compliance-search", parents=[common],
                               help="Run an eDiscovery search, then export its results")
    case = cs.add_mutually_exclusive_group()
    case.add_argument("--case-id", help="eDiscovery case id")
    case.add_argument("--case-name", help="eDiscovery case display name (created if missing)")
    cs.add_argument("--search-name", required=True, help="Display name for the search")
    cs.add_argument("--query", required=True, help="KQL content query")
    cs.add_argument("--description", default="", help="Search description")
    cs.add_argument("--data-source", choices=DATA_SOURCE_SCOPES, default="allTenantMailboxes",
                    help="Data source scope (default: allTenantMailboxes)")
    cs.add_argument("--export-format", choices=EXPORT_FORMATS, default="pst",
                    help="Export format (default: pst)")
    cs.add_argument("--export-name", default=None, help="Export display name (default: <search>_Export)")
    cs.add_argument("--search-only", action="store_true", help="Run the search without exporting")
    cs.add_argument("--interval", type=float, default=None, help="Seconds between status checks (default: 10)")
    limit = cs.add_mutually_exclusive_group()
    limit.add_argument("--max-attempts", type=int, default=None,
                       help="Status checks before giving up (default: 360)")
    limit.add_argument("--no-poll-limit", action="store_true",
                       help="Poll until the job finishes, however long it takes")
    cs.add_argument("--timeout", type=float, default=None, help="Give up after this many seconds")
    cs.add_argument("--status-retries", type=int, default=None,
                    help="Retries for transient status-check errors (default: 0)")

    # --- cost-report ---
    cr = subparsers.add_parser("cost-report", parents=[common],
                               help="Summarise Azure cost by resource group, type and day")
    cr.add_argument("--subscription-id", default=None, help="Azure subscription id")
    cr.add_argument("--resource-group", "-g", action="append", default=None,
                    help="Restrict to this resource group (repeatable, case-insensitive)")
    cr.add_argument("--start", type=date.fromisoformat, default=None,
                    help="First day, YYYY-MM-DD (default: first day of this month)")
    cr.add_argument("--end", type=date.fromisoformat, default=None,
                    help="Last day, YYYY-MM-DD (default: today)")
    cr.add_argument("--top", type=int, default=None, help="Top entries per group (default: 5)")
    _add_export_flags(cr)

    # --- environments ---
    env = subparsers.add_parser("environments", parents=[common],
                                help="Inventory Power Apps across Power Platform environments")
    env.add_argument("--all-environments", action="store_true", help="Process every environment")
    env.add_argument("--environment", "-e", action="append", default=None,
                     help="Environment display name or id (repeatable)")
    env.add_argument("--filter", default=None, help="Only list environments whose name contains this")
    env.add_argument("--concurrency", type=int, default=None,
                     help="Environments processed at once (default: 4, 1 = sequential)")
    _add_export_flags(env)

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        parser.exit(2)
    return args


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def _apply_identity(
    config: EngineConfig,
    tenant_id: str,
    client_id: str,
    cert_path: str,
    settings: TenantSettings,
):
    """Point every auth block at one tenant/client pair."""
    if not (tenant_id and client_id):
        raise ConfigError("Both a tenant id and a client id are required.")
    if cert_path:
        config.auth.certificate = CertificateAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=cert_path,
            certificate_password=settings.cert_password,
        )
    elif config.auth.certificate:
        config.auth.certificate.tenant_id = tenant_id
        config.auth.certificate.client_id = client_id
    if settings.client_secret:
        config.auth.secret = ClientSecretAuth(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=settings.client_secret,
        )
    config.auth.delegated = DelegatedAuth(tenant_id=tenant_id, client_id=client_id)
    if config.auth.mode == "certificate" and not config.auth.certificate and config.auth.secret:
        config.auth.mode = "secret"


def build_config(args: argparse.Namespace) -> tuple[EngineConfig, Optional[TenantProfile]]:
    """Layer JSON config, .env, profile and CLI flags into one EngineConfig."""
    if args.config:
        if not args.config.exists():
            raise ConfigError(f"Config file not found: {args.config}")
        config = EngineConfig.from_file(str(args.config))
    else:
        config = EngineConfig()

    settings = load_tenant_settings(args.env_file)
    config.apply_settings(settings)

    profile = None
    if args.profile:
        profile = resolve_profile(args.profile)
        if not profile:
            raise ConfigError(
                f"Profile '{args.profile}' not found. Use 'profile list' to see available profiles."
            )
    elif not args.tenant_id and config.auth.active() is None:
        profile = resolve_profile()

    if profile:
        _apply_identity(config, profile.tenant_id, profile.client_id,
                        profile.resolve_cert_path(), settings)
        config.subscription_id = profile.subscription_id or config.subscription_id

    if args.tenant_id or args.client_id or args.cert_path:
        current = config.auth.active() or config.auth.certificate or config.auth.secret
        _apply_identity(
            config,
            args.tenant_id or (current.tenant_id if current else ""),
            args.client_id or (current.client_id if current else ""),
            str(args.cert_path) if args.cert_path else "",
            settings,
        )

    if args.auth_mode:
        config.auth.mode = args.auth_mode
    if args.output_dir:
        config.report.output_dir = str(args.output_dir)
    config.verbose = config.verbose or args.verbose

    if args.command == "compliance-search":
        polling = config.polling
        if args.interval is not None:
            polling.interval_seconds = args.interval
        if args.no_poll_limit:
            polling.max_attempts = None
        elif args.max_attempts is not None:
            polling.max_attempts = args.max_attempts
        if args.timeout is not None:
            polling.timeout_seconds = args.timeout
        if args.status_retries is not None:
            polling.status_retries = args.status_retries
        if not (args.case_id or args.case_name or config.ediscovery_case_id):
            raise ConfigError("An eDiscovery case is required: use --case-id or --case-name.")
    elif args.command == "cost-report":
        if args.subscription_id:
            config.subscription_id = args.subscription_id
        if args.top is not None:
            config.report.top_n = args.top
        if not config.subscription_id:
            raise ConfigError("A subscription is required: use --subscription-id or a profile.")
    elif args.command == "environments":
        if args.concurrency is not None:
            config.report.concurrency = args.concurrency

    if config.auth.active() is None:
        raise ConfigError(
            "No tenant credentials found. Use one of:\n"
            "   • --profile <name>             (from saved profiles)\n"
            "   • --tenant-id X --client-id Y  (with --cert-path, or M365_CLIENT_SECRET in .env)\n"
            "   • a .env file with M365_TENANT_ID / M365_CLIENT_ID / M365_CLIENT_SECRET\n"
            "   • --config config.json         (JSON config file)"
        )
    config.validate()
    return config, profile


def _should_export(args: argparse.Namespace, input_fn: InputFn) -> bool:
    if args.export is not None:
        return args.export
    return confirm("\n  Export results to CSV?", default=False, input_fn=input_fn)


def _banner(title: str):
    print("\n" + "=" * 70)
    print(f" {title}")
    print("=" * 70)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

async def run_compliance_search(session, config: EngineConfig, args: argparse.Namespace) -> int:
    graph = await session.client("graph")
    if args.case_name:
        api = await ComplianceSearchApi.for_case_name(graph, args.case_name)
    else:
        api = ComplianceSearchApi(graph, args.case_id or config.ediscovery_case_id)

    orchestrator = JobOrchestrator(api, JobPoller.from_config(config.polling))
    search_spec = build_search_spec(args.search_name, args.query, args.data_source, args.description)
    export_spec = None if args.search_only else build_export_spec(
        args.search_name, args.export_format, args.export_name
    )

    limit = config.polling.max_attempts
    _banner("COMPLIANCE SEARCH")
    print(f"  Case:      {api.case_id}")
    print(f"  Search:    {search_spec.name}")
    print(f"  Polling:   every {config.polling.interval_seconds:g}s, "
          f"{'no limit' if limit is None else f'up to {limit} checks'}")

    outcome = await orchestrator.run(search_spec, export_spec)

    _banner("RESULT")
    print(render_orchestration(outcome))

    if args.output_dir:
        path = export_run_summary(
            "compliance-search",
            outcome.to_dict(),
            session.guard.get_audit_record(),
            config.report.path,
            run_timestamp(),
        )
        print(f"\n  📄 Summary: {path}")
    return 0 if outcome.succeeded else 1


def _default_period(today: Optional[date] = None) -> tuple[date, date]:
    today = today or date.today()
    return today.replace(day=1), today


async def run_cost_report(session, config: EngineConfig, args: argparse.Namespace,
                          input_fn: InputFn = input) -> int:
    start, end = _default_period()
    start = args.start or start
    end = args.end or end
    if end < start:
        raise ConfigError(f"End date {end} is before start date {start}.")

    arm = await session.client("arm")
    api = CostManagementApi(arm, subscription_scope(config.subscription_id))

    _banner("COST REPORT")
    print(f"  Subscription:    {config.subscription_id}")
    print(f"  Period:          {start} → {end}")
    if args.resource_group:
        print(f"  Resource groups: {', '.join(args.resource_group)}")

    records = await api.query_costs(start, end)
    report = build_cost_report(records, allowed_groups=args.resource_group,
                               top_n=config.report.top_n)
    print(render_cost_report(report))

    if isinstance(report, NoData):
        return 0
    if _should_export(args, input_fn):
        for path in export_cost_csv(report, config.report.path, run_timestamp()):
            print(f"  📊 CSV: {path}")
    return 0


def choose_environments(environments: list[Environment], args: argparse.Namespace,
                        input_fn: InputFn = input) -> list[Environment]:
    """Selection from flags, or from the interactive menu when no flag decides."""
    if args.all_environments:
        return list(environments)
    if args.environment:
        wanted = {n.lower() for n in args.environment}
        chosen = [e for e in environments
                  if e.display_name.lower() in wanted or e.name.lower() in wanted]
        found = {e.display_name.lower() for e in chosen} | {e.name.lower() for e in chosen}
        for missing in sorted(wanted - found):
            print(f"  ⚠  Environment not found: {missing}")
        return chosen
    return select_items(environments, Environment.label, title="Power Platform environments",
                        input_fn=input_fn)


async def run_environments(session, config: EngineConfig, args: argparse.Namespace,
                           input_fn: InputFn = input) -> int:
    client = await session.client("powerplatform")
    api = EnvironmentApi(client)

    _banner("POWER PLATFORM ENVIRONMENTS")
    environments = await api.list_environments(args.filter)
    if not environments:
        print("  No environments found.")
        return 0

    selected = choose_environments(environments, args, input_fn)
    if not selected:
        print("  Nothing selected.")
        return 0

    print(f"\n  Inventorying {len(selected)} environments "
          f"({config.report.concurrency} at a time)...\n")
    summary = await inventory_apps(api, selected, config.report.concurrency)
    print(render_batch_summary(summary))

    apps = [app for r in summary.succeeded for app in r.value]
    if apps and _should_export(args, input_fn):
        path = export_app_inventory_csv(apps, config.report.path, run_timestamp())
        print(f"  📊 CSV: {path}")
    return 0 if not summary.failed else 1


COMMANDS = {
    "compliance-search": ("graph", run_compliance_search),
    "cost-report": ("arm", run_cost_report),
    "environments": ("powerplatform", run_environments),
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

async def main_async(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command == "profile":
        return _cmd_profile(args)

    config, profile = build_config(args)

    print("=" * 70)
    print(f" M365 Admin Automation v{__version__}")
    print("=" * 70)
    if profile:
        print(f"🏢 Tenant:  {profile.label} (profile: {profile.name})")
    else:
        print(f"🏢 Tenant:  {config.auth.tenant_id}")

    api_name, command = COMMANDS[args.command]
    print(f"\n🔐 Authenticating ({config.auth.mode})...")
    session = await authenticate(config.auth, api_name)
    print("✅ Authentication successful.")

    async with session:
        code = await command(session, config, args)
        logger.debug(f"Request stats: {session.get_stats()}")
    return code


def main(argv: Optional[list[str]] = None):
    """Synchronous entry point for `python -m m365_admin_automation`."""
    try:
        code = asyncio.run(main_async(argv))
    except KeyboardInterrupt:
        print("\n  Interrupted.")
        code = 130
    except (
        ConfigError,
        AuthenticationError,
        JobError,
        AdminApiError,
        GuardViolation,
        ComplianceApiError,
        CostQueryError,
        httpx.HTTPError,
    ) as e:
        print(f"\n❌ {e}")
        for line in permission_hint(e):
            print(line)
        code = 1
    sys.exit(code)


def permission_hint(error: Exception) -> list[str]:
    """Lines listing the permissions the app registration needs, shown after a 403."""
    if not (isinstance(error, AdminApiError) and error.status_code == 403):
        return []
    lines = ["\n  The app registration may be missing a permission or role:"]
    for name, purpose in REQUIRED_PERMISSIONS.items():
        lines.append(f"   • {name:<30s} {purpose}")
    return lines


if __name__ == "__main__":
    main()
