"""Tests for argument parsing, config layering and the command runners."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import StubAuthenticator

from m365_admin_automation import __main__ as cli
from m365_admin_automation.__main__ import (
    build_config,
    choose_environments,
    main,
    parse_args,
    permission_hint,
    run_compliance_search,
    run_cost_report,
    run_environments,
)
from m365_admin_automation.api.client import AdminApiError
from m365_admin_automation.auth.authenticator import AdminSession
from m365_admin_automation.config import ConfigError
from m365_admin_automation.powerplatform import Environment
from m365_admin_automation.profiles import ProfileStore, TenantProfile

CERT_FLAGS = ["--tenant-id", "t1", "--client-id", "c1", "--cert-path", "app.b64"]


def _run_command(command, handler, config, args, **kwargs):
    async def inner():
        session = AdminSession(StubAuthenticator(), transport=httpx.MockTransport(handler))
        async with session:
            return await command(session, config, args, **kwargs)
    return asyncio.run(inner())


def test_parse_args_compliance_search():
    args = parse_args([
        "compliance-search", "--case-name", "HR-2025", "--search-name", "Sweep",
        "--query", "subject:invoice", "--export-format", "msg", "--no-poll-limit",
    ])
    assert args.command == "compliance-search"
    assert args.case_name == "HR-2025"
    assert args.export_format == "msg"
    assert args.no_poll_limit


def test_parse_args_rejects_conflicting_poll_limits():
    with pytest.raises(SystemExit):
        parse_args(["compliance-search", "--case-id", "c", "--search-name", "s", "--query", "q",
                    "--max-attempts", "3", "--no-poll-limit"])


def test_parse_args_without_command_exits():
    with pytest.raises(SystemExit) as excinfo:
        parse_args([])
    assert excinfo.value.code == 2


def test_build_config_from_cli_flags(isolated_env):
    args = parse_args(["cost-report", *CERT_FLAGS, "--subscription-id", "sub-1",
                       "--top", "3", "-g", "rg1"])

    config, profile = build_config(args)

    assert profile is None
    assert config.auth.mode == "certificate"
    assert config.auth.certificate.certificate_path == "app.b64"
    assert config.subscription_id == "sub-1"
    assert config.report.top_n == 3


def test_build_config_polling_overrides(isolated_env):
    args = parse_args(["compliance-search", *CERT_FLAGS, "--case-id", "case-1",
                       "--search-name", "s", "--query", "q", "--interval", "2", "--no-poll-limit",
                       "--timeout", "600", "--status-retries", "2"])

    config, _ = build_config(args)

    assert config.polling.interval_seconds == 2
    assert config.polling.max_attempts is None
    assert config.polling.timeout_seconds == 600
    assert config.polling.status_retries == 2


def test_build_config_requires_a_case(isolated_env):
    args = parse_args(["compliance-search", *CERT_FLAGS, "--search-name", "s", "--query", "q"])
    with pytest.raises(ConfigError, match="eDiscovery case"):
        build_config(args)


def test_build_config_requires_a_subscription(isolated_env):
    with pytest.raises(ConfigError, match="subscription"):
        build_config(parse_args(["cost-report", *CERT_FLAGS]))


def test_build_config_without_credentials(isolated_env):
    with pytest.raises(ConfigError, match="No tenant credentials"):
        build_config(parse_args(["environments"]))


def test_default_profile_with_secret_from_dotenv(isolated_env):
    (isolated_env / ".env").write_text("M365_CLIENT_SECRET=dotenv-secret\n")
    ProfileStore.load().add(TenantProfile(name="contoso", tenant_id="t9", client_id="c9",
                                          subscription_id="sub-9"))

    config, profile = build_config(parse_args(["cost-report"]))

    assert profile.name == "contoso"
    assert config.auth.mode == "secret"
    assert config.auth.secret.tenant_id == "t9"
    assert config.auth.secret.client_secret == "dotenv-secret"
    assert config.subscription_id == "sub-9"


def test_unknown_profile_is_an_error(isolated_env):
    with pytest.raises(ConfigError, match="not found"):
        build_config(parse_args(["environments", "--profile", "ghost"]))


def test_main_reports_config_errors(isolated_env, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["environments"])
    assert excinfo.value.code == 1
    assert "❌ No tenant credentials" in capsys.readouterr().out


def test_forbidden_api_error_lists_required_permissions(isolated_env, capsys, monkeypatch):
    async def forbidden(auth_config, api, guard=None, transport=None):
        raise AdminApiError(403, "Insufficient privileges", "https://graph.microsoft.com/v1.0/organization")

    monkeypatch.setattr(cli, "authenticate", forbidden)

    with pytest.raises(SystemExit) as excinfo:
        main(["environments", *CERT_FLAGS, "--all-environments"])

    out = capsys.readouterr().out
    assert excinfo.value.code == 1
    assert "🏢 Tenant:  t1" in out
    assert "❌ API Error 403" in out
    assert "eDiscovery.ReadWrite.All" in out
    assert "Power Platform Administrator" in out


def test_permission_hint_only_for_forbidden():
    assert permission_hint(AdminApiError(404, "Not found", "u")) == []
    assert permission_hint(ConfigError("bad")) == []
    assert len(permission_hint(AdminApiError(403, "Forbidden", "u"))) == 4


def test_profile_commands(isolated_env, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["profile", "add", "contoso", "--tenant-id", "t1", "--client-id", "c1"])
    assert excinfo.value.code == 0
    with pytest.raises(SystemExit) as excinfo:
        main(["profile", "remove", "missing"])
    assert excinfo.value.code == 1
    assert ProfileStore.load().default_profile == "contoso"


# ─── Command runners ────────────────────────────────────────────────────────

COST_RESPONSE = {"properties": {
    "columns": [{"name": "Cost"}, {"name": "UsageDate"}, {"name": "ResourceGroupName"},
                {"name": "ResourceType"}, {"name": "Currency"}],
    "rows": [
        [10.004, 20250101, "rg1", "vm", "USD"],
        [5.001, 20250101, "RG1", "disk", "USD"],
        [3.0, 20250101, "rg2", "vm", "USD"],
    ],
}}


def test_run_cost_report(isolated_env, capsys):
    args = parse_args(["cost-report", *CERT_FLAGS, "--subscription-id", "sub-1",
                       "-g", "rg1", "--start", "2025-01-01", "--end", "2025-01-01", "--export",
                       "-o", str(isolated_env / "out")])
    config, _ = build_config(args)

    def handler(request):
        assert request.url.path == "/subscriptions/sub-1/providers/Microsoft.CostManagement/query"
        return httpx.Response(200, json=COST_RESPONSE)

    code = _run_command(run_cost_report, handler, config, args)

    out = capsys.readouterr().out
    assert code == 0
    assert "15.01 USD" in out
    assert "COST BY DAY" in out
    assert len(list((isolated_env / "out").glob("cost_*.csv"))) == 2


def test_run_cost_report_no_match_skips_export(isolated_env, capsys):
    args = parse_args(["cost-report", *CERT_FLAGS, "--subscription-id", "sub-1",
                       "-g", "nope", "--start", "2025-01-01", "--end", "2025-01-01"])
    config, _ = build_config(args)

    def never_asked(prompt):
        raise AssertionError("export prompt shown for an empty report")

    code = _run_command(run_cost_report, lambda r: httpx.Response(200, json=COST_RESPONSE),
                        config, args, input_fn=never_asked)

    assert code == 0
    assert "No data:" in capsys.readouterr().out


ENVIRONMENTS = {"value": [
    {"name": "Default-t1", "location": "europe",
     "properties": {"displayName": "Contoso (default)", "environmentSku": "Default", "isDefault": True}},
    {"name": "env-2", "location": "europe",
     "properties": {"displayName": "Sandbox", "environmentSku": "Sandbox"}},
]}


def _power_platform(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith("/scopes/admin/environments"):
        return httpx.Response(200, json=ENVIRONMENTS)
    if "/environments/env-2/apps" in path:
        return httpx.Response(500, json={"error": {"code": "InternalError", "message": "boom"}})
    return httpx.Response(200, json={"value": [
        {"name": "app-1", "properties": {"displayName": "Expenses",
                                          "owner": {"email": "amy@contoso.com"}}},
    ]})


def test_run_environments_isolates_failures(isolated_env, capsys):
    args = parse_args(["environments", *CERT_FLAGS, "--all-environments", "--export",
                       "--concurrency", "1", "-o", str(isolated_env / "out")])
    config, _ = build_config(args)

    code = _run_command(run_environments, _power_platform, config, args)

    out = capsys.readouterr().out
    assert code == 1
    assert "✅ Contoso (default): 1 items" in out
    assert "⚠  Sandbox: AdminApiError" in out
    inventories = list((isolated_env / "out").glob("powerapps_inventory_*.csv"))
    assert len(inventories) == 1


def test_run_environments_interactive_selection(isolated_env, capsys):
    args = parse_args(["environments", *CERT_FLAGS, "--no-export"])
    config, _ = build_config(args)
    answers = iter(["1"])

    code = _run_command(run_environments, _power_platform, config, args,
                        input_fn=lambda prompt: next(answers))

    assert code == 0
    assert "1 environments processed" in capsys.readouterr().out


def test_choose_environments_by_name_reports_missing(capsys):
    envs = [Environment(name="env-1", display_name="Prod"), Environment(name="env-2", display_name="Dev")]
    args = parse_args(["environments", "-e", "prod", "-e", "env-2", "-e", "qa"])

    chosen = choose_environments(envs, args)

    assert [e.name for e in chosen] == ["env-1", "env-2"]
    assert "Environment not found: qa" in capsys.readouterr().out


def test_run_compliance_search_writes_summary(isolated_env, capsys):
    args = parse_args(["compliance-search", *CERT_FLAGS, "--case-id", "case-1",
                       "--search-name", "Sweep", "--query", "subject:invoice",
                       "-o", str(isolated_env / "out")])
    config, _ = build_config(args)
    base = "https://graph.microsoft.com/v1.0/security/cases/ediscoveryCases/case-1"

    def handler(request):
        path = request.url.path
        if path.endswith("/searches"):
            return httpx.Response(201, json={"id": "s1"})
        if path.endswith("/estimateStatistics"):
            return httpx.Response(202, headers={"Location": f"{base}/operations/op-est"})
        if path.endswith("/exportResult"):
            return httpx.Response(202, headers={"Location": f"{base}/operations/op-exp"})
        return httpx.Response(200, json={"status": "succeeded"})

    code = _run_command(run_compliance_search, handler, config, args)

    assert code == 0
    assert "All stages completed." in capsys.readouterr().out
    summary = next((isolated_env / "out").glob("compliance_search_summary_*.json"))
    payload = json.loads(summary.read_text(encoding="utf-8"))
    assert payload["result"]["dependent"]["job"]["job_id"] == "op-exp"
    assert payload["audit"]["request_guard"]["writes_performed"] == 3
