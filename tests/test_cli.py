"""Tests for the operator CLI."""

import json

import pytest

from mcp_atlassian_infra import cli
from mcp_atlassian_infra.deployment import DeploymentOutcome, DeploymentState
from mcp_atlassian_infra.errors import ConfigError, CredentialNotConfiguredError, HealthCheckTimeoutError, McpDeployError
from mcp_atlassian_infra.topology import resolve


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    """Run every CLI test in an empty directory so no real cdk.json or .env is read."""
    monkeypatch.chdir(tmp_path)
    for key in ("CDK_DEFAULT_ACCOUNT", "CDK_QUALIFIER", "MCP_EXISTING_VPC_NAME", "MCP_EXPOSURE_MODE"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path


def write_cdk_json(path, context):
    (path / "cdk.json").write_text(json.dumps({"app": "python3 app.py", "context": context}))


class TestHelpers:
    def test_parse_overrides(self):
        assert cli.parse_overrides(["allowedCidr=10.2.0.0/16", "jiraUrl=https://a.b/c=d"]) == {
            "allowedCidr": "10.2.0.0/16",
            "jiraUrl": "https://a.b/c=d",
        }

    def test_parse_overrides_rejects_missing_value(self):
        with pytest.raises(ConfigError, match="key=value"):
            cli.parse_overrides(["allowedCidr"])

    def test_read_cdk_context_missing_file(self):
        assert cli.read_cdk_context("nope.json") == {}

    def test_read_cdk_context_invalid_json(self, workdir):
        (workdir / "cdk.json").write_text("{not json")
        with pytest.raises(ConfigError, match="not valid JSON"):
            cli.read_cdk_context()

    def test_cdk_submit_does_not_wait(self, monkeypatch, make_config):
        started = []

        def fake_popen(args):
            started.append(args)
            return "handle"

        monkeypatch.setattr(cli.subprocess, "Popen", fake_popen)

        process = cli.cdk_submit("McpAtlassianStack", {"exposureMode": "public-alb"}, "cdk")(resolve(make_config()))

        assert process == "handle"
        assert started == [[
            "cdk", "deploy", "McpAtlassianStack", "--require-approval", "never", "-c", "exposureMode=public-alb",
        ]]

    def test_cdk_submit_missing_command(self, monkeypatch, make_config):
        def fake_popen(args):
            raise FileNotFoundError(2, "No such file or directory", args[0])

        monkeypatch.setattr(cli.subprocess, "Popen", fake_popen)

        with pytest.raises(McpDeployError, match="Could not start 'npx'"):
            cli.cdk_submit("McpAtlassianStack", {})(resolve(make_config()))


class TestPlan:
    def test_plan_reads_cdk_json_and_overrides(self, workdir, capsys):
        write_cdk_json(workdir, {"existingVpcName": "shared-vpc", "@aws-cdk/core:stackRelativeExports": True})

        code = cli.main(["plan", "-c", "allowedCidr=10.2.0.0/16"])

        assert code == 0
        plan = json.loads(capsys.readouterr().out)
        assert plan["network"] == {"type": "imported", "name": "shared-vpc"}
        assert plan["endpoints"][0]["dnsName"] == "atlassian.mcp.internal"
        assert plan["credentials"]["reader"] == "execution"

    def test_plan_to_file(self, workdir):
        code = cli.main(["plan", "-c", "authMode=per-request-oauth", "--output", "plan.json"])

        assert code == 0
        plan = json.loads((workdir / "plan.json").read_text())
        assert plan["credentials"] is None
        assert all(r["kind"] != "credential-store" for r in plan["resources"])

    def test_config_error_exit_code(self, capsys):
        code = cli.main(["plan", "-c", "allowedCidr=10.0.0.0"])

        assert code == cli.EXIT_CONFIG
        assert "allowedCidr" in capsys.readouterr().err


class FakeDeploymentMonitor:
    def __init__(self, outcome=None, **kwargs):
        self.outcome = outcome
        self.kwargs = kwargs

    def watch(self, stack_name, since=None, process=None):
        self.process = process
        return self.outcome

    def cancel(self, stack_name):
        self.cancelled = stack_name


class TestDeployAndWatch:
    def test_deploy_healthy(self, monkeypatch, capsys):
        outcome = DeploymentOutcome(DeploymentState.HEALTHY, "CREATE_COMPLETE", 3)
        monkeypatch.setattr(cli, "StackMonitor", lambda **kwargs: FakeDeploymentMonitor(outcome, **kwargs))
        monkeypatch.setattr(cli.subprocess, "Popen", lambda args: None)

        code = cli.main(["deploy", "--interval", "1"])

        assert code == 0
        assert "atlassian.mcp.internal:9000" in capsys.readouterr().out

    def test_deploy_rolled_back_points_at_credentials(self, monkeypatch, capsys):
        outcome = DeploymentOutcome(
            DeploymentState.ROLLED_BACK,
            "ROLLBACK_COMPLETE",
            5,
            HealthCheckTimeoutError("McpAtlassianStack", "Circuit Breaker was triggered"),
        )
        monkeypatch.setattr(cli, "StackMonitor", lambda **kwargs: FakeDeploymentMonitor(outcome, **kwargs))
        monkeypatch.setattr(cli.subprocess, "Popen", lambda args: None)

        code = cli.main(["deploy"])

        assert code == cli.EXIT_FAILED
        assert "check-credentials" in capsys.readouterr().err

    def test_deploy_hands_cdk_process_to_monitor(self, monkeypatch):
        outcome = DeploymentOutcome(DeploymentState.HEALTHY, "UPDATE_COMPLETE", 2)
        monitors = []

        def make_monitor(**kwargs):
            monitors.append(FakeDeploymentMonitor(outcome, **kwargs))
            return monitors[-1]

        monkeypatch.setattr(cli, "StackMonitor", make_monitor)
        monkeypatch.setattr(cli.subprocess, "Popen", lambda args: "cdk-process")

        assert cli.main(["deploy"]) == 0
        assert monitors[0].process == "cdk-process"

    def test_deploy_without_cdk_cli(self, monkeypatch, capsys):
        def fake_popen(args):
            raise FileNotFoundError(2, "No such file or directory", args[0])

        monkeypatch.setattr(cli, "StackMonitor", lambda **kwargs: FakeDeploymentMonitor(**kwargs))
        monkeypatch.setattr(cli.subprocess, "Popen", fake_popen)

        code = cli.main(["deploy", "--cdk", "missing-cdk"])

        assert code == cli.EXIT_FAILED
        assert "Could not start 'missing-cdk'" in capsys.readouterr().err

    def test_watch(self, monkeypatch, capsys):
        outcome = DeploymentOutcome(DeploymentState.HEALTHY, "UPDATE_COMPLETE", 1)
        monkeypatch.setattr(cli, "StackMonitor", lambda **kwargs: FakeDeploymentMonitor(outcome, **kwargs))

        code = cli.main(["watch", "McpAtlassianStack-dev"])

        assert code == 0
        assert "McpAtlassianStack-dev: healthy" in capsys.readouterr().out

    def test_cancel(self, monkeypatch, capsys):
        monitors = []

        def make_monitor(**kwargs):
            monitors.append(FakeDeploymentMonitor(**kwargs))
            return monitors[-1]

        monkeypatch.setattr(cli, "StackMonitor", make_monitor)

        code = cli.main(["cancel", "--region", "eu-west-1"])

        assert code == 0
        assert monitors[0].cancelled == "McpAtlassianStack"
        assert monitors[0].kwargs == {"region": "eu-west-1"}


class FakeInspector:
    def __init__(self, region=None):
        self.region = region

    def ensure_configured(self, secret_id):
        if secret_id == "mcp-atlassian/credentials":
            raise CredentialNotConfiguredError(secret_id, ["JIRA_API_TOKEN"])


class TestCheckCredentials:
    def test_placeholders_reported(self, monkeypatch, capsys):
        monkeypatch.setattr(cli, "CredentialInspector", FakeInspector)

        code = cli.main(["check-credentials"])

        assert code == cli.EXIT_FAILED
        assert "JIRA_API_TOKEN" in capsys.readouterr().err

    def test_configured(self, monkeypatch, capsys):
        monkeypatch.setattr(cli, "CredentialInspector", FakeInspector)

        code = cli.main(["check-credentials", "other/secret"])

        assert code == 0
        assert "is configured" in capsys.readouterr().out
