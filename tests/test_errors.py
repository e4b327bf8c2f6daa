"""Tests for error messages."""

from mcp_atlassian_infra.errors import (
    ApplyConflictError,
    ConfigError,
    CredentialNotConfiguredError,
    HealthCheckTimeoutError,
    McpDeployError,
)


def test_hierarchy():
    for error in (
        ConfigError("bad"),
        ApplyConflictError("x", "y"),
        HealthCheckTimeoutError("s", "r"),
        CredentialNotConfiguredError("s", ["K"]),
    ):
        assert isinstance(error, McpDeployError)


def test_apply_conflict_has_remediation_hint():
    e = ApplyConflictError("mcp-atlassian", "already exists", resource_type="AWS::ECR::Repository")
    assert "mcp-atlassian (AWS::ECR::Repository)" in str(e)
    assert "Delete the orphaned resource" in str(e)


def test_health_check_timeout_mentions_rollback():
    e = HealthCheckTimeoutError("McpAtlassianStack", "Circuit Breaker was triggered")
    assert "rolled back" in str(e)
    assert e.stack_name == "McpAtlassianStack"


def test_credential_not_configured_lists_keys():
    e = CredentialNotConfiguredError("mcp-atlassian/credentials", ["JIRA_API_TOKEN", "CONFLUENCE_API_TOKEN"])
    assert "JIRA_API_TOKEN, CONFLUENCE_API_TOKEN" in str(e)
