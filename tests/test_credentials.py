"""Tests for the credentials secret inspector."""

import json

import pytest

from mcp_atlassian_infra.credentials import CredentialInspector
from mcp_atlassian_infra.errors import CredentialNotConfiguredError
from mcp_atlassian_infra.topology import CREDENTIAL_TEMPLATE, SECRET_NAME

CONFIGURED = {
    "JIRA_URL": "https://acme.atlassian.net",
    "JIRA_USERNAME": "bot@acme.com",
    "JIRA_API_TOKEN": "jira-token",
    "CONFLUENCE_URL": "https://acme.atlassian.net/wiki",
    "CONFLUENCE_USERNAME": "bot@acme.com",
    "CONFLUENCE_API_TOKEN": "confluence-token",
    "_rotation_placeholder": "x1y2z3",
}


def secret_response(values) -> dict:
    return {"Name": SECRET_NAME, "SecretString": json.dumps(values)}


class TestCredentialInspector:
    def test_seeded_secret_is_all_placeholders(self, secrets):
        client, stubber = secrets
        seeded = dict(CREDENTIAL_TEMPLATE, _rotation_placeholder="abc")
        stubber.add_response("get_secret_value", secret_response(seeded), {"SecretId": SECRET_NAME})

        assert CredentialInspector(client=client).find_placeholders() == list(CREDENTIAL_TEMPLATE)

    def test_configured_secret(self, secrets):
        client, stubber = secrets
        stubber.add_response("get_secret_value", secret_response(CONFIGURED), {"SecretId": SECRET_NAME})

        CredentialInspector(client=client).ensure_configured()

    def test_partially_configured_secret(self, secrets):
        client, stubber = secrets
        values = dict(CONFIGURED, CONFLUENCE_API_TOKEN="CHANGE_ME")
        del values["JIRA_USERNAME"]
        stubber.add_response("get_secret_value", secret_response(values), {"SecretId": "custom/secret"})

        with pytest.raises(CredentialNotConfiguredError) as excinfo:
            CredentialInspector(client=client).ensure_configured("custom/secret")

        assert excinfo.value.keys == ("JIRA_USERNAME", "CONFLUENCE_API_TOKEN")
        assert "custom/secret" in str(excinfo.value)

    def test_non_json_secret(self, secrets):
        client, stubber = secrets
        stubber.add_response("get_secret_value", {"Name": SECRET_NAME, "SecretString": "token"}, {"SecretId": SECRET_NAME})

        assert len(CredentialInspector(client=client).find_placeholders()) == len(CREDENTIAL_TEMPLATE)

    def test_missing_secret_propagates(self, secrets):
        client, stubber = secrets
        stubber.add_client_error("get_secret_value", service_error_code="ResourceNotFoundException", http_status_code=400)

        with pytest.raises(Exception, match="ResourceNotFoundException"):
            CredentialInspector(client=client).find_placeholders()
