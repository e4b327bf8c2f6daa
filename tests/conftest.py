"""Shared test fixtures."""

import boto3
import pytest
from botocore.stub import Stubber

from mcp_atlassian_infra.config import DeploymentConfig, DeploymentContext

from .aws_stubs import ACCOUNT, REGION


@pytest.fixture
def deployment_context() -> DeploymentContext:
    return DeploymentContext(region=REGION, account=ACCOUNT)


@pytest.fixture
def make_config():
    """Build a DeploymentConfig from context-style keyword arguments."""

    def _make(**values) -> DeploymentConfig:
        return DeploymentConfig(**values)

    return _make


def _client(service: str):
    return boto3.client(
        service,
        region_name=REGION,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def cfn():
    """A stubbed CloudFormation client; unconsumed responses fail the test."""
    client = _client("cloudformation")
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()


@pytest.fixture
def secrets():
    client = _client("secretsmanager")
    with Stubber(client) as stubber:
        yield client, stubber
        stubber.assert_no_pending_responses()
