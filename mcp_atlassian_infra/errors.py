"""
Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
SPDX-License-Identifier: MIT-0
"""
"""
Error types raised while resolving and deploying the mcp-atlassian stack.
"""
from typing import Iterable, Optional


class McpDeployError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(McpDeployError):
    """Invalid or contradictory deployment inputs. Nothing is resolved or applied."""


class DeploymentStateError(McpDeployError):
    """A deployment was asked to make a transition its current state does not allow."""


class ApplyConflictError(McpDeployError):
    """A uniquely named resource left behind by an earlier failed deploy blocks creation."""

    def __init__(self, resource: str, reason: str, resource_type: Optional[str] = None):
        self.resource = resource
        self.reason = reason
        self.resource_type = resource_type
        kind = f" ({resource_type})" if resource_type else ""
        super().__init__(
            f"Resource {resource}{kind} already exists outside this stack: {reason}. "
            f"Delete the orphaned resource, then run the deployment again."
        )


class HealthCheckTimeoutError(McpDeployError):
    """The service never became healthy and the backend rolled the stack back."""

    def __init__(self, stack_name: str, reason: str):
        self.stack_name = stack_name
        self.reason = reason
        super().__init__(
            f"Stack {stack_name} did not reach a healthy state and was rolled back: {reason}"
        )


class CredentialNotConfiguredError(McpDeployError):
    """The credentials secret still holds the placeholder values it was seeded with."""

    def __init__(self, secret_id: str, keys: Iterable[str]):
        self.secret_id = secret_id
        self.keys = tuple(keys)
        super().__init__(
            f"Secret {secret_id} still holds placeholder values for: {', '.join(self.keys)}. "
            f"Update it with real Atlassian credentials and force a new deployment."
        )
