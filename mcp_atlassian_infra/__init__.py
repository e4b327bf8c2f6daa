"""
Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
SPDX-License-Identifier: MIT-0
"""
from .config import AuthMode, DeploymentConfig, DeploymentContext, ExposureMode, HealthCheckPolicy, load_config
from .errors import (
    ApplyConflictError,
    ConfigError,
    CredentialNotConfiguredError,
    DeploymentStateError,
    HealthCheckTimeoutError,
    McpDeployError,
)
from .topology import ResourceSpecification, resolve

__version__ = "0.1.0"
