"""
Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
SPDX-License-Identifier: MIT-0
"""
"""
Deployment configuration for the mcp-atlassian stack.

Values come from CDK context (cdk.json or ``-c key=value``) and fall back to
``MCP_*`` environment variables, e.g. ``allowedCidr`` -> ``MCP_ALLOWED_CIDR``.
Every operational threshold has a documented default and can be overridden
without code changes.
"""
import ipaddress
import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_CIDR = "10.0.0.0/16"
DEFAULT_VPC_CIDR = "10.1.0.0/16"
DEFAULT_CONTAINER_IMAGE = "ghcr.io/sooperset/mcp-atlassian:latest"
DEFAULT_REGION = "us-east-1"

FARGATE_CPU_UNITS = (256, 512, 1024, 2048, 4096, 8192, 16384)
# Memory (MiB) each Fargate cpu size can be paired with
FARGATE_MEMORY_MIB = {
    256: (512, 1024, 2048),
    512: tuple(range(1024, 4097, 1024)),
    1024: tuple(range(2048, 8193, 1024)),
    2048: tuple(range(4096, 16385, 1024)),
    4096: tuple(range(8192, 30721, 1024)),
    8192: tuple(range(16384, 61441, 4096)),
    16384: tuple(range(32768, 122881, 8192)),
}
LOG_RETENTION_DAYS = (1, 3, 5, 7, 14, 30, 60, 90, 120, 150, 180, 365, 731, 1827, 3653)
DNS_LABEL = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")


class ExposureMode(str, Enum):
    PRIVATE_ONLY = "private-only"
    PUBLIC_ALB = "public-alb"


class AuthMode(str, Enum):
    SHARED_CREDENTIALS = "shared-credentials"
    PER_REQUEST_OAUTH = "per-request-oauth"


class RemovalPolicy(str, Enum):
    RETAIN = "retain"
    DESTROY = "destroy"


def _parse_cidr(value: str, field: str) -> ipaddress.IPv4Network:
    if not isinstance(value, str) or "/" not in value:
        raise ValueError(f"{field} must be an IPv4 CIDR block such as 10.0.0.0/16, got {value!r}")
    try:
        return ipaddress.IPv4Network(value.strip(), strict=True)
    except ValueError as e:
        raise ValueError(f"{field} is not a valid IPv4 CIDR block: {e}") from e


class HealthCheckPolicy(BaseModel):
    """Container health-check timing, in seconds. Bounds follow the ECS limits."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    interval: int = Field(default=30, ge=5, le=300)
    timeout: int = Field(default=5, ge=2, le=120)
    retries: int = Field(default=3, ge=1, le=10)
    start_period: int = Field(default=15, ge=0, le=300)

    @model_validator(mode="after")
    def _timeout_below_interval(self):
        if self.timeout >= self.interval:
            raise ValueError(
                f"health check timeout ({self.timeout}s) must be shorter than the interval ({self.interval}s)"
            )
        return self


class DeploymentConfig(BaseModel):
    """Operator-supplied inputs. Field aliases are the CDK context keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    existing_vpc_name: Optional[str] = Field(default=None, alias="existingVpcName")
    allowed_cidr: str = Field(default=DEFAULT_ALLOWED_CIDR, alias="allowedCidr")
    exposure_mode: ExposureMode = Field(default=ExposureMode.PRIVATE_ONLY, alias="exposureMode")
    auth_mode: AuthMode = Field(default=AuthMode.SHARED_CREDENTIALS, alias="authMode")

    # Network created when no existing VPC is imported
    vpc_cidr: str = Field(default=DEFAULT_VPC_CIDR, alias="vpcCidr")
    max_azs: int = Field(default=2, ge=2, le=6, alias="maxAzs")
    nat_gateways: int = Field(default=1, ge=1, alias="natGateways")
    subnet_cidr_mask: int = Field(default=24, ge=17, le=28, alias="subnetCidrMask")

    # Service
    service_name: str = Field(default="atlassian", alias="serviceName")
    namespace: str = Field(default="mcp.internal", alias="namespace")
    container_port: int = Field(default=9000, ge=1, le=65535, alias="containerPort")
    listener_port: int = Field(default=80, ge=1, le=65535, alias="listenerPort")
    transport: str = Field(default="streamable-http", alias="transport")
    container_image: str = Field(default=DEFAULT_CONTAINER_IMAGE, alias="containerImage")
    docker_asset_directory: Optional[str] = Field(default=None, alias="dockerAssetDirectory")
    cpu: int = Field(default=256, alias="cpu")
    memory_mib: int = Field(default=512, ge=512, alias="memoryMib")
    desired_count: int = Field(default=1, ge=0, alias="desiredCount")
    enable_execute_command: bool = Field(default=True, alias="enableExecuteCommand")

    # Health checks
    container_health_check_path: str = Field(default="/healthz", alias="containerHealthCheckPath")
    alb_health_check_path: str = Field(default="/healthz", alias="albHealthCheckPath")
    health_check: HealthCheckPolicy = Field(default_factory=HealthCheckPolicy, alias="healthCheck")

    # Teardown and housekeeping
    registry_removal_policy: RemovalPolicy = Field(default=RemovalPolicy.RETAIN, alias="registryRemovalPolicy")
    log_retention_days: int = Field(default=14, ge=1, alias="logRetentionDays")
    max_image_count: int = Field(default=10, ge=1, alias="maxImageCount")

    # Non-secret base URLs used when credentials arrive with each request
    jira_url: str = Field(default="https://your-domain.atlassian.net", alias="jiraUrl")
    confluence_url: str = Field(default="https://your-domain.atlassian.net/wiki", alias="confluenceUrl")

    @field_validator("existing_vpc_name", "docker_asset_directory", mode="before")
    @classmethod
    def _blank_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value.strip() if isinstance(value, str) else value

    @field_validator("allowed_cidr")
    @classmethod
    def _check_allowed_cidr(cls, value: str) -> str:
        return str(_parse_cidr(value, "allowedCidr"))

    @field_validator("vpc_cidr")
    @classmethod
    def _check_vpc_cidr(cls, value: str) -> str:
        network = _parse_cidr(value, "vpcCidr")
        if not 16 <= network.prefixlen <= 28:
            raise ValueError(f"vpcCidr prefix must be between /16 and /28, got /{network.prefixlen}")
        return str(network)

    @field_validator("service_name")
    @classmethod
    def _check_service_name(cls, value: str) -> str:
        if not DNS_LABEL.match(value):
            raise ValueError(f"serviceName must be a lowercase DNS label, got {value!r}")
        return value

    @field_validator("namespace")
    @classmethod
    def _check_namespace(cls, value: str) -> str:
        labels = value.split(".")
        if len(labels) < 2 or not all(DNS_LABEL.match(label) for label in labels):
            raise ValueError(f"namespace must be a dotted lowercase DNS name such as mcp.internal, got {value!r}")
        return value

    @field_validator("container_health_check_path", "alb_health_check_path")
    @classmethod
    def _check_path(cls, value: str) -> str:
        if not value.startswith("/"):
            raise ValueError(f"health check path must start with '/', got {value!r}")
        return value

    @field_validator("cpu")
    @classmethod
    def _check_cpu(cls, value: int) -> int:
        if value not in FARGATE_CPU_UNITS:
            raise ValueError(f"cpu must be one of {FARGATE_CPU_UNITS}, got {value}")
        return value

    @field_validator("log_retention_days")
    @classmethod
    def _check_retention(cls, value: int) -> int:
        if value not in LOG_RETENTION_DAYS:
            raise ValueError(f"logRetentionDays must be one of {LOG_RETENTION_DAYS}, got {value}")
        return value

    @field_validator("container_image", "transport")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("jira_url", "confluence_url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        if not value.startswith(("https://", "http://")):
            raise ValueError(f"URL must start with http:// or https://, got {value!r}")
        return value.rstrip("/")

    @model_validator(mode="after")
    def _check_combination(self):
        if self.exposure_mode == ExposureMode.PUBLIC_ALB and self.listener_port == self.container_port:
            raise ValueError(
                f"listenerPort ({self.listener_port}) must differ from containerPort ({self.container_port})"
            )
        memory_sizes = FARGATE_MEMORY_MIB[self.cpu]
        if self.memory_mib not in memory_sizes:
            raise ValueError(
                f"memoryMib ({self.memory_mib}) is not a Fargate size for cpu {self.cpu}; "
                f"use {memory_sizes[0]}-{memory_sizes[-1]} MiB, one of {memory_sizes}"
            )
        if self.nat_gateways > self.max_azs:
            raise ValueError(f"natGateways ({self.nat_gateways}) cannot exceed maxAzs ({self.max_azs})")
        vpc_prefix = ipaddress.IPv4Network(self.vpc_cidr).prefixlen
        if self.subnet_cidr_mask <= vpc_prefix:
            raise ValueError(
                f"subnetCidrMask /{self.subnet_cidr_mask} must be longer than the VPC prefix /{vpc_prefix}"
            )
        # two tiers per availability zone must fit inside the VPC block
        if 2 * self.max_azs > 2 ** (self.subnet_cidr_mask - vpc_prefix):
            raise ValueError(
                f"vpcCidr {self.vpc_cidr} cannot hold {2 * self.max_azs} /{self.subnet_cidr_mask} subnets"
            )
        return self


# CDK context keys that are not deployment settings
NON_CONFIG_KEYS = {"qualifier", "acknowledged-issue-numbers"}

HEALTH_CHECK_KEYS = {
    "healthCheckInterval": "interval",
    "healthCheckTimeout": "timeout",
    "healthCheckRetries": "retries",
    "healthCheckStartPeriod": "start_period",
}


def context_keys():
    """All context keys understood by :func:`load_config`."""
    keys = [
        field.alias or name
        for name, field in DeploymentConfig.model_fields.items()
        if name != "health_check"
    ]
    return keys + list(HEALTH_CHECK_KEYS)


def env_var_name(key: str) -> str:
    """``allowedCidr`` -> ``MCP_ALLOWED_CIDR``"""
    return "MCP_" + re.sub(r"(?<!^)(?=[A-Z])", "_", key).upper()


def load_config(context: Optional[Mapping[str, Any]] = None, environ: Optional[Mapping[str, str]] = None) -> DeploymentConfig:
    """
    Build a DeploymentConfig from context values, falling back to MCP_* environment variables.

    Args:
        context: Mapping of context key to value, e.g. collected from ``node.try_get_context``
        environ: Environment to read fallbacks from (defaults to ``os.environ``)

    Returns:
        The validated configuration

    Raises:
        ConfigError: If any value is malformed or the combination is contradictory
    """
    context = dict(context or {})
    environ = os.environ if environ is None else environ

    values: Dict[str, Any] = {}
    health_check: Dict[str, Any] = {}
    for key in context_keys():
        value = context.get(key)
        if value is None:
            value = environ.get(env_var_name(key))
        if value is None:
            continue
        if key in HEALTH_CHECK_KEYS:
            health_check[HEALTH_CHECK_KEYS[key]] = value
        else:
            values[key] = value

    unknown = sorted(
        key for key in set(context) - set(context_keys())
        if key not in NON_CONFIG_KEYS and not key.startswith(("@", "aws:", "aws-cdk:"))
    )
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")

    if health_check:
        values["healthCheck"] = health_check

    try:
        config = DeploymentConfig(**values)
    except ValidationError as e:
        raise ConfigError(_describe(e)) from e

    logger.info(
        f"Loaded deployment config: exposure={config.exposure_mode.value}, "
        f"auth={config.auth_mode.value}, vpc={config.existing_vpc_name or 'new'}"
    )
    return config


def _describe(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "config"
        problems.append(f"{location}: {item['msg']}")
    return "Invalid deployment configuration - " + "; ".join(problems)


@dataclass(frozen=True)
class DeploymentContext:
    """Account and region the stack targets, passed explicitly instead of read globally."""

    region: str = DEFAULT_REGION
    account: Optional[str] = None
    qualifier: Optional[str] = None

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None, qualifier: Optional[str] = None) -> "DeploymentContext":
        environ = os.environ if environ is None else environ
        return cls(
            region=environ.get("CDK_DEFAULT_REGION") or DEFAULT_REGION,
            account=environ.get("CDK_DEFAULT_ACCOUNT") or None,
            qualifier=qualifier or environ.get("CDK_QUALIFIER") or None,
        )
