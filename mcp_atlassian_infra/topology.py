"""
Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
SPDX-License-Identifier: MIT-0
"""
"""
Topology resolution for the mcp-atlassian deployment.

resolve() turns a DeploymentConfig into a ResourceSpecification: the network
to use, how the service is exposed, where credentials come from and the list of
resources the provisioning backend has to create. It performs no I/O, so the
same config always resolves to an equal specification.
"""
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .config import AuthMode, DeploymentConfig, DeploymentContext, ExposureMode, HealthCheckPolicy

logger = logging.getLogger(__name__)

PROJECT = "mcp-atlassian"
SECRET_NAME = f"{PROJECT}/credentials"
CLUSTER_NAME = f"{PROJECT}-cluster"
SECURITY_GROUP_NAME = f"{PROJECT}-sg"
VPC_NAME = f"{PROJECT}-vpc"
LOG_GROUP_NAME = f"/ecs/{PROJECT}"
CONTAINER_NAME = PROJECT
PLACEHOLDER_TOKEN = "CHANGE_ME"

CREDENTIAL_TEMPLATE = {
    "JIRA_URL": "https://your-domain.atlassian.net",
    "JIRA_USERNAME": "user@company.com",
    "JIRA_API_TOKEN": PLACEHOLDER_TOKEN,
    "CONFLUENCE_URL": "https://your-domain.atlassian.net/wiki",
    "CONFLUENCE_USERNAME": "user@company.com",
    "CONFLUENCE_API_TOKEN": PLACEHOLDER_TOKEN,
}


class Exposure(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"


class SubnetKind(str, Enum):
    PUBLIC = "public"
    PRIVATE_WITH_EGRESS = "private-with-egress"


class IdentityRole(str, Enum):
    EXECUTION = "execution"
    RUNTIME = "runtime"


class ResourceKind(str, Enum):
    NETWORK = "network"
    CREDENTIAL_STORE = "credential-store"
    IMAGE_REGISTRY = "image-registry"
    CLUSTER = "cluster"
    SECURITY_GROUP = "security-group"
    LOG_GROUP = "log-group"
    EXECUTION_ROLE = "execution-role"
    TASK_ROLE = "task-role"
    TASK_DEFINITION = "task-definition"
    SERVICE = "service"
    DNS_NAMESPACE = "dns-namespace"
    LOAD_BALANCER = "load-balancer"
    TARGET_GROUP = "target-group"
    LISTENER = "listener"


@dataclass(frozen=True)
class SubnetTier:
    name: str
    kind: SubnetKind
    cidr_mask: int


@dataclass(frozen=True)
class ImportedNetwork:
    """An existing VPC looked up by name. Existence is checked by the backend, not here."""

    name: str


@dataclass(frozen=True)
class CreatedNetwork:
    cidr_block: str
    max_azs: int
    nat_gateways: int
    subnet_tiers: Tuple[SubnetTier, ...]
    name: str = VPC_NAME


NetworkTopology = Union[ImportedNetwork, CreatedNetwork]


@dataclass(frozen=True)
class ServiceEndpoint:
    """
    Where the service can be reached.

    dns_name is None for the public endpoint, whose name is only known once the
    load balancer has been created.
    """

    dns_name: Optional[str]
    port: int
    exposure: Exposure

    @property
    def address(self) -> Optional[str]:
        if self.dns_name is None:
            return None
        return f"{self.dns_name}:{self.port}"


@dataclass(frozen=True)
class CredentialBinding:
    """Managed secret injected into the container as environment variables at startup."""

    secret_name: str
    keys: Tuple[str, ...]
    template: Tuple[Tuple[str, str], ...]
    reader: IdentityRole = IdentityRole.EXECUTION

    @property
    def template_json(self) -> str:
        return json.dumps(dict(self.template))


@dataclass(frozen=True)
class ResourceDescriptor:
    kind: ResourceKind
    name: str
    depends_on: Tuple[str, ...] = ()
    properties: Tuple[Tuple[str, Any], ...] = ()

    def prop(self, key: str, default: Any = None) -> Any:
        return dict(self.properties).get(key, default)


@dataclass(frozen=True)
class ResourceSpecification:
    config: DeploymentConfig
    context: DeploymentContext
    network: NetworkTopology
    internal_endpoint: ServiceEndpoint
    health_check: HealthCheckPolicy
    command: Tuple[str, ...]
    environment: Tuple[Tuple[str, str], ...]
    resources: Tuple[ResourceDescriptor, ...]
    public_endpoint: Optional[ServiceEndpoint] = None
    credentials: Optional[CredentialBinding] = None
    circuit_breaker_rollback: bool = True

    def of_kind(self, kind: ResourceKind) -> Tuple[ResourceDescriptor, ...]:
        return tuple(resource for resource in self.resources if resource.kind == kind)

    def get(self, name: str) -> ResourceDescriptor:
        for resource in self.resources:
            if resource.name == name:
                return resource
        raise KeyError(name)

    @property
    def environment_map(self) -> Dict[str, str]:
        return dict(self.environment)

    def as_dict(self) -> Dict[str, Any]:
        """JSON-safe rendering of the plan, used by the CLI."""
        if isinstance(self.network, ImportedNetwork):
            network = {"type": "imported", "name": self.network.name}
        else:
            network = {
                "type": "created",
                "name": self.network.name,
                "cidrBlock": self.network.cidr_block,
                "maxAzs": self.network.max_azs,
                "natGateways": self.network.nat_gateways,
                "subnetTiers": [
                    {"name": tier.name, "kind": tier.kind.value, "cidrMask": tier.cidr_mask}
                    for tier in self.network.subnet_tiers
                ],
            }
        endpoints = [_endpoint_dict(self.internal_endpoint)]
        if self.public_endpoint is not None:
            endpoints.append(_endpoint_dict(self.public_endpoint))
        return {
            "context": {"account": self.context.account, "region": self.context.region},
            "exposureMode": self.config.exposure_mode.value,
            "authMode": self.config.auth_mode.value,
            "network": network,
            "endpoints": endpoints,
            "credentials": None if self.credentials is None else {
                "secretName": self.credentials.secret_name,
                "keys": list(self.credentials.keys),
                "reader": self.credentials.reader.value,
            },
            "healthCheck": self.health_check.model_dump(),
            "command": list(self.command),
            "environment": dict(self.environment),
            "resources": [
                {
                    "kind": resource.kind.value,
                    "name": resource.name,
                    "dependsOn": list(resource.depends_on),
                    "properties": dict(resource.properties),
                }
                for resource in self.resources
            ],
        }


def _endpoint_dict(endpoint: ServiceEndpoint) -> Dict[str, Any]:
    return {"dnsName": endpoint.dns_name, "port": endpoint.port, "exposure": endpoint.exposure.value}


def _props(**kwargs) -> Tuple[Tuple[str, Any], ...]:
    return tuple(sorted((key, value) for key, value in kwargs.items() if value is not None))


def resolve_network(config: DeploymentConfig) -> NetworkTopology:
    if config.existing_vpc_name:
        return ImportedNetwork(name=config.existing_vpc_name)
    return CreatedNetwork(
        cidr_block=config.vpc_cidr,
        max_azs=config.max_azs,
        nat_gateways=config.nat_gateways,
        subnet_tiers=(
            SubnetTier(name="mcp-public", kind=SubnetKind.PUBLIC, cidr_mask=config.subnet_cidr_mask),
            SubnetTier(name="mcp-private", kind=SubnetKind.PRIVATE_WITH_EGRESS, cidr_mask=config.subnet_cidr_mask),
        ),
    )


def resolve_credentials(config: DeploymentConfig) -> Optional[CredentialBinding]:
    if config.auth_mode == AuthMode.PER_REQUEST_OAUTH:
        return None
    return CredentialBinding(
        secret_name=SECRET_NAME,
        keys=tuple(CREDENTIAL_TEMPLATE),
        template=tuple(CREDENTIAL_TEMPLATE.items()),
    )


def resolve_environment(config: DeploymentConfig) -> Tuple[Tuple[str, str], ...]:
    """Plain (non-secret) container environment."""
    if config.auth_mode == AuthMode.PER_REQUEST_OAUTH:
        # Credentials arrive in each request's Authorization header
        return (
            ("CONFLUENCE_URL", config.confluence_url),
            ("JIRA_URL", config.jira_url),
        )
    return ()


def resolve(config: DeploymentConfig, context: Optional[DeploymentContext] = None) -> ResourceSpecification:
    """
    Resolve the deployment topology for a configuration.

    Args:
        config: Validated operator configuration
        context: Target account and region; defaults to an empty us-east-1 context

    Returns:
        The complete, immutable ResourceSpecification
    """
    context = context or DeploymentContext()
    network = resolve_network(config)
    credentials = resolve_credentials(config)
    public = config.exposure_mode == ExposureMode.PUBLIC_ALB

    internal_endpoint = ServiceEndpoint(
        dns_name=f"{config.service_name}.{config.namespace}",
        port=config.container_port,
        exposure=Exposure.PRIVATE,
    )
    public_endpoint = None
    if public:
        public_endpoint = ServiceEndpoint(dns_name=None, port=config.listener_port, exposure=Exposure.PUBLIC)

    resources = []
    if isinstance(network, CreatedNetwork):
        resources.append(ResourceDescriptor(
            kind=ResourceKind.NETWORK,
            name="McpVpc",
            properties=_props(
                vpcName=network.name,
                cidrBlock=network.cidr_block,
                maxAzs=network.max_azs,
                natGateways=network.nat_gateways,
                subnetTiers=tuple(tier.name for tier in network.subnet_tiers),
            ),
        ))
    vpc_ref = ("McpVpc",) if isinstance(network, CreatedNetwork) else ()

    if credentials is not None:
        resources.append(ResourceDescriptor(
            kind=ResourceKind.CREDENTIAL_STORE,
            name="AtlassianCredentials",
            properties=_props(secretName=credentials.secret_name, readers=(credentials.reader.value,)),
        ))

    resources.extend([
        ResourceDescriptor(
            kind=ResourceKind.IMAGE_REGISTRY,
            name="McpAtlassianRepo",
            properties=_props(
                repositoryName=PROJECT,
                removalPolicy=config.registry_removal_policy.value,
                maxImageCount=config.max_image_count,
                imageScanOnPush=True,
            ),
        ),
        ResourceDescriptor(
            kind=ResourceKind.CLUSTER,
            name="McpCluster",
            depends_on=vpc_ref,
            properties=_props(clusterName=CLUSTER_NAME),
        ),
        ResourceDescriptor(
            kind=ResourceKind.SECURITY_GROUP,
            name="McpSecurityGroup",
            depends_on=vpc_ref,
            properties=_props(
                securityGroupName=SECURITY_GROUP_NAME,
                ingressCidr=config.allowed_cidr,
                ingressPort=config.container_port,
            ),
        ),
        ResourceDescriptor(
            kind=ResourceKind.LOG_GROUP,
            name="McpLogGroup",
            properties=_props(logGroupName=LOG_GROUP_NAME, retentionDays=config.log_retention_days),
        ),
        ResourceDescriptor(
            kind=ResourceKind.EXECUTION_ROLE,
            name="TaskExecutionRole",
            depends_on=("AtlassianCredentials",) if credentials is not None else (),
            properties=_props(secretRead=credentials is not None),
        ),
        ResourceDescriptor(
            kind=ResourceKind.TASK_ROLE,
            name="TaskRole",
            properties=_props(secretRead=False),
        ),
        ResourceDescriptor(
            kind=ResourceKind.TASK_DEFINITION,
            name="McpTaskDef",
            depends_on=("TaskExecutionRole", "TaskRole", "McpLogGroup"),
            properties=_props(cpu=config.cpu, memoryMib=config.memory_mib, containerPort=config.container_port),
        ),
        ResourceDescriptor(
            kind=ResourceKind.DNS_NAMESPACE,
            name="McpNamespace",
            depends_on=("McpCluster",),
            properties=_props(namespace=config.namespace, serviceName=config.service_name),
        ),
        ResourceDescriptor(
            kind=ResourceKind.SERVICE,
            name="McpService",
            depends_on=("McpCluster", "McpTaskDef", "McpSecurityGroup", "McpNamespace"),
            properties=_props(
                serviceName=PROJECT,
                desiredCount=config.desired_count,
                circuitBreakerRollback=True,
                enableExecuteCommand=config.enable_execute_command,
            ),
        ),
    ])

    if public:
        resources.extend([
            ResourceDescriptor(
                kind=ResourceKind.SECURITY_GROUP,
                name="AlbSecurityGroup",
                depends_on=vpc_ref,
                properties=_props(ingressCidr="0.0.0.0/0", ingressPort=config.listener_port),
            ),
            ResourceDescriptor(
                kind=ResourceKind.LOAD_BALANCER,
                name="McpLoadBalancer",
                depends_on=vpc_ref + ("AlbSecurityGroup",),
                properties=_props(internetFacing=True),
            ),
            ResourceDescriptor(
                kind=ResourceKind.TARGET_GROUP,
                name="McpTargetGroup",
                depends_on=("McpService",),
                properties=_props(port=config.container_port, healthCheckPath=config.alb_health_check_path),
            ),
            ResourceDescriptor(
                kind=ResourceKind.LISTENER,
                name="HttpListener",
                depends_on=("McpLoadBalancer", "McpTargetGroup"),
                properties=_props(port=config.listener_port, forwardTo=config.container_port),
            ),
        ])

    specification = ResourceSpecification(
        config=config,
        context=context,
        network=network,
        internal_endpoint=internal_endpoint,
        public_endpoint=public_endpoint,
        credentials=credentials,
        health_check=config.health_check,
        command=("--transport", config.transport, "--port", str(config.container_port)),
        environment=resolve_environment(config),
        resources=tuple(resources),
    )
    logger.info(
        f"Resolved {len(specification.resources)} resources: network={type(network).__name__}, "
        f"endpoint={internal_endpoint.address}, public={public}, credentials={credentials is not None}"
    )
    return specification


def health_check_command(config: DeploymentConfig) -> Tuple[str, ...]:
    return (
        "CMD-SHELL",
        f"wget -qO- http://localhost:{config.container_port}{config.container_health_check_path} || exit 1",
    )


def describe(specification: ResourceSpecification) -> str:
    return json.dumps(specification.as_dict(), indent=2, sort_keys=False)


def summary(specification: ResourceSpecification) -> Mapping[str, Any]:
    """Counts of resources by kind."""
    counts: Dict[str, int] = {}
    for resource in specification.resources:
        counts[resource.kind.value] = counts.get(resource.kind.value, 0) + 1
    return counts
