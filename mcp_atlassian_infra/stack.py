import aws_cdk as cdk
from aws_cdk import (
    aws_ec2 as ec2,
    aws_ecs as ecs,
    aws_iam as iam,
    aws_elasticloadbalancingv2 as elbv2,
    aws_ecr as ecr,
    aws_ecr_assets as ecr_assets,
    aws_logs as logs,
    aws_secretsmanager as secretsmanager,
    Stack
)
from constructs import Construct

from .config import RemovalPolicy
from .topology import (
    CLUSTER_NAME,
    CONTAINER_NAME,
    LOG_GROUP_NAME,
    PROJECT,
    SECURITY_GROUP_NAME,
    CreatedNetwork,
    ImportedNetwork,
    ResourceSpecification,
    SubnetKind,
    health_check_command,
)

RETENTION_DAYS = {
    1: logs.RetentionDays.ONE_DAY,
    3: logs.RetentionDays.THREE_DAYS,
    5: logs.RetentionDays.FIVE_DAYS,
    7: logs.RetentionDays.ONE_WEEK,
    14: logs.RetentionDays.TWO_WEEKS,
    30: logs.RetentionDays.ONE_MONTH,
    60: logs.RetentionDays.TWO_MONTHS,
    90: logs.RetentionDays.THREE_MONTHS,
    120: logs.RetentionDays.FOUR_MONTHS,
    150: logs.RetentionDays.FIVE_MONTHS,
    180: logs.RetentionDays.SIX_MONTHS,
    365: logs.RetentionDays.ONE_YEAR,
    731: logs.RetentionDays.TWO_YEARS,
    1827: logs.RetentionDays.FIVE_YEARS,
    3653: logs.RetentionDays.TEN_YEARS,
}

SUBNET_TYPES = {
    SubnetKind.PUBLIC: ec2.SubnetType.PUBLIC,
    SubnetKind.PRIVATE_WITH_EGRESS: ec2.SubnetType.PRIVATE_WITH_EGRESS,
}


class McpAtlassianStack(Stack):
    """ECS Fargate deployment of the mcp-atlassian bridge container for a resolved specification."""

    def __init__(self, scope: Construct, construct_id: str, *, specification: ResourceSpecification, **kwargs):
        super().__init__(scope, construct_id, **kwargs)

        self.specification = specification
        config = specification.config
        health = specification.health_check
        port = specification.internal_endpoint.port

        # VPC - reuse an existing one or create a minimal new one
        network = specification.network
        if isinstance(network, ImportedNetwork):
            vpc = ec2.Vpc.from_lookup(
                self, "ImportedVpc",
                vpc_name=network.name
            )
        else:
            vpc = self._create_vpc(network)
        self.vpc = vpc

        # Secrets Manager - Atlassian credentials, only in shared-credentials mode
        credentials = specification.credentials
        atlassian_secret = None
        if credentials is not None:
            atlassian_secret = secretsmanager.Secret(
                self, "AtlassianCredentials",
                secret_name=credentials.secret_name,
                description="Atlassian API credentials for mcp-atlassian server",
                generate_secret_string=secretsmanager.SecretStringGenerator(
                    secret_string_template=credentials.template_json,
                    generate_string_key="_rotation_placeholder"
                )
            )
        self.secret = atlassian_secret

        # ECR Repository
        retain_registry = config.registry_removal_policy == RemovalPolicy.RETAIN
        ecr_repository = ecr.Repository(
            self, "McpAtlassianRepo",
            repository_name=PROJECT,
            removal_policy=cdk.RemovalPolicy.RETAIN if retain_registry else cdk.RemovalPolicy.DESTROY,
            empty_on_delete=not retain_registry,
            image_scan_on_push=True,
            lifecycle_rules=[
                ecr.LifecycleRule(
                    tag_status=ecr.TagStatus.ANY,
                    description=f"Keep last {config.max_image_count} images",
                    max_image_count=config.max_image_count
                )
            ]
        )

        # Create ECS Cluster
        cluster = ecs.Cluster(
            self, "McpCluster",
            cluster_name=CLUSTER_NAME,
            vpc=vpc,
            enable_fargate_capacity_providers=True,
            container_insights_v2=ecs.ContainerInsights.ENABLED
        )

        # Security Group - only allow inbound from the configured CIDR
        mcp_security_group = ec2.SecurityGroup(
            self, "McpSecurityGroup",
            security_group_name=SECURITY_GROUP_NAME,
            description="MCP Atlassian server - inbound from allowed CIDR only",
            vpc=vpc,
            allow_all_outbound=True
        )
        mcp_security_group.add_ingress_rule(
            peer=ec2.Peer.ipv4(config.allowed_cidr),
            connection=ec2.Port.tcp(port),
            description="Allow MCP traffic from allowed CIDR"
        )

        # Create CloudWatch Log Group
        log_group = logs.LogGroup(
            self, "McpLogGroup",
            log_group_name=LOG_GROUP_NAME,
            removal_policy=cdk.RemovalPolicy.DESTROY,
            retention=RETENTION_DAYS[config.log_retention_days]
        )

        # Create IAM Task Execution Role
        task_execution_role = iam.Role(
            self, "TaskExecutionRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AmazonECSTaskExecutionRolePolicy"
                )
            ]
        )

        # The execution role pulls secrets at startup; the task role never reads them
        if atlassian_secret is not None:
            atlassian_secret.grant_read(task_execution_role)

        task_role = iam.Role(
            self, "TaskRole",
            assumed_by=iam.ServicePrincipal("ecs-tasks.amazonaws.com")
        )

        # Fargate Task Definition - minimal resources
        task_definition = ecs.FargateTaskDefinition(
            self, "McpTaskDef",
            cpu=config.cpu,
            memory_limit_mib=config.memory_mib,
            execution_role=task_execution_role,
            task_role=task_role,
            runtime_platform=ecs.RuntimePlatform(
                operating_system_family=ecs.OperatingSystemFamily.LINUX,
                cpu_architecture=ecs.CpuArchitecture.X86_64
            )
        )

        secrets = None
        if atlassian_secret is not None:
            secrets = {
                key: ecs.Secret.from_secrets_manager(atlassian_secret, key)
                for key in credentials.keys
            }

        task_definition.add_container(
            "McpContainer",
            container_name=CONTAINER_NAME,
            image=self._container_image(),
            logging=ecs.LogDriver.aws_logs(
                stream_prefix="mcp",
                log_group=log_group
            ),
            port_mappings=[
                ecs.PortMapping(
                    container_port=port,
                    protocol=ecs.Protocol.TCP
                )
            ],
            environment=specification.environment_map or None,
            secrets=secrets,
            command=list(specification.command),
            health_check=ecs.HealthCheck(
                command=list(health_check_command(config)),
                interval=cdk.Duration.seconds(health.interval),
                timeout=cdk.Duration.seconds(health.timeout),
                retries=health.retries,
                start_period=cdk.Duration.seconds(health.start_period)
            )
        )

        # Service discovery namespace must exist before the service registers into it
        cluster.add_default_cloud_map_namespace(
            name=config.namespace,
            vpc=vpc
        )

        public_endpoint = specification.public_endpoint

        # ECS Fargate Service
        service = ecs.FargateService(
            self, "McpService",
            cluster=cluster,
            service_name=PROJECT,
            task_definition=task_definition,
            desired_count=config.desired_count,
            security_groups=[mcp_security_group],
            vpc_subnets=ec2.SubnetSelection(
                subnet_type=ec2.SubnetType.PRIVATE_WITH_EGRESS
            ),
            enable_execute_command=config.enable_execute_command,
            circuit_breaker=ecs.DeploymentCircuitBreaker(
                enable=True,
                rollback=specification.circuit_breaker_rollback
            ),
            health_check_grace_period=(
                cdk.Duration.seconds(health.start_period) if public_endpoint is not None else None
            )
        )
        # Accessible at <service_name>.<namespace>:<port>
        service.enable_cloud_map(name=config.service_name)

        self.service = service
        self.load_balancer = None
        if public_endpoint is not None:
            self.load_balancer = self._expose_publicly(vpc, service, mcp_security_group)

        # Outputs
        cdk.CfnOutput(
            self, "ServiceDiscoveryEndpoint",
            value=specification.internal_endpoint.address,
            description="Internal DNS endpoint for the MCP server (from within the VPC)"
        )

        cdk.CfnOutput(
            self, "EcrRepoUri",
            value=ecr_repository.repository_uri,
            description="ECR repository URI for pushing custom images"
        )

        cdk.CfnOutput(
            self, "ClusterName",
            value=cluster.cluster_name,
            description="ECS cluster name (for aws ecs execute-command debugging)"
        )

        cdk.CfnOutput(
            self, "ServiceName",
            value=service.service_name,
            description="ECS service name"
        )

        if atlassian_secret is not None:
            cdk.CfnOutput(
                self, "SecretArn",
                value=atlassian_secret.secret_arn,
                description="ARN of the Atlassian credentials secret - update via AWS Console or CLI"
            )

        if self.load_balancer is not None:
            cdk.CfnOutput(
                self, "LoadBalancerDnsName",
                value=self.load_balancer.load_balancer_dns_name,
                description="Public DNS name of the Application Load Balancer"
            )

            cdk.CfnOutput(
                self, "LoadBalancerUrl",
                value=f"http://{self.load_balancer.load_balancer_dns_name}:{public_endpoint.port}/mcp",
                description="Public MCP endpoint behind the load balancer"
            )

    def _create_vpc(self, network: CreatedNetwork) -> ec2.Vpc:
        return ec2.Vpc(
            self, "McpVpc",
            vpc_name=network.name,
            ip_addresses=ec2.IpAddresses.cidr(network.cidr_block),
            max_azs=network.max_azs,
            nat_gateways=network.nat_gateways,
            subnet_configuration=[
                ec2.SubnetConfiguration(
                    name=tier.name,
                    subnet_type=SUBNET_TYPES[tier.kind],
                    cidr_mask=tier.cidr_mask
                )
                for tier in network.subnet_tiers
            ]
        )

    def _container_image(self) -> ecs.ContainerImage:
        config = self.specification.config
        if config.docker_asset_directory:
            # Build and push the image from a local Dockerfile
            docker_image = ecr_assets.DockerImageAsset(
                self, "McpAtlassianImage",
                directory=config.docker_asset_directory,
                file="Dockerfile",
                platform=ecr_assets.Platform.LINUX_AMD64,
                exclude=["cdk.out", "node_modules", ".git", ".github", ".venv"]
            )
            return ecs.ContainerImage.from_docker_image_asset(docker_image)
        return ecs.ContainerImage.from_registry(config.container_image)

    def _expose_publicly(
        self,
        vpc: ec2.IVpc,
        service: ecs.FargateService,
        service_security_group: ec2.SecurityGroup,
    ) -> elbv2.ApplicationLoadBalancer:
        config = self.specification.config
        health = self.specification.health_check
        listener_port = self.specification.public_endpoint.port
        container_port = self.specification.internal_endpoint.port

        # Create ALB Security Group
        alb_security_group = ec2.SecurityGroup(
            self, "AlbSecurityGroup",
            vpc=vpc,
            description="Security Group for Application Load Balancer",
            allow_all_outbound=True
        )
        alb_security_group.add_ingress_rule(
            peer=ec2.Peer.any_ipv4(),
            connection=ec2.Port.tcp(listener_port),
            description="Allow HTTP from anywhere"
        )

        # Allow ALB to reach the service on the container port
        service_security_group.add_ingress_rule(
            peer=alb_security_group,
            connection=ec2.Port.tcp(container_port),
            description="Allow ALB to reach MCP server"
        )

        # Create Application Load Balancer
        alb = elbv2.ApplicationLoadBalancer(
            self, "McpLoadBalancer",
            vpc=vpc,
            internet_facing=True,
            security_group=alb_security_group,
            vpc_subnets=ec2.SubnetSelection(subnet_type=ec2.SubnetType.PUBLIC)
        )

        # Create Target Group
        target_group = elbv2.ApplicationTargetGroup(
            self, "McpTargetGroup",
            port=container_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            vpc=vpc,
            target_type=elbv2.TargetType.IP,
            health_check=elbv2.HealthCheck(
                enabled=True,
                path=config.alb_health_check_path,
                protocol=elbv2.Protocol.HTTP,
                port=str(container_port),
                healthy_http_codes="200",
                interval=cdk.Duration.seconds(health.interval),
                timeout=cdk.Duration.seconds(health.timeout),
                healthy_threshold_count=2,
                unhealthy_threshold_count=max(2, health.retries)
            )
        )

        # Add ECS service to target group
        target_group.add_target(service)

        # Public listener forwarding to the private container port
        alb.add_listener(
            "HttpListener",
            port=listener_port,
            protocol=elbv2.ApplicationProtocol.HTTP,
            open=False,
            default_action=elbv2.ListenerAction.forward([target_group])
        )
        return alb
