#!/usr/bin/env python3
import logging
import os
import sys

import aws_cdk as cdk
from dotenv import load_dotenv

from mcp_atlassian_infra.config import DeploymentContext, context_keys, load_config
from mcp_atlassian_infra.deployment import stack_name_for
from mcp_atlassian_infra.errors import ConfigError
from mcp_atlassian_infra.stack import McpAtlassianStack
from mcp_atlassian_infra.topology import resolve

load_dotenv()  # load environment variables from .env

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
)
logger = logging.getLogger(__name__)

app = cdk.App()

# Optional qualifier from context or CDK_QUALIFIER env var (set by --qualifier)
qualifier = app.node.try_get_context('qualifier') or os.environ.get('CDK_QUALIFIER')

# Deployment settings: cdk.json context, -c overrides, then MCP_* env vars
context = {
    key: app.node.try_get_context(key)
    for key in context_keys()
    if app.node.try_get_context(key) is not None
}
try:
    config = load_config(context)
except ConfigError as e:
    logger.error(str(e))
    sys.exit(2)

deployment_context = DeploymentContext.from_environ(qualifier=qualifier)
specification = resolve(config, deployment_context)

# Environment configuration
env = cdk.Environment(
    account=deployment_context.account,
    region=deployment_context.region
)

# Stack configuration
stack_props = {
    'env': env,
    'description': 'MCP Atlassian server - JIRA and Confluence access via Model Context Protocol',
}
if qualifier:
    stack_props['synthesizer'] = cdk.DefaultStackSynthesizer(
        qualifier=qualifier,
        bootstrap_stack_version_ssm_parameter=f'/cdk-bootstrap/{qualifier}/version',
        file_assets_bucket_name=f'cdk-{qualifier}-assets-{env.account}-{env.region}'
    )

McpAtlassianStack(app, stack_name_for(qualifier), specification=specification, **stack_props)

app.synth()
