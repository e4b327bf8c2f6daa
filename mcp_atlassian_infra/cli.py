"""
Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
SPDX-License-Identifier: MIT-0
"""
"""
Operator CLI for the mcp-atlassian deployment.

Usage:
    mcp-atlassian-deploy plan [-c key=value ...] [--output FILE]
    mcp-atlassian-deploy deploy [-c key=value ...] [--cdk "npx cdk"]
    mcp-atlassian-deploy watch [STACK] [--interval S] [--max-polls N]
    mcp-atlassian-deploy cancel [STACK]
    mcp-atlassian-deploy check-credentials [SECRET_ID]
"""
import argparse
import json
import logging
import os
import shlex
import subprocess
import sys
from typing import Any, Dict, List, Mapping, Optional

from dotenv import load_dotenv

from .config import DeploymentContext, load_config
from .credentials import CredentialInspector
from .deployment import Deployment, DeploymentState, StackMonitor, stack_name_for
from .errors import ConfigError, CredentialNotConfiguredError, McpDeployError
from .topology import SECRET_NAME, ResourceSpecification, describe, summary

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def read_cdk_context(path: str = "cdk.json") -> Dict[str, Any]:
    """The ``context`` section of cdk.json, or an empty dict if the file is absent."""
    if not os.path.exists(path):
        return {}
    with open(path, "r") as f:
        try:
            document = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigError(f"{path} is not valid JSON: {e}") from e
    return dict(document.get("context", {}))


def parse_overrides(pairs: Optional[List[str]]) -> Dict[str, str]:
    overrides = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ConfigError(f"Context override must look like key=value, got {pair!r}")
        overrides[key.strip()] = value
    return overrides


def cdk_submit(stack_name: str, overrides: Mapping[str, str], cdk_command: str = "npx cdk"):
    """A submit callable that starts ``cdk deploy`` and returns its process without waiting for it."""

    def submit(specification: ResourceSpecification) -> subprocess.Popen:
        args = shlex.split(cdk_command) + ["deploy", stack_name, "--require-approval", "never"]
        for key, value in overrides.items():
            args += ["-c", f"{key}={value}"]
        logger.info(f"Submitting {len(specification.resources)} resources: {' '.join(args)}")
        try:
            return subprocess.Popen(args)
        except OSError as e:
            raise McpDeployError(f"Could not start {args[0]!r} ({e}); install the AWS CDK CLI or pass --cdk") from e

    return submit


def _load(args) -> Deployment:
    context = read_cdk_context(args.cdk_json)
    overrides = parse_overrides(args.context)
    context.update(overrides)
    config = load_config(context)
    deployment_context = DeploymentContext.from_environ(qualifier=context.get("qualifier"))
    stack_name = args.stack_name or stack_name_for(deployment_context.qualifier)
    return Deployment(config, deployment_context, stack_name=stack_name)


def cmd_plan(args) -> int:
    deployment = _load(args)
    specification = deployment.resolve()
    rendered = describe(specification)
    if args.output:
        with open(args.output, "w") as f:
            f.write(rendered + "\n")
        print(f"Plan written to: {args.output}")
    else:
        print(rendered)
    logger.info(f"Resource counts: {dict(summary(specification))}")
    return EXIT_OK


def cmd_deploy(args) -> int:
    deployment = _load(args)
    monitor = StackMonitor(
        region=deployment.context.region,
        poll_interval=args.interval,
        max_polls=args.max_polls,
    )
    submit = cdk_submit(deployment.stack_name, parse_overrides(args.context), args.cdk)
    outcome = deployment.apply(submit, monitor)
    print(f"Stack {deployment.stack_name}: {deployment.state.value} ({outcome.stack_status})")
    if deployment.state == DeploymentState.HEALTHY:
        specification = deployment.specification
        print(f"Internal endpoint: {specification.internal_endpoint.address}")
        return EXIT_OK
    if deployment.state == DeploymentState.ROLLED_BACK:
        print(f"Rolled back: {outcome.error}", file=sys.stderr)
        if deployment.specification.credentials is not None:
            print("Check that the credentials secret no longer holds placeholder values:", file=sys.stderr)
            print(f"  mcp-atlassian-deploy check-credentials {SECRET_NAME}", file=sys.stderr)
    return EXIT_FAILED


def cmd_watch(args) -> int:
    monitor = StackMonitor(region=args.region, poll_interval=args.interval, max_polls=args.max_polls)
    outcome = monitor.watch(args.stack)
    print(f"Stack {args.stack}: {outcome.state.value} ({outcome.stack_status})")
    if outcome.error is not None:
        print(str(outcome.error), file=sys.stderr)
    return EXIT_OK if outcome.state == DeploymentState.HEALTHY else EXIT_FAILED


def cmd_cancel(args) -> int:
    StackMonitor(region=args.region).cancel(args.stack)
    print(f"Cancellation requested for {args.stack}")
    return EXIT_OK


def cmd_check_credentials(args) -> int:
    inspector = CredentialInspector(region=args.region)
    try:
        inspector.ensure_configured(args.secret_id)
    except CredentialNotConfiguredError as e:
        print(str(e), file=sys.stderr)
        return EXIT_FAILED
    print(f"Secret {args.secret_id} is configured")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-atlassian-deploy",
        description="Plan and follow deployments of the mcp-atlassian ECS stack",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    default_region = os.environ.get("CDK_DEFAULT_REGION", "us-east-1")

    def add_config_options(sub):
        sub.add_argument("-c", "--context", action="append", metavar="KEY=VALUE",
                         help="Context override, same keys as cdk.json (repeatable)")
        sub.add_argument("--cdk-json", default="cdk.json", help="cdk.json to read default context from")
        sub.add_argument("--stack-name", help="Stack name (default: McpAtlassianStack[-<qualifier>])")

    def add_polling_options(sub):
        sub.add_argument("--interval", type=float, default=15.0, help="Seconds between status polls (default: 15)")
        sub.add_argument("--max-polls", type=int, default=240, help="Give up watching after N polls (default: 240)")

    plan = subparsers.add_parser("plan", help="Resolve the topology and print it as JSON")
    add_config_options(plan)
    plan.add_argument("--output", help="Write the plan to a file instead of stdout")
    plan.set_defaults(func=cmd_plan)

    deploy = subparsers.add_parser("deploy", help="Submit the stack with cdk deploy and follow it")
    add_config_options(deploy)
    add_polling_options(deploy)
    deploy.add_argument("--cdk", default="npx cdk", help="Command used to invoke the CDK CLI (default: 'npx cdk')")
    deploy.set_defaults(func=cmd_deploy)

    watch = subparsers.add_parser("watch", help="Poll a stack until it is healthy or rolled back")
    watch.add_argument("stack", nargs="?", default=stack_name_for(None))
    watch.add_argument("--region", default=default_region)
    add_polling_options(watch)
    watch.set_defaults(func=cmd_watch)

    cancel = subparsers.add_parser("cancel", help="Cancel an in-flight stack update")
    cancel.add_argument("stack", nargs="?", default=stack_name_for(None))
    cancel.add_argument("--region", default=default_region)
    cancel.set_defaults(func=cmd_cancel)

    check = subparsers.add_parser("check-credentials", help="Report placeholder values in the credentials secret")
    check.add_argument("secret_id", nargs="?", default=SECRET_NAME)
    check.add_argument("--region", default=default_region)
    check.set_defaults(func=cmd_check_credentials)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()  # load environment variables from .env

    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s',
    )

    try:
        return args.func(args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except McpDeployError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
