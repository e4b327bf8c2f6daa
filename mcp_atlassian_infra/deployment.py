"""
Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
SPDX-License-Identifier: MIT-0
"""
"""
Deployment lifecycle tracking.

A Deployment moves through Draft -> Resolved -> Applying -> {Healthy | RolledBack}.
Applying can also end in Aborted when the backend reports a naming collision
with resources left behind by an earlier failed deploy.

The apply itself is owned by CloudFormation: the deployment is submitted once
and StackMonitor polls the stack status out of band until it settles.
"""
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional

import boto3
from botocore.exceptions import ClientError

from .config import DeploymentConfig, DeploymentContext
from .errors import (
    ApplyConflictError,
    DeploymentStateError,
    HealthCheckTimeoutError,
    McpDeployError,
)
from .topology import ResourceSpecification, resolve

logger = logging.getLogger(__name__)

DEFAULT_STACK_NAME = "McpAtlassianStack"


class DeploymentState(str, Enum):
    DRAFT = "draft"
    RESOLVED = "resolved"
    APPLYING = "applying"
    HEALTHY = "healthy"
    ROLLED_BACK = "rolled-back"
    ABORTED = "aborted"


TRANSITIONS = {
    DeploymentState.DRAFT: {DeploymentState.RESOLVED},
    DeploymentState.RESOLVED: {DeploymentState.APPLYING},
    DeploymentState.APPLYING: {DeploymentState.HEALTHY, DeploymentState.ROLLED_BACK, DeploymentState.ABORTED},
    DeploymentState.HEALTHY: set(),
    DeploymentState.ROLLED_BACK: set(),
    DeploymentState.ABORTED: set(),
}

HEALTHY_STATUSES = {"CREATE_COMPLETE", "UPDATE_COMPLETE", "IMPORT_COMPLETE"}
ROLLED_BACK_STATUSES = {"ROLLBACK_COMPLETE", "UPDATE_ROLLBACK_COMPLETE", "IMPORT_ROLLBACK_COMPLETE"}
BROKEN_STATUSES = {
    "CREATE_FAILED",
    "ROLLBACK_FAILED",
    "UPDATE_FAILED",
    "UPDATE_ROLLBACK_FAILED",
    "IMPORT_ROLLBACK_FAILED",
    "DELETE_FAILED",
    "DELETE_COMPLETE",
}

CONFLICT_MARKERS = ("already exists",)
CIRCUIT_BREAKER_MARKERS = ("circuit breaker", "failed to stabilize", "did not stabilize")


def stack_name_for(qualifier: Optional[str]) -> str:
    """McpAtlassianStack, suffixed with the CDK bootstrap qualifier when one is used."""
    return f"{DEFAULT_STACK_NAME}-{qualifier}" if qualifier else DEFAULT_STACK_NAME


def _changed_since(stack: dict, since: datetime) -> bool:
    changed = stack.get("LastUpdatedTime") or stack.get("CreationTime")
    return changed is not None and changed >= since


@dataclass(frozen=True)
class DeploymentOutcome:
    state: DeploymentState
    stack_status: Optional[str]
    polls: int
    error: Optional[McpDeployError] = None


class StackMonitor:
    """Polls a CloudFormation stack until it reaches a terminal status."""

    def __init__(
        self,
        client=None,
        region: Optional[str] = None,
        poll_interval: float = 15.0,
        max_polls: int = 240,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client or boto3.client("cloudformation", region_name=region)
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self._sleep = sleep

    def describe(self, stack_name: str) -> Optional[dict]:
        """The stack record from describe_stacks, or None if the stack does not exist (yet)."""
        try:
            response = self.client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if "does not exist" in str(e):
                return None
            logger.error(f"Failed to describe stack {stack_name}: {e}")
            raise
        stacks = response.get("Stacks", [])
        return stacks[0] if stacks else None

    def status(self, stack_name: str) -> Optional[str]:
        """Current stack status, or None if the stack does not exist (yet)."""
        stack = self.describe(stack_name)
        return None if stack is None else stack["StackStatus"]

    def failure_events(self, stack_name: str, since: Optional[datetime] = None) -> List[dict]:
        """Failed resource events, newest first, optionally limited to those after ``since``."""
        response = self.client.describe_stack_events(StackName=stack_name)
        failures = []
        for event in response.get("StackEvents", []):
            if since is not None and event["Timestamp"] < since:
                continue
            if event.get("ResourceStatus", "").endswith("_FAILED"):
                failures.append(event)
        return failures

    def diagnose(self, stack_name: str, since: Optional[datetime] = None) -> Optional[McpDeployError]:
        """
        Classify the failure that triggered a rollback.

        Returns:
            ApplyConflictError for naming collisions, HealthCheckTimeoutError for
            services that never stabilized, or None if nothing recognisable was found
        """
        timeout = None
        for event in self.failure_events(stack_name, since):
            reason = event.get("ResourceStatusReason", "") or ""
            lowered = reason.lower()
            if any(marker in lowered for marker in CONFLICT_MARKERS):
                return ApplyConflictError(
                    resource=event.get("PhysicalResourceId") or event.get("LogicalResourceId", "unknown"),
                    reason=reason,
                    resource_type=event.get("ResourceType"),
                )
            if timeout is None and any(marker in lowered for marker in CIRCUIT_BREAKER_MARKERS):
                timeout = HealthCheckTimeoutError(stack_name, reason)
        return timeout

    def watch(self, stack_name: str, since: Optional[datetime] = None, process=None) -> DeploymentOutcome:
        """
        Poll the stack until it is healthy, rolled back or the poll budget is spent.

        Args:
            stack_name: Stack to follow
            since: When the deploy was submitted. A stack still showing the result of an
                earlier deploy is treated as not started yet
            process: The running ``cdk deploy``, anything with ``poll()``. A failed exit
                before the stack settles aborts the watch

        Raises:
            ApplyConflictError: If the apply failed on an orphaned, uniquely named resource
            McpDeployError: If cdk failed or the stack ended in a state that needs manual intervention
        """
        status = None
        started = since is None
        diagnosed = False
        diagnosis = None
        for polls in range(1, self.max_polls + 1):
            # read the exit code first so the status below is at least as recent
            exit_code = None if process is None else process.poll()
            stack = self.describe(stack_name)
            status = None if stack is None else stack["StackStatus"]
            if status is not None and not started:
                # cdk exiting cleanly on an untouched stack means there was nothing to change
                started = exit_code == 0 or status.endswith("_IN_PROGRESS") or _changed_since(stack, since)
            logger.info(
                f"Stack {stack_name} status: {status or 'not created yet'}"
                f"{' (from an earlier deploy)' if status and not started else ''} (poll {polls})"
            )

            if started and status is not None:
                if status in HEALTHY_STATUSES:
                    return DeploymentOutcome(DeploymentState.HEALTHY, status, polls)

                failing = "ROLLBACK" in status or status in BROKEN_STATUSES
                if failing and not diagnosed:
                    # naming collisions abort immediately instead of waiting for the rollback
                    diagnosed = True
                    diagnosis = self.diagnose(stack_name, since)
                    if isinstance(diagnosis, ApplyConflictError):
                        raise diagnosis

                if status in ROLLED_BACK_STATUSES:
                    error = diagnosis or HealthCheckTimeoutError(stack_name, f"stack ended in {status}")
                    logger.warning(f"Stack {stack_name} rolled back to its last known good state: {error.reason}")
                    return DeploymentOutcome(DeploymentState.ROLLED_BACK, status, polls, error)

                if status in BROKEN_STATUSES:
                    raise McpDeployError(
                        f"Stack {stack_name} ended in {status} and needs manual intervention"
                        + (f": {diagnosis}" if diagnosis else "")
                    )

            if exit_code is not None and exit_code != 0:
                raise McpDeployError(
                    f"cdk deploy exited with status {exit_code} before stack {stack_name} settled; "
                    f"see the cdk output above"
                )
            if exit_code == 0 and status is None:
                raise McpDeployError(
                    f"cdk deploy finished but stack {stack_name} does not exist; check the stack name"
                )

            if polls < self.max_polls:
                self._sleep(self.poll_interval)

        logger.warning(f"Stack {stack_name} still {status} after {self.max_polls} polls")
        return DeploymentOutcome(DeploymentState.APPLYING, status, self.max_polls)

    def cancel(self, stack_name: str) -> None:
        """Ask CloudFormation to cancel an in-flight update; it rolls back on its own."""
        try:
            self.client.cancel_update_stack(StackName=stack_name)
        except ClientError as e:
            logger.error(f"Failed to cancel update of stack {stack_name}: {e}")
            raise
        logger.info(f"Requested cancellation of stack {stack_name} update")


class Deployment:
    """One resolve-and-apply cycle. Re-deploying means creating a new Deployment."""

    def __init__(
        self,
        config: DeploymentConfig,
        context: Optional[DeploymentContext] = None,
        stack_name: str = DEFAULT_STACK_NAME,
    ):
        self.config = config
        self.context = context or DeploymentContext()
        self.stack_name = stack_name
        self.state = DeploymentState.DRAFT
        self.history = [DeploymentState.DRAFT]
        self.specification: Optional[ResourceSpecification] = None
        self.error: Optional[McpDeployError] = None

    @property
    def finished(self) -> bool:
        return not TRANSITIONS[self.state]

    def _transition(self, target: DeploymentState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise DeploymentStateError(
                f"Deployment {self.stack_name} cannot move from {self.state.value} to {target.value}"
            )
        logger.info(f"Deployment {self.stack_name}: {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)

    def resolve(self) -> ResourceSpecification:
        specification = resolve(self.config, self.context)
        self._transition(DeploymentState.RESOLVED)
        self.specification = specification
        return specification

    def apply(
        self,
        submit: Callable[[ResourceSpecification], Any],
        monitor: StackMonitor,
    ) -> DeploymentOutcome:
        """
        Submit the resolved specification and follow it until the stack settles.

        Args:
            submit: Hands the resolved resources to the provisioning backend and returns immediately,
                optionally with the backend process so the monitor can notice it failing
            monitor: Polls the backend for the stack status

        Returns:
            The outcome; a rolled back outcome carries the HealthCheckTimeoutError that caused it

        Raises:
            ApplyConflictError: Naming collision with an orphaned resource (deployment is aborted)
            McpDeployError: The backend could not be started or failed (deployment is aborted)
        """
        if self.state == DeploymentState.DRAFT:
            self.resolve()
        self._transition(DeploymentState.APPLYING)

        started = datetime.now(timezone.utc)
        try:
            process = submit(self.specification)
            outcome = monitor.watch(self.stack_name, since=started, process=process)
        except McpDeployError as e:
            self.error = e
            self._transition(DeploymentState.ABORTED)
            logger.error(f"Deployment {self.stack_name} aborted: {e}")
            raise

        if outcome.state == DeploymentState.HEALTHY:
            self._transition(DeploymentState.HEALTHY)
        elif outcome.state == DeploymentState.ROLLED_BACK:
            self.error = outcome.error
            self._transition(DeploymentState.ROLLED_BACK)
            logger.warning(f"Deployment {self.stack_name} rollback completed: {outcome.error}")
        return outcome
