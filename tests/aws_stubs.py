"""Canned CloudFormation responses for stubbed clients."""

from datetime import datetime, timezone
from typing import Optional

ACCOUNT = "123456789012"
REGION = "us-east-1"
STACK = "McpAtlassianStack"


def stack_response(status: str, name: str = STACK, updated: Optional[datetime] = None) -> dict:
    stack = {
        "StackName": name,
        "StackId": f"arn:aws:cloudformation:{REGION}:{ACCOUNT}:stack/{name}/abc",
        "CreationTime": datetime(2026, 1, 1, tzinfo=timezone.utc),
        "StackStatus": status,
    }
    if updated is not None:
        stack["LastUpdatedTime"] = updated
    return {"Stacks": [stack]}


def stack_event(logical_id: str, status: str, reason: str = "", physical_id: str = "",
                resource_type: str = "AWS::ECS::Service",
                timestamp: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)) -> dict:
    event = {
        "StackId": f"arn:aws:cloudformation:{REGION}:{ACCOUNT}:stack/{STACK}/abc",
        "EventId": f"{logical_id}-{status}",
        "StackName": STACK,
        "LogicalResourceId": logical_id,
        "ResourceType": resource_type,
        "Timestamp": timestamp,
        "ResourceStatus": status,
    }
    if reason:
        event["ResourceStatusReason"] = reason
    if physical_id:
        event["PhysicalResourceId"] = physical_id
    return event
