"""
Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
SPDX-License-Identifier: MIT-0
"""
"""
Operator check for the shared credentials secret.

The stack seeds the secret with placeholder values. A service started with
them never passes its health check, so this is the first thing to look at
after a rollback in shared-credentials mode.
"""
import json
import logging
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError

from .errors import CredentialNotConfiguredError
from .topology import CREDENTIAL_TEMPLATE, PLACEHOLDER_TOKEN, SECRET_NAME

logger = logging.getLogger(__name__)


class CredentialInspector:
    def __init__(self, client=None, region: Optional[str] = None):
        self.client = client or boto3.client("secretsmanager", region_name=region)

    def find_placeholders(self, secret_id: str = SECRET_NAME) -> List[str]:
        """Keys of the secret that are missing, empty or still hold their seeded placeholder."""
        try:
            response = self.client.get_secret_value(SecretId=secret_id)
        except ClientError as e:
            logger.error(f"Failed to read secret {secret_id}: {e}")
            raise

        try:
            values = json.loads(response.get("SecretString") or "{}")
        except json.JSONDecodeError:
            logger.error(f"Secret {secret_id} does not hold a JSON document")
            return list(CREDENTIAL_TEMPLATE)

        placeholders = []
        for key, seeded in CREDENTIAL_TEMPLATE.items():
            value = values.get(key)
            if not value or value in (seeded, PLACEHOLDER_TOKEN):
                placeholders.append(key)
        return placeholders

    def ensure_configured(self, secret_id: str = SECRET_NAME) -> None:
        placeholders = self.find_placeholders(secret_id)
        if placeholders:
            raise CredentialNotConfiguredError(secret_id, placeholders)
        logger.info(f"Secret {secret_id} holds configured credentials")
