from __future__ import annotations

import json
import sys
from typing import Any, TextIO

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from notifier_model import (
    CredentialLookupError,
    MetadataLookupError,
    NotificationRecord,
    SinkEmissionError,
)

SSM_NOT_FOUND_CODES = {"ParameterNotFound", "ParameterVersionNotFound"}
SECRET_NOT_FOUND_CODES = {"ResourceNotFoundException"}
SNS_SUBJECT = "New IAM user created"


def client_config(timeout_seconds: float) -> Config:
    # One attempt per call; redelivery is the event source's job.
    return Config(
        connect_timeout=timeout_seconds,
        read_timeout=timeout_seconds,
        retries={"max_attempts": 1, "mode": "standard"},
    )


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "")


def parameter_name(prefix: str, identity_name: str, attribute: str) -> str:
    base = (prefix or "").strip().rstrip("/")
    if base and not base.startswith("/"):
        base = "/" + base
    return f"{base}/{identity_name}/{attribute}"


class SsmMetadataStore:
    """Per-identity attributes kept in SSM Parameter Store."""

    def __init__(self, client: Any, prefix: str = "/iam") -> None:
        self._client = client
        self._prefix = prefix

    def get(self, identity_name: str, attribute: str) -> str | None:
        name = parameter_name(self._prefix, identity_name, attribute)
        try:
            out = self._client.get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            if _error_code(e) in SSM_NOT_FOUND_CODES:
                return None
            raise MetadataLookupError(f"ssm get_parameter failed for {name}: {e}") from e
        except BotoCoreError as e:
            raise MetadataLookupError(f"ssm get_parameter failed for {name}: {e}") from e
        value = (out.get("Parameter") or {}).get("Value")
        return str(value) if value is not None else None


class SecretsManagerCredentialStore:
    """The shared temporary password kept in Secrets Manager."""

    def __init__(self, client: Any, secret_id: str = "/iam/temp-password") -> None:
        self._client = client
        self._secret_id = secret_id

    @property
    def secret_id(self) -> str:
        return self._secret_id

    def get(self) -> str | None:
        try:
            out = self._client.get_secret_value(SecretId=self._secret_id)
        except ClientError as e:
            if _error_code(e) in SECRET_NOT_FOUND_CODES:
                return None
            raise CredentialLookupError(
                f"secretsmanager get_secret_value failed for {self._secret_id}: {e}"
            ) from e
        except BotoCoreError as e:
            raise CredentialLookupError(
                f"secretsmanager get_secret_value failed for {self._secret_id}: {e}"
            ) from e
        value = out.get("SecretString")
        return str(value) if value is not None else None


class LogNotificationSink:
    def __init__(self, schema_version: str, stream: TextIO | None = None) -> None:
        self._schema_version = schema_version
        self._stream = stream

    def emit(self, record: NotificationRecord) -> None:
        line = json.dumps(record.to_payload(self._schema_version), separators=(",", ":"), sort_keys=True)
        stream = self._stream or sys.stdout
        # Single write so a cancelled invocation cannot leave half a record.
        stream.write(line + "\n")
        stream.flush()


class SnsNotificationSink:
    def __init__(self, client: Any, topic_arn: str, schema_version: str) -> None:
        self._client = client
        self._topic_arn = topic_arn
        self._schema_version = schema_version

    def emit(self, record: NotificationRecord) -> None:
        message = json.dumps(record.to_payload(self._schema_version), separators=(",", ":"), sort_keys=True)
        try:
            self._client.publish(TopicArn=self._topic_arn, Subject=SNS_SUBJECT, Message=message)
        except (ClientError, BotoCoreError) as e:
            raise SinkEmissionError(f"sns publish failed for {self._topic_arn}: {e}") from e
