import json
import os
import time
from datetime import datetime, timezone
from typing import Any, Callable

import boto3

from notifier_model import (
    OUTCOME_ERROR,
    OUTCOME_MISCONFIGURED,
    CredentialLookupError,
    HandlerResult,
    IdentityCreationEvent,
    MalformedEventError,
    MetadataLookupError,
    NotificationRecord,
    NotifierError,
    SinkEmissionError,
)
from notifier_stores import (
    LogNotificationSink,
    SecretsManagerCredentialStore,
    SnsNotificationSink,
    SsmMetadataStore,
    client_config,
)

# Defaults follow the /iam/... layout the stack provisions. An empty prefix reads
# identity-rooted parameters (/{user}/email).
METADATA_PARAMETER_PREFIX = os.environ.get("METADATA_PARAMETER_PREFIX", "/iam")
EMAIL_ATTRIBUTE = os.environ.get("EMAIL_ATTRIBUTE", "email")
CREDENTIAL_SECRET_ID = os.environ.get("CREDENTIAL_SECRET_ID", "/iam/temp-password")
NOTIFICATION_TOPIC_ARN = os.environ.get("NOTIFICATION_TOPIC_ARN", "")
LOOKUP_TIMEOUT_SECONDS = float(os.environ.get("LOOKUP_TIMEOUT_SECONDS", "5"))
MIN_REMAINING_MS = int(os.environ.get("MIN_REMAINING_MS", "1000"))
SCHEMA_VERSION = os.environ.get("SCHEMA_VERSION", "2026-10-18")

_ssm_client = None
_secrets_client = None
_sns_client = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _aws_region() -> str | None:
    return os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION")


def _ssm():
    global _ssm_client
    if _ssm_client is None:
        _ssm_client = boto3.client(
            "ssm", region_name=_aws_region(), config=client_config(LOOKUP_TIMEOUT_SECONDS)
        )
    return _ssm_client


def _secrets():
    global _secrets_client
    if _secrets_client is None:
        _secrets_client = boto3.client(
            "secretsmanager", region_name=_aws_region(), config=client_config(LOOKUP_TIMEOUT_SECONDS)
        )
    return _secrets_client


def _sns():
    global _sns_client
    if _sns_client is None:
        _sns_client = boto3.client(
            "sns", region_name=_aws_region(), config=client_config(LOOKUP_TIMEOUT_SECONDS)
        )
    return _sns_client


def _log(wide_event: dict[str, Any]) -> None:
    print(json.dumps(wide_event, separators=(",", ":"), sort_keys=True))


def _out_of_time(remaining_ms: Callable[[], int] | None) -> bool:
    if remaining_ms is None:
        return False
    return int(remaining_ms()) < MIN_REMAINING_MS


def resolve_email(
    metadata_store: Any,
    identity_name: str,
    attribute: str,
    remaining_ms: Callable[[], int] | None,
) -> str:
    if _out_of_time(remaining_ms):
        raise MetadataLookupError("not enough invocation time left for metadata lookup")
    try:
        value = metadata_store.get(identity_name, attribute)
    except MetadataLookupError:
        raise
    except Exception as e:
        raise MetadataLookupError(f"metadata lookup failed for {identity_name}: {e}") from e
    if not value:
        raise MetadataLookupError(f"no {attribute} attribute for {identity_name}")
    return value


def resolve_credential(credential_store: Any, remaining_ms: Callable[[], int] | None) -> str:
    if _out_of_time(remaining_ms):
        raise CredentialLookupError("not enough invocation time left for credential lookup")
    try:
        value = credential_store.get()
    except CredentialLookupError:
        raise
    except Exception as e:
        raise CredentialLookupError(f"credential lookup failed: {e}") from e
    if not value:
        raise CredentialLookupError("shared credential is not set")
    return value


def _emit(sink: Any, record: NotificationRecord, remaining_ms: Callable[[], int] | None) -> None:
    if _out_of_time(remaining_ms):
        raise SinkEmissionError("not enough invocation time left to emit notification")
    try:
        sink.emit(record)
    except SinkEmissionError:
        raise
    except Exception as e:
        raise SinkEmissionError(f"notification emit failed: {e}") from e


def handle(
    event: Any,
    *,
    metadata_store: Any,
    credential_store: Any,
    sink: Any,
    email_attribute: str = "email",
    remaining_ms: Callable[[], int] | None = None,
) -> HandlerResult:
    """Resolve the new identity's email and the shared credential, then notify.

    Every failure is reported through the returned result; nothing is emitted
    unless both lookups succeed, and the sink is called at most once.
    """
    try:
        parsed = IdentityCreationEvent.from_event(event)
    except MalformedEventError as e:
        return HandlerResult.failure(e)

    name = parsed.identity_name
    try:
        email = resolve_email(metadata_store, name, email_attribute, remaining_ms)
        password = resolve_credential(credential_store, remaining_ms)
        record = NotificationRecord(
            identity_name=name,
            resolved_email=email,
            credential_snapshot=password,
        )
        _emit(sink, record, remaining_ms)
    except NotifierError as e:
        return HandlerResult.failure(e, identity_name=name, event=parsed)
    return HandlerResult.success(record, event=parsed)


def _metadata_store() -> SsmMetadataStore:
    return SsmMetadataStore(_ssm(), prefix=METADATA_PARAMETER_PREFIX)


def _credential_store() -> SecretsManagerCredentialStore:
    return SecretsManagerCredentialStore(_secrets(), secret_id=CREDENTIAL_SECRET_ID)


def _sink() -> Any:
    if NOTIFICATION_TOPIC_ARN:
        return SnsNotificationSink(_sns(), NOTIFICATION_TOPIC_ARN, SCHEMA_VERSION)
    return LogNotificationSink(SCHEMA_VERSION)


def _remaining_ms_fn(context: Any) -> Callable[[], int] | None:
    fn = getattr(context, "get_remaining_time_in_millis", None)
    return fn if callable(fn) else None


def _error_fields(error: BaseException) -> dict[str, str]:
    cause = error.__cause__ if error.__cause__ is not None else error
    return {
        "code": getattr(error, "code", "internal_error"),
        "type": type(cause).__name__,
        "message": str(error),
    }


def handler(event: dict[str, Any], context: Any) -> dict[str, Any]:
    start = time.time()
    wide_event: dict[str, Any] = {
        "event": "user_creation_notify",
        "schema_version": SCHEMA_VERSION,
        "ts": _now_iso(),
        "event_id": str(event.get("id", "")) if isinstance(event, dict) else "",
    }

    result: HandlerResult | None = None
    try:
        if not CREDENTIAL_SECRET_ID or not EMAIL_ATTRIBUTE:
            wide_event["outcome"] = OUTCOME_MISCONFIGURED
            wide_event["error"] = {
                "code": OUTCOME_MISCONFIGURED,
                "type": "Configuration",
                "message": "CREDENTIAL_SECRET_ID or EMAIL_ATTRIBUTE missing",
            }
            return {
                "ok": False,
                "outcome": OUTCOME_MISCONFIGURED,
                "identityName": "",
                "error": "CREDENTIAL_SECRET_ID or EMAIL_ATTRIBUTE missing",
            }

        result = handle(
            event,
            metadata_store=_metadata_store(),
            credential_store=_credential_store(),
            sink=_sink(),
            email_attribute=EMAIL_ATTRIBUTE,
            remaining_ms=_remaining_ms_fn(context),
        )
        wide_event["outcome"] = result.outcome
        wide_event["identity_name"] = result.identity_name
        if result.event is not None:
            wide_event["event_id"] = result.event.event_id
            wide_event["event_name"] = result.event.event_name
            wide_event["source"] = result.event.source
        wide_event["sink"] = "sns" if NOTIFICATION_TOPIC_ARN else "log"
        if result.error is not None:
            wide_event["error"] = _error_fields(result.error)
    except Exception as exc:
        wide_event["outcome"] = OUTCOME_ERROR
        wide_event["error"] = {"code": "internal_error", "type": type(exc).__name__, "message": str(exc)}
        return {"ok": False, "outcome": OUTCOME_ERROR, "identityName": "", "error": "internal_error"}
    finally:
        wide_event["duration_ms"] = int((time.time() - start) * 1000)
        # Never log credential material.
        _log(wide_event)

    if isinstance(result.error, MalformedEventError):
        # Surface to the runtime's failure channel (async retries, on-failure destination).
        raise result.error
    return result.to_response()
