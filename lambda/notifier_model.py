from __future__ import annotations

from dataclasses import dataclass
from typing import Any

NOTIFICATION_KIND = "user-creation-notification.v1"

OUTCOME_SUCCESS = "success"
OUTCOME_MISCONFIGURED = "misconfigured"
OUTCOME_ERROR = "error"


class NotifierError(Exception):
    """Base class for per-invocation failures.

    Each subclass carries a stable ``code`` that doubles as the invocation
    outcome in logs and in the handler response.
    """

    code = "notifier_error"


class MalformedEventError(NotifierError):
    code = "malformed_event"


class MetadataLookupError(NotifierError):
    code = "metadata_lookup_failed"


class CredentialLookupError(NotifierError):
    code = "credential_lookup_failed"


class SinkEmissionError(NotifierError):
    code = "sink_emission_failed"


def _str_field(obj: dict[str, Any], key: str) -> str:
    val = obj.get(key)
    return val.strip() if isinstance(val, str) else ""


@dataclass(frozen=True)
class IdentityCreationEvent:
    identity_name: str
    event_id: str = ""
    event_name: str = ""
    source: str = ""
    time: str = ""

    @classmethod
    def from_event(cls, event: Any) -> IdentityCreationEvent:
        """Parse an EventBridge envelope or a bare CloudTrail record.

        EventBridge wraps the CloudTrail record under ``detail``; the bare form
        carries ``requestParameters`` at the top level.
        """
        if not isinstance(event, dict):
            raise MalformedEventError("event must be a JSON object")

        detail = event.get("detail")
        if detail is None and "requestParameters" in event:
            detail = event
        if not isinstance(detail, dict):
            raise MalformedEventError("event is missing detail")

        params = detail.get("requestParameters")
        if not isinstance(params, dict):
            raise MalformedEventError("event is missing requestParameters")

        user_name = params.get("userName")
        if not isinstance(user_name, str) or not user_name.strip():
            raise MalformedEventError("event is missing requestParameters.userName")

        return cls(
            identity_name=user_name.strip(),
            event_id=_str_field(event, "id") or _str_field(detail, "eventID"),
            event_name=_str_field(detail, "eventName"),
            source=_str_field(event, "source") or _str_field(detail, "eventSource"),
            time=_str_field(event, "time") or _str_field(detail, "eventTime"),
        )


@dataclass(frozen=True)
class NotificationRecord:
    identity_name: str
    resolved_email: str
    credential_snapshot: str

    def to_payload(self, schema_version: str) -> dict[str, Any]:
        return {
            "kind": NOTIFICATION_KIND,
            "schemaVersion": schema_version,
            "identityName": self.identity_name,
            "email": self.resolved_email,
            "temporaryPassword": self.credential_snapshot,
        }


@dataclass(frozen=True)
class HandlerResult:
    ok: bool
    outcome: str
    identity_name: str = ""
    record: NotificationRecord | None = None
    error: NotifierError | None = None
    event: IdentityCreationEvent | None = None

    @classmethod
    def success(cls, record: NotificationRecord, event: IdentityCreationEvent | None = None) -> HandlerResult:
        return cls(
            ok=True,
            outcome=OUTCOME_SUCCESS,
            identity_name=record.identity_name,
            record=record,
            event=event,
        )

    @classmethod
    def failure(
        cls,
        error: NotifierError,
        identity_name: str = "",
        event: IdentityCreationEvent | None = None,
    ) -> HandlerResult:
        return cls(ok=False, outcome=error.code, identity_name=identity_name, error=error, event=event)

    def to_response(self) -> dict[str, Any]:
        # Lambda return value; credential material stays out of it.
        out: dict[str, Any] = {
            "ok": self.ok,
            "outcome": self.outcome,
            "identityName": self.identity_name,
        }
        if self.error is not None:
            out["error"] = self.error.code
            out["message"] = str(self.error)
        return out
