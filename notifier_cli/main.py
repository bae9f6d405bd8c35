from __future__ import annotations

import sys
import uuid
from datetime import datetime, timezone
from typing import Any

import click
import typer
from botocore.exceptions import BotoCoreError

import user_creation_notifier as notifier
from notifier_model import CredentialLookupError, MetadataLookupError
from notifier_stores import (
    LogNotificationSink,
    SecretsManagerCredentialStore,
    SnsNotificationSink,
    SsmMetadataStore,
    client_config,
    parameter_name,
)

from . import __version__
from .cli_shared import (
    OpError,
    UsageError,
    _print_json,
    _read_json_file,
    _rich_error,
    _session,
)

CHECK_KIND = "notifier.check.v1"

app = typer.Typer(
    name="notifier",
    help="Replay and check IAM user creation notifications.",
    no_args_is_help=True,
    add_completion=False,
)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"notifier {__version__}")
        raise typer.Exit(code=0)


@app.callback()
def app_callback(
    ctx: typer.Context,
    pretty: bool = typer.Option(False, "--pretty", help="Indent JSON output"),
    version: bool = typer.Option(False, "--version", callback=_version_callback, is_eager=True),
) -> None:
    del version
    ctx.obj = {"pretty": pretty}


def _pretty(ctx: typer.Context) -> bool:
    obj = ctx.obj if isinstance(ctx.obj, dict) else {}
    return bool(obj.get("pretty"))


def synthetic_create_user_event(
    user_name: str,
    *,
    event_id: str | None = None,
    time: str | None = None,
    region: str = "us-east-1",
) -> dict[str, Any]:
    """Shape of the EventBridge event for a CloudTrail-recorded iam:CreateUser."""
    return {
        "version": "0",
        "id": event_id or str(uuid.uuid4()),
        "detail-type": "AWS API Call via CloudTrail",
        "source": "aws.iam",
        "time": time or datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        "region": region,
        "detail": {
            "eventSource": "iam.amazonaws.com",
            "eventName": "CreateUser",
            "requestParameters": {"userName": user_name},
        },
    }


def _client(session: Any, service: str) -> Any:
    try:
        return session.client(service, config=client_config(notifier.LOOKUP_TIMEOUT_SECONDS))
    except BotoCoreError as e:
        raise OpError(f"cannot create {service} client: {e}") from e


def _build_stores(session: Any, *, prefix: str, secret_id: str) -> tuple[Any, Any]:
    metadata_store = SsmMetadataStore(_client(session, "ssm"), prefix=prefix)
    credential_store = SecretsManagerCredentialStore(_client(session, "secretsmanager"), secret_id=secret_id)
    return metadata_store, credential_store


def _build_sink(session: Any, *, topic_arn: str) -> Any:
    if topic_arn:
        return SnsNotificationSink(_client(session, "sns"), topic_arn, notifier.SCHEMA_VERSION)
    # Keep stdout for the command result.
    return LogNotificationSink(notifier.SCHEMA_VERSION, stream=sys.stderr)


@app.command("event", help="Print a synthetic CreateUser event for USER_NAME.")
def event_cmd(
    ctx: typer.Context,
    user_name: str = typer.Argument(..., help="IAM user name"),
    region: str = typer.Option("us-east-1", "--region", help="Region stamped on the event"),
) -> None:
    if not user_name.strip():
        raise UsageError("user name must be non-empty")
    _print_json(synthetic_create_user_event(user_name.strip(), region=region), pretty=_pretty(ctx))


@app.command("invoke", help="Run the notifier once against live SSM/Secrets Manager.")
def invoke_cmd(
    ctx: typer.Context,
    event_file: str = typer.Option("", "--event-file", help="Path to an event JSON file"),
    user_name: str = typer.Option("", "--user-name", help="Build a synthetic CreateUser event"),
    profile: str = typer.Option("", "--profile", envvar="AWS_PROFILE", help="AWS profile"),
    region: str = typer.Option("", "--region", envvar="AWS_REGION", help="AWS region"),
    prefix: str = typer.Option(notifier.METADATA_PARAMETER_PREFIX, "--prefix", help="SSM parameter prefix"),
    secret_id: str = typer.Option(notifier.CREDENTIAL_SECRET_ID, "--secret-id", help="Secrets Manager secret id"),
    topic_arn: str = typer.Option(notifier.NOTIFICATION_TOPIC_ARN, "--topic-arn", help="Publish to this SNS topic"),
) -> None:
    if bool(event_file) == bool(user_name):
        raise UsageError("provide exactly one of --event-file or --user-name")
    if event_file:
        event = _read_json_file(event_file, label="event file")
    else:
        event = synthetic_create_user_event(user_name.strip(), region=region or "us-east-1")

    session = _session(profile=profile, region=region)
    metadata_store, credential_store = _build_stores(session, prefix=prefix, secret_id=secret_id)
    result = notifier.handle(
        event,
        metadata_store=metadata_store,
        credential_store=credential_store,
        sink=_build_sink(session, topic_arn=topic_arn),
        email_attribute=notifier.EMAIL_ATTRIBUTE,
    )
    _print_json(result.to_response(), pretty=_pretty(ctx))
    if not result.ok:
        raise typer.Exit(code=1)


@app.command("check", help="Check that USER_NAME's email and the shared credential resolve.")
def check_cmd(
    ctx: typer.Context,
    user_name: str = typer.Argument(..., help="IAM user name"),
    profile: str = typer.Option("", "--profile", envvar="AWS_PROFILE", help="AWS profile"),
    region: str = typer.Option("", "--region", envvar="AWS_REGION", help="AWS region"),
    prefix: str = typer.Option(notifier.METADATA_PARAMETER_PREFIX, "--prefix", help="SSM parameter prefix"),
    secret_id: str = typer.Option(notifier.CREDENTIAL_SECRET_ID, "--secret-id", help="Secrets Manager secret id"),
) -> None:
    name = user_name.strip()
    if not name:
        raise UsageError("user name must be non-empty")

    session = _session(profile=profile, region=region)
    metadata_store, credential_store = _build_stores(session, prefix=prefix, secret_id=secret_id)

    # Values are resolved but never printed.
    metadata: dict[str, Any] = {"ok": True}
    try:
        notifier.resolve_email(metadata_store, name, notifier.EMAIL_ATTRIBUTE, None)
    except MetadataLookupError as e:
        metadata = {"ok": False, "error": e.code, "message": str(e)}

    credential: dict[str, Any] = {"ok": True}
    try:
        notifier.resolve_credential(credential_store, None)
    except CredentialLookupError as e:
        credential = {"ok": False, "error": e.code, "message": str(e)}

    _print_json(
        {
            "kind": CHECK_KIND,
            "identityName": name,
            "parameterName": parameter_name(prefix, name, notifier.EMAIL_ATTRIBUTE),
            "secretId": secret_id,
            "metadata": metadata,
            "credential": credential,
        },
        pretty=_pretty(ctx),
    )
    if not (metadata["ok"] and credential["ok"]):
        raise typer.Exit(code=1)


def main(argv: list[str] | None = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    try:
        result = app(args=argv, prog_name="notifier", standalone_mode=False)
        if result is None:
            return 0
        return int(result)
    except typer.Exit as e:
        return int(e.exit_code)
    except click.ClickException as e:
        _rich_error(e.format_message())
        return int(e.exit_code)
    except UsageError as e:
        _rich_error(str(e))
        return 2
    except OpError as e:
        _rich_error(str(e))
        return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
