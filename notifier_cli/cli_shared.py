from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import boto3
from rich.console import Console


class NotifierOpsError(Exception):
    pass


class UsageError(NotifierOpsError):
    pass


class OpError(NotifierOpsError):
    pass


_ERROR_CONSOLE = Console(stderr=True)


def _rich_error(msg: str) -> None:
    _ERROR_CONSOLE.print(f"[bold red]error:[/bold red] {msg}")


def _print_json(obj: Any, *, pretty: bool) -> None:
    if pretty:
        sys.stdout.write(json.dumps(obj, indent=2, sort_keys=True) + "\n")
    else:
        sys.stdout.write(json.dumps(obj, separators=(",", ":"), sort_keys=True) + "\n")


def _load_json_object(*, raw: str, label: str) -> dict[str, Any]:
    try:
        val = json.loads(raw)
    except Exception as e:
        raise UsageError(f"invalid {label}: {e}") from e
    if not isinstance(val, dict):
        raise UsageError(f"invalid {label}: expected JSON object")
    return val


def _read_json_file(path: str, *, label: str) -> dict[str, Any]:
    p = Path(path).expanduser()
    try:
        raw = p.read_text(encoding="utf-8")
    except OSError as e:
        raise UsageError(f"cannot read {label} {str(p)!r}: {e}") from e
    return _load_json_object(raw=raw, label=label)


def _session(*, profile: str | None, region: str | None) -> Any:
    try:
        return boto3.session.Session(profile_name=profile or None, region_name=region or None)
    except Exception as e:
        raise UsageError(f"cannot create AWS session (profile={profile!r}): {e}") from e
