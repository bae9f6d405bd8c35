import os
import secrets
import string
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterator

import boto3
import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT / "lambda") not in sys.path:
    sys.path.insert(0, str(ROOT / "lambda"))

from notifier_stores import client_config


def _rand_suffix(n: int = 8) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(n))


def pytest_collection_modifyitems(config, items):
    if os.environ.get("RUN_SYSTEM") == "1":
        return
    skip = pytest.mark.skip(reason="system tests require RUN_SYSTEM=1")
    for item in items:
        if item.nodeid.startswith("tests/system/"):
            item.add_marker(skip)


@dataclass(frozen=True)
class SystemEnv:
    aws_profile: str
    aws_region: str
    prefix: str


@dataclass(frozen=True)
class SeededIdentity:
    user_name: str
    email: str
    parameter_name: str


@pytest.fixture(scope="session")
def system_env() -> SystemEnv:
    # Require explicit opt-in.
    if os.environ.get("RUN_SYSTEM") != "1":
        pytest.skip("set RUN_SYSTEM=1 to run system tests")

    aws_profile = (os.environ.get("SYSTEM_AWS_PROFILE") or os.environ.get("AWS_PROFILE") or "").strip()
    aws_region = (os.environ.get("SYSTEM_AWS_REGION") or os.environ.get("AWS_REGION") or "").strip()
    if not aws_profile:
        raise RuntimeError("missing required env var: AWS_PROFILE (or SYSTEM_AWS_PROFILE)")
    if not aws_region:
        raise RuntimeError("missing required env var: AWS_REGION (or SYSTEM_AWS_REGION)")

    # Keep test parameters away from real identities.
    prefix = f"/notifier-system-{_rand_suffix(6)}"
    return SystemEnv(aws_profile=aws_profile, aws_region=aws_region, prefix=prefix)


@pytest.fixture(scope="session")
def system_session(system_env: SystemEnv) -> boto3.session.Session:
    return boto3.session.Session(profile_name=system_env.aws_profile, region_name=system_env.aws_region)


@pytest.fixture(scope="session")
def system_ssm(system_session: boto3.session.Session) -> Any:
    return system_session.client("ssm", config=client_config(5))


@pytest.fixture(scope="session")
def system_secrets(system_session: boto3.session.Session) -> Any:
    return system_session.client("secretsmanager", config=client_config(5))


@pytest.fixture(scope="session")
def system_secret(system_secrets: Any) -> Iterator[tuple[str, str]]:
    name = f"notifier-system-{_rand_suffix(10)}/temp-password"
    value = system_secrets.get_random_password(PasswordLength=16, ExcludePunctuation=True)["RandomPassword"]
    system_secrets.create_secret(Name=name, SecretString=value)

    yield name, value

    # Best-effort cleanup.
    try:
        system_secrets.delete_secret(SecretId=name, ForceDeleteWithoutRecovery=True)
    except Exception:
        pass


@pytest.fixture(scope="session")
def system_identity_factory(system_env: SystemEnv, system_ssm: Any) -> Iterator[Callable[..., SeededIdentity]]:
    created: list[str] = []

    def seed(*, with_email: bool = True) -> SeededIdentity:
        user_name = f"notifier-user-{_rand_suffix(10)}"
        email = f"{user_name}@example.com"
        name = f"{system_env.prefix}/{user_name}/email"
        if with_email:
            system_ssm.put_parameter(Name=name, Value=email, Type="String")
            created.append(name)
        return SeededIdentity(user_name=user_name, email=email, parameter_name=name)

    yield seed

    for name in created:
        try:
            system_ssm.delete_parameter(Name=name)
        except Exception:
            pass
