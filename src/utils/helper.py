import os
import secrets
import string

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict

VAULT_EXT = "kvlt"
CONFIG_EXT = "json"
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!#$%&()*+,-./:;<=>?@[]^_{|}~"


def config_root() -> Path:
    env = os.environ.get("KTWO_HOME")
    if env:
        return Path(env)
    return Path.home() / ".config" / "ktwo"


def blob_root() -> Path:
    env = os.environ.get("KTWO_BLOB_ROOT")
    if env:
        return Path(env)
    return config_root() / "remote"


def vault_paths(root: Path, name: str) -> Dict[str, Path]:
    return {
        "vault": root / f"{name}.{VAULT_EXT}",
        "config": root / f"{name}.{CONFIG_EXT}",
    }


def utc_now(after: datetime | None = None) -> datetime:
    """Current UTC time, nudged forward so it is strictly later than `after`."""
    now = datetime.now(timezone.utc)
    if after is not None and now <= after:
        now = after + timedelta(microseconds=1)
    return now


def to_iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def from_iso(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


def generate_password(length: int = 20) -> str:
    if length < 8:
        raise ValueError("generated passwords must be at least 8 characters")
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))
