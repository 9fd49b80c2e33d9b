import json

from dataclasses import dataclass
from pathlib import Path

from utils.errors import InvalidParameters


@dataclass
class SyncConfig:
    name: str
    sync_bucket: str = ""

    @property
    def bucket(self) -> str:
        # accepts "s3://bucket", "bucket/" or a bare bucket name
        return self.sync_bucket.rstrip("/").split("/").pop()

    def to_bytes(self) -> bytes:
        return json.dumps({"name": self.name, "syncBucket": self.sync_bucket}, indent=2).encode("utf-8")

    @staticmethod
    def from_bytes(b: bytes) -> "SyncConfig":
        try:
            obj = json.loads(b.decode("utf-8"))
            return SyncConfig(name=obj["name"], sync_bucket=obj.get("syncBucket", ""))
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidParameters("Malformed vault config file") from e


def load_config(path: Path) -> SyncConfig:
    if not path.exists():
        raise InvalidParameters(f"No config for vault at {path}")
    return SyncConfig.from_bytes(path.read_bytes())


def save_config(path: Path, config: SyncConfig) -> None:
    tmp = path.with_suffix(".tmp")
    tmp.write_bytes(config.to_bytes())
    tmp.replace(path)
