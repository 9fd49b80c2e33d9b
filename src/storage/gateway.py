"""Blob store boundary used by sync and pull.

Objects are addressed by bucket and key. Keys follow
``<prefix>/<base>/<base>.<ext>``, where ``base`` is the vault name up to the
first dot, so the container and its sidecar config always travel together.
"""
import json
import logging
import os

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Protocol, Tuple

from utils.errors import InvalidParameters, NotFound, RemoteUnavailable
from utils.helper import CONFIG_EXT, VAULT_EXT

logger = logging.getLogger(__name__)

KEY_PREFIX = "ktwo"
VAULT_TAGS = {"application": "ktwo", "type": "ktwo-vault"}
CONFIG_TAGS = {"application": "ktwo", "type": "ktwo-config"}


class BlobStore(Protocol):
    def get(self, bucket: str, key: str) -> bytes: ...
    def put(self, bucket: str, key: str, data: bytes, tags: Dict[str, str]) -> None: ...


@dataclass(frozen=True)
class RemoteRef:
    bucket: str
    prefix: str
    name: str

    def keys(self) -> Tuple[str, str]:
        return object_keys(self.prefix, self.name)


def object_keys(prefix: str, name: str) -> Tuple[str, str]:
    base = name.split(".")[0]
    return f"{prefix}/{base}/{base}.{VAULT_EXT}", f"{prefix}/{base}/{base}.{CONFIG_EXT}"


def parse_remote_ref(ref: str) -> RemoteRef:
    """s3://bucket/ktwo/name -> RemoteRef(bucket, "ktwo", name)"""
    scheme, sep, rest = ref.partition("://")
    if not sep:
        rest = scheme
    parts = [p for p in rest.split("/") if p]
    if len(parts) < 2:
        raise InvalidParameters(f"Remote reference needs a bucket and a vault name: {ref}")
    bucket, name = parts[0], parts[-1]
    prefix = "/".join(parts[1:-1]) or KEY_PREFIX
    return RemoteRef(bucket=bucket, prefix=prefix, name=name)


class DirectoryBlobStore:
    """Bucket-addressed store over a local directory (mounted or synced folder)."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _path(self, bucket: str, key: str) -> Path:
        if not bucket or ".." in Path(key).parts or Path(key).is_absolute():
            raise InvalidParameters(f"Invalid object address {bucket}/{key}")
        return self.root / bucket / key

    def get(self, bucket: str, key: str) -> bytes:
        path = self._path(bucket, key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise NotFound(f"{bucket}/{key} does not exist") from None
        except OSError as e:
            raise RemoteUnavailable(f"Could not read {bucket}/{key}: {e.strerror}") from e

    def put(self, bucket: str, key: str, data: bytes, tags: Dict[str, str]) -> None:
        path = self._path(bucket, key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_name(path.name + ".tmp")
            tmp.write_bytes(data)
            os.replace(tmp, path)
            path.with_name(path.name + ".tags").write_text(json.dumps(tags, sort_keys=True))
        except OSError as e:
            raise RemoteUnavailable(f"Could not write {bucket}/{key}: {e.strerror}") from e
        logger.info("put %s/%s (%d bytes, %s)", bucket, key, len(data), tags.get("type", "?"))
