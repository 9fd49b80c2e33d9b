"""
Shared pytest fixtures for the ktwo test suite.

Every test runs against its own KTWO_HOME / KTWO_BLOB_ROOT under tmp_path so
nothing touches the real ~/.config/ktwo. Argon2 is run with the smallest
parameters it accepts; the real defaults take seconds per derivation.
"""

from typing import Dict, List, Tuple

import pytest

from crypto.hash import Credentials
from storage.codec import decode_vault, encode_vault
from utils.dataModels import KdfParams, Vault
from utils.errors import NotFound, RemoteUnavailable

PASSWORD = "Secr3t!"
FAST_KDF_ARGS = ["-t", "1", "-m", "64", "-p", "1"]


class MemoryBlobStore:
    """In-memory BlobStore double that records every put."""

    def __init__(self) -> None:
        self.objects: Dict[Tuple[str, str], bytes] = {}
        self.tags: Dict[Tuple[str, str], Dict[str, str]] = {}
        self.puts: List[Tuple[str, str]] = []
        self.fail_puts = False

    def get(self, bucket: str, key: str) -> bytes:
        try:
            return self.objects[(bucket, key)]
        except KeyError:
            raise NotFound(f"{bucket}/{key}") from None

    def put(self, bucket: str, key: str, data: bytes, tags: Dict[str, str]) -> None:
        if self.fail_puts:
            raise RemoteUnavailable("bucket unreachable")
        self.objects[(bucket, key)] = bytes(data)
        self.tags[(bucket, key)] = dict(tags)
        self.puts.append((bucket, key))


def clone(vault: Vault) -> Vault:
    """Independent replica of `vault`, as another machine would hold it."""
    return decode_vault(encode_vault(vault), vault.kdf)


@pytest.fixture(autouse=True)
def _isolate_home(tmp_path, monkeypatch):
    monkeypatch.setenv("KTWO_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("KTWO_BLOB_ROOT", str(tmp_path / "blobs"))


@pytest.fixture
def kdf():
    return KdfParams(salt=b"0123456789abcdef", t_cost=1, m_cost_kib=64, parallelism=1)


@pytest.fixture
def creds():
    with Credentials(PASSWORD) as c:
        yield c


@pytest.fixture
def store():
    return MemoryBlobStore()


@pytest.fixture
def vault(kdf):
    v = Vault.create("vault1", kdf)
    v.create_entry(v.root, Title="Mail", UserName="alice", Password="hunter2", URL="mail.example.com")
    return v
