import logging

from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterator, List

from crypto.hash import Credentials
from storage.config import SyncConfig, save_config
from storage.gateway import BlobStore, CONFIG_TAGS, KEY_PREFIX, VAULT_TAGS, object_keys, parse_remote_ref
from storage.vault import decrypt_container, encrypt_container, load_container, read_header, save_container
from sync.merge import merge, snapshot
from utils.dataModels import Vault
from utils.errors import AlreadyExists, InvalidParameters, KtwoError, MalformedEditState, NotFound, SyncAborted
from utils.helper import vault_paths

logger = logging.getLogger(__name__)


@dataclass
class SyncReport:
    vault: Vault
    conflicts: List[str] = field(default_factory=list)
    initial_publish: bool = False


@contextmanager
def _stage(name: str) -> Iterator[None]:
    logger.info("sync stage: %s", name)
    try:
        yield
    except SyncAborted:
        raise
    except (KtwoError, OSError) as e:
        logger.error("sync stage %s failed: %s", name, e)
        raise SyncAborted(name, e) from e


class SyncOrchestrator:
    """Runs one pull-merge-push cycle for a single vault.

    Stages run strictly in order and any failure aborts the rest:
    unlock_local, fetch_remote, unlock_remote, merge, encode, persist_local,
    push_remote. The local file is rewritten before anything is pushed, so a
    failed push leaves a consistent local vault and re-running sync pushes
    the same merged content again.
    """

    def __init__(self, gateway: BlobStore, config: SyncConfig, paths: Dict[str, Path],
                 prefix: str = KEY_PREFIX) -> None:
        self.gateway = gateway
        self.config = config
        self.paths = paths
        self.prefix = prefix

    @property
    def keys(self):
        return object_keys(self.prefix, self.config.name)

    def sync(self, credentials: Credentials) -> SyncReport:
        if not self.config.bucket:
            raise InvalidParameters(f"Vault {self.config.name!r} has no sync bucket configured")
        vault_key, _ = self.keys
        local = remote = report = None
        try:
            with _stage("unlock_local"):
                local_bytes = load_container(self.paths["vault"])
                kdf, _, _ = read_header(local_bytes)
                local = decrypt_container(local_bytes, credentials.key_for(kdf))

            with _stage("fetch_remote"):
                try:
                    remote_bytes = self.gateway.get(self.config.bucket, vault_key)
                except NotFound:
                    remote_bytes = None

            if remote_bytes is None:
                logger.info("no remote copy of %s yet; publishing local vault", self.config.name)
                local.edit_state = snapshot(local)
                report = SyncReport(vault=local, initial_publish=True)
            else:
                with _stage("unlock_remote"):
                    rkdf, _, _ = read_header(remote_bytes)
                    remote = decrypt_container(remote_bytes, credentials.key_for(rkdf))

                with _stage("merge"):
                    try:
                        result = merge(local, remote, local.edit_state)
                    except MalformedEditState as e:
                        logger.warning("%s; falling back to a two-way merge, duplicates are possible", e)
                        result = merge(local, remote, None)
                report = SyncReport(vault=result.vault, conflicts=result.conflicts)

            with _stage("encode"):
                data = encrypt_container(report.vault, credentials.key_for(report.vault.kdf))

            with _stage("persist_local"):
                save_container(self.paths["vault"], data)

            with _stage("push_remote"):
                self.push(data)
        finally:
            for replica in (local, remote):
                if replica is not None and (report is None or replica is not report.vault):
                    replica.wipe()
        return report

    def push(self, data: bytes) -> None:
        vault_key, config_key = self.keys
        self.gateway.put(self.config.bucket, vault_key, data, VAULT_TAGS)
        self.gateway.put(self.config.bucket, config_key, self.config.to_bytes(), CONFIG_TAGS)


def pull(remote_ref: str, gateway: BlobStore, root: Path) -> Dict[str, Path]:
    """Fetch a vault and its config from the blob store into `root`. Never overwrites."""
    ref = parse_remote_ref(remote_ref)
    paths = vault_paths(root, ref.name)
    if paths["vault"].exists() or paths["config"].exists():
        raise AlreadyExists(f"Vault {ref.name!r} already exists locally; use sync instead")
    vault_key, config_key = ref.keys()
    data = gateway.get(ref.bucket, vault_key)
    config_bytes = gateway.get(ref.bucket, config_key)
    read_header(data)
    config = SyncConfig.from_bytes(config_bytes)

    root.mkdir(parents=True, exist_ok=True)
    save_container(paths["vault"], data)
    save_config(paths["config"], config)
    logger.info("pulled %s from %s", ref.name, ref.bucket)
    return paths
