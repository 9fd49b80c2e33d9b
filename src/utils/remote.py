import argparse

from pathlib import Path
from typing import Dict

from crypto.hash import Credentials
from storage.config import load_config
from storage.gateway import DirectoryBlobStore
from sync.orchestrator import SyncOrchestrator, SyncReport, pull
from utils.core import credentials_from, existing_paths
from utils.helper import blob_root, config_root


def run_sync(name: str, p: Dict[str, Path], credentials: Credentials) -> SyncReport:
    config = load_config(p["config"])
    orchestrator = SyncOrchestrator(DirectoryBlobStore(blob_root()), config, p)
    print(f"[+] syncing {name} with {config.sync_bucket}")
    report = orchestrator.sync(credentials)
    try:
        for conflict in report.conflicts:
            print(f"[!] conflict: {conflict}")
        if report.initial_publish:
            print("[+] remote copy created")
        print(f"[+] {name} synced ({sum(1 for _ in report.vault.iter_entries())} entries)")
    finally:
        report.vault.wipe()
    return report


def cmd_sync(args: argparse.Namespace) -> None:
    if args.bucket:
        print("[!] -s/--bucket is not supported here; edit the vault config instead")
    p = existing_paths(args.vault)
    with credentials_from(args) as creds:
        run_sync(args.vault, p, creds)


def cmd_pull(args: argparse.Namespace) -> None:
    print(f"[+] pulling vault and config from {args.remote}")
    paths = pull(args.remote, DirectoryBlobStore(blob_root()), config_root())
    print(f"[+] files written: {paths['vault']}, {paths['config']}")
