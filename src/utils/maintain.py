import argparse

from utils.core import credentials_from, open_vault, save
from utils.errors import InvalidParameters


def cmd_rm(args: argparse.Namespace) -> None:
    """Delete an entry. A tombstone is kept so the deletion survives the next sync."""
    with credentials_from(args) as creds:
        vault, p = open_vault(args.vault, creds)
        try:
            entry = vault.find_entry(args.id)
            if entry is None:
                raise InvalidParameters(f"No such id: {args.id}")
            vault.delete_entry(entry)
            save(vault, p["vault"], creds)
        finally:
            vault.wipe()
    print(f"[+] Removed id={args.id}")


def cmd_rename(args: argparse.Namespace) -> None:
    with credentials_from(args) as creds:
        vault, p = open_vault(args.vault, creds)
        try:
            entry = vault.find_entry(args.id)
            if entry is None:
                raise InvalidParameters(f"No such id: {args.id}")
            entry.set("Title", args.title)
            vault.touch()
            save(vault, p["vault"], creds)
        finally:
            vault.wipe()
    print(f"[+] Renamed id={args.id} -> {args.title}")
