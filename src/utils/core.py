import argparse
import logging

from pathlib import Path
from typing import Dict, Tuple

from crypto.hash import Credentials
from storage.config import SyncConfig, save_config
from storage.vault import decrypt_container, encrypt_container, load_container, read_header, save_container
from ui.prompt import ask_password
from utils.dataModels import Entry, KdfParams, Vault
from utils.errors import AlreadyExists, InvalidParameters
from utils.helper import config_root, generate_password, vault_paths

logger = logging.getLogger(__name__)


def credentials_from(args: argparse.Namespace, prompt: str = "Enter the database password: ") -> Credentials:
    password = getattr(args, "passphrase", None) or ask_password(prompt)
    if not password:
        raise InvalidParameters("No password given")
    return Credentials(password)


def existing_paths(name: str) -> Dict[str, Path]:
    p = vault_paths(config_root(), name)
    if not p["vault"].exists():
        raise InvalidParameters(f"No vault named {name!r} in {config_root()}")
    return p


def unlock(path: Path, credentials: Credentials) -> Vault:
    data = load_container(path)
    kdf, _, _ = read_header(data)
    return decrypt_container(data, credentials.key_for(kdf))


def save(vault: Vault, path: Path, credentials: Credentials) -> None:
    save_container(path, encrypt_container(vault, credentials.key_for(vault.kdf)))


def open_vault(name: str, credentials: Credentials) -> Tuple[Vault, Dict[str, Path]]:
    p = existing_paths(name)
    return unlock(p["vault"], credentials), p


def format_entry(entry: Entry, reveal: bool = False) -> str:
    password = entry.reveal("Password") if reveal else ("********" if entry.fields.get("Password") else "")
    return (
        f"  Title:    {entry.reveal('Title')}\n"
        f"  UserName: {entry.reveal('UserName')}\n"
        f"  Password: {password}\n"
        f"  URL:      {entry.reveal('URL')}\n"
        f"  Notes:    {entry.reveal('Notes')}\n"
        f"  Id:       {entry.uuid}"
    )


def cmd_newdb(args: argparse.Namespace) -> None:
    root = config_root()
    root.mkdir(parents=True, exist_ok=True)
    p = vault_paths(root, args.vault)
    if p["vault"].exists() and not args.force:
        raise AlreadyExists(f"{p['vault']} exists. Use --force to overwrite.")

    kdf = KdfParams.generate(t_cost=args.t, m_cost_kib=args.m, parallelism=args.p)
    with credentials_from(args, "Choose a database password: ") as creds:
        vault = Vault.create(args.vault, kdf)
        save(vault, p["vault"], creds)
    save_config(p["config"], SyncConfig(name=args.vault, sync_bucket=args.bucket))
    print(f"[+] {p['vault']} created successfully")
    print(f"[+] config file: {p['config']}")


def cmd_add(args: argparse.Namespace) -> None:
    with credentials_from(args) as creds:
        vault, p = open_vault(args.vault, creds)
        if args.askpass:
            secret = ask_password("Enter a password for the entry: ")
            if not secret:
                raise InvalidParameters("No entry password given")
        else:
            secret = generate_password(args.length)

        if args.group and args.group != "default":
            group = vault.find_group_by_name(args.group) or vault.create_group(vault.root, args.group)
        else:
            group = vault.root

        entry = vault.create_entry(group, Title=args.title, UserName=args.user, Password=secret,
                                   URL=args.url, Notes=args.note)
        save(vault, p["vault"], creds)
        logger.info("added entry %s to group %s", entry.uuid, group.uuid)
        print("[+] entry added")
        print(format_entry(entry))
        vault.wipe()

        if args.sync:
            from utils.remote import run_sync
            run_sync(args.vault, p, creds)


def cmd_list(args: argparse.Namespace) -> None:
    with credentials_from(args) as creds:
        vault, _ = open_vault(args.vault, creds)
    try:
        shown = 0
        for group in vault.iter_groups():
            if args.group and group.name != args.group:
                continue
            matches = [e for e in group.entries if not args.title or e.reveal("Title") == args.title]
            if not matches:
                continue
            print(group.name)
            for entry in matches:
                print(format_entry(entry, reveal=args.reveal))
                shown += 1
        if not shown:
            print("(empty)")
    finally:
        vault.wipe()
