import argparse

from utils.core import cmd_add, cmd_list, cmd_newdb
from utils.dataModels import DEFAULT_T_COST, DEFAULT_M_COST_KiB, DEFAULT_PARALLELISM
from utils.maintain import cmd_rename, cmd_rm
from utils.remote import cmd_pull, cmd_sync


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ktwo", description="Encrypted password vault synced through a bucket")
    p.add_argument("-v", "--verbose", action="store_true", help="Log sync stages and merge decisions")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_new = sub.add_parser("newdb", aliases=["n"], help="Create a new vault")
    p_new.add_argument("vault", help="Vault name")
    p_new.add_argument("-s", "--bucket", default="", help="Bucket to sync the vault and config to, e.g. s3://my-bucket")
    p_new.add_argument("--passphrase", help="Master password (prompted for when omitted)")
    p_new.add_argument("-t", type=int, default=DEFAULT_T_COST, help="Argon2 time cost (iterations)")
    p_new.add_argument("-m", type=int, default=DEFAULT_M_COST_KiB, help="Argon2 memory (KiB)")
    p_new.add_argument("-p", type=int, default=DEFAULT_PARALLELISM, help="Argon2 parallelism")
    p_new.add_argument("--force", action="store_true", help="Overwrite an existing vault")
    p_new.set_defaults(func=cmd_newdb)

    p_add = sub.add_parser("add", aliases=["a"], help="Add an entry with a generated password")
    p_add.add_argument("vault", help="Vault name")
    p_add.add_argument("-g", "--group", default="default", help="Group to add the entry to")
    p_add.add_argument("-t", "--title", help="Entry title")
    p_add.add_argument("-u", "--user", help="Entry user name")
    p_add.add_argument("--url", help="Entry URL")
    p_add.add_argument("-n", "--note", help="Entry note")
    p_add.add_argument("-a", "--askpass", action="store_true", help="Prompt for the entry password instead of generating one")
    p_add.add_argument("--length", type=int, default=20, help="Generated password length")
    p_add.add_argument("--sync", action="store_true", help="Sync with the bucket after saving")
    p_add.add_argument("--passphrase", help="Master password (prompted for when omitted)")
    p_add.set_defaults(func=cmd_add)

    p_ls = sub.add_parser("list", aliases=["l"], help="List entries")
    p_ls.add_argument("vault", help="Vault name")
    p_ls.add_argument("-g", "--group", help="Only this group")
    p_ls.add_argument("-t", "--title", help="Only entries with this title")
    p_ls.add_argument("--reveal", action="store_true", help="Show passwords in clear text")
    p_ls.add_argument("--passphrase", help="Master password (prompted for when omitted)")
    p_ls.set_defaults(func=cmd_list)

    p_pull = sub.add_parser("pull", aliases=["p"], help="Fetch a vault from a bucket, e.g. s3://my-bucket/ktwo/name")
    p_pull.add_argument("remote", help="Remote reference")
    p_pull.set_defaults(func=cmd_pull)

    p_sync = sub.add_parser("sync", aliases=["s"], help="Merge with the bucket copy and push the result")
    p_sync.add_argument("vault", help="Vault name")
    p_sync.add_argument("-s", "--bucket", help="Not supported; the bucket comes from the vault config")
    p_sync.add_argument("--passphrase", help="Master password (prompted for when omitted)")
    p_sync.set_defaults(func=cmd_sync)

    p_rm = sub.add_parser("rm", help="Remove an entry by id")
    p_rm.add_argument("vault", help="Vault name")
    p_rm.add_argument("id", help="Entry id (UUID)")
    p_rm.add_argument("--passphrase", help="Master password (prompted for when omitted)")
    p_rm.set_defaults(func=cmd_rm)

    p_ren = sub.add_parser("rename", help="Change an entry's title")
    p_ren.add_argument("vault", help="Vault name")
    p_ren.add_argument("id", help="Entry id (UUID)")
    p_ren.add_argument("title", help="New title")
    p_ren.add_argument("--passphrase", help="Master password (prompted for when omitted)")
    p_ren.set_defaults(func=cmd_rename)

    return p
