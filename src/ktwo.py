#!/usr/bin/env python3
"""
ktwo - personal password vault synced through object storage, no server.

Every machine keeps a full encrypted copy of the vault. `sync` pulls the
bucket copy, merges it with the local one (three-way, against the snapshot
taken at the previous sync), rewrites the local file and pushes the result.

Vault container (big-endian header, then ciphertext):
    magic       : 4 bytes  -> b"KTV1"
    version     : u8       -> 0x01
    kdf type    : u8       -> 2 (Argon2id)
    t_cost      : u32
    m_cost      : u32  (KiB)
    parallelism : u32
    hash_len    : u8
    salt        : 16 bytes
    nonce       : 12 bytes
    ciphertext  : AES-256-GCM over the JSON vault tree, header as AAD

Local layout ($KTWO_HOME, default ~/.config/ktwo):
    <name>.kvlt     # vault container
    <name>.json     # {"name": ..., "syncBucket": ...}

Bucket layout:
    ktwo/<name>/<name>.kvlt
    ktwo/<name>/<name>.json

Commands:
  newdb <vault>        Create a vault (optionally with -s bucket)
  add <vault>          Add an entry with a generated (or prompted) password
  list <vault>         List entries
  pull <remote>        First-time fetch of a vault from a bucket
  sync <vault>         Merge with the bucket copy and push
  rm <vault> <id>      Delete an entry (tombstoned)
  rename <vault> <id>  Change an entry title

Security choices:
  - AEAD: AES-256-GCM via cryptography.hazmat
  - Argon2id via argon2-cffi low-level API
  - key = Argon2id(SHA3-512(password)) -> 32 bytes
"""
from __future__ import annotations

import logging
import sys

from ui.cli import build_parser
from utils.errors import KtwoError


def main():
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")
    try:
        args.func(args)
    except KtwoError as e:
        print(f"[!] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
