import logging
import os
import struct

from crypto.aead import NONCE_SIZE, aead_decrypt, aead_encrypt
from crypto.hash import validate_kdf
from storage.codec import decode_vault, encode_vault
from utils.dataModels import KdfParams, Vault, VAULT_HDR_FMT, VAULT_MAGIC, VAULT_VERSION, VAULT_HDR_SIZE
from utils.errors import AuthenticationFailed, InvalidParameters

from pathlib import Path
from typing import Tuple

logger = logging.getLogger(__name__)


def pack_header(kdf: KdfParams, nonce: bytes) -> bytes:
    return struct.pack(VAULT_HDR_FMT, VAULT_MAGIC, VAULT_VERSION, kdf.kdf_type, kdf.t_cost,
                       kdf.m_cost_kib, kdf.parallelism, kdf.hash_len, kdf.salt, nonce)


def read_header(data: bytes) -> Tuple[KdfParams, bytes, bytes]:
    """Parse the container header: (kdf params, nonce, raw header bytes).

    The header is not authenticated until the tag is checked, so anything off
    about it is reported like a failed tag, and KDF parameters outside the
    accepted bounds are refused before any key is derived from them.
    """
    if len(data) < VAULT_HDR_SIZE or data[:len(VAULT_MAGIC)] != VAULT_MAGIC:
        logger.debug("container rejected: bad magic or truncated header")
        raise AuthenticationFailed()
    header = data[:VAULT_HDR_SIZE]
    _, ver, kdf_type, t, m, p, hash_len, salt, nonce = struct.unpack(VAULT_HDR_FMT, header)
    if ver != VAULT_VERSION:
        logger.debug("container rejected: version %d", ver)
        raise AuthenticationFailed()
    kdf = KdfParams(salt=salt, t_cost=t, m_cost_kib=m, parallelism=p, hash_len=hash_len, kdf_type=kdf_type)
    try:
        validate_kdf(kdf)
    except InvalidParameters as e:
        logger.debug("container rejected: %s", e)
        raise AuthenticationFailed() from None
    return kdf, nonce, header


def encrypt_container(vault: Vault, key: bytes) -> bytes:
    nonce = os.urandom(NONCE_SIZE)
    header = pack_header(vault.kdf, nonce)
    _, ct = aead_encrypt(key, encode_vault(vault), aad=header, nonce=nonce)
    return header + ct


def decrypt_container(data: bytes, key: bytes) -> Vault:
    kdf, nonce, header = read_header(data)
    # header is bound as associated data, so tampered params fail here too
    payload = aead_decrypt(key, nonce, data[VAULT_HDR_SIZE:], aad=header)
    return decode_vault(payload, kdf)


def save_container(path: Path, data: bytes) -> None:
    tmp = path.with_suffix(".tmp")
    with tmp.open("wb") as f:
        f.write(data)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)
    logger.debug("wrote %d bytes to %s", len(data), path)


def load_container(path: Path) -> bytes:
    data = path.read_bytes()
    if len(data) < VAULT_HDR_SIZE:
        raise AuthenticationFailed()
    return data
