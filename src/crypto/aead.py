import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from typing import Tuple

from utils.errors import AuthenticationFailed, InvalidParameters

NONCE_SIZE = 12


def _cipher(key: bytes) -> AESGCM:
    try:
        return AESGCM(key)
    except ValueError as e:
        raise InvalidParameters("AES-GCM key must be 128, 192 or 256 bits") from e


def aead_encrypt(key: bytes, plaintext: bytes, aad: bytes | None = None,
                 nonce: bytes | None = None) -> Tuple[bytes, bytes]:
    if nonce is None:
        nonce = os.urandom(NONCE_SIZE)
    ct = _cipher(key).encrypt(nonce, plaintext, aad)
    return nonce, ct


def aead_decrypt(key: bytes, nonce: bytes, ct: bytes, aad: bytes | None = None) -> bytes:
    try:
        return _cipher(key).decrypt(nonce, ct, aad)
    except InvalidTag:
        # same error for a wrong key and for tampered bytes
        raise AuthenticationFailed() from None
