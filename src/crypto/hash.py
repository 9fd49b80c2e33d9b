import logging

from argon2.exceptions import HashingError
from argon2.low_level import hash_secret_raw, Type as Argon2Type
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from typing import Dict

from crypto.protected import ProtectedValue
from utils.dataModels import KdfParams, MAX_M_COST_KiB, MAX_PARALLELISM, MAX_T_COST
from utils.errors import InvalidParameters

logger = logging.getLogger(__name__)

ARGON2_TYPES = {0: Argon2Type.D, 1: Argon2Type.I, 2: Argon2Type.ID}
MIN_SALT_LEN = 8


def sha3_512_bytes(data: bytes) -> bytes:
    digest = hashes.Hash(hashes.SHA3_512(), backend=default_backend())
    digest.update(data)
    return digest.finalize()


def validate_kdf(kdf: KdfParams) -> None:
    for label, value in (("time cost", kdf.t_cost), ("memory cost", kdf.m_cost_kib),
                         ("parallelism", kdf.parallelism), ("output length", kdf.hash_len)):
        if not isinstance(value, int) or value <= 0:
            raise InvalidParameters(f"Argon2 {label} must be a positive integer, got {value!r}")
    for label, value, limit in (("time cost", kdf.t_cost, MAX_T_COST),
                                ("memory cost", kdf.m_cost_kib, MAX_M_COST_KiB),
                                ("parallelism", kdf.parallelism, MAX_PARALLELISM)):
        if value > limit:
            raise InvalidParameters(f"Argon2 {label} {value} exceeds the limit of {limit}")
    if kdf.m_cost_kib < 8 * kdf.parallelism:
        raise InvalidParameters("Argon2 memory cost must be at least 8 KiB per lane")
    if len(kdf.salt) < MIN_SALT_LEN:
        raise InvalidParameters(f"KDF salt must be at least {MIN_SALT_LEN} bytes")
    if kdf.kdf_type not in ARGON2_TYPES:
        raise InvalidParameters(f"Unknown Argon2 type tag {kdf.kdf_type!r}")


def derive_key(password: str | ProtectedValue, kdf: KdfParams) -> bytes:
    """key = Argon2(SHA3-512(password)) with the vault's parameters"""
    validate_kdf(kdf)
    secret = password.reveal_bytes() if isinstance(password, ProtectedValue) else password.encode("utf-8")
    prehash = sha3_512_bytes(secret)
    try:
        return hash_secret_raw(
            secret=prehash,
            salt=kdf.salt,
            time_cost=kdf.t_cost,
            memory_cost=kdf.m_cost_kib,
            parallelism=kdf.parallelism,
            hash_len=kdf.hash_len,
            type=ARGON2_TYPES[kdf.kdf_type],
        )
    except HashingError as e:
        raise InvalidParameters(f"Argon2 rejected the KDF parameters: {e}") from e


class Credentials:
    """Master password plus the keys derived from it, for one command's lifetime.

    Keys are cached per KdfParams so a local and a remote container sharing
    parameters only pay for one derivation.
    """

    def __init__(self, password: str | ProtectedValue) -> None:
        if isinstance(password, str):
            password = ProtectedValue.from_string(password)
        if not len(password):
            raise InvalidParameters("Master password must not be empty")
        self._password = password
        self._keys: Dict[KdfParams, bytearray] = {}

    def key_for(self, kdf: KdfParams) -> bytearray:
        """Derived key for `kdf`. The returned buffer is the cached one and is zeroed by wipe()."""
        cached = self._keys.get(kdf)
        if cached is None:
            logger.debug("deriving key (t=%d, m=%d KiB, p=%d)", kdf.t_cost, kdf.m_cost_kib, kdf.parallelism)
            cached = bytearray(derive_key(self._password, kdf))
            self._keys[kdf] = cached
        return cached

    def wipe(self) -> None:
        for key in self._keys.values():
            for i in range(len(key)):
                key[i] = 0
        self._keys.clear()
        self._password.wipe()

    def __enter__(self) -> "Credentials":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return "Credentials(***)"
