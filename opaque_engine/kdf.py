import hashlib
import hmac

from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

HASH_LEN = 32

# Argon2id, same cost as the rest of the project uses for password keys.
ARGON_PARAMS = dict(time_cost=3, memory_cost=64_000, parallelism=2,
                    hash_len=HASH_LEN, type=Type.ID)
STRETCH_SALT = bytes(16)


def stretch(data: bytes) -> bytes:
    """Key stretching applied to the OPRF output before deriving the envelope keys."""
    return hash_secret_raw(data, STRETCH_SALT, **ARGON_PARAMS)


def digest(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def extract(salt: bytes, ikm: bytes) -> bytes:
    return hmac.new(salt, ikm, hashlib.sha256).digest()


def expand(prk: bytes, info: bytes, length: int = HASH_LEN) -> bytes:
    return HKDFExpand(algorithm=hashes.SHA256(), length=length, info=info).derive(prk)


def mac(key: bytes, msg: bytes) -> bytes:
    return hmac.new(key, msg, hashlib.sha256).digest()


def lp(data: bytes) -> bytes:
    """Two-byte big endian length prefix."""
    return len(data).to_bytes(2, "big") + data


def xor(a: bytes, b: bytes) -> bytes:
    return bytes(x ^ y for x, y in zip(a, b))
