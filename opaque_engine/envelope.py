"""Password envelope: binds the client's static key to the OPRF output."""
import hmac
from secrets import token_bytes
from typing import NamedTuple

from .ake import KEY_LEN, derive_keypair
from .errors import VerificationError
from .kdf import HASH_LEN, expand, extract, mac, stretch, xor

ENVELOPE_NONCE_LEN = 32
ENVELOPE_LEN = ENVELOPE_NONCE_LEN + HASH_LEN


class Recovered(NamedTuple):
    client_sk: bytes
    client_pk: bytes
    export_key: bytes


def randomized_password(oprf_output: bytes) -> bytes:
    return extract(b"", oprf_output + stretch(oprf_output))


def masking_key(rpwd: bytes) -> bytes:
    return expand(rpwd, b"MaskingKey")


def mask(key: bytes, nonce: bytes, data: bytes) -> bytes:
    pad = expand(key, nonce + b"CredentialResponsePad", len(data))
    return xor(pad, data)


def _keys(rpwd: bytes, nonce: bytes):
    auth_key = expand(rpwd, nonce + b"AuthKey")
    export_key = expand(rpwd, nonce + b"ExportKey")
    client_sk, client_pk = derive_keypair(expand(rpwd, nonce + b"PrivateKey", KEY_LEN))
    return auth_key, export_key, client_sk, client_pk


def store(rpwd: bytes, server_pk: bytes):
    """Returns ``(envelope, client_pk, export_key)`` for a fresh registration."""
    nonce = token_bytes(ENVELOPE_NONCE_LEN)
    auth_key, export_key, _, client_pk = _keys(rpwd, nonce)
    tag = mac(auth_key, nonce + server_pk + client_pk)
    return nonce + tag, client_pk, export_key


def recover(rpwd: bytes, server_pk: bytes, envelope: bytes) -> Recovered:
    nonce, tag = envelope[:ENVELOPE_NONCE_LEN], envelope[ENVELOPE_NONCE_LEN:]
    auth_key, export_key, client_sk, client_pk = _keys(rpwd, nonce)
    if not hmac.compare_digest(mac(auth_key, nonce + server_pk + client_pk), tag):
        raise VerificationError("envelope authentication failed")
    return Recovered(client_sk, client_pk, export_key)
