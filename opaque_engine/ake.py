"""3DH key exchange over X25519 and its key schedule."""
from typing import Tuple

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey

from .errors import MessageError
from .kdf import digest, expand, extract, lp, mac

KEY_LEN = 32
NONCE_LEN = 32
CONTEXT = b"OPAQUE-apake-3DH-v1"


def generate_keypair() -> Tuple[bytes, bytes]:
    sk = X25519PrivateKey.generate()
    return sk.private_bytes_raw(), sk.public_key().public_bytes_raw()


def derive_keypair(seed: bytes) -> Tuple[bytes, bytes]:
    sk = X25519PrivateKey.from_private_bytes(seed)
    return sk.private_bytes_raw(), sk.public_key().public_bytes_raw()


def public_key(sk: bytes) -> bytes:
    return X25519PrivateKey.from_private_bytes(sk).public_key().public_bytes_raw()


def dh(sk: bytes, pk: bytes) -> bytes:
    if len(pk) != KEY_LEN:
        raise MessageError(f"public key must be {KEY_LEN} bytes")
    try:
        return X25519PrivateKey.from_private_bytes(sk).exchange(X25519PublicKey.from_public_bytes(pk))
    except ValueError as e:
        # low-order point, the shared secret would be all zeros
        raise MessageError("invalid public key") from e


def preamble(client_identity: bytes, ke1: bytes, server_identity: bytes,
             credential_response: bytes, server_nonce: bytes, server_eph_pk: bytes) -> bytes:
    """Transcript bound by both MACs and the session key.

    Identities default to the static public keys of each side.
    """
    return (b"OPAQUEv1-" + lp(CONTEXT) + lp(client_identity) + ke1 + lp(server_identity)
            + credential_response + server_nonce + server_eph_pk)


def derive_keys(ikm: bytes, transcript: bytes):
    """Returns ``(server_mac_key, client_mac_key, session_key)``."""
    prk = extract(b"", ikm)
    h = digest(transcript)
    handshake_secret = expand(prk, b"HandshakeSecret" + h)
    session_key = expand(prk, b"SessionKey" + h)
    return expand(handshake_secret, b"ServerMAC"), expand(handshake_secret, b"ClientMAC"), session_key


def server_mac(km2: bytes, transcript: bytes) -> bytes:
    return mac(km2, digest(transcript))


def client_mac(km3: bytes, transcript: bytes, server_tag: bytes) -> bytes:
    return mac(km3, digest(transcript + server_tag))
