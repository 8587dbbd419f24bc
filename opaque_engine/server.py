import hmac
from secrets import token_bytes
from typing import NamedTuple, Optional, Union

from . import ake, group
from .envelope import ENVELOPE_LEN, mask
from .errors import FreedError, MessageError, VerificationError
from .kdf import HASH_LEN, expand, lp

SEED_LEN = 32
STATE_LEN = SEED_LEN + ake.KEY_LEN

REGISTRATION_REQUEST_LEN = group.ELEMENT_LEN
REGISTRATION_RESPONSE_LEN = group.ELEMENT_LEN + ake.KEY_LEN
RECORD_LEN = ake.KEY_LEN + HASH_LEN + ENVELOPE_LEN
KE1_LEN = group.ELEMENT_LEN + ake.NONCE_LEN + ake.KEY_LEN
CREDENTIAL_RESPONSE_LEN = group.ELEMENT_LEN + ake.NONCE_LEN + ake.KEY_LEN + ENVELOPE_LEN
KE2_LEN = CREDENTIAL_RESPONSE_LEN + ake.NONCE_LEN + ake.KEY_LEN + HASH_LEN
KE3_LEN = HASH_LEN
LOGIN_STATE_LEN = HASH_LEN + HASH_LEN

Identifier = Union[str, bytes]


class LoginStart(NamedTuple):
    response: bytes
    state: bytes


def _identifier_bytes(identifier: Identifier) -> bytes:
    if isinstance(identifier, str):
        return identifier.encode("utf-8")
    return bytes(identifier)


def _check_len(name: str, data, length: int) -> bytes:
    data = bytes(data)
    if len(data) != length:
        raise MessageError(f"{name} must be {length} bytes, got {len(data)}")
    return data


class Server:
    """Server side of the OPAQUE-style exchange.

    The long-term state (OPRF seed and static AKE key) is generated when
    ``state`` is None; ``get_state()`` returns it for persistence. Every
    other piece of protocol state is passed in and out explicitly, so one
    instance can serve concurrent requests.
    """

    def __init__(self, state: Optional[bytes] = None):
        if state is None:
            sk, _ = ake.generate_keypair()
            state = token_bytes(SEED_LEN) + sk
        self._state = bytearray(_check_len("server state", state, STATE_LEN))
        self._public_key = ake.public_key(self._private_key)
        self._freed = False

    @property
    def _seed(self) -> bytes:
        return bytes(self._state[:SEED_LEN])

    @property
    def _private_key(self) -> bytes:
        return bytes(self._state[SEED_LEN:])

    @property
    def freed(self) -> bool:
        return self._freed

    def _require_live(self):
        if self._freed:
            raise FreedError("server has been freed")

    def _oprf_key(self, identifier: bytes) -> int:
        return group.scalar_from_bytes(expand(self._seed, b"OprfKey" + lp(identifier), 48))

    def _fake_record(self, identifier: bytes):
        # Stable per identifier, so repeated lookups of an unknown account look alike.
        _, client_pk = ake.derive_keypair(expand(self._seed, b"FakeClientKey" + lp(identifier)))
        masking_key = expand(self._seed, b"FakeMaskingKey" + lp(identifier))
        envelope = expand(self._seed, b"FakeEnvelope" + lp(identifier), ENVELOPE_LEN)
        return client_pk, masking_key, envelope

    def start_registration(self, identifier: Identifier, request: bytes) -> bytes:
        self._require_live()
        request = _check_len("registration request", request, REGISTRATION_REQUEST_LEN)
        blinded = group.deserialize(request)
        evaluated = group.evaluate(self._oprf_key(_identifier_bytes(identifier)), blinded)
        return group.serialize(evaluated) + self._public_key

    def finish_registration(self, record: bytes) -> bytes:
        """Validates an upload and returns the credentials to store for the account."""
        self._require_live()
        return _check_len("registration record", record, RECORD_LEN)

    def start_login(self, identifier: Identifier, request: bytes, record: Optional[bytes] = None) -> LoginStart:
        self._require_live()
        ke1 = _check_len("login request", request, KE1_LEN)
        ident = _identifier_bytes(identifier)
        blinded = group.deserialize(ke1[:group.ELEMENT_LEN])
        client_eph_pk = ke1[group.ELEMENT_LEN + ake.NONCE_LEN:]

        if record is None:
            client_pk, masking_key, envelope = self._fake_record(ident)
        else:
            record = _check_len("credentials", record, RECORD_LEN)
            client_pk = record[:ake.KEY_LEN]
            masking_key = record[ake.KEY_LEN:ake.KEY_LEN + HASH_LEN]
            envelope = record[ake.KEY_LEN + HASH_LEN:]

        evaluated = group.serialize(group.evaluate(self._oprf_key(ident), blinded))
        masking_nonce = token_bytes(ake.NONCE_LEN)
        credential_response = evaluated + masking_nonce + mask(masking_key, masking_nonce, self._public_key + envelope)

        server_nonce = token_bytes(ake.NONCE_LEN)
        eph_sk, eph_pk = ake.generate_keypair()
        transcript = ake.preamble(client_pk, ke1, self._public_key,
                                  credential_response, server_nonce, eph_pk)
        ikm = (ake.dh(eph_sk, client_eph_pk)
               + ake.dh(self._private_key, client_eph_pk)
               + ake.dh(eph_sk, client_pk))
        km2, km3, session_key = ake.derive_keys(ikm, transcript)
        server_tag = ake.server_mac(km2, transcript)
        expected_client_tag = ake.client_mac(km3, transcript, server_tag)

        response = credential_response + server_nonce + eph_pk + server_tag
        return LoginStart(response=response, state=expected_client_tag + session_key)

    def finish_login(self, state: bytes, finish: bytes) -> bytes:
        """Checks the client's KE3 against the login state; returns the session key."""
        self._require_live()
        state = _check_len("login state", state, LOGIN_STATE_LEN)
        finish = _check_len("login finish message", finish, KE3_LEN)
        if not hmac.compare_digest(state[:HASH_LEN], finish):
            raise VerificationError("client authentication failed")
        return state[HASH_LEN:]

    def get_state(self) -> bytes:
        self._require_live()
        return bytes(self._state)

    def free(self):
        if self._freed:
            raise FreedError("server has already been freed")
        for i in range(len(self._state)):
            self._state[i] = 0
        self._freed = True
