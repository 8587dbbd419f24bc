"""Client half of the exchange, used by app_client.py and the test-suite."""
import hmac
from secrets import token_bytes
from typing import NamedTuple, Union

from . import ake, group
from .envelope import masking_key, mask, randomized_password, recover, store
from .errors import MessageError, VerificationError
from .server import CREDENTIAL_RESPONSE_LEN, KE2_LEN, REGISTRATION_RESPONSE_LEN

Password = Union[str, bytes]


class ClientRegistrationResult(NamedTuple):
    record: bytes
    export_key: bytes
    server_public_key: bytes


class ClientLoginResult(NamedTuple):
    message: bytes
    session_key: bytes
    export_key: bytes
    server_public_key: bytes


def _password_bytes(password: Password) -> bytes:
    return password.encode("utf-8") if isinstance(password, str) else bytes(password)


def _oprf_output(password: bytes, blind: int, evaluated: bytes) -> bytes:
    return group.finalize(password, group.unblind(blind, group.deserialize(evaluated)))


class ClientRegistration:
    def __init__(self, password: Password):
        self._password = _password_bytes(password)
        self._blind, blinded = group.blind(self._password)
        self.request = group.serialize(blinded)

    def finish(self, response: bytes) -> ClientRegistrationResult:
        response = bytes(response)
        if len(response) != REGISTRATION_RESPONSE_LEN:
            raise MessageError("bad registration response length")
        evaluated, server_pk = response[:group.ELEMENT_LEN], response[group.ELEMENT_LEN:]
        rpwd = randomized_password(_oprf_output(self._password, self._blind, evaluated))
        envelope, client_pk, export_key = store(rpwd, server_pk)
        record = client_pk + masking_key(rpwd) + envelope
        return ClientRegistrationResult(record, export_key, server_pk)


class ClientLogin:
    def __init__(self, password: Password):
        self._password = _password_bytes(password)
        self._blind, blinded = group.blind(self._password)
        self._eph_sk, eph_pk = ake.generate_keypair()
        self.request = group.serialize(blinded) + token_bytes(ake.NONCE_LEN) + eph_pk

    def finish(self, response: bytes) -> ClientLoginResult:
        """Raises VerificationError on a wrong password or a forged server response."""
        ke2 = bytes(response)
        if len(ke2) != KE2_LEN:
            raise MessageError("bad login response length")
        credential_response = ke2[:CREDENTIAL_RESPONSE_LEN]
        rest = ke2[CREDENTIAL_RESPONSE_LEN:]
        server_nonce = rest[:ake.NONCE_LEN]
        server_eph_pk = rest[ake.NONCE_LEN:ake.NONCE_LEN + ake.KEY_LEN]
        server_tag = rest[ake.NONCE_LEN + ake.KEY_LEN:]

        evaluated = credential_response[:group.ELEMENT_LEN]
        masking_nonce = credential_response[group.ELEMENT_LEN:group.ELEMENT_LEN + ake.NONCE_LEN]
        masked = credential_response[group.ELEMENT_LEN + ake.NONCE_LEN:]

        rpwd = randomized_password(_oprf_output(self._password, self._blind, evaluated))
        unmasked = mask(masking_key(rpwd), masking_nonce, masked)
        server_pk, envelope = unmasked[:ake.KEY_LEN], unmasked[ake.KEY_LEN:]
        client_sk, client_pk, export_key = recover(rpwd, server_pk, envelope)

        transcript = ake.preamble(client_pk, self.request, server_pk,
                                  credential_response, server_nonce, server_eph_pk)
        ikm = (ake.dh(self._eph_sk, server_eph_pk)
               + ake.dh(self._eph_sk, server_pk)
               + ake.dh(client_sk, server_eph_pk))
        km2, km3, session_key = ake.derive_keys(ikm, transcript)
        if not hmac.compare_digest(ake.server_mac(km2, transcript), server_tag):
            raise VerificationError("server authentication failed")

        message = ake.client_mac(km3, transcript, server_tag)
        return ClientLoginResult(message, session_key, export_key, server_pk)


def start_registration(password: Password) -> ClientRegistration:
    return ClientRegistration(password)


def start_login(password: Password) -> ClientLogin:
    return ClientLogin(password)
