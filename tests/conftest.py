import os
import sys
from typing import NamedTuple

import pytest

# Make the flat top-level packages importable without installing.
ROOT = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from opaque_engine import Server, start_registration, ClientRegistrationResult

TEST_USERNAME = "cyyynthia"
TEST_PASSWORD = "i meow at strangers ~^w^~"


class Material(NamedTuple):
    state: bytes
    registration: ClientRegistrationResult
    credentials: bytes


@pytest.fixture(scope="session")
def material() -> Material:
    srv = Server()
    state = srv.get_state()

    reg = start_registration(TEST_PASSWORD)
    registration = reg.finish(srv.start_registration(TEST_USERNAME, reg.request))
    credentials = srv.finish_registration(registration.record)
    srv.free()
    return Material(state, registration, credentials)
