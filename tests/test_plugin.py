import asyncio
import base64
import time

import pytest
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient
from pydantic import BaseModel

from opaque_engine import start_login, start_registration, VerificationError
from apake import (ConfigurationError, EngineHandle, EngineUnavailableError, HandshakeCoordinator,
                   InvalidSessionStateError, MemorySessionStore, OpaqueApake, OpaqueApakeCore,
                   get_engine, get_handshake, get_registration, use_sessions)

from conftest import TEST_USERNAME, TEST_PASSWORD


def _enc(data: bytes) -> str:
    return base64.b64encode(data).decode()


def _dec(data: str) -> bytes:
    return base64.b64decode(data)


class Init(BaseModel):
    identifier: str
    request: str


class Record(BaseModel):
    record: str


class Finish(BaseModel):
    finish: str


def make_app(plugin, credentials=None, store=None) -> FastAPI:
    app = FastAPI(lifespan=plugin.lifespan)
    use_sessions(app, store or MemorySessionStore(cookie_secure=False))

    @app.exception_handler(InvalidSessionStateError)
    def invalid_state(request, exc):
        return JSONResponse({"error": "invalid_state"}, status_code=409)

    @app.exception_handler(VerificationError)
    def verification(request, exc):
        return JSONResponse({"error": "verification"}, status_code=401)

    @app.post("/register/init")
    def register_init(body: Init, opaque: HandshakeCoordinator = Depends(get_registration)):
        return {"response": _enc(opaque.start_registration(body.identifier, _dec(body.request)))}

    @app.post("/register/finish")
    def register_finish(body: Record, opaque: HandshakeCoordinator = Depends(get_registration)):
        return {"credentials": _enc(opaque.finish_registration(_dec(body.record)))}

    @app.post("/login/init")
    def login_init(body: Init, opaque: HandshakeCoordinator = Depends(get_handshake)):
        record = credentials if body.identifier == TEST_USERNAME else None
        return {"response": _enc(opaque.start_login(body.identifier, _dec(body.request), record))}

    @app.post("/login/finish")
    def login_finish(body: Finish, opaque: HandshakeCoordinator = Depends(get_handshake)):
        return {"sessionKey": _enc(opaque.finish_login(_dec(body.finish)))}

    @app.get("/state")
    def state(engine: EngineHandle = Depends(get_engine)):
        return {"state": _enc(engine.get_state())}

    return app


@pytest.fixture
def client(material):
    app = make_app(OpaqueApake(state=material.state), credentials=material.credentials)
    with TestClient(app) as c:
        yield c


def _login_init(client, login, identifier=TEST_USERNAME):
    res = client.post("/login/init", json={"identifier": identifier, "request": _enc(login.request)})
    assert res.status_code == 200
    return _dec(res.json()["response"])


def _login_finish(client, message):
    return client.post("/login/finish", json={"finish": _enc(message)})


# --- lifecycle ---

def test_starts_with_sessions():
    app = make_app(OpaqueApake(state=None))
    with TestClient(app):
        assert app.state.opaque.alive


def test_core_does_not_need_sessions():
    app = FastAPI(lifespan=OpaqueApakeCore(state=None).lifespan)
    with TestClient(app):
        assert app.state.opaque.alive


def test_requires_session_store():
    app = FastAPI()
    with pytest.raises(ConfigurationError):
        asyncio.run(OpaqueApake(state=None).startup(app))


def test_requires_state():
    app = FastAPI()
    use_sessions(app)
    with pytest.raises(ConfigurationError):
        asyncio.run(OpaqueApake().startup(app))


def test_failed_startup_does_not_serve():
    app = make_app(OpaqueApake())
    with pytest.raises(ConfigurationError):
        with TestClient(app):
            pass


def test_frees_engine_on_shutdown():
    app = make_app(OpaqueApake(state=None))
    with TestClient(app):
        handle = app.state.opaque
        assert handle.ptr != 0
    assert handle.ptr == 0
    with pytest.raises(EngineUnavailableError):
        handle.get_state()


def test_calls_provider_to_load_state():
    loads, saved = [], []

    def get_state():
        loads.append(1)

    app = make_app(OpaqueApake(get_state=get_state, set_state=saved.append))
    with TestClient(app):
        assert len(loads) == 1
        assert saved == [app.state.opaque.get_state()]


def test_does_not_save_provided_state(material):
    saved = []
    app = make_app(OpaqueApake(get_state=lambda: material.state, set_state=saved.append))
    with TestClient(app):
        assert saved == []
        assert app.state.opaque.get_state() == material.state


def test_saves_and_loads_state_file(tmp_path):
    target = tmp_path / "opaque-apake-test.bin"
    app = make_app(OpaqueApake(state_file=target))
    with TestClient(app):
        first = app.state.opaque.get_state()
    assert target.read_bytes() == first

    app = make_app(OpaqueApake(state_file=str(target)))
    with TestClient(app) as c:
        assert _dec(c.get("/state").json()["state"]) == first


# --- protocol execution ---

def test_registers(client, material):
    register = start_registration("test")
    res1 = client.post("/register/init", json={"identifier": "test", "request": _enc(register.request)})
    assert res1.status_code == 200

    result = register.finish(_dec(res1.json()["response"]))
    res2 = client.post("/register/finish", json={"record": _enc(result.record)})
    assert res2.status_code == 200
    assert _dec(res2.json()["credentials"]) == result.record
    assert result.server_public_key == material.registration.server_public_key


def test_logs_in(client, material):
    login = start_login(TEST_PASSWORD)
    result = login.finish(_login_init(client, login))

    res = _login_finish(client, result.message)
    assert res.status_code == 200
    assert _dec(res.json()["sessionKey"]) == result.session_key
    assert result.export_key == material.registration.export_key
    assert result.server_public_key == material.registration.server_public_key


def test_state_is_cleared_after_login(client):
    login = start_login(TEST_PASSWORD)
    result = login.finish(_login_init(client, login))

    assert _login_finish(client, result.message).status_code == 200
    replay = _login_finish(client, result.message)
    assert replay.status_code == 409
    assert replay.json() == {"error": "invalid_state"}


def test_finish_without_start(client):
    res = _login_finish(client, b"\x00" * 32)
    assert res.status_code == 409


def test_state_is_bound_to_the_session(client):
    login = start_login(TEST_PASSWORD)
    result = login.finish(_login_init(client, login))

    client.cookies.clear()
    assert _login_finish(client, result.message).status_code == 409


def test_wrong_password(client):
    login = start_login("i bark at strangers")
    response = _login_init(client, login)
    with pytest.raises(VerificationError):
        login.finish(response)


def test_bad_finish_is_a_verification_failure_and_consumes_state(client):
    login = start_login(TEST_PASSWORD)
    _login_init(client, login)

    res = _login_finish(client, b"\x01" * 32)
    assert res.status_code == 401
    assert res.json() == {"error": "verification"}
    assert _login_finish(client, b"\x01" * 32).status_code == 409


def test_restarting_login_keeps_only_latest_attempt(client):
    first = start_login(TEST_PASSWORD)
    first_result = first.finish(_login_init(client, first))
    second = start_login(TEST_PASSWORD)
    second_result = second.finish(_login_init(client, second))

    res = _login_finish(client, second_result.message)
    assert res.status_code == 200
    assert _dec(res.json()["sessionKey"]) == second_result.session_key
    # the first attempt was overwritten and the second one consumed
    assert _login_finish(client, first_result.message).status_code == 409


def test_overwritten_attempt_cannot_finish(client):
    first = start_login(TEST_PASSWORD)
    first_result = first.finish(_login_init(client, first))
    second = start_login(TEST_PASSWORD)
    _login_init(client, second)

    assert _login_finish(client, first_result.message).status_code == 401


def test_unknown_identifier_still_answers(client):
    login = start_login(TEST_PASSWORD)
    response = _login_init(client, login, identifier="nobody")
    with pytest.raises(VerificationError):
        login.finish(response)


def test_registration_does_not_create_sessions(client, material):
    store = client.app.state.session_store
    register = start_registration("test")
    res = client.post("/register/init", json={"identifier": "test", "request": _enc(register.request)})
    assert res.status_code == 200
    assert "set-cookie" not in res.headers
    assert len(store) == 0


def test_expired_sessions_do_not_pile_up(material):
    store = MemorySessionStore(ttl_seconds=0.01, cookie_secure=False)
    app = make_app(OpaqueApake(state=material.state), credentials=material.credentials, store=store)
    with TestClient(app) as c:
        for _ in range(50):
            c.cookies.clear()
            _login_init(c, start_login(TEST_PASSWORD), identifier="nobody")
        time.sleep(0.05)
        c.cookies.clear()
        _login_init(c, start_login(TEST_PASSWORD), identifier="nobody")
        assert len(store) <= 1
