import threading

import pytest

from opaque_engine import Server, start_login
from apake import EngineHandle, EngineUnavailableError

from conftest import TEST_USERNAME, TEST_PASSWORD


def test_ptr_goes_to_zero_once(material):
    handle = EngineHandle(Server(material.state))
    assert handle.ptr != 0
    assert handle.alive

    handle.free()
    assert handle.ptr == 0
    assert not handle.alive

    # second free is a no-op, the engine is not freed twice
    handle.free()
    assert handle.ptr == 0


def test_engine_is_released(material):
    engine = Server(material.state)
    handle = EngineHandle(engine)
    handle.free()
    assert engine.freed


def test_operations_after_free_raise(material):
    handle = EngineHandle(Server(material.state))
    request = start_login(TEST_PASSWORD).request
    handle.free()

    with pytest.raises(EngineUnavailableError):
        handle.get_state()
    with pytest.raises(EngineUnavailableError):
        handle.start_registration(TEST_USERNAME, b"")
    with pytest.raises(EngineUnavailableError):
        handle.finish_registration(material.credentials)
    with pytest.raises(EngineUnavailableError):
        handle.start_login(TEST_USERNAME, request, material.credentials)
    with pytest.raises(EngineUnavailableError):
        handle.finish_login(b"", b"")


def test_handles_get_distinct_ptrs():
    a, b = EngineHandle(Server()), EngineHandle(Server())
    assert a.ptr != b.ptr


class SlowEngine:
    """Blocks inside get_state until released."""

    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()
        self.events = []

    def get_state(self):
        self.entered.set()
        self.release.wait(5)
        self.events.append("get_state")
        return b"state"

    def free(self):
        self.events.append("free")


def test_free_waits_for_running_operations():
    engine = SlowEngine()
    handle = EngineHandle(engine)
    results = []

    worker = threading.Thread(target=lambda: results.append(handle.get_state()))
    worker.start()
    assert engine.entered.wait(5)

    freer = threading.Thread(target=handle.free)
    freer.start()
    freer.join(0.1)
    # no new operations once free has started, the running one still completes
    assert freer.is_alive()
    assert handle.ptr == 0
    with pytest.raises(EngineUnavailableError):
        handle.get_state()

    engine.release.set()
    worker.join(5)
    freer.join(5)
    assert results == [b"state"]
    assert engine.events == ["get_state", "free"]
