import itertools
import logging
import threading
from contextlib import contextmanager
from typing import Optional

from opaque_engine import LoginStart, Server

from .errors import EngineUnavailableError

logger = logging.getLogger(__name__)

_handles = itertools.count(1)


class EngineHandle:
    """Owns the single engine instance of a running server.

    ``ptr`` is non-zero while the engine is live and drops to 0 when it is
    freed. Freed is terminal: every later operation raises
    EngineUnavailableError. ``free`` waits for operations already running
    on the engine before releasing it.
    """

    def __init__(self, engine: Server):
        self._engine: Optional[Server] = engine
        self._cond = threading.Condition()
        self._active = 0
        self.ptr = next(_handles)

    @property
    def alive(self) -> bool:
        return self._engine is not None

    @contextmanager
    def _live(self):
        with self._cond:
            engine = self._engine
            if engine is None:
                raise EngineUnavailableError("the OPAQUE engine has been freed")
            self._active += 1
        try:
            yield engine
        finally:
            with self._cond:
                self._active -= 1
                self._cond.notify_all()

    def start_registration(self, identifier, request: bytes) -> bytes:
        with self._live() as engine:
            return engine.start_registration(identifier, request)

    def finish_registration(self, record: bytes) -> bytes:
        with self._live() as engine:
            return engine.finish_registration(record)

    def start_login(self, identifier, request: bytes, record: Optional[bytes] = None) -> LoginStart:
        with self._live() as engine:
            return engine.start_login(identifier, request, record)

    def finish_login(self, state: bytes, finish: bytes) -> bytes:
        with self._live() as engine:
            return engine.finish_login(state, finish)

    def get_state(self) -> bytes:
        with self._live() as engine:
            return engine.get_state()

    def free(self):
        with self._cond:
            engine, self._engine = self._engine, None
            if engine is None:
                logger.debug("engine handle already freed")
                return
            self.ptr = 0
            if self._active:
                logger.info("waiting for %d engine operations before free", self._active)
            self._cond.wait_for(lambda: self._active == 0)
        engine.free()
        logger.info("OPAQUE engine freed")
