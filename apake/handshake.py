import logging
from typing import Optional

from .errors import ConfigurationError
from .handle import EngineHandle
from .session import SessionStateBinder

logger = logging.getLogger(__name__)


class HandshakeCoordinator:
    """The four protocol steps as seen by one request.

    Registration is stateless and works without a binder. Login start stores
    the engine's ephemeral state in the session; login finish consumes it
    before calling the engine.
    """

    def __init__(self, engine: EngineHandle, binder: Optional[SessionStateBinder] = None):
        self.engine = engine
        self.binder = binder

    def _session_binder(self) -> SessionStateBinder:
        if self.binder is None:
            raise ConfigurationError("login needs a session, use the get_handshake dependency")
        return self.binder

    def start_registration(self, identifier: str, request: bytes) -> bytes:
        return self.engine.start_registration(identifier, request)

    def finish_registration(self, record: bytes) -> bytes:
        return self.engine.finish_registration(record)

    def start_login(self, identifier: str, request: bytes, record: Optional[bytes] = None) -> bytes:
        binder = self._session_binder()
        # An unknown identifier (record is None) goes through the same path.
        response, state = self.engine.start_login(identifier, request, record)
        binder.put(state)
        logger.debug("login attempt started")
        return response

    def finish_login(self, finish: bytes) -> bytes:
        state = self._session_binder().take()
        return self.engine.finish_login(state, finish)
