"""FastAPI integration: lifespan hooks and request dependencies.

    opaque = OpaqueApake(state_file="server-state.bin")
    app = FastAPI(lifespan=opaque.lifespan)
    use_sessions(app)

    @app.post("/login/finish")
    def login_finish(body: Finish, opaque: HandshakeCoordinator = Depends(get_handshake)):
        ...
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, Request

from .config import StateSource, state_source
from .errors import ConfigurationError, EngineUnavailableError
from .handle import EngineHandle
from .handshake import HandshakeCoordinator
from .session import Session, SessionStateBinder, get_session
from .store import open_engine

logger = logging.getLogger(__name__)


class OpaqueApakeCore:
    """Resolves the server state on startup and frees the engine on shutdown."""

    requires_session = False

    def __init__(self, source: Optional[StateSource] = None, **options):
        self._source = source
        self._options = options

    def _resolve_source(self) -> StateSource:
        if self._source is not None:
            if self._options:
                raise ConfigurationError("pass either a state source or state options, not both")
            return self._source
        return state_source(**self._options)

    async def startup(self, app) -> EngineHandle:
        source = self._resolve_source()
        if self.requires_session and getattr(app.state, "session_store", None) is None:
            raise ConfigurationError("OPAQUE login needs a session store, call use_sessions(app)")
        handle = EngineHandle(await open_engine(source))
        app.state.opaque = handle
        logger.info("OPAQUE engine ready")
        return handle

    def shutdown(self, app):
        handle = getattr(app.state, "opaque", None)
        if handle is not None:
            handle.free()

    @asynccontextmanager
    async def lifespan(self, app):
        await self.startup(app)
        try:
            yield
        finally:
            self.shutdown(app)


class OpaqueApake(OpaqueApakeCore):
    """Core lifecycle plus the request-scoped protocol operations."""

    requires_session = True


def get_engine(request: Request) -> EngineHandle:
    handle = getattr(request.app.state, "opaque", None)
    if handle is None:
        raise EngineUnavailableError("the OPAQUE engine is not running")
    return handle


def get_registration(engine: EngineHandle = Depends(get_engine)) -> HandshakeCoordinator:
    """Registration steps only; no session is created for the request."""
    return HandshakeCoordinator(engine)


def get_handshake(engine: EngineHandle = Depends(get_engine),
                  session: Session = Depends(get_session)) -> HandshakeCoordinator:
    return HandshakeCoordinator(engine, SessionStateBinder(session))
