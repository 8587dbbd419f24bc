"""OPAQUE aPAKE for FastAPI: server state lifecycle and login session binding."""
from .config import (StateBytes, StateFile, StateCallbacks, cookie_secure_from_env, state_source,
                     state_source_from_env)
from .errors import ApakeError, ConfigurationError, EngineUnavailableError, InvalidSessionStateError
from .handle import EngineHandle
from .handshake import HandshakeCoordinator
from .plugin import OpaqueApakeCore, OpaqueApake, get_engine, get_handshake, get_registration
from .session import MemorySessionStore, Session, SessionStateBinder, get_session, use_sessions
from .store import open_engine
