"""Server-side sessions and the login-state binder that lives inside them.

The client only ever holds a random session id cookie; session data stays in
process memory. Login state must never leave the session, so a signed
client-side cookie session is not an option here.
"""
import logging
import secrets
import threading
import time
from typing import Any, Dict, Optional

from fastapi import Request, Response

from .config import session_ttl_minutes
from .errors import ConfigurationError, InvalidSessionStateError

logger = logging.getLogger(__name__)

STATE_KEY = "opaque-apake::state"
COOKIE_NAME = "sessionId"


class Session:
    def __init__(self, sid: str, ttl: float):
        self.id = sid
        self.ttl = ttl
        self.expires_at = time.monotonic() + ttl
        self._data: Dict[str, Any] = {}

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def touch(self):
        self.expires_at = time.monotonic() + self.ttl

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        if value is None:
            self._data.pop(key, None)
        else:
            self._data[key] = value

    def pop(self, key: str, default=None):
        # dict.pop is a single step under the GIL: two readers cannot both get the value
        return self._data.pop(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class MemorySessionStore:
    """In-process session storage with an idle timeout."""

    def __init__(self, ttl_seconds: Optional[float] = None, cookie_name: str = COOKIE_NAME,
                 cookie_secure: bool = True):
        self.ttl = ttl_seconds if ttl_seconds is not None else session_ttl_minutes() * 60
        self.cookie_name = cookie_name
        self.cookie_secure = cookie_secure
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        # expired sessions are swept on create, at most once per sweep interval
        self.sweep_interval = min(self.ttl, 60.0)
        self._next_sweep = time.monotonic() + self.sweep_interval

    def __len__(self):
        return len(self._sessions)

    def create(self) -> Session:
        session = Session(secrets.token_urlsafe(32), self.ttl)
        with self._lock:
            if time.monotonic() >= self._next_sweep:
                self._sweep()
            self._sessions[session.id] = session
        return session

    def get(self, sid: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(sid)
            if session is None:
                return None
            if session.expired:
                del self._sessions[sid]
                logger.debug("session expired")
                return None
        session.touch()
        return session

    def destroy(self, sid: str):
        with self._lock:
            self._sessions.pop(sid, None)

    def _sweep(self) -> int:
        dead = [sid for sid, s in self._sessions.items() if s.expired]
        for sid in dead:
            del self._sessions[sid]
        self._next_sweep = time.monotonic() + self.sweep_interval
        if dead:
            logger.debug("purged %d expired sessions", len(dead))
        return len(dead)

    def purge_expired(self) -> int:
        with self._lock:
            return self._sweep()


def use_sessions(app, store: Optional[MemorySessionStore] = None) -> MemorySessionStore:
    """Installs a session store on the app; OpaqueApake refuses to start without one."""
    app.state.session_store = store or MemorySessionStore()
    return app.state.session_store


def get_session(request: Request, response: Response) -> Session:
    cached = getattr(request.state, "session", None)
    if cached is not None:
        return cached

    store = getattr(request.app.state, "session_store", None)
    if store is None:
        raise ConfigurationError("no session store installed, call use_sessions(app)")

    sid = request.cookies.get(store.cookie_name)
    session = store.get(sid) if sid else None
    if session is None:
        session = store.create()
        response.set_cookie(store.cookie_name, session.id, max_age=int(store.ttl),
                            httponly=True, secure=store.cookie_secure, samesite="lax")
    request.state.session = session
    return session


class SessionStateBinder:
    """Carries the ephemeral login state between login start and finish.

    ``take`` reads and clears in one step, so a finish message can be
    processed at most once per ``put`` whatever the engine would accept.
    Two concurrent requests on one session race: the last ``put`` wins.
    """

    def __init__(self, session: Session, key: str = STATE_KEY):
        self._session = session
        self._key = key

    @property
    def pending(self) -> bool:
        return self._key in self._session

    def put(self, state: bytes):
        self._session.set(self._key, bytes(state))

    def take(self) -> bytes:
        state = self._session.pop(self._key, None)
        if not state:
            raise InvalidSessionStateError("Invalid state")
        return state
