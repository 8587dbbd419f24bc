"""State source configuration.

Exactly one source is used per server: literal bytes, a file, or a pair of
load/save callbacks. ``state_source()`` resolves keyword options into one of
the three, ``state_source_from_env()`` does the same from the environment.
"""
import base64
import binascii
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

from dotenv import load_dotenv

from .errors import ConfigurationError

load_dotenv()

StateGetter = Callable[[], Union[Optional[bytes], Awaitable[Optional[bytes]]]]
StateSetter = Callable[[bytes], Union[None, Awaitable[None]]]

ENV_STATE_FILE = "OPAQUE_STATE_FILE"
ENV_STATE_B64 = "OPAQUE_STATE_B64"
ENV_SESSION_TTL = "SESSION_TTL_MIN"
ENV_COOKIE_SECURE = "SESSION_COOKIE_SECURE"


@dataclass(frozen=True)
class StateBytes:
    state: Optional[bytes]


@dataclass(frozen=True)
class StateFile:
    path: Path

    @classmethod
    def from_location(cls, location: Union[str, os.PathLike]) -> "StateFile":
        """Accepts a filesystem path or a ``file://`` URL."""
        if isinstance(location, str) and location.startswith("file:"):
            parsed = urlparse(location)
            if parsed.netloc not in ("", "localhost"):
                raise ConfigurationError(f"unsupported state file URL: {location}")
            return cls(Path(url2pathname(parsed.path)))
        return cls(Path(location))


@dataclass(frozen=True)
class StateCallbacks:
    get_state: StateGetter
    set_state: StateSetter


StateSource = Union[StateBytes, StateFile, StateCallbacks]

_UNSET = object()


def state_source(state=_UNSET, state_file=None, get_state=None, set_state=None) -> StateSource:
    given = [name for name, present in (
        ("state", state is not _UNSET),
        ("state_file", state_file is not None),
        ("get_state/set_state", get_state is not None or set_state is not None),
    ) if present]
    if not given:
        raise ConfigurationError("No state was specified!")
    if len(given) > 1:
        raise ConfigurationError(f"state sources are mutually exclusive, got {', '.join(given)}")

    if state is not _UNSET:
        return StateBytes(bytes(state) if state is not None else None)
    if state_file is not None:
        return StateFile.from_location(state_file)
    if get_state is None or set_state is None:
        raise ConfigurationError("get_state and set_state must be given together")
    return StateCallbacks(get_state, set_state)


def state_source_from_env() -> StateSource:
    state_file = os.getenv(ENV_STATE_FILE)
    state_b64 = os.getenv(ENV_STATE_B64)
    if state_file and state_b64:
        raise ConfigurationError(f"set only one of {ENV_STATE_FILE} and {ENV_STATE_B64}")
    if state_b64:
        try:
            return StateBytes(base64.b64decode(state_b64, validate=True))
        except binascii.Error as e:
            raise ConfigurationError(f"{ENV_STATE_B64} is not valid base64") from e
    if state_file:
        return StateFile.from_location(state_file)
    raise ConfigurationError(f"No state was specified! Set {ENV_STATE_FILE} or {ENV_STATE_B64}")


def session_ttl_minutes(default: int = 30) -> int:
    try:
        return int(os.getenv(ENV_SESSION_TTL, default))
    except ValueError:
        return default


def cookie_secure_from_env(default: bool = False) -> bool:
    """Whether the session cookie carries ``Secure``; turn it on behind HTTPS.

    Clients never send a ``Secure`` cookie over plain http, so login finish
    would always miss its session.
    """
    value = os.getenv(ENV_COOKIE_SECURE)
    if value is None or not value.strip():
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")
