"""Loads the long-term server state and persists it on first run."""
import inspect
import logging
import os
from pathlib import Path
from typing import Callable, Optional

from opaque_engine import Server

from .config import StateBytes, StateCallbacks, StateFile, StateSource
from .errors import ConfigurationError

logger = logging.getLogger(__name__)


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


def read_state_file(path: Path) -> Optional[bytes]:
    """A missing file means "no state yet"; any other I/O error propagates."""
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def write_state_file(path: Path, state: bytes):
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(state)


async def load_state(source: StateSource) -> Optional[bytes]:
    if isinstance(source, StateBytes):
        return source.state
    if isinstance(source, StateCallbacks):
        state = await _maybe_await(source.get_state())
        return bytes(state) if state is not None else None
    if isinstance(source, StateFile):
        return read_state_file(source.path)
    raise ConfigurationError("No state was specified!")


async def save_state(source: StateSource, state: bytes):
    """Writes a freshly generated state back through the channel it was requested from."""
    if isinstance(source, StateCallbacks):
        await _maybe_await(source.set_state(state))
    elif isinstance(source, StateFile):
        write_state_file(source.path, state)
        logger.info("wrote new server state to %s", source.path)


async def open_engine(source: StateSource, factory: Callable[..., Server] = Server) -> Server:
    """Builds the engine from the configured state, generating and saving one if absent."""
    state = await load_state(source)
    if state is not None:
        logger.info("loaded existing server state (%s)", type(source).__name__)
        return factory(state)

    engine = factory()
    logger.info("no server state found, generated a new one")
    try:
        await save_state(source, engine.get_state())
    except BaseException:
        engine.free()
        raise
    return engine
