class EngineError(Exception):
    """Base class for everything raised by the engine."""


class MessageError(EngineError, ValueError):
    """Input bytes have the wrong length or do not decode."""


class VerificationError(EngineError):
    """A protocol message failed authentication (wrong password or tampering)."""


class FreedError(EngineError):
    """The server instance was freed and its key material is gone."""
