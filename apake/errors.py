class ApakeError(Exception):
    """Base class for integration-layer failures."""


class ConfigurationError(ApakeError):
    """The server was configured in a way that must prevent it from starting."""


class EngineUnavailableError(ApakeError):
    """A protocol operation was attempted without a live engine."""


class InvalidSessionStateError(ApakeError):
    """No pending login attempt for this session (never started, expired or already used)."""
