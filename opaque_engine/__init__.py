"""OPAQUE-style aPAKE engine: P-256 OPRF, Argon2id stretching, X25519 3DH."""
from .errors import EngineError, MessageError, VerificationError, FreedError
from .server import Server, LoginStart
from .client import start_registration, start_login, ClientRegistrationResult, ClientLoginResult
