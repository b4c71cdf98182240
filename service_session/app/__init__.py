"""
Secure session package: stateless authentication cookies with key rotation.

This package issues, validates and periodically re-validates an encrypted
session cookie without any server-side session store:

- app.keys: Config values, the atomically published config store,
  persistence backends and the background key-rotation scheduler.
- app.codec: Multi-generation Fernet token codec, payload serializers and
  form (request) tokens.
- app.session: Session record, cookie carrier and the validity state machine.
- app.auth: The SecureAuth facade applications call.
- app.middleware: FastAPI dependencies for protected routes.
- app.main: Service entrypoint that wires lifecycle and routes.

Design notes:
- Module import must not perform IO. The rotation scheduler only talks to
  persistence once started.
- Use the shared/ utilities for logging, metrics, config and errors.
"""

from .auth import SecureAuth
from .keys.config import ConfigOverrides, KeyPair, KeyRing, SessionConfig, initialize_config
from .keys.persistence import ConfigDB, InMemoryConfigDB, RedisConfigDB
from .session.carrier import CookieCarrier
from .session.state_machine import AuthResult, SessionState

__all__ = [
    "SecureAuth",
    "ConfigOverrides",
    "KeyPair",
    "KeyRing",
    "SessionConfig",
    "initialize_config",
    "ConfigDB",
    "InMemoryConfigDB",
    "RedisConfigDB",
    "CookieCarrier",
    "AuthResult",
    "SessionState",
]
