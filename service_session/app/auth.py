"""
SecureAuth facade.

Applications configure one ``SecureAuth`` per process and call it from their
request handlers:

- ``authenticate()`` returns the session payload, or None after arranging a
  redirect to the login page (unless ``optional=True``).
- ``login()`` stores a new payload in a fresh session cookie and redirects
  back to the page that required authentication.
- ``update()`` replaces the payload in the current cookie.
- ``challenge()`` sends the client to the login page.
- ``logout()`` deletes the cookie.

An encrypted connection (https) is required to log in. With a ``ConfigDB``
the facade also owns the key rotation scheduler; call ``start()`` and
``stop()`` from the application's lifecycle hooks.
"""

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from starlette.requests import Request

from shared.config import BaseConfig
from shared.errors import NoSecureTransportError, TokenEncodeError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .codec.request_token import RequestTokenCodec
from .codec.serializers import JSONPayloadSerializer, PayloadSerializer
from .keys.config import ConfigOverrides, SessionConfig, initialize_config, utcnow
from .keys.persistence import ConfigDB, RedisConfigDB
from .keys.rotation import KeyRotationScheduler
from .keys.store import ConfigStore
from .session.carrier import CookieCarrier
from .session.record import SESSION_TOKEN_NAME, SessionRecord
from .session.state_machine import AuthResult, SessionStateMachine, Validator

P = TypeVar("P")


def _require_payload(payload: Any) -> None:
    # None marks a record without a session
    if payload is None:
        raise TokenEncodeError("A session payload cannot be None")


class SecureAuth(Generic[P]):
    """Issues, checks and clears stateless session cookies."""

    def __init__(self,
                 db: Optional[ConfigDB] = None,
                 validate: Optional[Validator] = None,
                 serializer: Optional[PayloadSerializer[P]] = None,
                 *,
                 config: Optional[SessionConfig] = None,
                 overrides: Optional[ConfigOverrides] = None,
                 cookie_name: str = SESSION_TOKEN_NAME,
                 sync_timeout: float = 10.0,
                 clock: Callable[[], datetime] = utcnow,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 metrics: Optional[MetricsCollector] = None):
        self.logger = get_logger("session.auth")
        self.cookie_name = cookie_name
        self.serializer: PayloadSerializer[P] = serializer or JSONPayloadSerializer()
        self._clock = clock

        self.store = ConfigStore(config or initialize_config(overrides, now=clock()))
        self.sessions: SessionStateMachine[P] = SessionStateMachine(
            self.store,
            self.serializer,
            validate,
            clock=clock,
            cookie_name=cookie_name,
            metrics=metrics,
        )
        self.request_tokens = RequestTokenCodec(lambda: self.store.snapshot().form_token_codec)
        self.scheduler: Optional[KeyRotationScheduler] = None
        if db is not None:
            self.scheduler = KeyRotationScheduler(
                self.store,
                db,
                clock=clock,
                sleep=sleep,
                sync_timeout=sync_timeout,
                metrics=metrics,
            )
        if validate is None:
            self.logger.warning("No revalidation predicate configured; sessions are never revoked")

    @classmethod
    def from_settings(cls, settings: BaseConfig,
                      db: Optional[ConfigDB] = None,
                      validate: Optional[Validator] = None,
                      serializer: Optional[PayloadSerializer[P]] = None,
                      **kwargs) -> "SecureAuth[P]":
        """Build from environment settings; uses Redis when ``redis_url`` is set."""
        if db is None and settings.redis_url:
            db = RedisConfigDB(settings.redis_url, key=settings.redis_config_key)
        return cls(
            db,
            validate,
            serializer,
            overrides=ConfigOverrides.from_settings(settings),
            cookie_name=settings.cookie_name,
            sync_timeout=settings.sync_timeout_seconds,
            **kwargs,
        )

    @property
    def config(self) -> SessionConfig:
        return self.store.config

    async def start(self):
        if self.scheduler:
            await self.scheduler.start()

    async def stop(self):
        if self.scheduler:
            await self.scheduler.stop()
            db = self.scheduler.db
            if isinstance(db, RedisConfigDB):
                await db.close()

    def carrier(self, request: Request) -> CookieCarrier:
        return CookieCarrier.from_request(request, name=self.cookie_name)

    async def inspect(self, carrier: CookieCarrier, optional: bool = False) -> AuthResult[P]:
        """Authenticate and return the full outcome (state, payload, reason)."""
        return await self.sessions.authenticate(carrier, optional=optional)

    async def authenticate(self, carrier: CookieCarrier, optional: bool = False) -> Optional[P]:
        """Return the session payload, or None when the request is denied."""
        result = await self.inspect(carrier, optional=optional)
        return result.payload if result.authenticated else None

    def login(self, carrier: CookieCarrier, payload: P, redirect: bool = True) -> None:
        """Start a session holding ``payload``.

        Raises ``NoSecureTransportError`` over plain http, ``TokenEncodeError``
        for a None payload and ``CarrierWriteError`` when the cookie cannot be
        stored.
        """
        _require_payload(payload)
        if not carrier.is_secure:
            raise NoSecureTransportError()
        snapshot = self.store.snapshot()
        previous, _ = self.sessions.read(carrier, snapshot)
        return_path = previous.return_path if previous else None

        record = SessionRecord.issue(payload, self._clock())
        carrier.write(self.sessions.codec(snapshot).encode(record), snapshot.config.max_age_seconds)
        self.logger.info("Session started", redirect=redirect)

        if redirect:
            carrier.redirect(return_path or snapshot.config.logout_path)

    def update(self, carrier: CookieCarrier, payload: P) -> None:
        """Replace the payload, keeping the session's timestamps."""
        _require_payload(payload)
        snapshot = self.store.snapshot()
        current, _ = self.sessions.read(carrier, snapshot)
        if current is not None and current.has_session:
            record = current.with_payload(payload)
        else:
            record = SessionRecord.issue(payload, self._clock())
        carrier.write(self.sessions.codec(snapshot).encode(record), snapshot.config.max_age_seconds)

    def challenge(self, carrier: CookieCarrier) -> None:
        self.sessions.challenge(carrier)

    def logout(self, carrier: CookieCarrier, redirect: bool = True) -> None:
        carrier.delete()
        self.logger.info("Session ended", redirect=redirect)
        if redirect:
            carrier.redirect(self.store.config.logout_path)

    def new_request_token(self, data: Any) -> str:
        """Create a form token carrying ``data``."""
        return self.request_tokens.new(data)

    def read_request_token(self, token: str) -> Any:
        """Read a form token; raises a ``DecodeError`` subclass if invalid."""
        return self.request_tokens.read(token)
