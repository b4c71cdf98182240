"""
Session validity state machine.

Every request starts from scratch: the state is computed from the token's
own timestamps and the current config, nothing is kept server-side.

    ABSENT       no token, or the token does not decode
    FRESH        within the lifetime and validated within the interval
    STALE        within the lifetime, validation interval elapsed
    REVALIDATED  stale, and the revalidation predicate accepted it
    INVALIDATED  stale, and the predicate rejected it
    EXPIRED      older than the token lifetime

FRESH and REVALIDATED let the request proceed; ABSENT, EXPIRED and
INVALIDATED deny it. A denied request is challenged (redirected to the login
path) unless authentication was marked optional.
"""

import inspect
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, Tuple, TypeVar, Union

from shared.errors import (
    CarrierWriteError,
    DecodeError,
    RevalidationRejectedError,
    SecureSessionException,
    SessionExpiredError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..codec.serializers import PayloadSerializer
from ..keys.config import SessionConfig, utcnow
from ..keys.store import ConfigStore, KeySnapshot
from .carrier import CookieCarrier
from .record import SESSION_TOKEN_NAME, SessionCodec, SessionRecord

P = TypeVar("P")

ValidationResult = Tuple[Any, bool]
Validator = Callable[[Any], Union[ValidationResult, Awaitable[ValidationResult]]]


def accept_unchanged(payload: Any) -> ValidationResult:
    """Default revalidation predicate: keeps every session as it is.

    This never revokes anything. Applications that need sessions to end
    when, say, a password changes must supply their own predicate.
    """
    return payload, True


class SessionState(str, Enum):
    """Validity class of a session token."""
    ABSENT = "absent"
    FRESH = "fresh"
    STALE = "stale"
    REVALIDATED = "revalidated"
    INVALIDATED = "invalidated"
    EXPIRED = "expired"

    @property
    def proceeds(self) -> bool:
        return self in (SessionState.FRESH, SessionState.REVALIDATED)


@dataclass(frozen=True)
class AuthResult(Generic[P]):
    """Outcome of one authentication."""

    state: SessionState
    payload: Optional[P] = None
    reason: Optional[SecureSessionException] = None

    @property
    def authenticated(self) -> bool:
        return self.state.proceeds


class SessionStateMachine(Generic[P]):
    """Classifies session tokens and drives revalidation."""

    def __init__(self, store: ConfigStore, serializer: PayloadSerializer[P],
                 validate: Optional[Validator] = None, *,
                 clock: Callable[[], datetime] = utcnow,
                 cookie_name: str = SESSION_TOKEN_NAME,
                 metrics: Optional[MetricsCollector] = None):
        self.store = store
        self.serializer = serializer
        self.validate = validate or accept_unchanged
        self.cookie_name = cookie_name
        self.metrics = metrics
        self.logger = get_logger("session.state")
        self._clock = clock

    def codec(self, snapshot: Optional[KeySnapshot] = None) -> SessionCodec[P]:
        snapshot = snapshot or self.store.snapshot()
        return SessionCodec(snapshot.cookie_codec, self.serializer, self.cookie_name)

    def now(self) -> datetime:
        return self._clock()

    def read(self, carrier: CookieCarrier,
             snapshot: Optional[KeySnapshot] = None) -> Tuple[Optional[SessionRecord[P]], Optional[DecodeError]]:
        """Decode the carrier's token; a decode failure is returned, not raised."""
        token = carrier.read()
        if token is None:
            return None, None
        try:
            return self.codec(snapshot).decode(token), None
        except DecodeError as e:
            return None, e

    @staticmethod
    def classify(record: Optional[SessionRecord], config: SessionConfig, now: datetime) -> SessionState:
        if record is None or not record.has_session:
            return SessionState.ABSENT
        if now - record.created_at > config.token_lifetime:
            return SessionState.EXPIRED
        if now - record.validated_at <= config.revalidate_interval:
            return SessionState.FRESH
        return SessionState.STALE

    async def authenticate(self, carrier: CookieCarrier, optional: bool = False) -> AuthResult[P]:
        """Compute the session state for this request and act on it."""
        snapshot = self.store.snapshot()
        config = snapshot.config
        now = self.now()

        record, reason = self.read(carrier, snapshot)
        state = self.classify(record, config, now)

        if state == SessionState.FRESH:
            return self._finish(AuthResult(state, record.payload))

        if state == SessionState.STALE:
            payload, accepted = await self._revalidate(record.payload)
            if accepted and payload is not None:
                self._refresh(carrier, snapshot, record.revalidated(payload, now))
                return self._finish(AuthResult(SessionState.REVALIDATED, payload))
            state = SessionState.INVALIDATED
            reason = RevalidationRejectedError(details={"empty_payload": accepted})
        elif state == SessionState.EXPIRED:
            reason = SessionExpiredError(details={"created_at": record.created_at.isoformat()})

        if not optional:
            self._challenge(carrier, snapshot, strict=False)
        return self._finish(AuthResult(state, None, reason), optional=optional)

    def challenge(self, carrier: CookieCarrier) -> None:
        """Clear the session, remember the request path and redirect to login."""
        self._challenge(carrier, self.store.snapshot(), strict=True)

    async def _revalidate(self, payload: P) -> ValidationResult:
        result = self.validate(payload)
        if inspect.isawaitable(result):
            result = await result
        new_payload, accepted = result
        return new_payload, bool(accepted)

    def _refresh(self, carrier: CookieCarrier, snapshot: KeySnapshot, record: SessionRecord[P]) -> None:
        try:
            carrier.write(self.codec(snapshot).encode(record), snapshot.config.max_age_seconds)
        except CarrierWriteError as e:
            # The request still proceeds; the client keeps its previous token
            self.logger.warning("Failed to store revalidated session", error=e.message, details=e.details)

    def _challenge(self, carrier: CookieCarrier, snapshot: KeySnapshot, strict: bool) -> None:
        config = snapshot.config
        pending = SessionRecord.pending(carrier.request_path)
        try:
            carrier.write(self.codec(snapshot).encode(pending), config.max_age_seconds)
        except CarrierWriteError as e:
            if strict:
                raise
            self.logger.warning("Failed to store return path; clearing session", error=e.message)
            carrier.delete()
        carrier.redirect(config.login_path)

    def _finish(self, result: AuthResult[P], optional: bool = False) -> AuthResult[P]:
        if self.metrics:
            self.metrics.increment_counter("session_auth_total", state=result.state.value)
        if result.reason is not None:
            self.logger.info(
                "Session denied",
                state=result.state.value,
                reason=result.reason.code,
                optional=optional,
            )
        return result
