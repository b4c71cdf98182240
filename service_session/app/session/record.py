"""
Session record and its token codec.

The record is what the cookie carries: the application payload, when the
session was created, when it was last validated, and an optional path to
return to after logging in. The server never stores it.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Generic, Optional, TypeVar

from shared.errors import MalformedTokenError
from ..codec.serializers import PayloadSerializer
from ..codec.token_codec import TokenCodec

P = TypeVar("P")

SESSION_TOKEN_NAME = "authtoken"


@dataclass(frozen=True)
class SessionRecord(Generic[P]):
    """Decoded contents of a session token."""

    payload: Optional[P] = None
    created_at: Optional[datetime] = None
    validated_at: Optional[datetime] = None
    return_path: Optional[str] = None

    @property
    def has_session(self) -> bool:
        return self.payload is not None and self.created_at is not None and self.validated_at is not None

    @classmethod
    def issue(cls, payload: P, now: datetime) -> "SessionRecord[P]":
        return cls(payload=payload, created_at=now, validated_at=now)

    @classmethod
    def pending(cls, return_path: Optional[str]) -> "SessionRecord[P]":
        """A record with no session, only a path to come back to."""
        return cls(return_path=return_path)

    def revalidated(self, payload: P, now: datetime) -> "SessionRecord[P]":
        return replace(self, payload=payload, validated_at=now)

    def with_payload(self, payload: P) -> "SessionRecord[P]":
        return replace(self, payload=payload)


def _to_epoch(value: Optional[datetime]) -> Optional[float]:
    return value.timestamp() if value is not None else None


def _from_epoch(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedTokenError("Session timestamp is not a number")
    return datetime.fromtimestamp(value, timezone.utc)


class SessionCodec(Generic[P]):
    """Maps ``SessionRecord`` to and from an opaque token."""

    def __init__(self, codec: TokenCodec, serializer: PayloadSerializer[P], name: str = SESSION_TOKEN_NAME):
        self.codec = codec
        self.serializer = serializer
        self.name = name

    def encode(self, record: SessionRecord[P]) -> str:
        value: Dict[str, Any] = {
            "c": _to_epoch(record.created_at),
            "v": _to_epoch(record.validated_at),
            "r": record.return_path,
        }
        if record.payload is not None:
            value["p"] = self.serializer.dump(record.payload)
        return self.codec.encode(self.name, value)

    def decode(self, token: str) -> SessionRecord[P]:
        value = self.codec.decode(self.name, token)
        if not isinstance(value, dict):
            raise MalformedTokenError("Session body is not an object")
        return_path = value.get("r")
        if return_path is not None and not isinstance(return_path, str):
            raise MalformedTokenError("Return path is not a string")
        payload = self.serializer.load(value["p"]) if value.get("p") is not None else None
        return SessionRecord(
            payload=payload,
            created_at=_from_epoch(value.get("c")),
            validated_at=_from_epoch(value.get("v")),
            return_path=return_path,
        )
