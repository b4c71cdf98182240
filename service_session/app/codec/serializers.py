"""
Payload serializers.

Applications own the shape of the data stored in a session. A serializer
turns that payload into a JSON-compatible value and back; nothing is
registered globally.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, Type, TypeVar

from pydantic import BaseModel, ValidationError

from shared.errors import MalformedTokenError, TokenEncodeError

P = TypeVar("P")
M = TypeVar("M", bound=BaseModel)


class PayloadSerializer(ABC, Generic[P]):
    """Contract between the codec and an application payload type."""

    @abstractmethod
    def dump(self, payload: P) -> Any:
        """Return a JSON-compatible representation of ``payload``."""

    @abstractmethod
    def load(self, data: Any) -> P:
        """Rebuild a payload; raise ``MalformedTokenError`` on bad data."""


class JSONPayloadSerializer(PayloadSerializer[Any]):
    """Stores JSON-compatible payloads (str, numbers, lists, dicts) as they are."""

    def dump(self, payload: Any) -> Any:
        return payload

    def load(self, data: Any) -> Any:
        return data


class PydanticPayloadSerializer(PayloadSerializer[M]):
    """Stores a pydantic model instance."""

    def __init__(self, model: Type[M]):
        self.model = model

    def dump(self, payload: M) -> Any:
        if not isinstance(payload, self.model):
            raise TokenEncodeError(
                f"Expected {self.model.__name__}, got {type(payload).__name__}"
            )
        return payload.model_dump(mode="json")

    def load(self, data: Any) -> M:
        try:
            return self.model.model_validate(data)
        except ValidationError as e:
            raise MalformedTokenError(
                f"Payload does not match {self.model.__name__}",
                details={"errors": e.error_count()}
            )
