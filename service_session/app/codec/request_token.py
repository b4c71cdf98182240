"""
Request (form) tokens.

Short-lived tokens embedded in forms to tie a submission to a page the
server rendered. They use their own key ring, which rotates on a much
shorter timeout than the session cookie keys.
"""

from typing import Any, Callable, Optional

from .serializers import JSONPayloadSerializer, PayloadSerializer
from .token_codec import TokenCodec

REQUEST_TOKEN_NAME = "requesttoken"


class RequestTokenCodec:
    """Creates and reads request tokens with the current form-token keys."""

    def __init__(self, codec_provider: Callable[[], TokenCodec],
                 serializer: Optional[PayloadSerializer] = None):
        self._codec_provider = codec_provider
        self.serializer = serializer or JSONPayloadSerializer()

    def new(self, data: Any) -> str:
        return self._codec_provider().encode(REQUEST_TOKEN_NAME, self.serializer.dump(data))

    def read(self, token: str) -> Any:
        return self.serializer.load(self._codec_provider().decode(REQUEST_TOKEN_NAME, token))
