"""
Multi-generation authenticated-encryption codec.

Tokens are Fernet tokens (AES-128-CBC + HMAC-SHA256, urlsafe base64). The
encrypted body is a small JSON envelope that binds the token to a name, so a
token minted for one purpose cannot be replayed as another.
"""

import base64
import binascii
import json
from typing import Any, Sequence, Tuple

from cryptography.fernet import Fernet, InvalidToken

from shared.errors import ConfigurationError, MalformedTokenError, TokenAuthenticationError, TokenEncodeError
from shared.logging import get_logger
from ..keys.config import KeyPair

_FERNET_VERSION = 0x80
# version (1) + timestamp (8) + IV (16) + HMAC (32)
_FERNET_OVERHEAD = 57
_AES_BLOCK = 16


class TokenCodec:
    """Encodes with the active key generation, decodes with any retained one."""

    def __init__(self, key_pairs: Sequence[KeyPair]):
        if not key_pairs:
            raise ConfigurationError("TokenCodec needs at least one key generation")
        self._fernets: Tuple[Fernet, ...] = tuple(Fernet(pair.fernet_key()) for pair in key_pairs)
        self.logger = get_logger("session.codec")

    @property
    def generations(self) -> int:
        return len(self._fernets)

    def encode(self, name: str, value: Any) -> str:
        """Encrypt ``value`` under ``name`` with the active generation."""
        try:
            body = json.dumps({"n": name, "v": value}, separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise TokenEncodeError(f"Value for '{name}' is not serializable", details={"error": str(e)})
        return self._fernets[0].encrypt(body.encode("utf-8")).decode("ascii")

    def decode(self, name: str, token: str) -> Any:
        """Return the value stored in ``token``; raises a ``DecodeError`` subclass."""
        value, _ = self.decode_with_generation(name, token)
        return value

    def decode_with_generation(self, name: str, token: str) -> Tuple[Any, int]:
        """Like ``decode`` but also reports which generation (0 = active) matched."""
        raw = self._check_structure(token)

        for generation, fernet in enumerate(self._fernets):
            try:
                body = fernet.decrypt(raw)
            except InvalidToken:
                continue
            if generation:
                self.logger.debug("Token decoded with fallback key generation", generation=generation)
            return self._open_envelope(name, body), generation

        raise TokenAuthenticationError(details={"generations_tried": len(self._fernets)})

    @staticmethod
    def _check_structure(token: Any) -> bytes:
        if not isinstance(token, str) or not token:
            raise MalformedTokenError("Token is empty or not text")
        try:
            raw = token.encode("ascii")
            data = base64.urlsafe_b64decode(raw)
        except (UnicodeEncodeError, binascii.Error, ValueError):
            raise MalformedTokenError("Token is not urlsafe base64")
        if not data or data[0] != _FERNET_VERSION:
            raise MalformedTokenError("Unknown token version")
        ciphertext_length = len(data) - _FERNET_OVERHEAD
        if ciphertext_length < _AES_BLOCK or ciphertext_length % _AES_BLOCK:
            raise MalformedTokenError("Token has an invalid length")
        return raw

    @staticmethod
    def _open_envelope(name: str, body: bytes) -> Any:
        try:
            envelope = json.loads(body.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise MalformedTokenError("Token body is not valid JSON")
        if not isinstance(envelope, dict) or "v" not in envelope:
            raise MalformedTokenError("Token body has no value")
        if envelope.get("n") != name:
            raise MalformedTokenError("Token was issued for another purpose", details={"expected": name})
        return envelope["v"]
