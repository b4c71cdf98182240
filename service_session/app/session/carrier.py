"""
Cookie carrier.

A carrier wraps one request's session cookie. Reads see the incoming value
(or a value written earlier in the same request); writes, deletions and
redirects are buffered and applied to the outgoing response by ``apply``.
Token padding is stripped on the wire and restored on read so the cookie
value stays within the unquoted cookie alphabet.
"""

from dataclasses import dataclass
from typing import Mapping, Optional

from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from shared.errors import CarrierWriteError
from .record import SESSION_TOKEN_NAME

# Browsers drop Set-Cookie values past this size
MAX_COOKIE_LENGTH = 4096


@dataclass(frozen=True)
class CookieUpdate:
    """Pending cookie change."""

    value: str
    max_age: int

    @property
    def deleted(self) -> bool:
        return self.max_age <= 0


class CookieCarrier:
    """Per-request access to the session cookie."""

    def __init__(self, cookies: Mapping[str, str], request_path: str, is_secure: bool,
                 name: str = SESSION_TOKEN_NAME, cookie_path: str = "/",
                 max_length: int = MAX_COOKIE_LENGTH):
        self.name = name
        self.request_path = request_path
        self.is_secure = is_secure
        self.cookie_path = cookie_path
        self.max_length = max_length
        self._incoming = cookies.get(name) or None
        self.update: Optional[CookieUpdate] = None
        self.redirect_to: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request, name: str = SESSION_TOKEN_NAME) -> "CookieCarrier":
        """Build a carrier for a Starlette/FastAPI request.

        TLS is taken from the URL scheme only. Behind a terminating proxy the
        server rewrites the scheme for trusted proxy addresses (see
        ``BaseService.run``); request headers are never trusted here.
        """
        is_secure = request.url.scheme == "https"
        path = request.url.path
        if request.url.query:
            path = f"{path}?{request.url.query}"
        return cls(request.cookies, path, is_secure, name=name)

    def read(self) -> Optional[str]:
        if self.update is not None:
            value = None if self.update.deleted else self.update.value
        else:
            value = self._incoming
        if not value:
            return None
        return value + "=" * (-len(value) % 4)

    def write(self, token: str, max_age: int) -> None:
        value = token.rstrip("=")
        size = len(self.name) + 1 + len(value)
        if size > self.max_length:
            raise CarrierWriteError(
                "Session cookie is too large",
                details={"size": size, "limit": self.max_length}
            )
        self.update = CookieUpdate(value, max_age)

    def delete(self) -> None:
        self.update = CookieUpdate("", 0)

    def redirect(self, location: str) -> None:
        self.redirect_to = location

    def apply(self, response: Response) -> Response:
        """Copy the buffered cookie change onto ``response``."""
        if self.update is None:
            return response
        if self.update.deleted:
            response.delete_cookie(
                self.name, path=self.cookie_path, secure=True, httponly=True, samesite="lax"
            )
        else:
            response.set_cookie(
                self.name,
                self.update.value,
                max_age=self.update.max_age,
                path=self.cookie_path,
                secure=True,
                httponly=True,
                samesite="lax",
            )
        return response

    def to_response(self, default: Optional[Response] = None) -> Response:
        """Render the buffered redirect (303) or ``default``, with cookie changes."""
        if self.redirect_to is not None:
            response: Response = RedirectResponse(self.redirect_to, status_code=303)
        else:
            response = default if default is not None else Response(status_code=204)
        return self.apply(response)
