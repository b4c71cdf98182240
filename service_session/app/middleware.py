"""
FastAPI glue for protected routes.

``SessionDependencies.require`` is a dependency that lets a route run only
with a valid session; otherwise it raises ``LoginRedirect``, which the
handler registered by ``install_session_handlers`` turns into a 303 to the
login page carrying the cleared cookie. ``optional`` never redirects.
``if_secure`` picks one of two endpoints depending on the session.

A revalidated session gets a refreshed cookie. ``require`` and ``optional`` set it
on the response FastAPI injects into the dependency, and FastAPI only merges
those headers into responses it builds from a returned value. An endpoint that
returns its own ``Response`` drops the refreshed cookie: it must call
``auth.carrier(request)`` and ``carrier.apply(response)`` itself, or be wrapped
with ``if_secure``, which applies the carrier to whatever the endpoint returns.
"""

from typing import Any, Awaitable, Callable, Optional

from fastapi import FastAPI, Request, Response

from .auth import SecureAuth
from .session.carrier import CookieCarrier

AUTHENTICATION_STATE_KEY = "authentication"

Endpoint = Callable[[Request], Awaitable[Response]]


class LoginRedirect(Exception):
    """Raised by a dependency to send the client to the login page."""

    def __init__(self, carrier: CookieCarrier):
        super().__init__(carrier.redirect_to)
        self.carrier = carrier


async def login_redirect_handler(request: Request, exc: LoginRedirect) -> Response:
    return exc.carrier.to_response()


def install_session_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LoginRedirect, login_redirect_handler)


def get_authentication(request: Request) -> Optional[Any]:
    """Payload stored on the request by a session dependency, if any."""
    return getattr(request.state, AUTHENTICATION_STATE_KEY, None)


class SessionDependencies:
    """Dependencies bound to one ``SecureAuth``."""

    def __init__(self, auth: SecureAuth):
        self.auth = auth

    async def require(self, request: Request, response: Response) -> Any:
        carrier = self.auth.carrier(request)
        result = await self.auth.inspect(carrier)
        if not result.authenticated:
            raise LoginRedirect(carrier)
        carrier.apply(response)
        setattr(request.state, AUTHENTICATION_STATE_KEY, result.payload)
        return result.payload

    async def optional(self, request: Request, response: Response) -> Optional[Any]:
        carrier = self.auth.carrier(request)
        result = await self.auth.inspect(carrier, optional=True)
        carrier.apply(response)
        payload = result.payload if result.authenticated else None
        setattr(request.state, AUTHENTICATION_STATE_KEY, payload)
        return payload


def if_secure(auth: SecureAuth, authenticated: Endpoint, unauthenticated: Endpoint) -> Endpoint:
    """Build an endpoint that serves ``authenticated`` or ``unauthenticated``."""

    async def endpoint(request: Request) -> Response:
        carrier = auth.carrier(request)
        result = await auth.inspect(carrier, optional=True)
        if result.authenticated:
            setattr(request.state, AUTHENTICATION_STATE_KEY, result.payload)
            response = await authenticated(request)
        else:
            response = await unauthenticated(request)
        return carrier.apply(response)

    return endpoint
