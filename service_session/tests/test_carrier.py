"""
Unit tests for the cookie carrier.
"""

import pytest
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import CarrierWriteError
from service_session.app.session.carrier import MAX_COOKIE_LENGTH, CookieCarrier


def build_request(path="/private", query=b"", scheme="https", headers=None):
    """Minimal ASGI request."""
    return Request({
        "type": "http",
        "method": "GET",
        "scheme": scheme,
        "path": path,
        "query_string": query,
        "headers": headers or [],
        "server": ("testserver", 443 if scheme == "https" else 80),
    })


class TestFromRequest:
    """Test cases for CookieCarrier.from_request."""

    def test_reads_cookie_and_path(self):
        """Test the cookie value and full request path are captured."""
        request = build_request(query=b"tab=2", headers=[(b"cookie", b"authtoken=abcdef")])

        carrier = CookieCarrier.from_request(request)

        assert carrier.request_path == "/private?tab=2"
        assert carrier.read() == "abcdef=="
        assert carrier.is_secure

    def test_plain_http(self):
        """Test http requests are not secure."""
        carrier = CookieCarrier.from_request(build_request(scheme="http"))

        assert not carrier.is_secure
        assert carrier.read() is None

    def test_forwarded_proto_header_ignored(self):
        """Test a client-sent X-Forwarded-Proto does not make http secure."""
        request = build_request(scheme="http", headers=[(b"x-forwarded-proto", b"https")])

        assert not CookieCarrier.from_request(request).is_secure

    def test_custom_cookie_name(self):
        """Test the carrier only looks at its own cookie."""
        request = build_request(headers=[(b"cookie", b"authtoken=abcd; sid=wxyz")])

        assert CookieCarrier.from_request(request, name="sid").read() == "wxyz"


class TestBuffering:
    """Test cases for buffered cookie changes."""

    def test_write_strips_padding(self):
        """Test the stored value has no padding but reads back whole."""
        carrier = CookieCarrier({}, "/", True)

        carrier.write("gAAAAB==", max_age=60)

        assert carrier.update.value == "gAAAAB"
        assert carrier.read() == "gAAAAB=="

    def test_write_too_large(self):
        """Test oversized cookies are refused and nothing is buffered."""
        carrier = CookieCarrier({}, "/", True)

        with pytest.raises(CarrierWriteError):
            carrier.write("x" * MAX_COOKIE_LENGTH, max_age=60)

        assert carrier.update is None

    def test_delete_hides_incoming(self):
        """Test a deleted cookie no longer reads."""
        carrier = CookieCarrier({"authtoken": "abcd"}, "/", True)

        carrier.delete()

        assert carrier.read() is None
        assert carrier.update.deleted


class TestApply:
    """Test cases for writing changes to responses."""

    def test_set_cookie_attributes(self):
        """Test the session cookie is Secure, HttpOnly and SameSite=Lax."""
        carrier = CookieCarrier({}, "/", True)
        carrier.write("abcd", max_age=100)

        response = carrier.apply(Response())

        header = response.headers["set-cookie"].lower()
        assert header.startswith("authtoken=abcd")
        assert "max-age=100" in header
        assert "path=/" in header
        assert "secure" in header
        assert "httponly" in header
        assert "samesite=lax" in header

    def test_delete_cookie(self):
        """Test a deletion expires the cookie."""
        carrier = CookieCarrier({"authtoken": "abcd"}, "/", True)
        carrier.delete()

        response = carrier.apply(Response())

        assert "max-age=0" in response.headers["set-cookie"].lower()

    def test_no_change(self):
        """Test untouched carriers leave responses alone."""
        response = CookieCarrier({}, "/", True).apply(Response())

        assert "set-cookie" not in response.headers

    def test_redirect_response(self):
        """Test buffered redirects become a 303 with the cookie."""
        carrier = CookieCarrier({}, "/private", True)
        carrier.write("abcd", max_age=100)
        carrier.redirect("/session")

        response = carrier.to_response()

        assert response.status_code == 303
        assert response.headers["location"] == "/session"
        assert "set-cookie" in response.headers

    def test_default_response(self):
        """Test the default response is used without a redirect."""
        carrier = CookieCarrier({}, "/", True)

        assert carrier.to_response().status_code == 204
        assert carrier.to_response(JSONResponse({"ok": True})).status_code == 200
