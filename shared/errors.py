"""
Shared error handling for the secure session package.

Every failure that can cross a component boundary has its own exception
type with a stable code. Request-path errors are converted to session states
by the state machine; only logs and metrics see the specific reason.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""
    
    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class SecureSessionException(Exception):
    """Base exception for secure session components."""
    
    status_code: int = 400
    
    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)
    
    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(SecureSessionException):
    """Invalid configuration values."""
    
    status_code = 500
    
    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class NoSecureTransportError(SecureSessionException):
    """Logging in was attempted over an unencrypted connection."""
    
    status_code = 403
    
    def __init__(self, message: str = "Logging in requires an encrypted connection",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("NO_SECURE_TRANSPORT", message, details)


class CarrierWriteError(SecureSessionException):
    """The session token could not be stored on the client."""
    
    status_code = 500
    
    def __init__(self, message: str = "Failed to save the session cookie",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("CARRIER_WRITE_FAILED", message, details)


class TokenEncodeError(SecureSessionException):
    """A value could not be serialized into a token."""
    
    status_code = 500
    
    def __init__(self, message: str = "Failed to encode token", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_ENCODE_FAILED", message, details)


class DecodeError(SecureSessionException):
    """A token could not be decoded into a trusted value."""
    
    status_code = 401
    
    def __init__(self, message: str = "Failed to decode token", details: Optional[Dict[str, Any]] = None):
        super().__init__("TOKEN_DECODE_FAILED", message, details)


class MalformedTokenError(DecodeError):
    """The token is not structurally a token of the expected kind."""
    
    def __init__(self, message: str = "Malformed token", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class TokenAuthenticationError(DecodeError):
    """No known key generation authenticates the token."""
    
    def __init__(self, message: str = "Token authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class SessionExpiredError(SecureSessionException):
    """The session is structurally valid but older than the token lifetime."""
    
    status_code = 401
    
    def __init__(self, message: str = "Session expired", details: Optional[Dict[str, Any]] = None):
        super().__init__("SESSION_EXPIRED", message, details)


class RevalidationRejectedError(SecureSessionException):
    """The application's revalidation predicate denied continued access."""
    
    status_code = 401
    
    def __init__(self, message: str = "Session revalidation rejected", details: Optional[Dict[str, Any]] = None):
        super().__init__("REVALIDATION_REJECTED", message, details)


class ConfigSyncError(SecureSessionException):
    """Configuration could not be synchronised with persistence."""
    
    status_code = 503
    
    def __init__(self, message: str = "Config sync failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIG_SYNC_FAILED", message, details)
