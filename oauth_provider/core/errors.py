"""
Errores del proveedor OAuth. Cada clase lleva su ``kind`` (lo que ve el
consumidor en el cuerpo de la respuesta) y el código HTTP por defecto.
"""
from __future__ import annotations


class OAuthError(Exception):
    kind = "oauth_error"
    status_code = 400
    message = "OAuth request rejected"

    def __init__(self, message: str | None = None, *, consumer_key: str | None = None):
        super().__init__(message or self.message)
        self.consumer_key = consumer_key

    @property
    def detail(self) -> str:
        return str(self)


# --- estructura de la petición (400) ---

class MalformedRequest(OAuthError):
    kind = "malformed_request"
    message = "Malformed OAuth request"


# --- autenticación (401) ---

class AuthenticationError(OAuthError):
    status_code = 401


class UnknownConsumer(AuthenticationError):
    kind = "unknown_consumer"
    message = "Unknown consumer key"


class InvalidSignature(AuthenticationError):
    kind = "invalid_signature"
    message = "Invalid signature"


# RSA-SHA1 sin clave pública utilizable: la firma no se puede comprobar
class UnsupportedMethod(AuthenticationError):
    kind = "unsupported_method"
    message = "Signature method not available for this consumer"


class StaleTimestamp(AuthenticationError):
    kind = "stale_timestamp"
    message = "Timestamp outside of the accepted window"


class ReplayedRequest(AuthenticationError):
    kind = "replayed_request"
    message = "Nonce already used"


class LoginRequired(AuthenticationError):
    kind = "login_required"
    message = "You must be logged in to authorize a token"


# --- estado de los tokens (400; 401 en los endpoints firmados) ---

class TokenError(OAuthError):
    pass


class NotAuthorized(TokenError):
    kind = "not_authorized"
    message = "Request token has not been authorized"


class Denied(TokenError):
    kind = "denied"
    message = "Request token was denied"


class Exhausted(TokenError):
    kind = "exhausted"
    message = "Request token has no uses left"


class AlreadyAuthorized(TokenError):
    kind = "already_authorized"
    message = "Request token was already authorized"


class AlreadyDenied(TokenError):
    kind = "already_denied"
    message = "Request token was already denied"


class TokenNotFound(TokenError):
    kind = "token_not_found"
    message = "Token not found"


class TokenExpired(TokenError):
    kind = "token_expired"
    message = "Token has expired"


# --- interno (500) ---

class InternalEntropyFailure(OAuthError):
    kind = "internal_entropy_failure"
    status_code = 500
    message = "Unable to generate a unique token"
