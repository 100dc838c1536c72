# oauth_provider/core/signature.py
"""
Canonicalización y firmas OAuth 1.0 (RFC 5849, sección 3.4).

La recogida de parámetros, la normalización y la base string se delegan en
oauthlib para que el resultado coincida byte a byte con los consumidores
reales. RSA-SHA1 se verifica con ``cryptography`` contra la clave pública
que el consumidor registró.
"""
from __future__ import annotations

import base64
import binascii
import time
from collections import Counter
from dataclasses import dataclass
from enum import StrEnum
from typing import Mapping, NamedTuple
from urllib.parse import urlsplit, urlunsplit

from cryptography.exceptions import InvalidSignature as _RSAVerifyError
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from oauthlib.common import safe_string_equals
from oauthlib.oauth1.rfc5849 import signature as rfc5849

from oauth_provider.core.config import settings
from oauth_provider.core.errors import (
    InvalidSignature, MalformedRequest, StaleTimestamp, UnsupportedMethod,
)

OAUTH_VERSION = "1.0"

REQUIRED_PARAMS = (
    "oauth_consumer_key",
    "oauth_signature_method",
    "oauth_signature",
    "oauth_timestamp",
    "oauth_nonce",
    "oauth_version",
)


class SignatureMethod(StrEnum):
    PLAINTEXT = "PLAINTEXT"
    HMAC_SHA1 = "HMAC-SHA1"
    RSA_SHA1 = "RSA-SHA1"


class _Secrets(NamedTuple):
    # la forma que esperan los *_with_client de oauthlib
    client_secret: str
    resource_owner_secret: str


@dataclass
class OAuthRequest:
    """Petición ya normalizada: método, URI y todos los parámetros recogidos."""

    http_method: str
    uri: str
    params: list[tuple[str, str]]

    def get(self, name: str, default: str | None = None) -> str | None:
        for key, value in self.params:
            if key == name:
                return value
        return default

    @property
    def signed_params(self) -> list[tuple[str, str]]:
        return [(k, v) for k, v in self.params if k != "oauth_signature"]

    @property
    def oauth_params(self) -> dict[str, str]:
        return {k: v for k, v in self.params if k.startswith("oauth_")}

    @property
    def is_oauth(self) -> bool:
        return any(k.startswith("oauth_") for k, _ in self.params)

    @property
    def consumer_key(self) -> str | None:
        return self.get("oauth_consumer_key")

    @property
    def token(self) -> str | None:
        return self.get("oauth_token")

    @property
    def signature(self) -> str:
        return self.get("oauth_signature", "")

    @property
    def nonce(self) -> str | None:
        return self.get("oauth_nonce")

    @property
    def timestamp(self) -> int:
        try:
            return int(self.get("oauth_timestamp", ""))
        except ValueError:
            raise MalformedRequest("oauth_timestamp must be an integer",
                                   consumer_key=self.consumer_key) from None

    @property
    def signature_method(self) -> SignatureMethod:
        raw = self.get("oauth_signature_method")
        try:
            return SignatureMethod(raw)
        except ValueError:
            raise MalformedRequest(f"Unknown signature method: {raw}",
                                   consumer_key=self.consumer_key) from None

    @property
    def callback(self) -> str | None:
        return self.get("oauth_callback")


def _rebase(uri: str, public_base_url: str | None) -> str:
    """Sustituye esquema+host por los públicos (servicio detrás de un proxy)."""
    if not public_base_url:
        return uri
    public = urlsplit(public_base_url)
    parts = urlsplit(uri)
    return urlunsplit((public.scheme, public.netloc, parts.path, parts.query, ""))


def collect_request(
    http_method: str,
    uri: str,
    headers: Mapping[str, str] | None = None,
    body: str | None = None,
    content_type: str | None = None,
) -> OAuthRequest:
    """
    Junta los parámetros de la cabecera ``Authorization: OAuth``, del cuerpo
    form-urlencoded y de la query string en una sola lista.
    """
    auth_headers = {}
    for name, value in (headers or {}).items():
        if name.lower() == "authorization" and value[:6].lower() == "oauth ":
            auth_headers["Authorization"] = value

    if body and not (content_type or "").lower().startswith("application/x-www-form-urlencoded"):
        body = None

    uri = _rebase(uri, settings.public_base_url)
    try:
        params = rfc5849.collect_parameters(
            uri_query=urlsplit(uri).query,
            body=body,
            headers=auth_headers,
            exclude_oauth_signature=False,
        )
    except ValueError as e:
        raise MalformedRequest(f"Unable to parse request parameters: {e}") from e

    return OAuthRequest(http_method=http_method.upper(), uri=uri, params=list(params))


def signature_base_string(request: OAuthRequest) -> str:
    try:
        base_uri = rfc5849.base_string_uri(request.uri)
        normalized = rfc5849.normalize_parameters(request.signed_params)
    except ValueError as e:
        raise MalformedRequest(str(e), consumer_key=request.consumer_key) from e
    return rfc5849.signature_base_string(request.http_method, base_uri, normalized)


def check_protocol_params(
    request: OAuthRequest,
    now: int | None = None,
    tolerance: int | None = None,
) -> SignatureMethod:
    """
    Comprobaciones previas a la firma: parámetros obligatorios, duplicados,
    versión, método y ventana del timestamp. Devuelve el método de firma.
    """
    consumer_key = request.consumer_key

    missing = [p for p in REQUIRED_PARAMS if not request.get(p)]
    if missing:
        raise MalformedRequest("Missing OAuth parameters: " + ", ".join(missing),
                               consumer_key=consumer_key)

    repeated = [k for k, n in Counter(k for k, _ in request.params).items()
                if n > 1 and k.startswith("oauth_")]
    if repeated:
        raise MalformedRequest("Repeated OAuth parameters: " + ", ".join(sorted(repeated)),
                               consumer_key=consumer_key)

    if request.get("oauth_version") != OAUTH_VERSION:
        raise MalformedRequest(f"Unsupported oauth_version, expected {OAUTH_VERSION}",
                               consumer_key=consumer_key)

    method = request.signature_method

    now = int(time.time()) if now is None else now
    tolerance = settings.timestamp_tolerance if tolerance is None else tolerance
    if abs(now - request.timestamp) > tolerance:
        raise StaleTimestamp(consumer_key=consumer_key)

    return method


def _load_private_key(key) -> rsa.RSAPrivateKey:
    if isinstance(key, rsa.RSAPrivateKey):
        return key
    if isinstance(key, str):
        key = key.encode("utf-8")
    return serialization.load_pem_private_key(key, password=None)


def _load_public_key(pem: str | None, consumer_key: str | None = None) -> rsa.RSAPublicKey:
    if not pem:
        raise UnsupportedMethod("Consumer has no RSA public key on file", consumer_key=consumer_key)
    try:
        key = serialization.load_pem_public_key(pem.encode("utf-8"))
    except ValueError:
        raise UnsupportedMethod("Consumer RSA public key is unusable", consumer_key=consumer_key) from None
    if not isinstance(key, rsa.RSAPublicKey):
        raise UnsupportedMethod("Consumer public key is not an RSA key", consumer_key=consumer_key)
    return key


def sign(
    request: OAuthRequest,
    consumer_secret: str,
    token_secret: str = "",
    rsa_private_key=None,
) -> str:
    """
    Calcula ``oauth_signature`` para ``request``. El proveedor sólo verifica;
    esto lo usan las pruebas y las herramientas de consumidor.
    """
    method = request.signature_method
    if method is SignatureMethod.PLAINTEXT:
        return rfc5849.sign_plaintext(consumer_secret, token_secret)

    base_string = signature_base_string(request)
    if method is SignatureMethod.HMAC_SHA1:
        return rfc5849.sign_hmac_sha1_with_client(base_string, _Secrets(consumer_secret, token_secret))

    if rsa_private_key is None:
        raise UnsupportedMethod("RSA-SHA1 needs the consumer's private key")
    key = _load_private_key(rsa_private_key)
    raw = key.sign(base_string.encode("ascii"), padding.PKCS1v15(), hashes.SHA1())
    return base64.b64encode(raw).decode("ascii")


def _verify_rsa_sha1(request: OAuthRequest, consumer) -> bool:
    key = _load_public_key(consumer.rsa_public_key, consumer.key)
    try:
        raw = base64.b64decode(request.signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    try:
        key.verify(raw, signature_base_string(request).encode("ascii"),
                   padding.PKCS1v15(), hashes.SHA1())
    except _RSAVerifyError:
        return False
    return True


def verify_signature(request: OAuthRequest, consumer, token_secret: str = "") -> None:
    """
    Verifica la firma de ``request`` con los secretos de ``consumer`` y del
    token. Lanza ``InvalidSignature`` (o ``UnsupportedMethod`` para RSA sin
    clave registrada); no devuelve nada si la firma es válida.
    """
    method = request.signature_method
    token_secret = token_secret or ""

    if method is SignatureMethod.PLAINTEXT:
        ok = safe_string_equals(rfc5849.sign_plaintext(consumer.secret, token_secret),
                                request.signature)
    elif method is SignatureMethod.HMAC_SHA1:
        expected = rfc5849.sign_hmac_sha1_with_client(
            signature_base_string(request), _Secrets(consumer.secret, token_secret))
        ok = safe_string_equals(expected, request.signature)
    else:
        ok = _verify_rsa_sha1(request, consumer)

    if not ok:
        raise InvalidSignature(consumer_key=consumer.key)
