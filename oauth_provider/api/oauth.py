# oauth_provider/api/oauth.py
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import Response
from loguru import logger
from oauthlib.oauth1.rfc5849.utils import escape
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from oauth_provider.api.deps import current_user, oauth_access_token, oauth_request
from oauth_provider.core.admission import TokenType, admit
from oauth_provider.core.config import settings
from oauth_provider.core.errors import LoginRequired, TokenError
from oauth_provider.core.signature import OAuthRequest
from oauth_provider.core.tokens import TokenStore
from oauth_provider.db.models import AccessToken, Consumer, RequestToken
from oauth_provider.db.session import get_session

router = APIRouter()

FORM_MEDIA_TYPE = "application/x-www-form-urlencoded"


def _token_response(token: str, secret: str) -> Response:
    body = "&".join(
        f"{escape(k)}={escape(v)}"
        for k, v in (("oauth_token", token), ("oauth_token_secret", secret))
    )
    return Response(content=body, media_type=FORM_MEDIA_TYPE)


def _consumer_info(consumer: Consumer) -> dict:
    return {"name": consumer.name, "url": consumer.url}


def _return_url(rt: RequestToken, consumer: Consumer, callback: str | None) -> str | None:
    """URL de vuelta al consumidor con ``oauth_token`` añadido; None si no hay a dónde volver."""
    url = callback or rt.callback or consumer.url
    if not url:
        return None
    sep = "&" if "?" in url else "?"
    return f"{url}{sep}oauth_token={escape(rt.token)}"


def _describe_window(seconds: int) -> str:
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size and seconds % size == 0:
            n = seconds // size
            return f"{n} {unit}" + ("s" if n != 1 else "")
    return f"{seconds} seconds"


@router.get("")
async def describe_provider(request: Request):
    """Información para consumidores: endpoints y cómo darse de alta."""
    return {
        "protocol": "OAuth 1.0",
        "signature_methods": ["PLAINTEXT", "HMAC-SHA1", "RSA-SHA1"],
        "endpoints": {
            "request_token": str(request.url_for("request_token")),
            "authorize": str(request.url_for("authorize_form")),
            "access_token": str(request.url_for("access_token")),
        },
        "access_token_lifetime": settings.access_token_ttl,
        "registration": settings.contact or "Contact the site administrators for a consumer key and secret.",
    }


@router.api_route("/request_token", methods=["GET", "POST"], name="request_token")
async def request_token(
    signed: OAuthRequest = Depends(oauth_request),
    session: AsyncSession = Depends(get_session),
):
    admitted = await admit(session, signed)
    rt = await TokenStore(session).issue_request_token(admitted.consumer, callback=signed.callback)
    return _token_response(rt.token, rt.secret)


@router.get("/authorize", name="authorize_form")
async def authorize_form(
    oauth_token: str | None = Query(None),
    oauth_callback: str | None = Query(None),
    user: str | None = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    if user is None:
        raise LoginRequired()
    if not oauth_token:
        # el usuario tendrá que pegar el token a mano
        return {"token": None, "consumer": None, "callback": oauth_callback}

    rt = await TokenStore(session).load_request_token(oauth_token)
    return {
        "token": rt.token,
        "state": rt.state,
        "consumer": _consumer_info(rt.consumer),
        "callback": oauth_callback or rt.callback,
        "default_use_limit": settings.default_use_limit,
        "max_use_limit": settings.max_use_limit,
    }


class AuthorizeInput(BaseModel):
    token: str
    authorize: Literal["allow", "deny"]
    can_write: bool = False
    use_limit: int | None = None
    callback: str | None = None


@router.post("/authorize")
async def authorize(
    body: AuthorizeInput,
    user: str | None = Depends(current_user),
    session: AsyncSession = Depends(get_session),
):
    if user is None:
        raise LoginRequired()

    store = TokenStore(session)
    rt = await store.load_request_token(body.token)
    consumer = rt.consumer

    if body.authorize == "deny":
        await store.deny(rt, user=user)
        message = f"Denying {consumer.name} the right to access your data."
        result = "denied"
    else:
        await store.authorize(rt, can_write=body.can_write, use_limit=body.use_limit, user=user)
        rights = "read and write" if rt.can_write else "read"
        message = (f"Allowing {consumer.name} to {rights} your data "
                   f"for {_describe_window(settings.access_token_ttl)}.")
        result = "allowed"

    logger.info("User {} {} request token of consumer {}", user, result, consumer.key)
    return {
        "result": result,
        "message": message,
        "token": rt.token,
        "consumer": _consumer_info(consumer),
        "can_write": rt.can_write,
        "use_limit": rt.use_limit,
        "callback": _return_url(rt, consumer, body.callback),
    }


@router.post("/access_token", name="access_token")
async def access_token(
    signed: OAuthRequest = Depends(oauth_request),
    session: AsyncSession = Depends(get_session),
):
    admitted = await admit(session, signed, TokenType.REQUEST)
    try:
        access = await TokenStore(session).exchange(admitted.token)
    except TokenError as e:
        e.status_code = 401
        raise
    return _token_response(access.token, access.secret)


@router.get("/whoami")
async def whoami(token: AccessToken | None = Depends(oauth_access_token)):
    """Recurso protegido mínimo: describe el access token con el que se firmó."""
    if token is None:
        raise LoginRequired("An OAuth access token is required")
    return {
        "consumer": token.consumer.key,
        "user": token.auth_as,
        "can_write": token.can_write,
        "valid_until": token.valid_until,
    }
