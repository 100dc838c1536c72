from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from oauth_provider.core.admission import TokenType, admit
from oauth_provider.core.config import settings
from oauth_provider.core.errors import MalformedRequest
from oauth_provider.core.gate import Decision, Operation, check_access
from oauth_provider.core.signature import OAuthRequest, collect_request
from oauth_provider.db.models import AccessToken
from oauth_provider.db.session import get_session


async def current_user(request: Request) -> str | None:
    """
    Usuario humano autenticado por la aplicación anfitriona. Por defecto se lee
    de una cabecera puesta por el proxy; el anfitrión puede sustituir esta
    dependencia con ``app.dependency_overrides``.
    """
    return request.headers.get(settings.remote_user_header) or None


async def oauth_request(request: Request) -> OAuthRequest:
    raw = await request.body()
    try:
        body = raw.decode("utf-8")
    except UnicodeDecodeError:
        raise MalformedRequest("Request body is not valid UTF-8") from None
    return collect_request(
        request.method,
        str(request.url),
        headers=request.headers,
        body=body,
        content_type=request.headers.get("content-type"),
    )


async def oauth_access_token(
    signed: OAuthRequest = Depends(oauth_request),
    session: AsyncSession = Depends(get_session),
) -> AccessToken | None:
    """
    Access token de una petición a un recurso, ya autenticada. ``None`` si la
    petición no trae parámetros OAuth: entonces decide la política normal del
    anfitrión, no este módulo.
    """
    if not signed.is_oauth:
        return None
    admitted = await admit(session, signed, TokenType.ACCESS)
    return admitted.token


def require_access(operation: Operation):
    """
    Factoría de dependencias: rechaza con 403 si el access token no permite
    ``operation``.
    """
    async def _require_access(token: AccessToken | None = Depends(oauth_access_token)) -> AccessToken | None:
        if token is not None and check_access(token, operation) is Decision.DENY:
            raise HTTPException(status_code=403, detail="Your OAuth access token denies you write access.")
        return token

    return _require_access
