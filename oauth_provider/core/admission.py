# oauth_provider/core/admission.py
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from oauth_provider.core.consumers import ConsumerDirectory
from oauth_provider.core.errors import MalformedRequest, TokenError
from oauth_provider.core.nonces import NonceLedger
from oauth_provider.core.signature import OAuthRequest, check_protocol_params, verify_signature
from oauth_provider.core.tokens import TokenStore
from oauth_provider.db.models import AccessToken, Consumer, RequestToken


class TokenType(StrEnum):
    REQUEST = "request"
    ACCESS = "access"


@dataclass
class Admitted:
    consumer: Consumer
    token: RequestToken | AccessToken | None = None


async def admit(
    session: AsyncSession,
    request: OAuthRequest,
    token_type: TokenType | None = None,
    now: int | None = None,
) -> Admitted:
    """
    Decide si una petición firmada entra:

    1) parámetros de protocolo y ventana del timestamp
    2) consumidor conocido
    3) token (si el endpoint lo pide) del mismo consumidor
    4) firma con el secreto del consumidor y del token
    5) alta del nonce; si ya existía, es un replay aunque la firma sea buena.
       De paso se borran los nonces que ya salieron de la ventana.

    Sin ``token_type`` la petición no puede traer ``oauth_token``.
    """
    check_protocol_params(request, now=now)
    consumer = await ConsumerDirectory(session).get(request.consumer_key)

    token = None
    if token_type is None:
        if request.token:
            raise MalformedRequest("oauth_token is not allowed on this endpoint",
                                   consumer_key=consumer.key)
    elif not request.token:
        raise MalformedRequest("oauth_token is required on this endpoint",
                               consumer_key=consumer.key)
    else:
        store = TokenStore(session)
        try:
            if token_type is TokenType.REQUEST:
                token = await store.load_request_token(request.token, consumer)
            else:
                token = await store.load_access_token(request.token, consumer)
        except TokenError as e:
            e.status_code = 401
            raise

    verify_signature(request, consumer, token.secret if token is not None else "")
    ledger = NonceLedger(session)
    await ledger.record(consumer.key, request.token, request.timestamp, request.nonce)
    await ledger.prune_if_due(now)

    logger.debug("Admitted request from consumer {} (token: {})", consumer.key, token_type or "none")
    return Admitted(consumer=consumer, token=token)
