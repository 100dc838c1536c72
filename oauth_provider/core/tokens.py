# oauth_provider/core/tokens.py
"""
Ciclo de vida de los tokens:

    pending -> authorized | denied,  authorized -> exchanged

Las transiciones son UPDATE condicionados al estado actual (compare-and-set);
el número de filas afectadas decide quién gana cuando dos peticiones tocan el
mismo token a la vez.
"""
from __future__ import annotations

import secrets
import time
from typing import Callable

from loguru import logger
from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from oauth_provider.core.config import settings
from oauth_provider.core.errors import (
    AlreadyAuthorized, AlreadyDenied, Denied, Exhausted, InternalEntropyFailure,
    MalformedRequest, NotAuthorized, OAuthError, TokenExpired, TokenNotFound,
)
from oauth_provider.db.models import AccessToken, Consumer, RequestToken, TokenState


def generate_token() -> str:
    return secrets.token_urlsafe(settings.token_bytes)


class TokenStore:
    def __init__(self, session: AsyncSession, clock: Callable[[], float] = time.time):
        self.session = session
        self.clock = clock

    def _now(self) -> int:
        return int(self.clock())

    # === carga ===

    async def _reload(self, token_id: int) -> RequestToken | None:
        res = await self.session.execute(
            select(RequestToken)
            .where(RequestToken.id == token_id)
            .execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def load_request_token(self, token: str | None, consumer: Consumer | None = None) -> RequestToken:
        if not token:
            raise TokenNotFound()
        res = await self.session.execute(
            select(RequestToken)
            .where(RequestToken.token == token)
            .execution_options(populate_existing=True)
        )
        rt = res.scalar_one_or_none()
        if rt is None or (consumer is not None and rt.consumer_id != consumer.id):
            raise TokenNotFound(consumer_key=consumer.key if consumer else None)
        return rt

    async def load_access_token(self, token: str | None, consumer: Consumer | None = None) -> AccessToken:
        if not token:
            raise TokenNotFound()
        res = await self.session.execute(select(AccessToken).where(AccessToken.token == token))
        at = res.scalar_one_or_none()
        key = consumer.key if consumer else None
        if at is None or (consumer is not None and at.consumer_id != consumer.id):
            raise TokenNotFound(consumer_key=key)
        if at.valid_until < self._now():
            raise TokenExpired(consumer_key=key)
        return at

    # === emisión ===

    async def issue_request_token(self, consumer: Consumer, callback: str | None = None) -> RequestToken:
        now = self._now()
        for attempt in range(1, settings.token_attempts + 1):
            rt = RequestToken(
                token=generate_token(),
                secret=generate_token(),
                consumer=consumer,
                state=TokenState.PENDING.value,
                use_limit=settings.default_use_limit,
                uses_left=settings.default_use_limit,
                callback=callback,
                valid_until=now + settings.request_token_ttl,
            )
            self.session.add(rt)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                await self.session.refresh(consumer)
                logger.warning("Request token collision for consumer {} (attempt {})", consumer.key, attempt)
                continue
            logger.info("Issued request token for consumer {}", consumer.key)
            return rt

        logger.error("Gave up generating a request token for consumer {}", consumer.key)
        raise InternalEntropyFailure(consumer_key=consumer.key)

    # === autorización ===

    def _resolution_conflict(self, current: RequestToken | None, now: int) -> OAuthError:
        key = current.consumer.key if current is not None else None
        if current is None or current.state == TokenState.EXCHANGED:
            return TokenNotFound(consumer_key=key)
        if current.state == TokenState.AUTHORIZED:
            return AlreadyAuthorized(consumer_key=key)
        if current.state == TokenState.DENIED:
            return AlreadyDenied(consumer_key=key)
        if current.valid_until < now:
            return TokenExpired(consumer_key=key)
        return TokenNotFound(consumer_key=key)

    async def _resolve(self, rt: RequestToken, state: TokenState, **values) -> None:
        now = self._now()
        token_id = rt.id
        res = await self.session.execute(
            update(RequestToken)
            .where(
                RequestToken.id == token_id,
                RequestToken.state == TokenState.PENDING.value,
                RequestToken.valid_until >= now,
            )
            .values(state=state.value, **values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise self._resolution_conflict(await self._reload(token_id), now)
        await self.session.commit()
        await self.session.refresh(rt)

    async def authorize(
        self,
        rt: RequestToken,
        can_write: bool = False,
        use_limit: int | None = None,
        user: str | None = None,
    ) -> None:
        key = rt.consumer.key
        use_limit = settings.default_use_limit if use_limit is None else use_limit
        if not 1 <= use_limit <= settings.max_use_limit:
            raise MalformedRequest(f"use_limit must be between 1 and {settings.max_use_limit}",
                                   consumer_key=key)
        await self._resolve(
            rt, TokenState.AUTHORIZED,
            can_write=bool(can_write),
            use_limit=use_limit,
            uses_left=use_limit,
            authorized_by=user,
        )
        logger.info("Request token authorized for consumer {} (can_write={}, use_limit={})",
                    key, rt.can_write, rt.use_limit)

    async def deny(self, rt: RequestToken, user: str | None = None) -> None:
        key = rt.consumer.key
        await self._resolve(rt, TokenState.DENIED, authorized_by=user)
        logger.info("Request token denied for consumer {}", key)

    # === canje ===

    def _exchange_failure(self, current: RequestToken | None, now: int) -> OAuthError:
        if current is None:
            return TokenNotFound()
        key = current.consumer.key
        if current.state == TokenState.PENDING:
            return NotAuthorized(consumer_key=key)
        if current.state == TokenState.DENIED:
            return Denied(consumer_key=key)
        if current.state == TokenState.EXCHANGED or current.uses_left <= 0:
            return Exhausted(consumer_key=key)
        if current.valid_until < now:
            return TokenExpired(consumer_key=key)
        return Exhausted(consumer_key=key)

    async def exchange(self, rt: RequestToken) -> AccessToken:
        """
        Gasta un uso del request token y crea el access token en la misma
        transacción. Con el último uso el request token pasa a ``exchanged``.
        """
        token_id = rt.id
        now = self._now()

        for attempt in range(1, settings.token_attempts + 1):
            res = await self.session.execute(
                update(RequestToken)
                .where(
                    RequestToken.id == token_id,
                    RequestToken.state == TokenState.AUTHORIZED.value,
                    RequestToken.uses_left > 0,
                    RequestToken.valid_until >= now,
                )
                .values(
                    uses_left=RequestToken.uses_left - 1,
                    state=case(
                        (RequestToken.uses_left <= 1, TokenState.EXCHANGED.value),
                        else_=RequestToken.state,
                    ),
                )
                .execution_options(synchronize_session=False)
            )
            current = await self._reload(token_id)
            if res.rowcount != 1:
                raise self._exchange_failure(current, now)

            access = AccessToken(
                token=generate_token(),
                secret=generate_token(),
                consumer=current.consumer,
                can_write=current.can_write,
                auth_as=current.authorized_by,
                valid_until=now + settings.access_token_ttl,
            )
            self.session.add(access)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                logger.warning("Access token collision for request token {} (attempt {})", token_id, attempt)
                continue

            await self.session.refresh(rt)
            logger.info("Exchanged request token for access token (consumer {}, can_write={}, uses_left={})",
                        access.consumer.key, access.can_write, current.uses_left)
            return access

        raise InternalEntropyFailure()
