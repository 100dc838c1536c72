import time

from loguru import logger
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from oauth_provider.core.config import settings
from oauth_provider.core.errors import ReplayedRequest
from oauth_provider.db.models import Nonce


class NonceLedger:
    """
    Registro de (consumer, token, timestamp, nonce). La inserción y la
    comprobación de unicidad son la misma operación: si la base de datos
    rechaza la fila por la restricción única, la petición es un replay.
    """

    # epoch de la última limpieza; compartido por todas las sesiones del proceso
    last_pruned: int = 0

    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(self, consumer_key: str, token: str | None, timestamp: int, nonce: str) -> None:
        self.session.add(Nonce(
            consumer_key=consumer_key,
            token=token or "",
            timestamp=timestamp,
            nonce=nonce,
        ))
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise ReplayedRequest(consumer_key=consumer_key) from None

    async def prune(self, now: int | None = None) -> int:
        """Borra los nonces fuera de la ventana; esos ya no pueden reutilizarse."""
        now = int(time.time()) if now is None else now
        cutoff = now - settings.timestamp_tolerance
        res = await self.session.execute(delete(Nonce).where(Nonce.timestamp < cutoff))
        deleted = res.rowcount
        await self.session.commit()
        logger.info("Pruned {} OAuth nonces older than {}", deleted, cutoff)
        return deleted

    async def prune_if_due(self, now: int | None = None) -> int | None:
        """Como ``prune``, pero como mucho una vez por ventana de tolerancia."""
        now = int(time.time()) if now is None else now
        if now - NonceLedger.last_pruned < settings.timestamp_tolerance:
            return None
        NonceLedger.last_pruned = now
        return await self.prune(now)
