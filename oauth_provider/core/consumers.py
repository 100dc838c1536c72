from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from oauth_provider.core.errors import UnknownConsumer
from oauth_provider.db.models import Consumer


class ConsumerDirectory:
    """Consulta de sólo lectura de los consumidores dados de alta fuera de banda."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find(self, key: str | None) -> Consumer | None:
        if not key:
            return None
        res = await self.session.execute(select(Consumer).where(Consumer.key == key))
        return res.scalar_one_or_none()

    async def get(self, key: str | None) -> Consumer:
        consumer = await self.find(key)
        if consumer is None:
            raise UnknownConsumer(consumer_key=key)
        return consumer
