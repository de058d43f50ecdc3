import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.connection import Connection


class ConnectionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        host: str,
        port: int = 8123,
        database: str | None = None,
        created_by: uuid.UUID | None = None,
    ) -> Connection:
        connection = Connection(
            name=name, host=host, port=port, database=database, created_by=created_by
        )
        self.session.add(connection)
        await self.session.flush()
        return connection

    async def get_by_id(self, connection_id: uuid.UUID) -> Connection | None:
        return await self.session.get(Connection, connection_id)

    async def list_all(self) -> list[Connection]:
        result = await self.session.execute(select(Connection).order_by(Connection.name))
        return list(result.scalars().all())
