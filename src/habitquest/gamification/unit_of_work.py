"""Unit of work: one database transaction plus the events it produced.

Every engine operation takes an optional ``uow``. When one is supplied the
operation joins it and leaves commit/rollback to the owner; otherwise
``UnitOfWorkFactory.scope`` opens a fresh one, commits it on success, rolls it
back on error and always closes it.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from habitquest.gamification.events import EventChannel, GamificationEvent


class UnitOfWork:
    def __init__(self, session: AsyncSession, channel: EventChannel) -> None:
        self.session = session
        self._channel = channel
        self._pending: list[GamificationEvent] = []

    @property
    def pending_events(self) -> list[GamificationEvent]:
        return list(self._pending)

    def record(self, event: GamificationEvent) -> None:
        """Queue an event for publication once this unit of work commits."""
        self._pending.append(event)

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[UnitOfWork]:
        """Run a block in a SAVEPOINT.

        If the block raises, its writes are rolled back to the savepoint and
        the events it recorded are discarded; the exception propagates.
        """
        mark = len(self._pending)
        try:
            async with self.session.begin_nested():
                yield self
        except BaseException:
            del self._pending[mark:]
            raise

    async def commit(self) -> None:
        await self.session.commit()
        events, self._pending = self._pending, []
        await self._channel.publish_all(events)

    async def rollback(self) -> None:
        self._pending.clear()
        await self.session.rollback()

    async def close(self) -> None:
        await self.session.close()


class UnitOfWorkFactory:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channel: EventChannel,
    ) -> None:
        self._session_factory = session_factory
        self.channel = channel

    def create(self) -> UnitOfWork:
        return UnitOfWork(self._session_factory(), self.channel)

    @asynccontextmanager
    async def scope(self, uow: UnitOfWork | None = None) -> AsyncIterator[UnitOfWork]:
        """Join ``uow`` if given, else own a new unit of work for the block."""
        if uow is not None:
            yield uow
            return

        work = self.create()
        try:
            yield work
            await work.commit()
        except BaseException:
            await work.rollback()
            raise
        finally:
            await work.close()
