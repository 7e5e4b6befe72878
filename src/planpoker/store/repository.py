"""Repository interface and its async SQLAlchemy implementation.

The engine only needs a small capability set per entity kind: find by
id, find by parent, insert, update, delete by id, delete by parent, count
matching rows and a max-value aggregate.  Each call is atomic on its own;
nothing here spans more than one statement, so callers treat multi-step
sequences as best-effort and idempotent.

All mutating methods flush but do NOT commit.  The caller controls
transaction boundaries via ``session.commit()``.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.attributes import set_committed_value

from planpoker.core.errors import StateConflictError, StorageError
from planpoker.store.models import Participant, PlanningSession, Story, Vote

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute

T = TypeVar("T")


class EntityRepository(abc.ABC, Generic[T]):
    """Persistence contract for one entity kind."""

    @abc.abstractmethod
    async def find_by_id(self, entity_id: str) -> T | None:
        """Return the entity or ``None``."""

    @abc.abstractmethod
    async def find_by_parent(
        self,
        parent_id: str,
        *,
        order_by: str | None = None,
        **filters: Any,
    ) -> list[T]:
        """Return entities owned by *parent_id* matching *filters*."""

    @abc.abstractmethod
    async def insert(self, entity: T) -> T:
        """Persist a new entity."""

    @abc.abstractmethod
    async def update(self, entity: T, **fields: Any) -> T:
        """Apply *fields* to *entity* and persist."""

    @abc.abstractmethod
    async def delete_by_id(self, entity_id: str) -> bool:
        """Delete one entity. Returns False if it did not exist."""

    @abc.abstractmethod
    async def delete_by_parent(self, parent_id: str) -> int:
        """Delete every entity owned by *parent_id*. Returns the row count."""

    @abc.abstractmethod
    async def count_matching(self, **filters: Any) -> int:
        """Count entities matching *filters*."""

    @abc.abstractmethod
    async def max_value(self, column: str, **filters: Any) -> Any:
        """Return the max of *column* over matching entities, or ``None``."""


class SQLRepository(EntityRepository[T]):
    """:class:`EntityRepository` over an ``AsyncSession``.

    Filters are equality matches on column names; a ``None`` value
    matches SQL NULL.
    """

    model: type[T]
    parent_column: str

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def _column(self, name: str) -> InstrumentedAttribute[Any]:
        try:
            return getattr(self.model, name)  # type: ignore[no-any-return]
        except AttributeError as e:
            msg = f"{self.model.__name__} has no column {name!r}"
            raise StorageError(msg) from e

    def _where(self, stmt: Any, filters: dict[str, Any]) -> Any:
        for name, value in filters.items():
            col = self._column(name)
            stmt = stmt.where(col.is_(None) if value is None else col == value)
        return stmt

    async def _flush(self, action: str) -> None:
        try:
            await self._session.flush()
        except IntegrityError as e:
            msg = f"{action} {self.model.__name__} violates a constraint: {e.orig}"
            raise StorageError(msg) from e
        except SQLAlchemyError as e:
            msg = f"{action} {self.model.__name__} failed: {e}"
            raise StorageError(msg) from e

    async def _execute(self, stmt: Any) -> Any:
        try:
            return await self._session.execute(stmt)
        except SQLAlchemyError as e:
            msg = f"Query on {self.model.__name__} failed: {e}"
            raise StorageError(msg) from e

    async def find_by_id(self, entity_id: str) -> T | None:
        try:
            return await self._session.get(self.model, entity_id)
        except SQLAlchemyError as e:
            msg = f"Lookup of {self.model.__name__} {entity_id} failed: {e}"
            raise StorageError(msg) from e

    async def find_by_parent(
        self,
        parent_id: str,
        *,
        order_by: str | None = None,
        **filters: Any,
    ) -> list[T]:
        return await self.find_matching(
            order_by=order_by, **{self.parent_column: parent_id, **filters}
        )

    async def find_matching(
        self,
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
        **filters: Any,
    ) -> list[T]:
        """Return entities matching *filters* in the requested order."""
        stmt = self._where(select(self.model), filters)
        if order_by is not None:
            col = self._column(order_by)
            stmt = stmt.order_by(col.desc() if descending else col)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._execute(stmt)
        return list(result.scalars().all())

    async def find_in(
        self, column: str, values: Iterable[Any], **filters: Any
    ) -> list[T]:
        """Return entities whose *column* is any of *values*."""
        wanted = list(values)
        if not wanted:
            return []
        stmt = self._where(select(self.model), filters)
        stmt = stmt.where(self._column(column).in_(wanted))
        result = await self._execute(stmt)
        return list(result.scalars().all())

    async def insert(self, entity: T) -> T:
        self._session.add(entity)
        await self._flush("Insert of")
        return entity

    async def update(self, entity: T, **fields: Any) -> T:
        for name, value in fields.items():
            self._column(name)
            setattr(entity, name, value)
        await self._flush("Update of")
        return entity

    async def delete_by_id(self, entity_id: str) -> bool:
        entity = await self.find_by_id(entity_id)
        if entity is None:
            return False
        await self._session.delete(entity)
        await self._flush("Delete of")
        return True

    async def delete_by_parent(self, parent_id: str) -> int:
        stmt = (
            delete(self.model)
            .where(self._column(self.parent_column) == parent_id)
            .execution_options(synchronize_session="evaluate")
        )
        result = await self._execute(stmt)
        return int(result.rowcount or 0)

    async def count_matching(self, **filters: Any) -> int:
        stmt = self._where(select(func.count()).select_from(self.model), filters)
        result = await self._execute(stmt)
        return int(result.scalar_one())

    async def max_value(self, column: str, **filters: Any) -> Any:
        stmt = self._where(select(func.max(self._column(column))), filters)
        result = await self._execute(stmt)
        return result.scalar_one_or_none()


# ── Entity repositories ──────────────────────────────────────────


class SessionRepository(SQLRepository[PlanningSession]):
    """Sessions, parented by the dealer who owns them."""

    model = PlanningSession
    parent_column = "dealer"

    async def find_by_code(self, session_code: str) -> PlanningSession | None:
        """Look up a session by its join code."""
        found = await self.find_matching(session_code=session_code, limit=1)
        return found[0] if found else None

    async def list_recent(
        self, *, limit: int = 50, status: str | None = None
    ) -> list[PlanningSession]:
        """List sessions ordered by most recent first."""
        filters: dict[str, Any] = {}
        if status is not None:
            filters["status"] = status
        return await self.find_matching(
            order_by="created_at", descending=True, limit=limit, **filters
        )

    async def created_since(self, since: datetime | None) -> list[PlanningSession]:
        """Sessions created at or after *since* (all when None), oldest first."""
        stmt = select(PlanningSession).order_by(PlanningSession.created_at)
        if since is not None:
            stmt = stmt.where(PlanningSession.created_at >= since)
        result = await self._execute(stmt)
        return list(result.scalars().all())


class StoryRepository(SQLRepository[Story]):
    model = Story
    parent_column = "session_id"


class ParticipantRepository(SQLRepository[Participant]):
    model = Participant
    parent_column = "session_id"


class VoteRepository(SQLRepository[Vote]):
    model = Vote
    parent_column = "story_id"

    async def current_vote(self, story_id: str, voter_id: str) -> Vote | None:
        """Return the voter's current vote on a story, if any."""
        found = await self.find_matching(
            order_by="version", story_id=story_id, voter_id=voter_id, is_current=True
        )
        return found[-1] if found else None

    async def supersede(self, vote: Vote) -> None:
        """Flip *vote* to non-current if it is still the current version.

        Compare-and-swap on ``(id, version, is_current)``.  Raises
        StateConflictError when another writer got there first.
        """
        stmt = (
            update(Vote)
            .where(
                Vote.id == vote.id,
                Vote.version == vote.version,
                Vote.is_current.is_(True),
            )
            .values(is_current=False)
            .execution_options(synchronize_session=False)
        )
        result = await self._execute(stmt)
        if result.rowcount != 1:
            msg = (
                f"Vote {vote.id} (version {vote.version}) was superseded "
                "by a concurrent vote"
            )
            raise StateConflictError(msg)
        set_committed_value(vote, "is_current", False)

    async def insert_version(self, vote: Vote) -> Vote:
        """Insert a new vote row; a duplicate version is a conflict."""
        self._session.add(vote)
        try:
            await self._session.flush()
        except IntegrityError as e:
            msg = (
                f"Version {vote.version} already cast for voter {vote.voter_id} "
                f"on story {vote.story_id}"
            )
            raise StateConflictError(msg) from e
        except SQLAlchemyError as e:
            msg = f"Insert of Vote failed: {e}"
            raise StorageError(msg) from e
        return vote

    async def delete_for_session(self, session_id: str) -> int:
        """Delete every vote cast in a session."""
        stmt = (
            delete(Vote)
            .where(Vote.session_id == session_id)
            .execution_options(synchronize_session="evaluate")
        )
        result = await self._execute(stmt)
        return int(result.rowcount or 0)


class Repositories:
    """One repository per entity kind, sharing a database session."""

    def __init__(self, session: AsyncSession) -> None:
        self.db = session
        self.sessions = SessionRepository(session)
        self.stories = StoryRepository(session)
        self.votes = VoteRepository(session)
        self.participants = ParticipantRepository(session)

    async def commit(self) -> None:
        """Commit the unit of work, wrapping store failures."""
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            msg = f"Commit failed: {e}"
            raise StorageError(msg) from e

    async def rollback(self) -> None:
        await self.db.rollback()
