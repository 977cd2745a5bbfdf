"""
Contest service — all database operations for contests, registrations
and notifications.

The module-level functions receive an AsyncSession parameter and are
intentionally pure async functions (no class coupling) for easy unit
testing. `ContestDirectory` binds them to a session factory so the dialog
engine can call them without managing sessions itself.
"""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contest_bot.errors import PersistenceError
from contest_bot.models.models import Contest, ContestNotification, ContestParticipant
from contest_bot.services.credentials import assign_credentials

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ── Contest ───────────────────────────────────────────────────────────────────

async def list_contests(session: AsyncSession) -> List[Contest]:
    """All contests, ordered by id."""
    result = await session.execute(select(Contest).order_by(Contest.id))
    return list(result.scalars().all())


async def get_contest(session: AsyncSession, contest_id: int) -> Optional[Contest]:
    return await session.get(Contest, contest_id)


async def get_contest_by_name(session: AsyncSession, name: str) -> Optional[Contest]:
    """Exact name match; the lowest id wins if organisers reused a name."""
    result = await session.execute(
        select(Contest).where(Contest.name == name).order_by(Contest.id).limit(1)
    )
    return result.scalar_one_or_none()


async def save_contest(session: AsyncSession, contest: Contest) -> Contest:
    """Create a new contest or update an existing one."""
    if contest.id is None:
        session.add(contest)
    else:
        contest = await session.merge(contest)
    await session.flush()
    return contest


# ── Participants ──────────────────────────────────────────────────────────────

async def list_participations(
    session: AsyncSession,
    participant_id: str,
) -> List[ContestParticipant]:
    """Every registration made from the given chat."""
    result = await session.execute(
        select(ContestParticipant)
        .where(ContestParticipant.participant_id == participant_id)
        .order_by(ContestParticipant.id)
    )
    return list(result.scalars().all())


async def list_contest_participants(
    session: AsyncSession,
    contest_id: int,
) -> List[ContestParticipant]:
    result = await session.execute(
        select(ContestParticipant)
        .where(ContestParticipant.contest_id == contest_id)
        .order_by(ContestParticipant.id)
    )
    return list(result.scalars().all())


async def save_participant(
    session: AsyncSession,
    participant: ContestParticipant,
) -> ContestParticipant:
    """
    Create or update a registration. Login and password are generated here
    when missing, so saving the same record twice keeps its credentials.
    """
    assign_credentials(participant)
    if participant.id is None:
        session.add(participant)
    else:
        participant = await session.merge(participant)
    await session.flush()
    return participant


# ── Notifications ─────────────────────────────────────────────────────────────

async def list_notifications(
    session: AsyncSession,
    contest_id: int,
) -> List[ContestNotification]:
    result = await session.execute(
        select(ContestNotification)
        .where(ContestNotification.contest_id == contest_id)
        .order_by(ContestNotification.id)
    )
    return list(result.scalars().all())


async def save_notification(
    session: AsyncSession,
    notification: ContestNotification,
) -> ContestNotification:
    if notification.id is None:
        session.add(notification)
    else:
        notification = await session.merge(notification)
    await session.flush()
    return notification


# ── Directory facade ──────────────────────────────────────────────────────────

class ContestDirectory:
    """
    Session-per-call facade over the functions above.

    Every call opens its own session, commits on success and rolls back on
    failure. Database errors surface as PersistenceError.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _run(self, operation: str, fn: Callable[[AsyncSession], Awaitable[T]]) -> T:
        async with self._session_factory() as session:
            try:
                result = await fn(session)
                await session.commit()
                return result
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("contest directory: %s failed: %s", operation, e)
                raise PersistenceError(f"{operation} failed") from e

    async def list_contests(self) -> List[Contest]:
        return await self._run("list_contests", list_contests)

    async def get_contest(self, contest_id: int) -> Optional[Contest]:
        return await self._run("get_contest", lambda s: get_contest(s, contest_id))

    async def get_contest_by_name(self, name: str) -> Optional[Contest]:
        return await self._run("get_contest_by_name", lambda s: get_contest_by_name(s, name))

    async def save_contest(self, contest: Contest) -> Contest:
        return await self._run("save_contest", lambda s: save_contest(s, contest))

    async def list_participations(self, participant_id: str) -> List[ContestParticipant]:
        return await self._run(
            "list_participations", lambda s: list_participations(s, participant_id)
        )

    async def list_contest_participants(self, contest_id: int) -> List[ContestParticipant]:
        return await self._run(
            "list_contest_participants", lambda s: list_contest_participants(s, contest_id)
        )

    async def save_participant(self, participant: ContestParticipant) -> ContestParticipant:
        return await self._run("save_participant", lambda s: save_participant(s, participant))

    async def list_notifications(self, contest_id: int) -> List[ContestNotification]:
        return await self._run("list_notifications", lambda s: list_notifications(s, contest_id))

    async def save_notification(self, notification: ContestNotification) -> ContestNotification:
        return await self._run("save_notification", lambda s: save_notification(s, notification))
