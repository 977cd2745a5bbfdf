"""
Shared pytest fixtures for contest bot tests.

Environment defaults are set before contest_bot is imported: the settings
object and the module-level engine are created at import time.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import AsyncGenerator, List, Optional, Sequence, Set

# ── Set env vars before any bot import ────────────────────────────────────────
os.environ.setdefault("BOT_TOKEN", "test-token-for-pytest")
os.environ.setdefault("ADMIN_IDS", "1000")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

# ── Third-party ───────────────────────────────────────────────────────────────
import pytest
from aiogram.exceptions import TelegramForbiddenError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# ── Bot imports (safe after env vars are set) ──────────────────────────────────
from contest_bot.dialogs import DialogEngine, build_registry
from contest_bot.dialogs.commands import CommandProcessor
from contest_bot.models.base import Base
from contest_bot.models.models import Contest
from contest_bot.services import ContestDirectory, DialogStateStore
from contest_bot.transport import InboundMessage

ADMIN_ID = "1000"


# ── DB fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
async def async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Session over a private in-memory SQLite database, for the plain service
    functions. Each test gets a new schema; the engine is disposed even when
    the test fails.
    """
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with factory() as session:
            yield session
    finally:
        await engine.dispose()


@pytest.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory over a SQLite file, so that every session gets its own
    connection just like in production (an in-memory database would be
    private to one connection).
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'contest_bot.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    finally:
        await engine.dispose()


@pytest.fixture
def directory(session_factory) -> ContestDirectory:
    return ContestDirectory(session_factory)


@pytest.fixture
def states(session_factory) -> DialogStateStore:
    return DialogStateStore(session_factory)


# ── Transport fake ────────────────────────────────────────────────────────────

@dataclass
class SentMessage:
    recipient_id:     str
    text:             str
    quick_replies:    Optional[List[str]] = None
    removes_keyboard: bool = False


class FakeTransport:
    """
    Records everything the engine sends. Recipients listed in `failing`
    behave like chats that blocked the bot.
    """

    def __init__(self) -> None:
        self.sent: List[SentMessage] = []
        self.failing: Set[str] = set()

    def _check(self, recipient_id: str) -> None:
        if recipient_id in self.failing:
            raise TelegramForbiddenError(method=None, message="Forbidden: bot was blocked by the user")

    async def send(
        self,
        recipient_id: str,
        text: str,
        parse_mode: Optional[str] = None,
        quick_replies: Optional[Sequence[str]] = None,
    ) -> None:
        self._check(recipient_id)
        self.sent.append(
            SentMessage(recipient_id, text, list(quick_replies) if quick_replies else None)
        )

    async def remove_quick_replies(self, recipient_id: str, text: str = "...") -> None:
        self._check(recipient_id)
        self.sent.append(SentMessage(recipient_id, text, removes_keyboard=True))

    def texts(self, recipient_id: Optional[str] = None) -> List[str]:
        return [m.text for m in self.sent if recipient_id is None or m.recipient_id == recipient_id]

    @property
    def last(self) -> SentMessage:
        return self.sent[-1]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def dialog_engine(directory, states, transport) -> DialogEngine:
    return DialogEngine(
        registry=build_registry(),
        directory=directory,
        states=states,
        transport=transport,
        command_handler=CommandProcessor(admin_ids=[ADMIN_ID]),
    )


# ── Helpers ───────────────────────────────────────────────────────────────────

def inbound(sender_id: str, text: str) -> InboundMessage:
    return InboundMessage.from_text(sender_id, text)


@pytest.fixture
def make_contest(directory):
    """Factory fixture — saves a contest through the directory."""

    async def _make(name: str, closed: bool = False, hidden: bool = False) -> Contest:
        return await directory.save_contest(
            Contest(
                name=name,
                description=f"{name} description",
                when="1 Dec, 10:00",
                where="Main building",
                closed=closed,
                hidden=hidden,
            )
        )

    return _make
