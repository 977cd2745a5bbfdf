"""
ORM models for the contest registration bot.

Domain overview
---------------
Contest             — an olympiad round participants can sign up for
  ├─ ContestParticipant  — one registration (chat id + contest), with credentials
  └─ ContestNotification — a message broadcast to everyone registered
DialogStateRecord   — the persisted, in-progress conversation of one chat
"""
from __future__ import annotations

from typing import Any, Optional

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from contest_bot.models.base import Base

# ─────────────────────────── Field limits ─────────────────────────────────────

NAME_MAX_LENGTH      = 100
SCHOOL_MAX_LENGTH    = 200
CONTACTS_MAX_LENGTH  = 100
LANGUAGES_MAX_LENGTH = 200


# ─────────────────────────── Models ───────────────────────────────────────────

class Contest(Base):
    """A contest; managed by organisers, read-only for dialogs."""
    __tablename__ = "contests"

    id:          Mapped[int]  = mapped_column(Integer, primary_key=True, autoincrement=True)
    name:        Mapped[str]  = mapped_column(String(255), index=True)
    description: Mapped[str]  = mapped_column(Text, default="")
    when:        Mapped[str]  = mapped_column(String(255), default="")
    where:       Mapped[str]  = mapped_column(String(255), default="")
    closed:      Mapped[bool] = mapped_column(Boolean, default=False)   # registration disabled
    hidden:      Mapped[bool] = mapped_column(Boolean, default=False)   # invisible to participants

    @property
    def is_open(self) -> bool:
        return not (self.closed or self.hidden)


class ContestParticipant(Base):
    """A participant registered for a contest."""
    __tablename__ = "contest_participants"

    id:             Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[str] = mapped_column(String(64), index=True)   # chat id
    contest_id:     Mapped[int] = mapped_column(ForeignKey("contests.id"), index=True)
    name:           Mapped[str] = mapped_column(String(NAME_MAX_LENGTH), default="")
    school:         Mapped[str] = mapped_column(String(SCHOOL_MAX_LENGTH), default="")
    contacts:       Mapped[str] = mapped_column(String(CONTACTS_MAX_LENGTH), default="")
    languages:      Mapped[str] = mapped_column(String(LANGUAGES_MAX_LENGTH), default="")
    login:          Mapped[str] = mapped_column(String(32), default="")
    password:       Mapped[str] = mapped_column(String(32), default="")


class ContestNotification(Base):
    """Announcement sent to all participants of a contest."""
    __tablename__ = "contest_notifications"

    id:         Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(ForeignKey("contests.id"), index=True)
    message:    Mapped[str] = mapped_column(Text)


class DialogStateRecord(Base):
    """
    Row form of an open conversation. `values` holds the JSON dump of the
    dialog's typed value model (see contest_bot.dialogs.state).
    """
    __tablename__ = "dialog_states"

    participant_id: Mapped[str]                      = mapped_column(String(64), primary_key=True)
    dialog_type:    Mapped[str]                      = mapped_column(String(50))
    dialog_step:    Mapped[str]                      = mapped_column(String(50))
    values:         Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
