from contest_bot.models.base import Base, engine, AsyncSessionFactory
from contest_bot.models.models import (
    Contest,
    ContestParticipant,
    ContestNotification,
    DialogStateRecord,
    NAME_MAX_LENGTH,
    SCHOOL_MAX_LENGTH,
    CONTACTS_MAX_LENGTH,
    LANGUAGES_MAX_LENGTH,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionFactory",
    "Contest",
    "ContestParticipant",
    "ContestNotification",
    "DialogStateRecord",
    "NAME_MAX_LENGTH",
    "SCHOOL_MAX_LENGTH",
    "CONTACTS_MAX_LENGTH",
    "LANGUAGES_MAX_LENGTH",
]
