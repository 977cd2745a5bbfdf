"""
Input normalisation for registration answers — Pydantic v2 models.

Free text from the chat is trimmed and capped to the column size before it
is stored. Limits are counted in characters, not bytes, so Cyrillic
answers get the same room as Latin ones.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, field_validator

from contest_bot.models.models import (
    CONTACTS_MAX_LENGTH,
    LANGUAGES_MAX_LENGTH,
    NAME_MAX_LENGTH,
    SCHOOL_MAX_LENGTH,
)


def clip_text(value: Optional[str], max_length: int) -> str:
    """Strip surrounding whitespace and keep at most `max_length` characters."""
    return (value or "").strip()[:max_length]


class RegistrationData(BaseModel):
    """
    Registration answers as they are written to contest_participants.

    Attributes
    ----------
    name      : participant's full name (≤100 chars)
    school    : school or university with grade / group (≤200 chars)
    contacts  : phone and e-mail (≤100 chars)
    languages : preferred languages and IDEs, may be empty (≤200 chars)
    """

    name:      str
    school:    str
    contacts:  str
    languages: str = ""

    @field_validator("name")
    @classmethod
    def clip_name(cls, v: str) -> str:
        return clip_text(v, NAME_MAX_LENGTH)

    @field_validator("school")
    @classmethod
    def clip_school(cls, v: str) -> str:
        return clip_text(v, SCHOOL_MAX_LENGTH)

    @field_validator("contacts")
    @classmethod
    def clip_contacts(cls, v: str) -> str:
        return clip_text(v, CONTACTS_MAX_LENGTH)

    @field_validator("languages")
    @classmethod
    def clip_languages(cls, v: str) -> str:
        return clip_text(v, LANGUAGES_MAX_LENGTH)
