"""
Credential generator for contest registrations.

Logins and passwords are pronounceable strings built from alternating
consonants and vowels, e.g. ``p_tokeb`` / ``kasumodira``. They are meant to
be typed by hand on the contest system, not to be secret keys.
"""
from __future__ import annotations

import random
from typing import Optional

from contest_bot.models.models import ContestParticipant

VOWELS     = "euioa"
CONSONANTS = "qrtpsdghkzxvbnm"

LOGIN_PREFIX    = "p_"
LOGIN_LENGTH    = 5
PASSWORD_LENGTH = 10

_system_random = random.SystemRandom()


def generate_random_string(length: int, rng: Optional[random.Random] = None) -> str:
    """
    Consonant/vowel pairs until `length` is reached. For an odd length the
    vowel after the last consonant is dropped.
    """
    rng = rng or _system_random
    chars: list[str] = []
    for i in range(0, length, 2):
        chars.append(rng.choice(CONSONANTS))
        if i != length - 1:
            chars.append(rng.choice(VOWELS))
    return "".join(chars)


def make_login(rng: Optional[random.Random] = None) -> str:
    return LOGIN_PREFIX + generate_random_string(LOGIN_LENGTH, rng)


def make_password(rng: Optional[random.Random] = None) -> str:
    return generate_random_string(PASSWORD_LENGTH, rng)


def assign_credentials(
    participant: ContestParticipant,
    rng: Optional[random.Random] = None,
) -> ContestParticipant:
    """Fill login / password only where blank; existing values are never replaced."""
    if not participant.login:
        participant.login = make_login(rng)
    if not participant.password:
        participant.password = make_password(rng)
    return participant
