from contest_bot.services.contest_service import (
    ContestDirectory,
    list_contests, get_contest, get_contest_by_name, save_contest,
    list_participations, list_contest_participants, save_participant,
    list_notifications, save_notification,
)
from contest_bot.services.dialog_state_service import DialogStateStore
from contest_bot.services.credentials import (
    generate_random_string, make_login, make_password, assign_credentials,
)

__all__ = [
    # contest directory
    "ContestDirectory",
    "list_contests", "get_contest", "get_contest_by_name", "save_contest",
    "list_participations", "list_contest_participants", "save_participant",
    "list_notifications", "save_notification",
    # dialog state
    "DialogStateStore",
    # credentials
    "generate_random_string", "make_login", "make_password", "assign_credentials",
]
