"""
Error taxonomy shared by the dialog engine, step handlers and storage services.
"""
from __future__ import annotations


class DialogError(Exception):
    """Base class for everything the dialog layer raises or reports."""


class NotFoundError(DialogError):
    """Contest or participant record is absent."""


class ValidationFailure(DialogError):
    """Free-text answer was empty or unusable; the step re-prompts."""


class DuplicateRegistrationError(DialogError):
    """Participant is already registered for the chosen contest."""

    def __init__(self, participant_id: str, contest_id: int) -> None:
        super().__init__(f"double registration of {participant_id} to contest {contest_id}")
        self.participant_id = participant_id
        self.contest_id = contest_id


class UnknownDialogError(DialogError):
    """Persisted (dialog type, step) pair is not in the registry."""

    def __init__(self, dialog_type: str, dialog_step: str) -> None:
        super().__init__(f"unknown dialog step: {dialog_type}.{dialog_step}")
        self.dialog_type = dialog_type
        self.dialog_step = dialog_step


class PersistenceError(DialogError):
    """A state or contest record could not be read, written or deleted."""
