"""
Dialog state model.

A participant has at most one open dialog. Its position is the pair
(dialog_type, dialog_step); the answers collected so far live in a value
model chosen by the dialog type, so every step knows exactly which fields
it can read.

Type and step are kept as plain strings: a stored row may come from an
older or broken deployment, and the engine must be able to look at it
before deciding it is unusable.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, Field, ValidationError

from contest_bot.errors import UnknownDialogError
from contest_bot.models.models import DialogStateRecord


class DialogType(str, Enum):
    CHOOSE_CONTEST = "choose_contest"
    REGISTRATION   = "registration"


class ChooseContestStep(str, Enum):
    ZERO   = "zero"     # list open contests
    CHOICE = "choice"   # contest name received


class RegistrationStep(str, Enum):
    ZERO      = "zero"       # greeting, ask for name
    NAME      = "name"
    SCHOOL    = "school"
    CONTACTS  = "contacts"
    LANGUAGES = "languages"  # last answer, registration is saved


INITIAL_STEP = "zero"


# ── Values ────────────────────────────────────────────────────────────────────

class ChooseContestValues(BaseModel):
    dialog: Literal["choose_contest"] = "choose_contest"


class RegistrationValues(BaseModel):
    dialog:     Literal["registration"] = "registration"
    contest_id: int
    name:       str = ""
    school:     str = ""
    contacts:   str = ""
    languages:  str = ""


DialogValues = Annotated[
    Union[ChooseContestValues, RegistrationValues],
    Field(discriminator="dialog"),
]

V = TypeVar("V", ChooseContestValues, RegistrationValues)


def _enum_value(value: Union[str, Enum]) -> str:
    return value.value if isinstance(value, Enum) else value


# ── State ─────────────────────────────────────────────────────────────────────

class DialogState(BaseModel):
    participant_id: str
    dialog_type:    str
    dialog_step:    str
    values:         DialogValues = Field(default_factory=ChooseContestValues)

    @classmethod
    def start(
        cls,
        participant_id: str,
        dialog_type: DialogType,
        values: Optional[Union[ChooseContestValues, RegistrationValues]] = None,
    ) -> "DialogState":
        """Fresh dialog at its initial step."""
        return cls(
            participant_id=participant_id,
            dialog_type=dialog_type.value,
            dialog_step=INITIAL_STEP,
            values=values if values is not None else ChooseContestValues(),
        )

    def advance(self, step: Union[str, Enum]) -> None:
        self.dialog_step = _enum_value(step)

    def switch(
        self,
        dialog_type: DialogType,
        step: Union[str, Enum],
        values: Union[ChooseContestValues, RegistrationValues],
    ) -> None:
        """Point the state at another dialog (used for handoff)."""
        self.dialog_type = dialog_type.value
        self.dialog_step = _enum_value(step)
        self.values = values

    def values_as(self, model: Type[V]) -> V:
        """The values, checked against the model the calling step expects."""
        if not isinstance(self.values, model):
            raise UnknownDialogError(self.dialog_type, self.dialog_step)
        return self.values

    # ── Row conversion ────────────────────────────────────────────────────────

    @classmethod
    def from_record(cls, record: DialogStateRecord) -> "DialogState":
        """
        Rebuild a state from its row. Values that do not parse, or that
        belong to a different dialog than the row's type, make the whole
        state unusable.
        """
        stored = record.values if record.values is not None else {"dialog": record.dialog_type}
        if not isinstance(stored, dict):
            raise UnknownDialogError(record.dialog_type, record.dialog_step)
        raw: dict[str, Any] = dict(stored)
        try:
            state = cls(
                participant_id=record.participant_id,
                dialog_type=record.dialog_type,
                dialog_step=record.dialog_step,
                values=raw,
            )
        except ValidationError as e:
            raise UnknownDialogError(record.dialog_type, record.dialog_step) from e
        if state.values.dialog != state.dialog_type:
            raise UnknownDialogError(record.dialog_type, record.dialog_step)
        return state

    def record_fields(self) -> dict[str, Any]:
        return {
            "dialog_type": self.dialog_type,
            "dialog_step": self.dialog_step,
            "values":      self.values.model_dump(),
        }
