"""
Dialog registry: which coroutine handles a given (dialog type, step).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Mapping, Optional

from contest_bot.errors import UnknownDialogError

if TYPE_CHECKING:
    from contest_bot.dialogs.engine import DialogEngine
    from contest_bot.dialogs.state import DialogState
    from contest_bot.transport import InboundMessage


@dataclass(frozen=True)
class StepResult:
    """
    done    — conversation is over, the engine deletes the state
    error   — logged by the engine; the handler has already replied
    handoff — the handler re-pointed the state at another dialog,
              the engine runs the new step on the same message
    """
    done:    bool = False
    error:   Optional[Exception] = None
    handoff: bool = False

    @classmethod
    def finish(cls, error: Optional[Exception] = None) -> "StepResult":
        return cls(done=True, error=error)

    @classmethod
    def proceed(cls, error: Optional[Exception] = None) -> "StepResult":
        return cls(done=False, error=error)

    @classmethod
    def hand_off(cls) -> "StepResult":
        return cls(handoff=True)


StepHandler = Callable[["DialogEngine", "InboundMessage", "DialogState"], Awaitable[StepResult]]
DialogSteps = Mapping[str, StepHandler]


class DialogRegistry:
    """Immutable lookup table built once at startup."""

    def __init__(self, dialogs: Mapping[str, DialogSteps]) -> None:
        self._dialogs: Dict[str, Dict[str, StepHandler]] = {
            dialog_type: dict(steps) for dialog_type, steps in dialogs.items()
        }

    def resolve(self, dialog_type: str, dialog_step: str) -> StepHandler:
        steps = self._dialogs.get(dialog_type)
        if steps is None or dialog_step not in steps:
            raise UnknownDialogError(dialog_type, dialog_step)
        return steps[dialog_step]

    def __contains__(self, key: tuple[str, str]) -> bool:
        dialog_type, dialog_step = key
        return dialog_step in self._dialogs.get(dialog_type, {})


def build_registry() -> DialogRegistry:
    """The bot's dialogs: contest selection and registration."""
    from contest_bot.dialogs.choose_contest import CHOOSE_CONTEST_STEPS
    from contest_bot.dialogs.registration import REGISTRATION_STEPS
    from contest_bot.dialogs.state import DialogType

    return DialogRegistry({
        DialogType.CHOOSE_CONTEST.value: CHOOSE_CONTEST_STEPS,
        DialogType.REGISTRATION.value:   REGISTRATION_STEPS,
    })
