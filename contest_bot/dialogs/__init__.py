from contest_bot.dialogs.state import (
    DialogState,
    DialogType,
    ChooseContestStep,
    RegistrationStep,
    ChooseContestValues,
    RegistrationValues,
)
from contest_bot.dialogs.registry import DialogRegistry, StepResult, build_registry
from contest_bot.dialogs.engine import DialogEngine, DispatchOutcome, NotificationResult

__all__ = [
    # state
    "DialogState", "DialogType", "ChooseContestStep", "RegistrationStep",
    "ChooseContestValues", "RegistrationValues",
    # registry
    "DialogRegistry", "StepResult", "build_registry",
    # engine
    "DialogEngine", "DispatchOutcome", "NotificationResult",
]
