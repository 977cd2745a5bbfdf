"""
"Choose contest" dialog.

  zero   → list open contests as buttons
  choice → validate the tapped name, then hand off to registration
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from contest_bot.dialogs.registry import StepResult
from contest_bot.dialogs.state import (
    ChooseContestStep,
    DialogState,
    DialogType,
    RegistrationStep,
    RegistrationValues,
)
from contest_bot.dialogs.texts import SOMETHING_WRONG, esc
from contest_bot.errors import DuplicateRegistrationError, NotFoundError, PersistenceError

if TYPE_CHECKING:
    from contest_bot.dialogs.engine import DialogEngine
    from contest_bot.transport import InboundMessage


async def step_zero(engine: DialogEngine, message: InboundMessage, state: DialogState) -> StepResult:
    try:
        contests = await engine.directory.list_contests()
    except PersistenceError as e:
        await engine.reply(message, esc("Не удалось найти контесты :("))
        return StepResult.finish(e)

    names = [contest.name for contest in contests if contest.is_open]
    if not names:
        error = await engine.reply(message, esc("Доступных для регистрации контестов нет"))
        return StepResult.finish(error)

    error = await engine.reply(
        message,
        esc("Выберите доступный для регистрации контест.\nНажмите на кнопку с названием контеста"),
        quick_replies=names,
    )
    state.advance(ChooseContestStep.CHOICE)
    return StepResult.proceed(error)


async def step_choice(engine: DialogEngine, message: InboundMessage, state: DialogState) -> StepResult:
    error = await engine.remove_quick_replies(message)
    if error is not None:
        await engine.reply(message, SOMETHING_WRONG)
        return StepResult.finish(error)

    try:
        contest = await engine.directory.get_contest_by_name(message.text)
    except PersistenceError as e:
        await engine.reply(message, esc("Не удалось найти контест с указанным именем :("))
        return StepResult.finish(e)

    # The contest list may have changed since the buttons were shown.
    if contest is None:
        await engine.reply(message, esc("Контест не найден :("))
        return StepResult.finish(NotFoundError(f"contest {message.text!r} not found"))
    if contest.hidden:
        await engine.reply(message, esc("Этот контест больше не существует :("))
        return StepResult.finish(NotFoundError(f"request of hidden contest {contest.id}"))
    if contest.closed:
        await engine.reply(message, esc("Регистрация на этот контест закрыта :("))
        return StepResult.finish(NotFoundError(f"request of closed contest {contest.id}"))

    try:
        participations = await engine.directory.list_participations(state.participant_id)
    except PersistenceError as e:
        await engine.reply(message, SOMETHING_WRONG)
        return StepResult.finish(e)

    if any(p.contest_id == contest.id for p in participations):
        await engine.reply(message, esc("На этот контест уже есть регистрация"))
        return StepResult.finish(DuplicateRegistrationError(state.participant_id, contest.id))

    state.switch(
        DialogType.REGISTRATION,
        RegistrationStep.ZERO,
        RegistrationValues(contest_id=contest.id),
    )
    return StepResult.hand_off()


CHOOSE_CONTEST_STEPS = {
    ChooseContestStep.ZERO.value:   step_zero,
    ChooseContestStep.CHOICE.value: step_choice,
}
