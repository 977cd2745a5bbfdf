"""
Contest registration dialog.

Flow:
  zero → name → school → contacts → languages → saved, credentials sent ✅

Each answer is trimmed and capped; an empty answer repeats the same
question. Languages is the last step and may be left empty.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from aiogram.utils import markdown as md

from contest_bot.dialogs.registry import StepHandler, StepResult
from contest_bot.dialogs.state import DialogState, RegistrationStep, RegistrationValues
from contest_bot.dialogs.texts import esc
from contest_bot.errors import DuplicateRegistrationError, PersistenceError, ValidationFailure
from contest_bot.models.models import (
    CONTACTS_MAX_LENGTH,
    LANGUAGES_MAX_LENGTH,
    NAME_MAX_LENGTH,
    SCHOOL_MAX_LENGTH,
    ContestParticipant,
)
from contest_bot.validators import RegistrationData, clip_text

if TYPE_CHECKING:
    from contest_bot.dialogs.engine import DialogEngine
    from contest_bot.transport import InboundMessage


@dataclass(frozen=True)
class _Question:
    field:        str
    max_length:   int
    next_step:    RegistrationStep
    next_prompt:  str
    retry_prompt: str


_QUESTIONS = {
    RegistrationStep.NAME: _Question(
        field="name",
        max_length=NAME_MAX_LENGTH,
        next_step=RegistrationStep.SCHOOL,
        next_prompt="Введите название Вашей школы или ВУЗа, а также класс (или курс и группу):",
        retry_prompt="Попробуйте ввести имя еще раз",
    ),
    RegistrationStep.SCHOOL: _Question(
        field="school",
        max_length=SCHOOL_MAX_LENGTH,
        next_step=RegistrationStep.CONTACTS,
        next_prompt="Введите Ваши контактные данные (номер телефона и адрес электронной почты):",
        retry_prompt="Попробуйте ввести название образовательной организации еще раз",
    ),
    RegistrationStep.CONTACTS: _Question(
        field="contacts",
        max_length=CONTACTS_MAX_LENGTH,
        next_step=RegistrationStep.LANGUAGES,
        next_prompt="И последний вопрос, какие предпочитаете языки и среды программирования:",
        retry_prompt="Попробуйте ввести контакты еще раз",
    ),
}


async def step_zero(engine: DialogEngine, message: InboundMessage, state: DialogState) -> StepResult:
    state.values_as(RegistrationValues)
    state.advance(RegistrationStep.NAME)
    error = await engine.reply(message, esc("Начинаем регистрацию на контест. Введите Ваше имя:"))
    return StepResult.proceed(error)


def _question_step(question: _Question) -> StepHandler:
    async def step(engine: DialogEngine, message: InboundMessage, state: DialogState) -> StepResult:
        values = state.values_as(RegistrationValues)
        answer = clip_text(message.text, question.max_length)
        if not answer:
            error = await engine.reply(message, esc(question.retry_prompt))
            return StepResult.proceed(error or ValidationFailure(f"empty {question.field}"))

        setattr(values, question.field, answer)
        state.advance(question.next_step)
        error = await engine.reply(message, esc(question.next_prompt))
        return StepResult.proceed(error)

    step.__name__ = f"step_{question.field}"
    return step


def _credentials_text(header: str, participant: ContestParticipant) -> str:
    return (
        f"{esc(header)}\n"
        f"{md.bold('Логин:')} {md.code(participant.login)}\n"
        f"{md.bold('Пароль:')} {md.code(participant.password)}"
    )


async def step_languages(engine: DialogEngine, message: InboundMessage, state: DialogState) -> StepResult:
    values = state.values_as(RegistrationValues)
    values.languages = clip_text(message.text, LANGUAGES_MAX_LENGTH)

    # The state outlives the saved row when its deletion failed; the step may run again.
    try:
        participations = await engine.directory.list_participations(state.participant_id)
    except PersistenceError as e:
        await engine.reply(message, esc("Не удалось зарегистрироваться на контест. Попробуйте еще раз"))
        return StepResult.finish(e)
    existing = next((p for p in participations if p.contest_id == values.contest_id), None)
    if existing is not None:
        await engine.reply(message, _credentials_text("На этот контест уже есть регистрация", existing))
        return StepResult.finish(DuplicateRegistrationError(state.participant_id, values.contest_id))

    data = RegistrationData(
        name=values.name,
        school=values.school,
        contacts=values.contacts,
        languages=values.languages,
    )
    participant = ContestParticipant(
        participant_id=state.participant_id,
        contest_id=values.contest_id,
        **data.model_dump(),
    )
    try:
        participant = await engine.directory.save_participant(participant)
    except PersistenceError as e:
        await engine.reply(message, esc("Не удалось зарегистрироваться на контест. Попробуйте еще раз"))
        return StepResult.finish(e)

    return StepResult.finish(
        await engine.reply(message, _credentials_text("Регистрация завершена :)", participant))
    )


REGISTRATION_STEPS = {
    RegistrationStep.ZERO.value:      step_zero,
    **{step.value: _question_step(question) for step, question in _QUESTIONS.items()},
    RegistrationStep.LANGUAGES.value: step_languages,
}
