"""
Integration tests — dialog engine with real storage and a recording transport.

Coverage:
  - /registration → contest choice → registration → credentials (end to end)
  - Cancel keyword at every step
  - Duplicate registration, hidden / closed / unknown contests, no contests
  - Empty answers re-prompt, long answers are clipped by characters
  - Unknown or corrupted persisted state is deleted with a single reply
  - Handoff limit, per-participant serialization
  - Failed state load / save / delete: one failure reply, no second registration
"""
from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest
from aiogram.utils import markdown as md
from sqlalchemy import text

from contest_bot.dialogs import (
    DialogEngine,
    DialogRegistry,
    DialogState,
    DialogType,
    DispatchOutcome,
    RegistrationValues,
    StepResult,
)
from contest_bot.dialogs.texts import CANCELLED, GENERIC_FAILURE, SAVE_FAILURE, esc
from contest_bot.errors import PersistenceError
from contest_bot.models.models import ContestParticipant, DialogStateRecord
from contest_bot.services import DialogStateStore
from tests.conftest import inbound

PID = "555"

ANSWERS = ["Petrov P. P.", "School #5, grade 10", "+7-000-000-00-00", "Python"]


async def _send(engine: DialogEngine, *texts: str, sender: str = PID) -> List[DispatchOutcome]:
    return [await engine.dispatch(inbound(sender, text)) for text in texts]


# ─────────────────────────── End to end ───────────────────────────────────────

class TestRegistrationFlow:
    async def test_full_scenario(self, dialog_engine, directory, states, transport, make_contest) -> None:
        contest = await make_contest("Winter Cup")
        await make_contest("Closed Cup", closed=True)
        await make_contest("Secret Cup", hidden=True)

        # /registration opens the contest choice and lists open contests
        assert await dialog_engine.dispatch(inbound(PID, "/registration")) == DispatchOutcome.CONTINUED
        assert transport.last.quick_replies == ["Winter Cup"]
        state = await states.get(PID)
        assert (state.dialog_type, state.dialog_step) == ("choose_contest", "choice")

        # choice hands off to registration and asks for the name in the same turn
        assert await dialog_engine.dispatch(inbound(PID, "Winter Cup")) == DispatchOutcome.CONTINUED
        assert "Введите Ваше имя" in transport.last.text
        state = await states.get(PID)
        assert (state.dialog_type, state.dialog_step) == ("registration", "name")
        assert state.values == RegistrationValues(contest_id=contest.id)

        expected_steps = ["school", "contacts", "languages"]
        for answer, step in zip(ANSWERS, expected_steps):
            assert await dialog_engine.dispatch(inbound(PID, answer)) == DispatchOutcome.CONTINUED
            assert (await states.get(PID)).dialog_step == step

        assert await dialog_engine.dispatch(inbound(PID, "Python")) == DispatchOutcome.COMPLETED
        assert await states.get(PID) is None

        [row] = await directory.list_participations(PID)
        assert row.contest_id == contest.id
        assert (row.name, row.school, row.contacts, row.languages) == tuple(ANSWERS)
        assert row.login.startswith("p_") and len(row.login) == 7
        assert len(row.password) == 10

        final = transport.last.text
        assert "Регистрация завершена" in final
        assert md.code(row.login) in final
        assert md.code(row.password) in final

    async def test_outbound_goes_to_sender_only(self, dialog_engine, transport, make_contest) -> None:
        await make_contest("Winter Cup")
        await _send(dialog_engine, "/registration", "Winter Cup")
        assert {m.recipient_id for m in transport.sent} == {PID}

    async def test_choice_removes_keyboard(self, dialog_engine, transport, make_contest) -> None:
        await make_contest("Winter Cup")
        await _send(dialog_engine, "/registration")
        transport.sent.clear()

        await _send(dialog_engine, "Winter Cup")
        assert transport.sent[0].removes_keyboard

    async def test_languages_may_be_blank(self, dialog_engine, directory, make_contest) -> None:
        await make_contest("Winter Cup")
        outcomes = await _send(dialog_engine, "/registration", "Winter Cup", *ANSWERS[:3], "   ")
        assert outcomes[-1] == DispatchOutcome.COMPLETED
        [row] = await directory.list_participations(PID)
        assert row.languages == ""

    async def test_participants_do_not_share_state(self, dialog_engine, directory, states, make_contest) -> None:
        await make_contest("Winter Cup")
        await _send(dialog_engine, "/registration", "Winter Cup", sender="1")
        await _send(dialog_engine, "/registration", sender="2")

        assert (await states.get("1")).dialog_step == "name"
        assert (await states.get("2")).dialog_step == "choice"


# ─────────────────────────── Cancel ───────────────────────────────────────────

class TestCancel:
    @pytest.mark.parametrize("answers_before_cancel", range(0, 5))
    async def test_cancel_at_any_step(
        self, dialog_engine, directory, states, transport, make_contest, answers_before_cancel: int
    ) -> None:
        await make_contest("Winter Cup")
        script = ["/registration", "Winter Cup", *ANSWERS[:3]][: answers_before_cancel + 1]
        await _send(dialog_engine, *script)
        assert await states.get(PID) is not None

        assert await dialog_engine.dispatch(inbound(PID, "/cancel")) == DispatchOutcome.CANCELLED
        assert await states.get(PID) is None
        assert await directory.list_participations(PID) == []
        assert transport.last.text == CANCELLED
        assert transport.last.removes_keyboard

    async def test_cancel_beats_step_dispatch(self, dialog_engine, states, transport) -> None:
        # Even a broken state is cancelled rather than reset.
        await states.upsert(DialogState(
            participant_id=PID, dialog_type="registration", dialog_step="nowhere",
            values=RegistrationValues(contest_id=1),
        ))
        assert await dialog_engine.dispatch(inbound(PID, "/cancel")) == DispatchOutcome.CANCELLED
        assert transport.texts() == [CANCELLED]

    async def test_custom_cancel_keyword(self, directory, states, transport, make_contest) -> None:
        from contest_bot.dialogs import build_registry
        from contest_bot.dialogs.commands import CommandProcessor

        engine = DialogEngine(
            build_registry(), directory, states, transport,
            command_handler=CommandProcessor(), cancel_keyword="стоп",
        )
        await make_contest("Winter Cup")
        await _send(engine, "/registration")

        assert await engine.dispatch(inbound(PID, "стоп")) == DispatchOutcome.CANCELLED
        assert await states.get(PID) is None

    async def test_cancel_without_dialog(self, dialog_engine, transport) -> None:
        assert await dialog_engine.dispatch(inbound(PID, "/cancel")) == DispatchOutcome.NO_DIALOG
        assert "Нечего отменять" in transport.last.text


# ─────────────────────────── Contest choice ───────────────────────────────────

class TestChooseContest:
    async def test_no_open_contests(self, dialog_engine, states, transport, make_contest) -> None:
        await make_contest("Closed Cup", closed=True)
        await make_contest("Secret Cup", hidden=True)

        assert await dialog_engine.dispatch(inbound(PID, "/registration")) == DispatchOutcome.COMPLETED
        assert "контестов нет" in transport.last.text
        assert await states.get(PID) is None

    @pytest.mark.parametrize("choice,reply", [
        ("Closed Cup", "Регистрация на этот контест закрыта"),
        ("Secret Cup", "Этот контест больше не существует"),
        ("Summer Cup", "Контест не найден"),
    ])
    async def test_unavailable_choice(
        self, dialog_engine, directory, states, transport, make_contest, choice: str, reply: str
    ) -> None:
        await make_contest("Winter Cup")
        await make_contest("Closed Cup", closed=True)
        await make_contest("Secret Cup", hidden=True)
        await _send(dialog_engine, "/registration")

        assert await dialog_engine.dispatch(inbound(PID, choice)) == DispatchOutcome.COMPLETED
        assert reply in transport.last.text
        assert await states.get(PID) is None
        assert await directory.list_participations(PID) == []

    async def test_contest_closed_after_listing(self, dialog_engine, directory, transport, make_contest) -> None:
        contest = await make_contest("Winter Cup")
        await _send(dialog_engine, "/registration")

        contest.closed = True
        await directory.save_contest(contest)

        await _send(dialog_engine, "Winter Cup")
        assert "закрыта" in transport.last.text

    async def test_duplicate_registration_refused(
        self, dialog_engine, directory, states, transport, make_contest
    ) -> None:
        contest = await make_contest("Winter Cup")
        await directory.save_participant(
            ContestParticipant(participant_id=PID, contest_id=contest.id, name="Petrov")
        )

        outcomes = await _send(dialog_engine, "/registration", "Winter Cup")
        assert outcomes == [DispatchOutcome.CONTINUED, DispatchOutcome.COMPLETED]
        assert "уже есть регистрация" in transport.last.text
        assert await states.get(PID) is None
        assert len(await directory.list_participations(PID)) == 1

    async def test_registration_for_other_contest_allowed(
        self, dialog_engine, directory, states, make_contest
    ) -> None:
        first = await make_contest("Autumn Cup")
        await make_contest("Winter Cup")
        await directory.save_participant(ContestParticipant(participant_id=PID, contest_id=first.id))

        await _send(dialog_engine, "/registration", "Winter Cup")
        assert (await states.get(PID)).dialog_type == "registration"


# ─────────────────────────── Answers ──────────────────────────────────────────

class TestAnswers:
    @pytest.mark.parametrize("answered,step,retry", [
        (0, "name", "Попробуйте ввести имя еще раз"),
        (1, "school", "Попробуйте ввести название образовательной организации еще раз"),
        (2, "contacts", "Попробуйте ввести контакты еще раз"),
    ])
    async def test_empty_answer_reprompts_same_step(
        self, dialog_engine, states, transport, make_contest, answered: int, step: str, retry: str
    ) -> None:
        await make_contest("Winter Cup")
        await _send(dialog_engine, "/registration", "Winter Cup", *ANSWERS[:answered])
        before = await states.get(PID)

        assert await dialog_engine.dispatch(inbound(PID, "  \n ")) == DispatchOutcome.CONTINUED
        after = await states.get(PID)
        assert after == before
        assert after.dialog_step == step
        assert transport.last.text == esc(retry)

    async def test_long_answers_clipped_by_characters(
        self, dialog_engine, directory, make_contest
    ) -> None:
        await make_contest("Winter Cup")
        name = "Я" * 250
        school = "ш" * 300
        contacts = "к" * 150
        languages = "L" * 250

        await _send(dialog_engine, "/registration", "Winter Cup", name, school, contacts, languages)

        [row] = await directory.list_participations(PID)
        assert row.name == name[:100]
        assert row.school == school[:200]
        assert row.contacts == contacts[:100]
        assert row.languages == languages[:200]


# ─────────────────────────── Self-healing ─────────────────────────────────────

class TestUnknownState:
    async def test_unknown_step_deleted_with_one_reply(self, dialog_engine, states, transport) -> None:
        await states.upsert(DialogState(
            participant_id=PID, dialog_type="registration", dialog_step="age",
            values=RegistrationValues(contest_id=1),
        ))

        assert await dialog_engine.dispatch(inbound(PID, "hello")) == DispatchOutcome.RESET
        assert await states.get(PID) is None
        assert transport.texts() == [GENERIC_FAILURE]

    async def test_unknown_type_deleted_with_one_reply(
        self, dialog_engine, session_factory, states, transport
    ) -> None:
        async with session_factory() as session:
            session.add(DialogStateRecord(
                participant_id=PID, dialog_type="quiz", dialog_step="zero", values=None,
            ))
            await session.commit()

        assert await dialog_engine.dispatch(inbound(PID, "hello")) == DispatchOutcome.RESET
        assert await states.get(PID) is None
        assert transport.texts() == [GENERIC_FAILURE]

    async def test_undecodable_values_deleted_with_one_reply(
        self, dialog_engine, session_factory, states, transport
    ) -> None:
        async with session_factory() as session:
            await session.execute(text(
                "INSERT INTO dialog_states (participant_id, dialog_type, dialog_step, \"values\") "
                f"VALUES ('{PID}', 'registration', 'name', '{{not json')"
            ))
            await session.commit()

        assert await dialog_engine.dispatch(inbound(PID, "hello")) == DispatchOutcome.RESET
        assert await states.get(PID) is None
        assert transport.texts() == [GENERIC_FAILURE]

    @pytest.mark.parametrize("values", ["garbage", [1, 2], 7])
    async def test_non_object_values_deleted_with_one_reply(
        self, dialog_engine, session_factory, states, transport, values
    ) -> None:
        async with session_factory() as session:
            session.add(DialogStateRecord(
                participant_id=PID, dialog_type="registration", dialog_step="name", values=values,
            ))
            await session.commit()

        assert await dialog_engine.dispatch(inbound(PID, "hello")) == DispatchOutcome.RESET
        assert await states.get(PID) is None
        assert transport.texts() == [GENERIC_FAILURE]

    async def test_next_message_after_reset_runs_commands(self, dialog_engine, states, transport) -> None:
        await states.upsert(DialogState(
            participant_id=PID, dialog_type="registration", dialog_step="age",
            values=RegistrationValues(contest_id=1),
        ))
        await _send(dialog_engine, "hello", "/start")
        assert "зарегистрироваться на олимпиаду" in transport.last.text

    async def test_handoff_limit(self, directory, states, transport) -> None:
        calls: List[str] = []

        async def bounce(engine, message, state) -> StepResult:
            calls.append(state.dialog_step)
            return StepResult.hand_off()

        async def start(engine, message) -> Optional[DialogState]:
            return DialogState.start(message.sender_id, DialogType.CHOOSE_CONTEST)

        engine = DialogEngine(
            DialogRegistry({"choose_contest": {"zero": bounce}}),
            directory, states, transport,
            command_handler=start, max_handoffs=2,
        )

        assert await engine.dispatch(inbound(PID, "/anything")) == DispatchOutcome.RESET
        assert len(calls) == 3
        assert transport.texts() == [GENERIC_FAILURE]
        assert await states.get(PID) is None


# ─────────────────────────── Persistence failures ─────────────────────────────

class _FailingUpsertStore(DialogStateStore):
    async def upsert(self, state: DialogState) -> None:
        raise PersistenceError("disk full")


class _FailingGetStore(DialogStateStore):
    async def get(self, participant_id: str) -> Optional[DialogState]:
        raise PersistenceError("database is locked")


class _FailingDeleteStore(DialogStateStore):
    async def delete(self, participant_id: str) -> None:
        raise PersistenceError("database is locked")


class TestPersistenceFailures:
    async def test_save_failure_is_reported(
        self, session_factory, directory, transport, make_contest
    ) -> None:
        from contest_bot.dialogs import build_registry
        from contest_bot.dialogs.commands import CommandProcessor

        await make_contest("Winter Cup")
        engine = DialogEngine(
            build_registry(), directory, _FailingUpsertStore(session_factory), transport,
            command_handler=CommandProcessor(),
        )
        assert await engine.dispatch(inbound(PID, "/registration")) == DispatchOutcome.FAILED
        assert transport.last.text == SAVE_FAILURE

    async def test_load_failure_is_reported(self, session_factory, directory, transport) -> None:
        from contest_bot.dialogs import build_registry

        engine = DialogEngine(build_registry(), directory, _FailingGetStore(session_factory), transport)
        assert await engine.dispatch(inbound(PID, "hello")) == DispatchOutcome.FAILED
        assert transport.texts() == [GENERIC_FAILURE]

    async def test_send_failure_does_not_break_dispatch(
        self, dialog_engine, states, transport, make_contest
    ) -> None:
        await make_contest("Winter Cup")
        transport.failing.add(PID)

        assert await dialog_engine.dispatch(inbound(PID, "/registration")) == DispatchOutcome.CONTINUED
        assert (await states.get(PID)).dialog_step == "choice"

    @staticmethod
    def _engine_without_delete(session_factory, directory, transport) -> DialogEngine:
        from contest_bot.dialogs import build_registry
        from contest_bot.dialogs.commands import CommandProcessor

        return DialogEngine(
            build_registry(), directory, _FailingDeleteStore(session_factory), transport,
            command_handler=CommandProcessor(),
        )

    async def test_cancel_delete_failure(self, session_factory, directory, transport, make_contest) -> None:
        await make_contest("Winter Cup")
        engine = self._engine_without_delete(session_factory, directory, transport)
        await _send(engine, "/registration")
        transport.sent.clear()

        assert await engine.dispatch(inbound(PID, "/cancel")) == DispatchOutcome.FAILED
        assert transport.texts() == [GENERIC_FAILURE]

    async def test_reset_delete_failure(self, session_factory, directory, states, transport) -> None:
        await states.upsert(DialogState(
            participant_id=PID, dialog_type="registration", dialog_step="age",
            values=RegistrationValues(contest_id=1),
        ))
        engine = self._engine_without_delete(session_factory, directory, transport)

        assert await engine.dispatch(inbound(PID, "hello")) == DispatchOutcome.FAILED
        assert transport.texts() == [GENERIC_FAILURE]

    async def test_completion_delete_failure_keeps_single_registration(
        self, session_factory, directory, transport, make_contest
    ) -> None:
        await make_contest("Winter Cup")
        engine = self._engine_without_delete(session_factory, directory, transport)
        await _send(engine, "/registration", "Winter Cup", *ANSWERS[:3])
        transport.sent.clear()

        assert await engine.dispatch(inbound(PID, "Python")) == DispatchOutcome.FAILED
        assert transport.texts().count(GENERIC_FAILURE) == 1
        [row] = await directory.list_participations(PID)

        # state is still at the last step: answering again must not register twice
        transport.sent.clear()
        assert await engine.dispatch(inbound(PID, "Python")) == DispatchOutcome.FAILED
        assert len(await directory.list_participations(PID)) == 1
        assert "уже есть регистрация" in transport.texts()[0]
        assert md.code(row.login) in transport.texts()[0]
        assert transport.texts().count(GENERIC_FAILURE) == 1


# ─────────────────────────── Concurrency ──────────────────────────────────────

class TestSerialization:
    @staticmethod
    def _slow_engine(directory, states, transport, events: list) -> DialogEngine:
        async def slow(engine, message, state) -> StepResult:
            events.append(("start", message.sender_id, message.text))
            await asyncio.sleep(0.05)
            events.append(("end", message.sender_id, message.text))
            return StepResult.proceed()

        async def start(engine, message) -> Optional[DialogState]:
            return DialogState.start(message.sender_id, DialogType.CHOOSE_CONTEST)

        return DialogEngine(
            DialogRegistry({"choose_contest": {"zero": slow}}),
            directory, states, transport, command_handler=start,
        )

    async def test_same_participant_turns_do_not_interleave(self, directory, states, transport) -> None:
        events: list = []
        engine = self._slow_engine(directory, states, transport, events)

        await asyncio.gather(
            engine.dispatch(inbound(PID, "a")),
            engine.dispatch(inbound(PID, "b")),
        )
        kinds = [e[0] for e in events]
        assert kinds == ["start", "end", "start", "end"]
        assert events[0][2] == events[1][2]
        assert engine._locks == {}

    async def test_different_participants_run_concurrently(self, directory, states, transport) -> None:
        events: list = []
        engine = self._slow_engine(directory, states, transport, events)

        await asyncio.gather(
            engine.dispatch(inbound("1", "a")),
            engine.dispatch(inbound("2", "b")),
        )
        kinds = [e[0] for e in events]
        assert kinds[:2] == ["start", "start"]
