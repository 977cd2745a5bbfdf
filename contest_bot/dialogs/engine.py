"""
Dialog engine — drives every inbound chat message through the persisted
conversation of its sender.

For each message:
  load state → (none) command handler, which may open a dialog
             → cancel keyword? delete state, acknowledge
             → resolve (type, step) in the registry and run the step
             → step handed off? run the next step on the same message
             → done? delete state : save state

Turns of one participant are serialized with a per-participant lock, held
for the whole dispatch including handoffs. Different participants are
processed concurrently.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Set

from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.utils import markdown as md

from contest_bot.dialogs.registry import DialogRegistry, StepResult
from contest_bot.dialogs.state import DialogState
from contest_bot.dialogs.texts import CANCELLED, GENERIC_FAILURE, SAVE_FAILURE, esc
from contest_bot.errors import (
    DialogError,
    DuplicateRegistrationError,
    NotFoundError,
    PersistenceError,
    UnknownDialogError,
    ValidationFailure,
)
from contest_bot.transport import InboundMessage, Transport

if TYPE_CHECKING:
    from contest_bot.models.models import ContestParticipant
    from contest_bot.services.contest_service import ContestDirectory
    from contest_bot.services.dialog_state_service import DialogStateStore

DEFAULT_CANCEL_KEYWORD = "/cancel"
DEFAULT_MAX_HANDOFFS   = 2

# Expected outcomes of a step: logged quietly.
_EXPECTED_ERRORS = (ValidationFailure, DuplicateRegistrationError)


class DispatchOutcome(str, Enum):
    NO_DIALOG = "no_dialog"   # nothing open, command handler did not start a dialog
    CONTINUED = "continued"   # state saved, waiting for the next answer
    COMPLETED = "completed"   # dialog finished, state deleted
    CANCELLED = "cancelled"   # cancel keyword, state deleted
    RESET     = "reset"       # unknown / corrupted state, deleted
    FAILED    = "failed"      # state could not be loaded, saved or deleted


@dataclass(frozen=True)
class NotificationResult:
    participant_id: str
    delivered:      bool
    error:          Optional[str] = None


CommandHandler = Callable[["DialogEngine", InboundMessage], Awaitable[Optional[DialogState]]]


class DialogEngine:
    def __init__(
        self,
        registry: DialogRegistry,
        directory: ContestDirectory,
        states: DialogStateStore,
        transport: Transport,
        command_handler: Optional[CommandHandler] = None,
        cancel_keyword: str = DEFAULT_CANCEL_KEYWORD,
        max_handoffs: int = DEFAULT_MAX_HANDOFFS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.registry        = registry
        self.directory       = directory
        self.states          = states
        self.transport       = transport
        self.cancel_keyword  = cancel_keyword
        self.max_handoffs    = max_handoffs
        self.logger          = logger or logging.getLogger(__name__)
        self._command_handler = command_handler

        self._locks:       Dict[str, asyncio.Lock] = {}
        self._lock_users:  Dict[str, int] = {}
        self._broadcasts:  Set[asyncio.Task] = set()

    # ── Dispatch ──────────────────────────────────────────────────────────────

    async def dispatch(self, message: InboundMessage) -> DispatchOutcome:
        async with self._participant_lock(message.sender_id):
            try:
                state = await self.states.get(message.sender_id)
            except UnknownDialogError as e:
                return await self._reset(message, e)
            except PersistenceError as e:
                self.logger.error("unable to load dialog state %s: %s", message.sender_id, e)
                await self.reply(message, GENERIC_FAILURE)
                return DispatchOutcome.FAILED

            if state is None:
                if self._command_handler is None:
                    return DispatchOutcome.NO_DIALOG
                state = await self._command_handler(self, message)
                if state is None:
                    return DispatchOutcome.NO_DIALOG
                return await self._run(message, state)

            if message.text == self.cancel_keyword:
                return await self._cancel(message, state)

            return await self._run(message, state)

    async def _run(self, message: InboundMessage, state: DialogState) -> DispatchOutcome:
        handoffs = 0
        while True:
            try:
                handler = self.registry.resolve(state.dialog_type, state.dialog_step)
                result: StepResult = await handler(self, message, state)
            except UnknownDialogError as e:
                return await self._reset(message, e)
            except DialogError as e:
                return await self._abort(message, state, e)

            self._log_step_error(state, result.error)
            if not result.handoff:
                break

            handoffs += 1
            if handoffs > self.max_handoffs:
                self.logger.error(
                    "handoff limit %d exceeded at %s.%s",
                    self.max_handoffs, state.dialog_type, state.dialog_step,
                )
                return await self._reset(
                    message, UnknownDialogError(state.dialog_type, state.dialog_step)
                )

        if result.done:
            try:
                await self.states.delete(state.participant_id)
            except PersistenceError as e:
                self.logger.error("unable to delete dialog state %s: %s", state.participant_id, e)
                await self.reply(message, GENERIC_FAILURE)
                return DispatchOutcome.FAILED
            return DispatchOutcome.COMPLETED

        try:
            await self.states.upsert(state)
        except PersistenceError as e:
            self.logger.error("unable to save dialog state %s: %s", state.participant_id, e)
            await self.reply(message, SAVE_FAILURE)
            return DispatchOutcome.FAILED
        return DispatchOutcome.CONTINUED

    async def _cancel(self, message: InboundMessage, state: DialogState) -> DispatchOutcome:
        try:
            await self.states.delete(state.participant_id)
        except PersistenceError as e:
            self.logger.error("unable to delete dialog state %s: %s", state.participant_id, e)
            await self.reply(message, GENERIC_FAILURE)
            return DispatchOutcome.FAILED
        await self.remove_quick_replies(message, CANCELLED)
        return DispatchOutcome.CANCELLED

    async def _reset(self, message: InboundMessage, error: UnknownDialogError) -> DispatchOutcome:
        """Drop a state the registry cannot run. Exactly one reply either way."""
        self.logger.error("found unknown dialog state of %s: %s", message.sender_id, error)
        outcome = DispatchOutcome.RESET
        try:
            await self.states.delete(message.sender_id)
        except PersistenceError as e:
            self.logger.error("unable to delete dialog state %s: %s", message.sender_id, e)
            outcome = DispatchOutcome.FAILED
        await self.reply(message, GENERIC_FAILURE)
        return outcome

    async def _abort(
        self,
        message: InboundMessage,
        state: DialogState,
        error: DialogError,
    ) -> DispatchOutcome:
        """A step raised instead of reporting: end the conversation."""
        self.logger.error(
            "dialog step %s.%s failed for %s: %s",
            state.dialog_type, state.dialog_step, state.participant_id, error,
        )
        try:
            await self.states.delete(state.participant_id)
        except PersistenceError as e:
            self.logger.error("unable to delete dialog state %s: %s", state.participant_id, e)
        await self.reply(message, GENERIC_FAILURE)
        return DispatchOutcome.FAILED

    def _log_step_error(self, state: DialogState, error: Optional[Exception]) -> None:
        if error is None:
            return
        level = logging.INFO if isinstance(error, _EXPECTED_ERRORS) else logging.ERROR
        self.logger.log(
            level, "%s.%s: %s", state.dialog_type, state.dialog_step, error,
        )

    @asynccontextmanager
    async def _participant_lock(self, participant_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(participant_id)
        if lock is None:
            lock = self._locks[participant_id] = asyncio.Lock()
        self._lock_users[participant_id] = self._lock_users.get(participant_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[participant_id] -= 1
            if self._lock_users[participant_id] == 0:
                del self._lock_users[participant_id]
                del self._locks[participant_id]

    # ── Outbound ──────────────────────────────────────────────────────────────

    async def reply(
        self,
        message: InboundMessage,
        text: str,
        quick_replies: Optional[Sequence[str]] = None,
    ) -> Optional[Exception]:
        """Send MarkdownV2 text to the sender. A send failure is returned, not raised."""
        try:
            await self.transport.send(
                message.sender_id, text, ParseMode.MARKDOWN_V2, quick_replies
            )
        except TelegramAPIError as e:
            self.logger.error("unable to send message to %s: %s", message.sender_id, e)
            return e
        return None

    async def remove_quick_replies(
        self,
        message: InboundMessage,
        text: str = "...",
    ) -> Optional[Exception]:
        try:
            await self.transport.remove_quick_replies(message.sender_id, text)
        except TelegramAPIError as e:
            self.logger.error("unable to remove keyboard of %s: %s", message.sender_id, e)
            return e
        return None

    # ── Notifications ─────────────────────────────────────────────────────────

    async def notify_contest_participants(
        self,
        contest_id: int,
        text: str,
    ) -> "asyncio.Task[List[NotificationResult]]":
        """
        Start a broadcast of `text` to everyone registered for the contest.

        Raises NotFoundError / PersistenceError before anything is sent.
        The returned task resolves to one result per recipient; a failed
        delivery is logged and recorded, the rest still go out.
        """
        contest = await self.directory.get_contest(contest_id)
        if contest is None:
            raise NotFoundError(f"contest {contest_id} not found")
        participants = await self.directory.list_contest_participants(contest_id)

        header = md.bold(f'Оповещение участников контеста "{contest.name}"')
        message_text = f"{header}:\n\n{esc(text)}"

        task = asyncio.create_task(
            self._broadcast(contest_id, participants, message_text),
            name=f"notify-contest-{contest_id}",
        )
        self._broadcasts.add(task)
        task.add_done_callback(self._broadcasts.discard)
        return task

    async def _broadcast(
        self,
        contest_id: int,
        participants: Sequence[ContestParticipant],
        text: str,
    ) -> List[NotificationResult]:
        results: List[NotificationResult] = []
        for participant in participants:
            if not participant.participant_id:
                continue
            try:
                await self.transport.send(participant.participant_id, text, ParseMode.MARKDOWN_V2)
            except TelegramAPIError as e:
                self.logger.error(
                    "unable to send contest %d notification to %s: %s",
                    contest_id, participant.participant_id, e,
                )
                results.append(NotificationResult(participant.participant_id, False, str(e)))
                continue
            results.append(NotificationResult(participant.participant_id, True))
        self.logger.info(
            "contest %d notification delivered to %d of %d",
            contest_id, sum(r.delivered for r in results), len(results),
        )
        return results

    async def wait_broadcasts(self) -> None:
        """Let running broadcasts finish (used on shutdown)."""
        if self._broadcasts:
            await asyncio.gather(*list(self._broadcasts), return_exceptions=True)
