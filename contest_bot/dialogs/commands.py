"""
Commands, handled when the sender has no open dialog.

/start, /help, /contests          — information
/registration                     — opens the contest selection dialog
/notify <id> <text>               — admin: broadcast to a contest
/notifications <id>               — admin: list past broadcasts
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable, Optional

from aiogram.utils import markdown as md

from contest_bot.dialogs.state import DialogState, DialogType
from contest_bot.dialogs.texts import esc
from contest_bot.errors import NotFoundError, PersistenceError
from contest_bot.models.models import ContestNotification

if TYPE_CHECKING:
    from contest_bot.dialogs.engine import DialogEngine
    from contest_bot.transport import InboundMessage

logger = logging.getLogger(__name__)

BOT_DESCRIPTION = "Этот бот поможет зарегистрироваться на олимпиаду."


class CommandProcessor:
    """Command handler for DialogEngine. Returns a new dialog to start, if any."""

    def __init__(self, admin_ids: Iterable[str] = ()) -> None:
        self._admin_ids = frozenset(admin_ids)

    def is_admin(self, participant_id: str) -> bool:
        return participant_id in self._admin_ids

    async def __call__(self, engine: DialogEngine, message: InboundMessage) -> Optional[DialogState]:
        if not message.is_command:
            await engine.reply(message, esc("Пожалуйста, введите команду. Для справки введите /help"))
            return None

        name = message.command_name
        if name == "start":
            await engine.reply(message, esc(f"{BOT_DESCRIPTION} Для справки введите /help"))
        elif name == "help":
            await self._help(engine, message)
        elif name == "contests":
            await self._contests(engine, message)
        elif name == "registration":
            return DialogState.start(message.sender_id, DialogType.CHOOSE_CONTEST)
        elif name == "cancel":
            await engine.reply(message, esc("Нечего отменять"))
        elif name == "notify" and self.is_admin(message.sender_id):
            await self._notify(engine, message)
        elif name == "notifications" and self.is_admin(message.sender_id):
            await self._notifications(engine, message)
        else:
            await engine.reply(message, esc("Не знаю такой команды :("))
        return None

    # ── Participants ──────────────────────────────────────────────────────────

    async def _help(self, engine: DialogEngine, message: InboundMessage) -> None:
        lines = [
            f"{BOT_DESCRIPTION} Доступные команды:",
            "/help - справка",
            "/contests - список контестов и сведения о регистрации",
            "/registration - регистрация на контест",
            f"{engine.cancel_keyword} - отменить регистрацию",
        ]
        if self.is_admin(message.sender_id):
            lines += [
                "/notify <id> <текст> - оповестить участников контеста",
                "/notifications <id> - отправленные оповещения",
            ]
        await engine.reply(message, esc("\n".join(lines)))

    async def _contests(self, engine: DialogEngine, message: InboundMessage) -> None:
        try:
            contests = await engine.directory.list_contests()
        except PersistenceError as e:
            logger.error("/contests: unable to get contests: %s", e)
            await engine.reply(message, esc("Не удалось найти контесты :("))
            return
        try:
            participation = await engine.directory.list_participations(message.sender_id)
        except PersistenceError as e:
            logger.error("/contests: unable to get participation: %s", e)
            await engine.reply(message, esc("Не удалось найти регистрации на контесты :("))
            return
        registrations = {p.contest_id: p for p in participation}

        blocks = []
        for contest in contests:
            if contest.hidden:
                continue
            lines = [
                md.bold(contest.name),
                f"{md.bold('Что:')} {esc(contest.description)}",
                f"{md.bold('Где:')} {esc(contest.where)}",
                f"{md.bold('Когда:')} {esc(contest.when)}",
            ]
            if contest.closed:
                lines.append(md.italic("Регистрация на контест закрыта"))
            participant = registrations.get(contest.id)
            if participant is not None:
                lines += [
                    md.italic("Есть регистрация на контест"),
                    f"{md.bold('Имя:')} {esc(participant.name)}",
                    f"{md.bold('Школа/ВУЗ:')} {esc(participant.school)}",
                    f"{md.bold('Логин:')} {md.code(participant.login)}",
                    f"{md.bold('Пароль:')} {md.code(participant.password)}",
                ]
            blocks.append("\n".join(lines))

        if not blocks:
            await engine.reply(message, esc("Сейчас контестов нет"))
            return
        await engine.reply(message, esc("Найдены контесты:") + "\n\n" + "\n\n".join(blocks))

    # ── Admin ─────────────────────────────────────────────────────────────────

    async def _notify(self, engine: DialogEngine, message: InboundMessage) -> None:
        contest_arg, _, text = message.command_args.partition(" ")
        text = text.strip()
        if not contest_arg.isdigit() or not text:
            await engine.reply(message, esc("Формат: /notify <id контеста> <текст>"))
            return
        contest_id = int(contest_arg)

        try:
            contest = await engine.directory.get_contest(contest_id)
            if contest is None:
                raise NotFoundError(f"contest {contest_id} not found")
            await engine.directory.save_notification(
                ContestNotification(contest_id=contest_id, message=text)
            )
            await engine.notify_contest_participants(contest_id, text)
        except NotFoundError as e:
            logger.info("/notify: %s", e)
            await engine.reply(message, esc("Контест не найден :("))
            return
        except PersistenceError as e:
            logger.error("/notify: %s", e)
            await engine.reply(message, esc("Не удалось отправить оповещение :("))
            return

        logger.info("/notify: broadcast to contest %d started by %s", contest_id, message.sender_id)
        await engine.reply(message, esc(f"Оповещение участников контеста \"{contest.name}\" отправляется"))

    async def _notifications(self, engine: DialogEngine, message: InboundMessage) -> None:
        contest_arg = message.command_args.strip()
        if not contest_arg.isdigit():
            await engine.reply(message, esc("Формат: /notifications <id контеста>"))
            return
        try:
            notifications = await engine.directory.list_notifications(int(contest_arg))
        except PersistenceError as e:
            logger.error("/notifications: %s", e)
            await engine.reply(message, esc("Не удалось получить оповещения :("))
            return

        if not notifications:
            await engine.reply(message, esc("Оповещений не было"))
            return
        lines = [f"{md.bold(f'#{n.id}')} {esc(n.message)}" for n in notifications]
        await engine.reply(message, "\n\n".join(lines))
