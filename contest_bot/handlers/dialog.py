"""
Entry point for chat messages: every text message goes through the dialog
engine, which either continues the sender's open dialog or runs a command.
"""
import logging

from aiogram import F, Router
from aiogram.types import Message

from contest_bot.dialogs import DialogEngine
from contest_bot.transport import InboundMessage

logger = logging.getLogger(__name__)
router = Router(name="dialog")


@router.message(F.text)
async def msg_dispatch(message: Message, engine: DialogEngine) -> None:
    outcome = await engine.dispatch(InboundMessage.from_message(message))
    logger.debug("chat %s: %s", message.chat.id, outcome.value)
