"""
Chat transport adapter.

The dialog layer only needs to read an inbound message and to send text,
optionally with quick-reply buttons. `InboundMessage` and the `Transport`
protocol describe that much; `AiogramTransport` implements it on top of
an aiogram Bot.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.types import Message

from contest_bot.keyboards import quick_replies_kb, remove_quick_replies_kb


@dataclass(frozen=True)
class InboundMessage:
    sender_id:    str
    text:         str
    is_command:   bool = False
    command_name: str  = ""
    command_args: str  = ""

    @classmethod
    def from_text(cls, sender_id: str, text: str) -> "InboundMessage":
        """Parse "/command@botname args" the way Telegram clients send it."""
        if not text.startswith("/") or len(text) < 2:
            return cls(sender_id=sender_id, text=text)
        head, _, args = text.partition(" ")
        name = head[1:].split("@", 1)[0]
        return cls(
            sender_id=sender_id,
            text=text,
            is_command=True,
            command_name=name,
            command_args=args.strip(),
        )

    @classmethod
    def from_message(cls, message: Message) -> "InboundMessage":
        return cls.from_text(str(message.chat.id), message.text or "")


class Transport(Protocol):
    async def send(
        self,
        recipient_id: str,
        text: str,
        parse_mode: Optional[str] = None,
        quick_replies: Optional[Sequence[str]] = None,
    ) -> None: ...

    async def remove_quick_replies(self, recipient_id: str, text: str = "...") -> None: ...


class AiogramTransport:
    """Transport over the Telegram Bot API."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send(
        self,
        recipient_id: str,
        text: str,
        parse_mode: Optional[str] = ParseMode.MARKDOWN_V2,
        quick_replies: Optional[Sequence[str]] = None,
    ) -> None:
        await self._bot.send_message(
            chat_id=recipient_id,
            text=text,
            parse_mode=parse_mode,
            reply_markup=quick_replies_kb(quick_replies) if quick_replies else None,
        )

    async def remove_quick_replies(self, recipient_id: str, text: str = "...") -> None:
        await self._bot.send_message(
            chat_id=recipient_id,
            text=text,
            reply_markup=remove_quick_replies_kb(),
        )
