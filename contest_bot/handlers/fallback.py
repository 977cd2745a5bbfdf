"""
Global fallback handler — included LAST in the dispatcher.

Dialogs only understand text; stickers, photos, voice and the like get a
hint instead of silently disappearing.
"""
from aiogram import Router
from aiogram.types import Message

router = Router(name="fallback")


@router.message()
async def msg_fallback(message: Message) -> None:
    await message.answer("Пожалуйста, отправьте текстовое сообщение. Для справки введите /help")
