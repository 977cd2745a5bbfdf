"""
Reply keyboards for the contest selection dialog.
"""
from typing import Sequence

from aiogram.types import KeyboardButton, ReplyKeyboardMarkup, ReplyKeyboardRemove
from aiogram.utils.keyboard import ReplyKeyboardBuilder


def quick_replies_kb(options: Sequence[str]) -> ReplyKeyboardMarkup:
    """One button per row; the keyboard hides after a tap."""
    builder = ReplyKeyboardBuilder()
    for option in options:
        builder.add(KeyboardButton(text=option))
    builder.adjust(1)
    return builder.as_markup(one_time_keyboard=True, resize_keyboard=True)


def remove_quick_replies_kb() -> ReplyKeyboardRemove:
    return ReplyKeyboardRemove(remove_keyboard=True)
