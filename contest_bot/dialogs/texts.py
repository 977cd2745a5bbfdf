"""
Reply texts shared across dialogs. Everything sent to Telegram is
MarkdownV2, so free text always goes through `esc` first.
"""
from aiogram.utils.text_decorations import markdown_decoration

esc = markdown_decoration.quote

CANCELLED       = "Отменено"
GENERIC_FAILURE = esc("Произошла ошибка :( Попробуйте еще раз")
SAVE_FAILURE    = esc("Не удалось сохранить данные :(\nПопробуйте еще раз")
SOMETHING_WRONG = esc("Что-то пошло не так :(")
