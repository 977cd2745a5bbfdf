from contest_bot.keyboards.registration_kb import quick_replies_kb, remove_quick_replies_kb

__all__ = ["quick_replies_kb", "remove_quick_replies_kb"]
