from __future__ import annotations

from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder


BUTTON_EXTEND_SERVICE = "🔄 تمدید سرویس"
BUTTON_ADD_VOLUME = "➕ افزایش حجم"
BUTTON_BUY_SERVICE = "🛒 خرید سرویس"

CALLBACK_EXTEND_PREFIX = "extend_"
CALLBACK_BUY = "buy"


def extend_service_keyboard(username: str, *, volume: bool = False) -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(
        InlineKeyboardButton(
            text=BUTTON_ADD_VOLUME if volume else BUTTON_EXTEND_SERVICE,
            callback_data=f"{CALLBACK_EXTEND_PREFIX}{username}",
        )
    )
    return builder.as_markup()


def buy_service_keyboard() -> InlineKeyboardMarkup:
    builder = InlineKeyboardBuilder()
    builder.row(InlineKeyboardButton(text=BUTTON_BUY_SERVICE, callback_data=CALLBACK_BUY))
    return builder.as_markup()
