from __future__ import annotations

import logging

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError
from aiogram.types import InlineKeyboardMarkup


logger = logging.getLogger(__name__)


class Notifier:
    """Outbound Telegram messages. Delivery failures are logged and reported as False."""

    def __init__(self, bot: Bot, *, report_channel_id: int | None = None) -> None:
        self.bot = bot
        self.report_channel_id = report_channel_id

    async def send(self, chat_id: int, text: str, reply_markup: InlineKeyboardMarkup | None = None) -> bool:
        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=reply_markup,
            )
        except TelegramAPIError as exc:
            logger.warning("Failed to send message to chat_id=%s: %s", chat_id, exc)
            return False
        return True

    async def report(self, text: str) -> bool:
        if self.report_channel_id is None:
            return False
        return await self.send(self.report_channel_id, text)
