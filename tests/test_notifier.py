import pytest
from aiogram.exceptions import TelegramAPIError
from aiogram.methods import SendMessage

from panelshop.bot.keyboards import buy_service_keyboard, extend_service_keyboard
from panelshop.services.notifier import Notifier


class FakeBot:
    def __init__(self, blocked=()):
        self.blocked = set(blocked)
        self.sent = []

    async def send_message(self, chat_id, text, **kwargs):
        if chat_id in self.blocked:
            raise TelegramAPIError(SendMessage(chat_id=chat_id, text=text), "Forbidden: bot was blocked by the user")
        self.sent.append((chat_id, text, kwargs))


@pytest.mark.asyncio
async def test_send_uses_html():
    bot = FakeBot()
    notifier = Notifier(bot)

    assert await notifier.send(1001, "<b>hi</b>", reply_markup=buy_service_keyboard())
    chat_id, _, kwargs = bot.sent[0]
    assert chat_id == 1001
    assert kwargs["parse_mode"] == "HTML"


@pytest.mark.asyncio
async def test_blocked_user_is_not_an_error():
    notifier = Notifier(FakeBot(blocked={1001}))

    assert await notifier.send(1001, "hello") is False


@pytest.mark.asyncio
async def test_report_needs_a_channel():
    bot = FakeBot()

    assert await Notifier(bot).report("removed") is False
    assert await Notifier(bot, report_channel_id=-100500).report("removed") is True
    assert bot.sent[0][0] == -100500


def test_extend_keyboard_carries_username():
    markup = extend_service_keyboard("user_ab12cd34_1234")

    assert markup.inline_keyboard[0][0].callback_data == "extend_user_ab12cd34_1234"
