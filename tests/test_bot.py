from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from telegram.error import BadRequest, Forbidden, NetworkError, RetryAfter, TimedOut

from subreddit_monitor.bot.bot import TelegramBot, compose_message, to_chat_update
from subreddit_monitor.errors import TransientFetchError
from subreddit_monitor.models import FeedItem, OtherUpdate, TextMessage


class FakeTelegram:
    """Minimal stand-in for telegram.Bot"""

    def __init__(self, send_outcomes=(), updates=None) -> None:
        self.send_outcomes = list(send_outcomes)
        self.updates = updates
        self.sent = []
        self.get_updates_kwargs = None

    async def send_message(self, chat_id, text, **kwargs):
        self.sent.append((chat_id, text))
        if self.send_outcomes:
            outcome = self.send_outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
        return SimpleNamespace(message_id=1)

    async def get_updates(self, **kwargs):
        self.get_updates_kwargs = kwargs
        if isinstance(self.updates, Exception):
            raise self.updates
        return tuple(self.updates or ())


@pytest.fixture(autouse=True)
def no_retry_delay(monkeypatch):
    monkeypatch.setattr("subreddit_monitor.bot.bot.RETRY_DELAY", 0)


def _update(update_id, text=None, chat_id=42, has_message=True):
    message = SimpleNamespace(text=text, chat=SimpleNamespace(id=chat_id)) if has_message else None
    return SimpleNamespace(update_id=update_id, message=message)


def test_compose_message_title_then_url() -> None:
    assert compose_message(FeedItem(id="1", title="WTS", url="https://x")) == "WTS\nhttps://x"
    assert compose_message(FeedItem(id="1", title="WTS")) == "WTS"


def test_to_chat_update_tags_text_and_other() -> None:
    assert to_chat_update(_update(1, "/subscribe")) == TextMessage(update_id=1, chat_id=42, text="/subscribe")
    assert to_chat_update(_update(2, None)) == OtherUpdate(update_id=2)
    assert to_chat_update(_update(3, has_message=False)) == OtherUpdate(update_id=3)


def test_get_updates_long_polls_from_offset() -> None:
    fake = FakeTelegram(updates=[_update(10, "/subscribe"), _update(11, has_message=False)])
    bot = TelegramBot("token", bot=fake)

    updates = asyncio.run(bot.get_updates(10, 10))

    assert updates == [TextMessage(10, 42, "/subscribe"), OtherUpdate(11)]
    assert fake.get_updates_kwargs["offset"] == 10
    assert fake.get_updates_kwargs["timeout"] == 10


def test_get_updates_failure_is_transient() -> None:
    bot = TelegramBot("token", bot=FakeTelegram(updates=NetworkError("down")))
    with pytest.raises(TransientFetchError):
        asyncio.run(bot.get_updates(0, 10))


def test_send_retries_network_errors() -> None:
    fake = FakeTelegram(send_outcomes=[TimedOut(), NetworkError("reset")])
    assert asyncio.run(TelegramBot("token", bot=fake).send_message(1, "hi")) is True
    assert len(fake.sent) == 3


def test_send_gives_up_after_max_retries() -> None:
    fake = FakeTelegram(send_outcomes=[TimedOut(), TimedOut(), TimedOut()])
    assert asyncio.run(TelegramBot("token", bot=fake).send_message(1, "hi")) is False
    assert len(fake.sent) == 3


def test_send_honours_retry_after() -> None:
    fake = FakeTelegram(send_outcomes=[RetryAfter(0)])
    assert asyncio.run(TelegramBot("token", bot=fake).send_message(1, "hi")) is True


@pytest.mark.parametrize("error", [Forbidden("bot was blocked by the user"), BadRequest("chat not found")])
def test_send_does_not_retry_permanent_errors(error) -> None:
    fake = FakeTelegram(send_outcomes=[error])
    assert asyncio.run(TelegramBot("token", bot=fake).send_message(1, "hi")) is False
    assert len(fake.sent) == 1
