import asyncio

import pytest
import requests

from signaldesk.core.config import TelegramChannel
from signaldesk.ops.smoke import check_bitget, read_env
from signaldesk.services.telegram import TelegramNotifier, TelegramService


def _service(**channels):
    return TelegramService({k: TelegramChannel(**v) for k, v in channels.items()})


def test_send_message_posts_html(telegram_posts):
    tg = _service(bot1={"token": "1:abc", "chat_id": "-1001"})

    assert tg.send_message("<b>hi</b>", "bot1") is True
    assert telegram_posts[0]["url"] == "https://api.telegram.org/bot1:abc/sendMessage"
    assert telegram_posts[0]["json"] == {"chat_id": "-1001", "text": "<b>hi</b>", "parse_mode": "HTML"}


@pytest.mark.parametrize(
    "channel",
    [
        {"token": "", "chat_id": "-1001"},
        {"token": "no-colon", "chat_id": "-1001"},
        {"token": "1:abc", "chat_id": "1001"},
    ],
)
def test_unusable_channels_are_not_sent(channel, telegram_posts):
    tg = _service(bot1=channel)
    assert tg.send_message("hi", "bot1") is False
    assert tg.send_message("hi", "unknown") is False
    assert telegram_posts == []


def test_notifier_never_raises(monkeypatch):
    def boom(*a, **kw):
        raise requests.ConnectionError("down")

    monkeypatch.setattr("signaldesk.services.telegram.requests.post", boom)
    notifier = TelegramNotifier(_service(bot1={"token": "1:abc", "chat_id": "-1001"}), "bot1")

    asyncio.run(notifier.send("hi"))


def test_connection_check_handles_network_errors(monkeypatch):
    def boom(*a, **kw):
        raise requests.Timeout("slow")

    monkeypatch.setattr("signaldesk.services.telegram.requests.get", boom)
    assert _service(bot1={"token": "1:abc", "chat_id": "-1001"}).test_connection("bot1") is False


def test_smoke_skips_bitget_without_credentials():
    env = read_env()
    assert env["key"] == ""
    assert check_bitget(env) == "bitget: SKIPPED (credentials missing)"
