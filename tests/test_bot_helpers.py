import asyncio
import logging
from types import SimpleNamespace

import pytest

from bot_commands import format_rank_map, has_required_role
from discord_report_error_logs import MAX_LOG_LENGTH, DiscordErrorHandler


def member_with_roles(*role_ids):
    return SimpleNamespace(roles=[SimpleNamespace(id=role_id) for role_id in role_ids])


def test_no_required_role_allows_everyone():
    assert has_required_role(member_with_roles(), "")
    assert has_required_role(SimpleNamespace(), None)


def test_required_role_must_be_held():
    assert has_required_role(member_with_roles(1, 1234), "1234")
    assert not has_required_role(member_with_roles(1), "1234")
    assert not has_required_role(SimpleNamespace(), "1234")


def test_format_rank_map():
    assert format_rank_map({}) == "None"
    assert format_rank_map({"boss": 4, "member": 2}) == "boss → 4\nmember → 2"


class FakeChannel:
    def __init__(self):
        self.messages = []

    async def send(self, content):
        self.messages.append(content)


class FakeBot:
    def __init__(self, channel, ready=True):
        self.channel = channel
        self.ready = ready

    def get_channel(self, channel_id):
        return self.channel

    def is_closed(self):
        return False

    def is_ready(self):
        return self.ready


def error_record(message):
    return logging.LogRecord("bot.test", logging.ERROR, __file__, 1, message, None, None)


@pytest.mark.asyncio
async def test_error_handler_forwards_errors():
    channel = FakeChannel()
    handler = DiscordErrorHandler(FakeBot(channel), 1)

    handler.emit(error_record("boom"))
    handler.emit(logging.LogRecord("bot.test", logging.WARNING, __file__, 1, "meh", None, None))
    await asyncio.sleep(0)

    assert len(channel.messages) == 1
    assert "boom" in channel.messages[0]


@pytest.mark.asyncio
async def test_error_handler_truncates_long_messages():
    channel = FakeChannel()
    handler = DiscordErrorHandler(FakeBot(channel), 1)

    handler.emit(error_record("x" * 5000))
    await asyncio.sleep(0)

    assert len(channel.messages[0]) < 2000
    assert channel.messages[0].count("x") == MAX_LOG_LENGTH


def test_error_handler_without_loop_is_silent():
    channel = FakeChannel()
    handler = DiscordErrorHandler(FakeBot(channel), 1)

    handler.emit(error_record("boom"))

    assert channel.messages == []


@pytest.mark.asyncio
async def test_error_handler_waits_for_ready_bot():
    channel = FakeChannel()
    handler = DiscordErrorHandler(FakeBot(channel, ready=False), 1)

    handler.emit(error_record("boom"))
    await asyncio.sleep(0)

    assert channel.messages == []
