import asyncio
import logging

import discord

from config import LOG_FORMAT

# Discord rejects messages over 2000 characters; leave room for the wrapper.
MAX_LOG_LENGTH = 1900


class DiscordErrorHandler(logging.Handler):
    """Custom logging handler to send error logs to a Discord channel."""

    def __init__(self, bot, channel_id):
        super().__init__(level=logging.ERROR)
        self.bot = bot
        self.channel_id = channel_id

    async def send_error_to_channel(self, message):
        channel = self.bot.get_channel(self.channel_id)
        if channel is None:
            return
        try:
            await channel.send(f"⚠️ **Error Log:**\n```{message}```")
        except discord.Forbidden:
            # Root logger: this handler sits on "bot" and must not see its own failures
            logging.error(f"Missing permissions to send error log to channel {self.channel_id}.")
        except discord.HTTPException as e:
            logging.error(f"Failed to send error log to channel {self.channel_id}: {e}")

    def emit(self, record):
        if record.levelno < logging.ERROR:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self.bot.is_closed() or not self.bot.is_ready():
            return
        log_entry = self.format(record)
        if len(log_entry) > MAX_LOG_LENGTH:
            log_entry = log_entry[-MAX_LOG_LENGTH:]
        loop.create_task(self.send_error_to_channel(log_entry))


def setup_logging(level="INFO", bot=None, error_channel_id=None):
    """Configure root logging and, when a channel is given, mirror errors to Discord."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logger = logging.getLogger("bot")
    if bot is not None and error_channel_id:
        handler = DiscordErrorHandler(bot, error_channel_id)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
