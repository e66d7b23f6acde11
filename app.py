import logging

import aiohttp
import discord
from discord.ext import commands

from automod import WARNINGS, check_message
from bot_commands import RankCommands
from config import load_settings
from dashboard import create_app, start_dashboard
from discord_report_error_logs import setup_logging
from errors import ConfigurationError
from rank_logger import RankLogger
from roblox_api import RobloxClient
from storage import Storage

logger = logging.getLogger("bot")

WARNING_LIFETIME_SECONDS = 5


class RankLoggerBot(commands.Bot):
    """Discord bot mirroring Roblox rank changes, with moderation and modmail."""

    def __init__(self, settings):
        intents = discord.Intents.default()
        intents.members = True  # Welcome messages and timeouts
        intents.message_content = True  # Automod and modmail
        super().__init__(command_prefix="! ", intents=intents)
        self.settings = settings
        self.storage = Storage(settings.database_path)
        self.http_session = None
        self.rank_logger = None
        self.dashboard_runner = None
        self.allowed_link_channels = set()
        self.modmail_channel_id = None

    async def setup_hook(self):
        await self.storage.init()
        self.http_session = aiohttp.ClientSession()
        client = RobloxClient(
            self.http_session, cookie=self.settings.roblox_cookie, timeout=self.settings.http_timeout
        )
        self.rank_logger = RankLogger(self.settings, self.storage, client, self.send_discord_message)
        await self.add_cog(RankCommands(self))

        app = create_app(self.rank_logger, self.send_discord_message)
        try:
            self.dashboard_runner = await start_dashboard(
                app, self.settings.dashboard_host, self.settings.dashboard_port
            )
        except OSError as e:
            logger.error(f"Could not start dashboard on port {self.settings.dashboard_port}: {e}")

        try:
            synced = await self.tree.sync()
            logger.info(f"Registered {len(synced)} slash commands.")
        except discord.HTTPException as e:
            logger.error(f"Failed to register slash commands: {e}")

    async def close(self):
        if self.rank_logger is not None:
            await self.rank_logger.stop()
        if self.dashboard_runner is not None:
            await self.dashboard_runner.cleanup()
        if self.http_session is not None:
            await self.http_session.close()
        await super().close()

    # --- Helpers ---

    async def send_discord_message(self, channel_id, content=None, embed=None):
        """Helper function to send messages and handle common errors."""
        channel_id = int(channel_id)
        channel = self.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.fetch_channel(channel_id)
            except discord.HTTPException as e:
                logger.error(f"Could not find channel with ID {channel_id} to send message: {e}")
                return False
        if not isinstance(channel, discord.abc.Messageable):
            logger.error(f"Channel {channel_id} is not a text channel.")
            return False
        try:
            await channel.send(content=content, embed=embed)
            logger.debug(f"Sent message to channel {channel_id}.")
            return True
        except discord.Forbidden:
            logger.error(
                f"Missing permissions to send message in channel {channel_id} ({getattr(channel, 'name', 'N/A')})"
            )
        except discord.HTTPException as e:
            logger.error(
                f"Failed to send message to channel {channel_id} ({getattr(channel, 'name', 'N/A')}): {e}"
            )
        return False

    async def send_welcome(self, member):
        if not self.settings.welcome_channel_id:
            return False
        return await self.send_discord_message(
            self.settings.welcome_channel_id,
            content=f"Welcome {member.mention} to **{self.settings.server_name}** make sure to explore the server!",
        )

    async def is_admin(self, member):
        config = await self.storage.get_bot_config()
        if not config.required_role_id or not isinstance(member, discord.Member):
            return False
        return any(str(role.id) == config.required_role_id for role in member.roles)

    # --- Bot Events ---

    async def on_ready(self):
        """Called when the bot logs in and is ready."""
        logger.info(f"Logged in as {self.user.name} ({self.user.id})")
        # on_ready fires again after reconnects; the scheduler only starts once
        if not self.rank_logger.is_running:
            self.rank_logger.start()

        config = await self.storage.get_bot_config()
        try:
            await self.change_presence(status=discord.Status(config.status))
        except (discord.HTTPException, ValueError) as e:
            logger.error(f"Failed to set initial presence: {e}")

    async def on_member_join(self, member):
        await self.send_welcome(member)

    async def on_message(self, message):
        if message.author.bot:
            return
        if message.guild is None:
            await self.relay_modmail(message)
            return
        await self.moderate(message)

    async def relay_modmail(self, message):
        if not self.modmail_channel_id:
            return
        embed = discord.Embed(
            title="📩 New Modmail",
            color=0x00BFFF,
            description=message.content or "*No text content*",
            timestamp=discord.utils.utcnow(),
        )
        embed.add_field(name="From", value=f"{message.author.name} ({message.author.id})", inline=True)
        embed.set_thumbnail(url=message.author.display_avatar.url)
        embed.set_footer(text=f"Reply with /reply {message.author.id} <message>")
        if await self.send_discord_message(self.modmail_channel_id, embed=embed):
            try:
                await message.reply("Your message has been sent to the staff team. They will respond soon.")
            except discord.HTTPException as e:
                logger.warning(f"Could not acknowledge modmail from {message.author.id}: {e}")

    async def moderate(self, message):
        violation = check_message(
            message.content,
            is_admin=await self.is_admin(message.author),
            links_allowed=message.channel.id in self.allowed_link_channels,
            user_mentions=len(message.mentions),
            role_mentions=len(message.role_mentions),
        )
        if violation is None:
            return
        logger.info(f"Automod removed a message from {message.author} ({violation}).")
        try:
            await message.delete()
            await message.channel.send(
                f"{message.author.mention}, {WARNINGS[violation]}",
                delete_after=WARNING_LIFETIME_SECONDS,
            )
        except discord.HTTPException as e:
            logger.warning(f"Automod could not act on message {message.id}: {e}")


def main():
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO)
        logger.critical(f"CRITICAL: Invalid configuration: {e}")
        return

    bot = RankLoggerBot(settings)
    setup_logging(settings.log_level, bot, settings.error_log_channel)

    if not settings.discord_token:
        logger.critical("CRITICAL: DISCORD_BOT_TOKEN is not set.")
        return
    if not settings.roblox_cookie:
        logger.warning("ROBLOX_COOKIE is not set. Rank polling and rank commands are disabled.")

    try:
        logger.info("Attempting to run the bot...")
        bot.run(settings.discord_token, log_handler=None)  # Use our configured logger
    except discord.LoginFailure:
        logger.critical("CRITICAL: Failed to log in - Improper token provided.")
    except Exception as e:
        logger.critical(f"CRITICAL: Error running bot: {e}", exc_info=True)


if __name__ == "__main__":
    main()
