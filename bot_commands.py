import datetime
import logging

import discord
from discord import app_commands
from discord.ext import commands

from config import VALID_STATUSES
from errors import ConfigurationError, NotFoundError, TransportError
from ranking import demote_user, promote_user, set_user_rank_by_name

logger = logging.getLogger("bot.commands")

STATUS_CHOICES = [app_commands.Choice(name=status, value=status) for status in VALID_STATUSES]
GENERIC_FAILURE = "❌ Something went wrong. Please try again later."


def has_required_role(member, required_role_id):
    """True when no role is required or the member holds it."""
    if not required_role_id:
        return True
    roles = getattr(member, "roles", None) or []
    return any(str(role.id) == str(required_role_id) for role in roles)


def format_rank_map(rank_map):
    if not rank_map:
        return "None"
    return "\n".join(f"{name} → {role_id}" for name, role_id in rank_map.items())


async def reply(interaction, content=None, embed=None, ephemeral=True):
    """Respond to an interaction whether or not it was deferred."""
    kwargs = {"ephemeral": ephemeral}
    if content is not None:
        kwargs["content"] = content
    if embed is not None:
        kwargs["embed"] = embed
    if interaction.response.is_done():
        await interaction.followup.send(**kwargs)
    else:
        await interaction.response.send_message(**kwargs)


class RankCommands(commands.Cog):
    """Slash commands for rank management, moderation and modmail."""

    def __init__(self, bot):
        self.bot = bot

    @property
    def rank_logger(self):
        return self.bot.rank_logger

    async def check_permission(self, interaction):
        if interaction.user is None:
            await reply(interaction, "❌ Could not verify permissions.")
            return False
        config = await self.rank_logger.storage.get_bot_config()
        if not has_required_role(interaction.user, config.required_role_id):
            await reply(interaction, "❌ You are not allowed to use this command.")
            return False
        return True

    async def cog_app_command_error(self, interaction, error):
        original = getattr(error, "original", error)
        logger.exception(
            f"Error running /{interaction.command.name if interaction.command else '?'}:",
            exc_info=original,
        )
        try:
            await reply(interaction, GENERIC_FAILURE)
        except discord.HTTPException as e:
            logger.error(f"Could not report command failure to user: {e}")

    # --- Rank management ---

    async def _configured_group(self):
        """Return the group to rank in, checked before any Roblox call is made."""
        if not self.rank_logger.client.cookie:
            raise ConfigurationError("ROBLOX_COOKIE not set.")
        group_id = await self.rank_logger.active_group_id()
        if not group_id:
            raise ConfigurationError("No group configured.")
        return group_id

    async def _lookup_user(self, username):
        user_id = await self.rank_logger.client.get_user_id(username)
        if not user_id:
            raise NotFoundError(f"Roblox user not found: {username}")
        return user_id

    async def handle_rank_change(self, interaction, username, rank, is_promotion):
        if not await self.check_permission(interaction):
            return
        try:
            group_id = await self._configured_group()
        except ConfigurationError as e:
            await reply(interaction, f"❌ {e}")
            return

        await interaction.response.defer()
        try:
            user_id = await self._lookup_user(username)
        except NotFoundError as e:
            await interaction.followup.send(f"❌ {e}")
            return
        except TransportError as e:
            logger.error(f"Roblox lookup for {username} failed: {e}")
            await interaction.followup.send(GENERIC_FAILURE)
            return

        client, roles = self.rank_logger.client, self.rank_logger.roles
        if rank:
            config = await self.rank_logger.storage.get_bot_config()
            result = await set_user_rank_by_name(client, roles, group_id, user_id, rank, config.rank_map)
        elif is_promotion:
            result = await promote_user(client, roles, group_id, user_id)
        else:
            result = await demote_user(client, roles, group_id, user_id)
        if not result.success:
            await interaction.followup.send(f"❌ Failed: {result.error}")
            return

        embed = discord.Embed(
            title="✅ User Promoted" if is_promotion else "⬇️ User Demoted",
            color=0x00FF00 if is_promotion else 0xFF6600,
            timestamp=discord.utils.utcnow(),
        )
        embed.add_field(name="User", value=username, inline=True)
        embed.add_field(name="Changed By", value=interaction.user.name, inline=True)
        embed.add_field(name="Change", value=f"{result.old_role} → {result.new_role}", inline=False)
        await interaction.followup.send(embed=embed)
        logger.info(
            f"{interaction.user.name} changed {username} from {result.old_role} to {result.new_role}."
        )

    @app_commands.command(name="promote", description="Set a user to a specific rank in your Roblox group")
    @app_commands.describe(username="Roblox username", rank="Rank name (leave empty for the next rank up)")
    async def promote(self, interaction: discord.Interaction, username: str, rank: str | None = None):
        await self.handle_rank_change(interaction, username, rank, is_promotion=True)

    @app_commands.command(name="demote", description="Set a user to a specific rank in your Roblox group")
    @app_commands.describe(username="Roblox username", rank="Rank name (leave empty for the next rank down)")
    async def demote(self, interaction: discord.Interaction, username: str, rank: str | None = None):
        await self.handle_rank_change(interaction, username, rank, is_promotion=False)

    @app_commands.command(
        name="configuration", description="View or update bot configuration (use with no options to view)"
    )
    @app_commands.describe(
        status="Set bot status",
        role="Set required Discord role ID",
        rankname="Rank name to map",
        rankid="Rank ID to map",
    )
    @app_commands.choices(status=STATUS_CHOICES)
    async def configuration(
        self,
        interaction: discord.Interaction,
        status: app_commands.Choice[str] | None = None,
        role: str | None = None,
        rankname: str | None = None,
        rankid: int | None = None,
    ):
        if not await self.check_permission(interaction):
            return
        if bool(rankname) != (rankid is not None):
            await reply(interaction, "❌ Both rankname and rankid are required to add a rank mapping.")
            return

        storage = self.rank_logger.storage
        changes = []
        if status:
            await storage.update_bot_config(status=status.value)
            await self.bot.change_presence(status=discord.Status(status.value))
            changes.append(f"Status → **{status.value}**")
        if role:
            await storage.update_bot_config(required_role_id=role)
            changes.append(f"Required Role → **{role}**")
        if rankname:
            config = await storage.get_bot_config()
            rank_map = dict(config.rank_map)
            rank_map[rankname.lower()] = rankid
            await storage.update_bot_config(rank_map=rank_map)
            changes.append(f"Rank Mapping → **{rankname.lower()} = {rankid}**")

        if changes:
            await reply(interaction, "✅ Configuration updated:\n" + "\n".join(changes))
            return

        config = await storage.get_bot_config()
        embed = discord.Embed(title="⚙️ Bot Configuration", color=0x5865F2)
        embed.add_field(name="Status", value=config.status, inline=True)
        embed.add_field(name="Required Role ID", value=config.required_role_id or "None", inline=True)
        embed.add_field(name="Rank Map", value=format_rank_map(config.rank_map), inline=False)
        await reply(interaction, embed=embed)

    @app_commands.command(name="clearcache", description="Clear cached Roblox roles and usernames")
    async def clearcache(self, interaction: discord.Interaction):
        if not await self.check_permission(interaction):
            return
        self.rank_logger.clear_caches()
        await reply(interaction, "✅ Role and username caches cleared.")

    # --- Messaging ---

    @app_commands.command(name="dm", description="Send a DM to a user")
    @app_commands.describe(user="User to DM", message="Message")
    async def dm(self, interaction: discord.Interaction, user: discord.User, message: str):
        if not await self.check_permission(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        try:
            await user.send(message)
        except discord.HTTPException as e:
            logger.warning(f"Could not DM {user.name}: {e}")
            await interaction.followup.send(f"❌ Could not DM {user.name}", ephemeral=True)
            return
        await interaction.followup.send(f"✅ Message sent to {user.name}", ephemeral=True)

    @app_commands.command(name="say", description="Send a message to a channel")
    @app_commands.describe(channel="Channel", message="Message")
    async def say(self, interaction: discord.Interaction, channel: discord.TextChannel, message: str):
        if not await self.check_permission(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        if await self.bot.send_discord_message(channel.id, content=message):
            await interaction.followup.send(f"✅ Message sent to <#{channel.id}>", ephemeral=True)
        else:
            await interaction.followup.send("❌ Failed to send message.", ephemeral=True)

    @app_commands.command(name="test_welcome", description="Test the welcome message")
    async def test_welcome(self, interaction: discord.Interaction):
        if not await self.check_permission(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        if await self.bot.send_welcome(interaction.user):
            await interaction.followup.send("✅ Test welcome sent!", ephemeral=True)
        else:
            await interaction.followup.send("❌ Welcome channel not found.", ephemeral=True)

    # --- Moderation ---

    @app_commands.command(name="mute", description="Mute a user")
    @app_commands.describe(user="User to mute", duration="Duration in minutes", reason="Reason")
    async def mute(
        self,
        interaction: discord.Interaction,
        user: discord.Member,
        duration: app_commands.Range[int, 1, 40320],
        reason: str | None = None,
    ):
        if not await self.check_permission(interaction):
            return
        reason = reason or "No reason"
        await interaction.response.defer()
        try:
            await user.timeout(datetime.timedelta(minutes=duration), reason=reason)
        except discord.HTTPException as e:
            logger.error(f"Failed to mute {user.name}: {e}")
            await interaction.followup.send("❌ Failed to mute user.")
            return

        embed = discord.Embed(title="🔇 User Muted", color=0xFF0000, timestamp=discord.utils.utcnow())
        embed.add_field(name="User", value=user.name, inline=True)
        embed.add_field(name="Duration", value=f"{duration} min", inline=True)
        embed.add_field(name="By", value=interaction.user.name, inline=True)
        embed.add_field(name="Reason", value=reason, inline=False)
        await interaction.followup.send(embed=embed)

    @app_commands.command(name="unmute", description="Unmute a user")
    @app_commands.describe(user="User to unmute")
    async def unmute(self, interaction: discord.Interaction, user: discord.Member):
        if not await self.check_permission(interaction):
            return
        await interaction.response.defer()
        try:
            await user.timeout(None)
        except discord.HTTPException as e:
            logger.error(f"Failed to unmute {user.name}: {e}")
            await interaction.followup.send("❌ Failed to unmute user.")
            return
        await interaction.followup.send(f"✅ **{user.name}** unmuted.")

    @app_commands.command(name="let_links", description="Allow links in a channel")
    @app_commands.describe(channel="Channel")
    async def let_links(self, interaction: discord.Interaction, channel: discord.TextChannel):
        if not await self.check_permission(interaction):
            return
        self.bot.allowed_link_channels.add(channel.id)
        await reply(interaction, f"✅ Links allowed in <#{channel.id}>")

    @app_commands.command(name="block_links", description="Block links in a channel")
    @app_commands.describe(channel="Channel")
    async def block_links(self, interaction: discord.Interaction, channel: discord.TextChannel):
        if not await self.check_permission(interaction):
            return
        self.bot.allowed_link_channels.discard(channel.id)
        await reply(interaction, f"✅ Links blocked in <#{channel.id}>")

    # --- Modmail ---

    @app_commands.command(name="setmodmail", description="Set the modmail channel")
    @app_commands.describe(channel="Modmail channel")
    async def setmodmail(self, interaction: discord.Interaction, channel: discord.TextChannel):
        if not await self.check_permission(interaction):
            return
        self.bot.modmail_channel_id = channel.id
        await reply(interaction, f"✅ Modmail channel set to <#{channel.id}>")

    @app_commands.command(name="reply", description="Reply to a modmail")
    @app_commands.describe(userid="User ID to reply to", message="Message to send")
    async def reply_modmail(self, interaction: discord.Interaction, userid: str, message: str):
        if not await self.check_permission(interaction):
            return
        await interaction.response.defer(ephemeral=True)
        if not userid.isdigit():
            await interaction.followup.send("❌ User not found.", ephemeral=True)
            return
        embed = discord.Embed(
            title="📬 Staff Reply", description=message, color=0x5865F2, timestamp=discord.utils.utcnow()
        )
        embed.set_footer(text=f"From: {interaction.user.name}")
        try:
            user = await self.bot.fetch_user(int(userid))
            await user.send(embed=embed)
        except discord.NotFound:
            await interaction.followup.send("❌ User not found.", ephemeral=True)
            return
        except discord.HTTPException as e:
            logger.warning(f"Could not send modmail reply to {userid}: {e}")
            await interaction.followup.send(
                "❌ Could not send reply. User may have DMs disabled.", ephemeral=True
            )
            return
        await interaction.followup.send(f"✅ Reply sent to {user.name}", ephemeral=True)
