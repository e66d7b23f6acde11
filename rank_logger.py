"""Rank-change polling and delivery pipeline.

Each poll cycle lists the active monitors, fetches the latest rank-change
entries from the group audit log, keeps the entries newer than the monitor's
watermark and posts them to the monitor's Discord channel in chronological
order. Nothing raised while processing one monitor escapes that monitor.
"""

import asyncio
import logging
import time

import discord

from errors import TransportError
from models import EPOCH, FetchResult, utcnow
from roblox_cache import UNKNOWN_USER, RoleDirectory, UserNameResolver

logger = logging.getLogger("bot.rank_logger")

EMBED_COLOR = 0xFFA500


def detect_new_entries(entries, last_acknowledged):
    """Return entries strictly newer than the watermark, oldest first."""
    watermark = last_acknowledged or EPOCH
    ordered = sorted(entries, key=lambda entry: entry.created_at)
    return [entry for entry in ordered if entry.created_at > watermark]


class AuditLogFetcher:
    def __init__(self, client, limit=10):
        self.client = client
        self.limit = limit
        self._failures = {}

    def consecutive_failures(self, group_id):
        return self._failures.get(str(group_id), 0)

    async def fetch(self, group_id):
        group_id = str(group_id)
        try:
            entries = await self.client.fetch_rank_changes(group_id, limit=self.limit)
        except TransportError as e:
            failures = self._failures.get(group_id, 0) + 1
            self._failures[group_id] = failures
            logger.error(
                f"Roblox audit log error ({group_id}): {e}. Failed {failures} cycle(s) in a row."
            )
            return FetchResult(entries=[], ok=False, error=str(e))
        if self._failures.pop(group_id, 0):
            logger.info(f"Audit log for group {group_id} is reachable again.")
        return FetchResult(entries=entries)


def render_rank_change(entry, actor_name, target_name, old_role, new_role):
    embed = discord.Embed(
        title="🔥 Rank Change Detected",
        color=EMBED_COLOR,
        timestamp=entry.created_at,
    )
    embed.add_field(name="Actor", value=actor_name, inline=True)
    embed.add_field(name="Target", value=target_name, inline=True)
    embed.add_field(name="Change", value=f"{old_role} → {new_role}", inline=False)
    return embed


class DeliveryDispatcher:
    """Posts rank-change entries one at a time and computes the new watermark.

    With advance_on_failed_delivery set, a failed send is skipped and the
    watermark still moves to the newest attempted entry, so that notification
    is lost. Without it, delivery stops at the first failure and the watermark
    stays on the last entry that landed.
    """

    def __init__(self, send, roles, users, advance_on_failed_delivery=True):
        self.send = send
        self.roles = roles
        self.users = users
        self.advance_on_failed_delivery = advance_on_failed_delivery

    async def _actor_name(self, entry):
        if entry.actor_name:
            return entry.actor_name
        if entry.actor_user_id:
            return await self.users.resolve(entry.actor_user_id)
        return UNKNOWN_USER

    async def _target_name(self, entry):
        if entry.target_name:
            return entry.target_name
        return await self.users.resolve(entry.target_user_id)

    async def render(self, entry, group_id):
        await self.roles.get_roles(group_id)
        return render_rank_change(
            entry,
            await self._actor_name(entry),
            await self._target_name(entry),
            self.roles.role_name(group_id, entry.old_role_id),
            self.roles.role_name(group_id, entry.new_role_id),
        )

    async def _send_one(self, channel_id, entry, group_id):
        try:
            embed = await self.render(entry, group_id)
            sent = await self.send(channel_id, embed=embed)
        except Exception:
            logger.exception(f"Unexpected error delivering audit entry {entry.id} to channel {channel_id}:")
            return False
        if sent is False:
            logger.warning(f"Delivery of audit entry {entry.id} to channel {channel_id} failed.")
            return False
        return True

    async def deliver(self, channel_id, entries, group_id):
        watermark = None
        for entry in entries:
            delivered = await self._send_one(channel_id, entry, group_id)
            if delivered or self.advance_on_failed_delivery:
                watermark = entry.created_at
            else:
                logger.warning(
                    f"Stopping delivery to channel {channel_id} at entry {entry.id}; it will be retried next cycle."
                )
                break
        return watermark


class PollScheduler:
    """Single background worker running the poll cycle at a fixed interval."""

    def __init__(self, storage, fetcher, dispatcher, interval=15, cookie_configured=lambda: True):
        self.storage = storage
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.interval = interval
        self.cookie_configured = cookie_configured
        self._task = None

    @property
    def is_running(self):
        return self._task is not None and not self._task.done()

    def start(self):
        if self.is_running:
            logger.debug("Poll scheduler already running.")
            return self._task
        logger.info(f"Starting rank-change polling every {self.interval} seconds.")
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Rank-change polling stopped.")

    async def _run(self):
        while True:
            start_time = time.monotonic()
            try:
                await self.poll_once()
            except Exception:
                logger.exception("An error occurred during the poll cycle:")
            logger.debug(f"Poll cycle finished in {time.monotonic() - start_time:.3f} seconds.")
            await asyncio.sleep(self.interval)

    async def poll_once(self):
        if not self.cookie_configured():
            logger.warning("ROBLOX_COOKIE is not set. Skipping poll cycle.")
            return
        monitors = await self.storage.list_monitors()
        for monitor in monitors:
            if not monitor.is_active:
                continue
            await self.process_monitor(monitor)

    async def process_monitor(self, monitor):
        try:
            result = await self.fetcher.fetch(monitor.group_id)
            if not result.ok:
                return
            new_entries = detect_new_entries(result.entries, monitor.last_log_date)
            if not new_entries:
                return
            logger.info(f"Monitor {monitor.id} ({monitor.name}): {len(new_entries)} new rank change(s).")
            watermark = await self.dispatcher.deliver(monitor.channel_id, new_entries, monitor.group_id)
            if watermark is not None:
                await self.storage.update_monitor_watermark(monitor.id, watermark)
                monitor.last_log_date = watermark
        except Exception:
            logger.exception(f"Error processing monitor {monitor.id} ({monitor.name}):")


class RankLogger:
    """Owns the Roblox client, caches and scheduler for one bot process."""

    def __init__(self, settings, storage, client, send):
        self.settings = settings
        self.storage = storage
        self.client = client
        self.roles = RoleDirectory(client, maxsize=settings.role_cache_size)
        self.users = UserNameResolver(client, maxsize=settings.user_cache_size)
        self.fetcher = AuditLogFetcher(client, limit=settings.audit_log_limit)
        self.dispatcher = DeliveryDispatcher(
            send,
            self.roles,
            self.users,
            advance_on_failed_delivery=settings.advance_on_failed_delivery,
        )
        self.scheduler = PollScheduler(
            storage,
            self.fetcher,
            self.dispatcher,
            interval=settings.poll_interval,
            cookie_configured=lambda: bool(self.client.cookie),
        )

    @property
    def is_running(self):
        return self.scheduler.is_running

    def start(self):
        return self.scheduler.start()

    async def stop(self):
        await self.scheduler.stop()

    async def create_monitor(self, name, group_id, channel_id, is_active=True):
        """Store a monitor whose watermark is already now, so no poll sees it unseeded."""
        return await self.storage.create_monitor(
            name=name, group_id=group_id, channel_id=channel_id, is_active=is_active, last_log_date=utcnow()
        )

    async def on_new_monitor_created(self, monitor):
        """Seed the watermark so a new monitor does not replay old history."""
        now = utcnow()
        await self.storage.update_monitor_watermark(monitor.id, now)
        monitor.last_log_date = now
        return monitor

    async def on_poll_tick(self):
        await self.scheduler.poll_once()

    def clear_caches(self):
        self.roles.clear()
        self.users.clear()
        logger.info("Cleared role and username caches.")

    async def active_group_id(self):
        for monitor in await self.storage.list_monitors():
            if monitor.is_active:
                return monitor.group_id
        return None
