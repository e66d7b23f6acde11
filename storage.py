import json
import logging

import aiosqlite

from models import BotConfig, Monitor, format_timestamp, parse_timestamp

logger = logging.getLogger("bot.storage")

CONFIG_KEY = "global"


def _row_to_monitor(row):
    return Monitor(
        id=row["id"],
        name=row["name"],
        group_id=row["roblox_group_id"],
        channel_id=row["discord_channel_id"],
        last_log_date=parse_timestamp(row["last_log_date"]),
        is_active=bool(row["is_active"]),
    )


class Storage:
    """SQLite-backed store for monitors and the bot configuration row."""

    def __init__(self, path):
        self.path = path

    def _connect(self):
        return aiosqlite.connect(self.path)

    async def init(self):
        async with self._connect() as db:
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS monitors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    roblox_group_id TEXT NOT NULL,
                    discord_channel_id TEXT NOT NULL,
                    last_log_date TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
                """
            )
            await db.execute(
                """
                CREATE TABLE IF NOT EXISTS bot_config (
                    id TEXT PRIMARY KEY DEFAULT 'global',
                    status TEXT NOT NULL DEFAULT 'online',
                    required_role_id TEXT NOT NULL DEFAULT '',
                    rank_map TEXT NOT NULL DEFAULT '{}'
                )
                """
            )
            await db.execute("INSERT OR IGNORE INTO bot_config (id) VALUES (?)", (CONFIG_KEY,))
            await db.commit()
        logger.info(f"Database ready at '{self.path}'.")

    # --- Monitors ---

    async def list_monitors(self):
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM monitors ORDER BY id") as cursor:
                rows = await cursor.fetchall()
        return [_row_to_monitor(row) for row in rows]

    async def get_monitor(self, monitor_id):
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM monitors WHERE id = ?", (monitor_id,)) as cursor:
                row = await cursor.fetchone()
        return _row_to_monitor(row) if row else None

    async def create_monitor(self, name, group_id, channel_id, is_active=True, last_log_date=None):
        async with self._connect() as db:
            cursor = await db.execute(
                "INSERT INTO monitors (name, roblox_group_id, discord_channel_id, last_log_date, is_active) "
                "VALUES (?, ?, ?, ?, ?)",
                (name, str(group_id), str(channel_id), format_timestamp(last_log_date), int(is_active)),
            )
            await db.commit()
            monitor_id = cursor.lastrowid
        logger.info(f"Created monitor {monitor_id} ({name}) for group {group_id}.")
        return await self.get_monitor(monitor_id)

    async def delete_monitor(self, monitor_id):
        async with self._connect() as db:
            await db.execute("DELETE FROM monitors WHERE id = ?", (monitor_id,))
            await db.commit()
        logger.info(f"Deleted monitor {monitor_id}.")

    async def set_monitor_active(self, monitor_id, is_active):
        async with self._connect() as db:
            await db.execute(
                "UPDATE monitors SET is_active = ? WHERE id = ?", (int(is_active), monitor_id)
            )
            await db.commit()
        return await self.get_monitor(monitor_id)

    async def update_monitor_watermark(self, monitor_id, timestamp):
        """Advance last_log_date; an older timestamp leaves the row unchanged.

        Returns True when the row was updated.
        """
        current = await self.get_monitor(monitor_id)
        if current is None:
            return False
        if current.last_log_date is not None and timestamp <= current.last_log_date:
            logger.debug(
                f"Ignoring watermark {timestamp} for monitor {monitor_id}; already at {current.last_log_date}."
            )
            return False
        async with self._connect() as db:
            await db.execute(
                "UPDATE monitors SET last_log_date = ? WHERE id = ?",
                (format_timestamp(timestamp), monitor_id),
            )
            await db.commit()
        return True

    # --- Bot configuration ---

    async def get_bot_config(self):
        async with self._connect() as db:
            db.row_factory = aiosqlite.Row
            async with db.execute("SELECT * FROM bot_config WHERE id = ?", (CONFIG_KEY,)) as cursor:
                row = await cursor.fetchone()
            if row is None:
                await db.execute("INSERT OR IGNORE INTO bot_config (id) VALUES (?)", (CONFIG_KEY,))
                await db.commit()
                return BotConfig()
        try:
            rank_map = json.loads(row["rank_map"] or "{}")
        except json.JSONDecodeError:
            logger.error("Stored rank map is not valid JSON. Using an empty map.")
            rank_map = {}
        return BotConfig(
            status=row["status"], required_role_id=row["required_role_id"], rank_map=rank_map
        )

    async def update_bot_config(self, **changes):
        current = await self.get_bot_config()
        for key, value in changes.items():
            if not hasattr(current, key):
                raise ValueError(f"Unknown bot config field: {key}")
            setattr(current, key, value)
        async with self._connect() as db:
            await db.execute(
                "UPDATE bot_config SET status = ?, required_role_id = ?, rank_map = ? WHERE id = ?",
                (current.status, current.required_role_id, json.dumps(current.rank_map), CONFIG_KEY),
            )
            await db.commit()
        return current
