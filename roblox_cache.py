import logging

from cachetools import LRUCache

from errors import TransportError

logger = logging.getLogger("bot.cache")

UNKNOWN_USER = "Unknown"


class RoleDirectory:
    """Caches each group's role list for the lifetime of the process."""

    def __init__(self, client, maxsize=512):
        self.client = client
        self._roles = LRUCache(maxsize=maxsize)

    async def get_roles(self, group_id):
        group_id = str(group_id)
        cached = self._roles.get(group_id)
        if cached is not None:
            return cached
        try:
            roles = await self.client.fetch_group_roles(group_id)
        except TransportError as e:
            logger.error(f"Could not fetch roles for group {group_id}: {e}")
            return []
        if roles:
            self._roles[group_id] = roles
        return roles

    def cached_roles(self, group_id):
        return self._roles.get(str(group_id), [])

    def role_name(self, group_id, role_id):
        if not role_id:
            return "Unknown Role"
        for role in self.cached_roles(group_id):
            if role.id == role_id:
                return role.name
        return f"Unknown Role ({role_id})"

    def clear(self):
        self._roles.clear()


class UserNameResolver:
    """Resolves Roblox user ids to usernames. Failures are not cached."""

    def __init__(self, client, maxsize=512):
        self.client = client
        self._names = LRUCache(maxsize=maxsize)

    async def resolve(self, user_id):
        if not user_id:
            return UNKNOWN_USER
        cached = self._names.get(user_id)
        if cached is not None:
            return cached
        try:
            name = await self.client.fetch_username(user_id)
        except TransportError as e:
            logger.warning(f"Could not resolve username for user {user_id}: {e}")
            return UNKNOWN_USER
        if not name:
            return UNKNOWN_USER
        self._names[user_id] = name
        return name

    def clear(self):
        self._names.clear()
