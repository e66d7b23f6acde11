import asyncio
import json
import logging

import aiohttp

from errors import RobloxAPIError, TransportError
from models import RankChangeEntry, Role

logger = logging.getLogger("bot.roblox")

GROUPS_API = "https://groups.roblox.com"
USERS_API = "https://users.roblox.com"
AUTH_API = "https://auth.roblox.com"


def _error_message(body, default):
    """Pull the first error message out of a Roblox error body."""
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        return body[:200] if body else default
    errors = data.get("errors") if isinstance(data, dict) else None
    if errors and isinstance(errors, list) and errors[0].get("message"):
        return errors[0]["message"]
    return default


class RobloxClient:
    """Thin wrapper around the Roblox group, user and auth web APIs.

    Every method raises TransportError (or RobloxAPIError for non-2xx
    responses); degrading to an empty result is left to the caller.
    """

    def __init__(self, session, cookie=None, timeout=10):
        self.session = session
        self.cookie = cookie
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    def _headers(self, authenticated=False, csrf_token=None):
        headers = {"Accept": "application/json"}
        if authenticated and self.cookie:
            headers["Cookie"] = f".ROBLOSECURITY={self.cookie}"
        if csrf_token:
            headers["X-CSRF-TOKEN"] = csrf_token
        return headers

    async def _request(self, method, url, authenticated=False, csrf_token=None, **kwargs):
        try:
            async with self.session.request(
                method,
                url,
                headers=self._headers(authenticated, csrf_token),
                timeout=self.timeout,
                **kwargs,
            ) as response:
                body = await response.text()
                if response.status >= 400:
                    reason = getattr(response, "reason", None) or "request failed"
                    raise RobloxAPIError(response.status, _error_message(body, reason))
                if not body:
                    return {}
                try:
                    return json.loads(body)
                except ValueError as e:
                    raise TransportError(f"Invalid JSON from {url}: {e}") from e
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timed out calling {url}") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Network error calling {url}: {e}") from e

    # --- Groups ---

    async def fetch_group_roles(self, group_id):
        data = await self._request("GET", f"{GROUPS_API}/v1/groups/{group_id}/roles")
        roles = [Role.from_api(role) for role in data.get("roles", [])]
        logger.debug(f"Fetched {len(roles)} roles for group {group_id}.")
        return roles

    async def fetch_rank_changes(self, group_id, limit=10):
        """Return the most recent rank-change audit entries, newest first."""
        url = f"{GROUPS_API}/v1/groups/{group_id}/audit-log"
        params = {"actionType": "ChangeRank", "limit": str(limit), "sortOrder": "Desc"}
        data = await self._request("GET", url, authenticated=True, params=params)
        entries = []
        for item in data.get("data", []):
            try:
                entries.append(RankChangeEntry.from_api(item))
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed audit-log entry for group {group_id}: {e}")
        return entries

    async def get_user_role_in_group(self, group_id, user_id):
        data = await self._request("GET", f"{GROUPS_API}/v1/users/{user_id}/groups/roles")
        for membership in data.get("data", []):
            if str(membership.get("group", {}).get("id")) == str(group_id):
                return Role.from_api(membership["role"])
        return None

    async def set_user_rank(self, group_id, user_id, role_id):
        csrf_token = await self.get_csrf_token()
        await self._request(
            "PATCH",
            f"{GROUPS_API}/v1/groups/{group_id}/users/{user_id}",
            authenticated=True,
            csrf_token=csrf_token,
            json={"roleId": role_id},
        )
        logger.info(f"Set user {user_id} to role {role_id} in group {group_id}.")

    # --- Users ---

    async def fetch_username(self, user_id):
        data = await self._request("GET", f"{USERS_API}/v1/users/{user_id}")
        return data.get("name")

    async def get_user_id(self, username):
        data = await self._request(
            "POST",
            f"{USERS_API}/v1/usernames/users",
            json={"usernames": [username], "excludeBannedUsers": False},
        )
        users = data.get("data", [])
        if users:
            return int(users[0]["id"])
        return None

    # --- Auth ---

    async def get_csrf_token(self):
        """Obtain an anti-forgery token; the logout endpoint rejects the call and hands one back."""
        url = f"{AUTH_API}/v2/logout"
        try:
            async with self.session.request(
                "POST", url, headers=self._headers(authenticated=True), timeout=self.timeout
            ) as response:
                token = response.headers.get("x-csrf-token")
                if token:
                    return token
                raise RobloxAPIError(response.status, "Failed to get CSRF token")
        except asyncio.TimeoutError as e:
            raise TransportError(f"Timed out calling {url}") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Network error calling {url}: {e}") from e
