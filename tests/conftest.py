import json
from datetime import datetime, timedelta, timezone

import pytest

from errors import TransportError
from models import BotConfig, RankChangeEntry, Role

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_entry(offset_seconds, entry_id=None, **kwargs):
    defaults = {
        "actor_name": "Boss",
        "target_name": "Member",
        "old_role_id": 1,
        "new_role_id": 2,
    }
    defaults.update(kwargs)
    return RankChangeEntry(
        id=entry_id or f"entry-{offset_seconds}",
        created_at=T0 + timedelta(seconds=offset_seconds),
        **defaults,
    )


class FakeResponse:
    def __init__(self, status=200, body=None, headers=None, reason="OK"):
        self.status = status
        if body is None:
            self._body = ""
        elif isinstance(body, str):
            self._body = body
        else:
            self._body = json.dumps(body)
        self.headers = headers or {}
        self.reason = reason

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class FakeSession:
    """Stands in for aiohttp.ClientSession; routes by (method, url)."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, url, response):
        self.routes[(method, url)] = response

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        response = self.routes.get((method, url))
        if response is None:
            return FakeResponse(404, {"errors": [{"message": "NotFound"}]}, reason="Not Found")
        if isinstance(response, Exception):
            raise response
        return response


class FakeRobloxClient:
    """Pipeline-level fake with call counters."""

    def __init__(self, cookie="cookie"):
        self.cookie = cookie
        self.roles = {}
        self.usernames = {}
        self.audit_log = {}
        self.fail_audit = False
        self.fail_roles = False
        self.fail_users = False
        self.role_fetches = 0
        self.user_fetches = 0
        self.audit_fetches = 0
        self.user_ids = {}
        self.memberships = {}
        self.rank_sets = []
        self.fail_set_rank = None
        self.fail_membership = False
        self.fail_lookup = False
        self.user_id_lookups = 0

    async def fetch_group_roles(self, group_id):
        self.role_fetches += 1
        if self.fail_roles:
            raise TransportError("roles unavailable")
        return list(self.roles.get(str(group_id), []))

    async def fetch_username(self, user_id):
        self.user_fetches += 1
        if self.fail_users:
            raise TransportError("users unavailable")
        return self.usernames.get(user_id)

    async def fetch_rank_changes(self, group_id, limit=10):
        self.audit_fetches += 1
        if self.fail_audit:
            raise TransportError("audit log unavailable")
        return list(self.audit_log.get(str(group_id), []))[:limit]

    async def get_user_id(self, username):
        self.user_id_lookups += 1
        if self.fail_lookup:
            raise TransportError("users unavailable")
        return self.user_ids.get(username.lower())

    async def get_user_role_in_group(self, group_id, user_id):
        if self.fail_membership:
            raise TransportError("memberships unavailable")
        return self.memberships.get(user_id)

    async def set_user_rank(self, group_id, user_id, role_id):
        if self.fail_set_rank:
            raise self.fail_set_rank
        self.rank_sets.append((group_id, user_id, role_id))


class FakeSender:
    def __init__(self, fail_on=(), raise_on=()):
        self.sent = []
        self.fail_on = set(fail_on)
        self.raise_on = set(raise_on)
        self.attempts = 0

    async def __call__(self, channel_id, content=None, embed=None):
        index = self.attempts
        self.attempts += 1
        if index in self.raise_on:
            raise RuntimeError("send exploded")
        if index in self.fail_on:
            return False
        self.sent.append((channel_id, content, embed))
        return True


class FakeStorage:
    def __init__(self, monitors=()):
        self.monitors = {monitor.id: monitor for monitor in monitors}
        self.watermark_updates = []
        self.config = BotConfig()

    async def list_monitors(self):
        return list(self.monitors.values())

    async def get_monitor(self, monitor_id):
        return self.monitors.get(monitor_id)

    async def update_monitor_watermark(self, monitor_id, timestamp):
        monitor = self.monitors[monitor_id]
        if monitor.last_log_date is not None and timestamp <= monitor.last_log_date:
            return False
        self.watermark_updates.append((monitor_id, timestamp))
        monitor.last_log_date = timestamp
        return True

    async def get_bot_config(self):
        return self.config


@pytest.fixture
def group_roles():
    return [
        Role(id=1, name="Guest", rank=0),
        Role(id=2, name="Member", rank=1),
        Role(id=3, name="Officer", rank=100),
        Role(id=4, name="Owner", rank=255),
    ]


@pytest.fixture
def fake_client(group_roles):
    client = FakeRobloxClient()
    client.roles["100"] = group_roles
    return client
