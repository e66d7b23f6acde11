from dataclasses import dataclass, field
from datetime import datetime, timezone

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow():
    return datetime.now(timezone.utc)


def parse_timestamp(value):
    """Parse an ISO-8601 timestamp as returned by Roblox or stored in the database.

    Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value):
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat()


@dataclass
class Monitor:
    id: int
    name: str
    group_id: str
    channel_id: str
    last_log_date: datetime | None = None
    is_active: bool = True

    def to_json(self):
        # Field names match the dashboard's JSON API
        return {
            "id": self.id,
            "name": self.name,
            "robloxGroupId": self.group_id,
            "discordChannelId": self.channel_id,
            "lastLogDate": format_timestamp(self.last_log_date),
            "isActive": self.is_active,
        }


@dataclass(frozen=True)
class Role:
    id: int
    name: str
    rank: int

    @classmethod
    def from_api(cls, data):
        return cls(id=int(data["id"]), name=data.get("name", ""), rank=int(data.get("rank", 0)))


@dataclass(frozen=True)
class RankChangeEntry:
    id: str
    created_at: datetime
    actor_user_id: int | None = None
    actor_name: str | None = None
    target_user_id: int | None = None
    target_name: str | None = None
    old_role_id: int | None = None
    new_role_id: int | None = None

    @classmethod
    def from_api(cls, data):
        """Build an entry from one item of the group audit-log response."""
        actor = (data.get("actor") or {}).get("user") or {}
        description = data.get("description") or {}
        return cls(
            id=str(data.get("id", "")),
            created_at=parse_timestamp(data["created"]),
            actor_user_id=_optional_int(actor.get("userId")),
            actor_name=actor.get("username") or actor.get("name") or None,
            target_user_id=_optional_int(description.get("TargetId")),
            target_name=description.get("TargetName") or None,
            old_role_id=_optional_int(description.get("OldRoleSetId")),
            new_role_id=_optional_int(description.get("NewRoleSetId")),
        )


@dataclass
class BotConfig:
    status: str = "online"
    required_role_id: str = ""
    rank_map: dict = field(default_factory=dict)


@dataclass
class RankChangeResult:
    success: bool
    old_role: str | None = None
    new_role: str | None = None
    error: str | None = None


@dataclass
class FetchResult:
    entries: list
    ok: bool = True
    error: str | None = None


def _optional_int(value):
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
