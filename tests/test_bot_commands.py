from types import SimpleNamespace

import pytest

from bot_commands import GENERIC_FAILURE, RankCommands
from config import Settings
from conftest import T0, FakeRobloxClient, FakeSender, FakeStorage
from models import BotConfig, Monitor, Role
from rank_logger import RankLogger


class FakeInteractionResponse:
    def __init__(self):
        self.messages = []
        self.deferred = False

    def is_done(self):
        return self.deferred or bool(self.messages)

    async def send_message(self, content=None, embed=None, ephemeral=False):
        self.messages.append(SimpleNamespace(content=content, embed=embed, ephemeral=ephemeral))

    async def defer(self, ephemeral=False):
        self.deferred = True


class FakeFollowup:
    def __init__(self):
        self.messages = []

    async def send(self, content=None, embed=None, ephemeral=False):
        self.messages.append(SimpleNamespace(content=content, embed=embed, ephemeral=ephemeral))


def make_interaction(role_ids=()):
    return SimpleNamespace(
        user=SimpleNamespace(name="mod", roles=[SimpleNamespace(id=role_id) for role_id in role_ids]),
        command=None,
        response=FakeInteractionResponse(),
        followup=FakeFollowup(),
    )


def make_cog(client, monitors=None):
    if monitors is None:
        monitors = [Monitor(id=1, name="Main", group_id="100", channel_id="555", last_log_date=T0)]
    storage = FakeStorage(monitors)
    rank_logger = RankLogger(Settings(discord_token=None, roblox_cookie="c"), storage, client, FakeSender())
    return RankCommands(SimpleNamespace(rank_logger=rank_logger)), storage


def field_values(embed):
    return {field.name: field.value for field in embed.fields}


@pytest.mark.asyncio
async def test_missing_cookie_is_reported_before_any_roblox_call(group_roles):
    client = FakeRobloxClient(cookie=None)
    client.roles["100"] = group_roles
    cog, _ = make_cog(client)
    interaction = make_interaction()

    await cog.handle_rank_change(interaction, "builderman", "Officer", is_promotion=True)

    assert [m.content for m in interaction.response.messages] == ["❌ ROBLOX_COOKIE not set."]
    assert not interaction.response.deferred
    assert client.user_id_lookups == 0


@pytest.mark.asyncio
async def test_missing_group_is_reported_before_any_roblox_call(fake_client):
    cog, _ = make_cog(fake_client, monitors=[])
    interaction = make_interaction()

    await cog.handle_rank_change(interaction, "builderman", "Officer", is_promotion=True)

    assert [m.content for m in interaction.response.messages] == ["❌ No group configured."]
    assert fake_client.user_id_lookups == 0


@pytest.mark.asyncio
async def test_unknown_roblox_user_is_shown(fake_client):
    cog, _ = make_cog(fake_client)
    interaction = make_interaction()

    await cog.handle_rank_change(interaction, "ghost", "Officer", is_promotion=True)

    assert interaction.response.deferred
    assert [m.content for m in interaction.followup.messages] == ["❌ Roblox user not found: ghost"]
    assert fake_client.rank_sets == []


@pytest.mark.asyncio
async def test_roblox_outage_gets_generic_failure(fake_client):
    fake_client.fail_lookup = True
    cog, _ = make_cog(fake_client)
    interaction = make_interaction()

    await cog.handle_rank_change(interaction, "builderman", "Officer", is_promotion=True)

    assert [m.content for m in interaction.followup.messages] == [GENERIC_FAILURE]


@pytest.mark.asyncio
async def test_promote_to_named_rank(fake_client):
    fake_client.user_ids["builderman"] = 156
    fake_client.memberships[156] = Role(2, "Member", 1)
    cog, _ = make_cog(fake_client)
    interaction = make_interaction()

    await cog.handle_rank_change(interaction, "builderman", "officer", is_promotion=True)

    embed = interaction.followup.messages[0].embed
    assert embed.title == "✅ User Promoted"
    assert field_values(embed)["Change"] == "Member → Officer"
    assert fake_client.rank_sets == [("100", 156, 3)]


@pytest.mark.asyncio
async def test_rank_mapping_from_configuration(fake_client):
    fake_client.user_ids["builderman"] = 156
    fake_client.memberships[156] = Role(2, "Member", 1)
    cog, storage = make_cog(fake_client)
    storage.config = BotConfig(rank_map={"boss": 4})

    await cog.handle_rank_change(make_interaction(), "builderman", "Boss", is_promotion=True)

    assert fake_client.rank_sets == [("100", 156, 4)]


@pytest.mark.asyncio
async def test_demote_without_rank_steps_down(fake_client):
    fake_client.user_ids["builderman"] = 156
    fake_client.memberships[156] = Role(3, "Officer", 100)
    cog, _ = make_cog(fake_client)
    interaction = make_interaction()

    await cog.handle_rank_change(interaction, "builderman", None, is_promotion=False)

    embed = interaction.followup.messages[0].embed
    assert embed.title == "⬇️ User Demoted"
    assert field_values(embed)["Change"] == "Officer → Member"
    assert fake_client.rank_sets == [("100", 156, 2)]


@pytest.mark.asyncio
async def test_failed_rank_change_is_shown(fake_client):
    fake_client.user_ids["builderman"] = 156
    fake_client.memberships[156] = Role(4, "Owner", 255)
    cog, _ = make_cog(fake_client)
    interaction = make_interaction()

    await cog.handle_rank_change(interaction, "builderman", None, is_promotion=True)

    assert [m.content for m in interaction.followup.messages] == [
        "❌ Failed: User is already at the highest rank"
    ]


@pytest.mark.asyncio
async def test_required_role_gates_rank_commands(fake_client):
    cog, storage = make_cog(fake_client)
    storage.config = BotConfig(required_role_id="99")
    interaction = make_interaction(role_ids=[1])

    await cog.handle_rank_change(interaction, "builderman", "Officer", is_promotion=True)

    assert [m.content for m in interaction.response.messages] == ["❌ You are not allowed to use this command."]
    assert fake_client.user_id_lookups == 0


@pytest.mark.asyncio
async def test_command_error_falls_back_to_generic_message(fake_client):
    cog, _ = make_cog(fake_client)
    fresh = make_interaction()
    deferred = make_interaction()
    deferred.response.deferred = True

    await cog.cog_app_command_error(fresh, RuntimeError("boom"))
    await cog.cog_app_command_error(deferred, RuntimeError("boom"))

    assert [(m.content, m.ephemeral) for m in fresh.response.messages] == [(GENERIC_FAILURE, True)]
    assert [m.content for m in deferred.followup.messages] == [GENERIC_FAILURE]
