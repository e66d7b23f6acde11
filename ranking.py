import logging

from errors import TransportError
from models import RankChangeResult

logger = logging.getLogger("bot.ranking")


async def _current_role(client, group_id, user_id):
    """Return (role, error). A lookup failure is reported apart from non-membership."""
    try:
        role = await client.get_user_role_in_group(group_id, user_id)
    except TransportError as e:
        logger.error(f"Could not fetch group role of user {user_id} in group {group_id}: {e}")
        return None, "Could not fetch current role"
    if role is None:
        return None, "User is not in this group"
    return role, None


async def _apply(client, group_id, user_id, current_role, target_role):
    try:
        await client.set_user_rank(group_id, user_id, target_role.id)
    except TransportError as e:
        logger.error(f"Set rank error for user {user_id}: {e}")
        return RankChangeResult(success=False, error=getattr(e, "message", str(e)))
    return RankChangeResult(success=True, old_role=current_role.name, new_role=target_role.name)


async def _step_rank(client, roles, group_id, user_id, step):
    """Move a user one rank up (step=1) or down (step=-1)."""
    all_roles = await roles.get_roles(group_id)
    if not all_roles:
        return RankChangeResult(success=False, error="Could not fetch group roles")

    current, error = await _current_role(client, group_id, user_id)
    if error:
        return RankChangeResult(success=False, error=error)

    ordered = sorted(all_roles, key=lambda role: role.rank)
    index = next((i for i, role in enumerate(ordered) if role.id == current.id), -1)
    if index == -1:
        return RankChangeResult(success=False, error="Could not find current role")

    target_index = index + step
    if target_index >= len(ordered):
        return RankChangeResult(success=False, error="User is already at the highest rank")
    if target_index < 0:
        return RankChangeResult(success=False, error="User is already at the lowest rank")

    return await _apply(client, group_id, user_id, current, ordered[target_index])


async def promote_user(client, roles, group_id, user_id):
    return await _step_rank(client, roles, group_id, user_id, 1)


async def demote_user(client, roles, group_id, user_id):
    return await _step_rank(client, roles, group_id, user_id, -1)


def find_role(all_roles, rank_name, rank_map=None):
    """Find a role by name, honouring configured rank-name mappings first."""
    key = rank_name.strip().lower()
    if rank_map and key in rank_map:
        mapped_id = int(rank_map[key])
        for role in all_roles:
            if role.id == mapped_id:
                return role
        logger.warning(f"Rank mapping {key!r} points at role {mapped_id}, which the group does not have.")
        return None
    for role in all_roles:
        if role.name.lower() == key:
            return role
    return None


async def set_user_rank_by_name(client, roles, group_id, user_id, rank_name, rank_map=None):
    all_roles = await roles.get_roles(group_id)
    if not all_roles:
        return RankChangeResult(success=False, error="Could not fetch group roles")

    target = find_role(all_roles, rank_name, rank_map)
    if target is None:
        available = ", ".join(role.name for role in all_roles)
        return RankChangeResult(
            success=False, error=f'Role "{rank_name}" not found. Available roles: {available}'
        )

    current, error = await _current_role(client, group_id, user_id)
    if error:
        return RankChangeResult(success=False, error=error)

    if current.id == target.id:
        return RankChangeResult(success=False, error=f"User is already {target.name}")

    return await _apply(client, group_id, user_id, current, target)
