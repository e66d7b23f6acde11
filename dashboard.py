import json
import logging

from aiohttp import web

logger = logging.getLogger("bot.dashboard")

RANK_LOGGER = web.AppKey("rank_logger", object)
SEND = web.AppKey("send", object)

TEST_MESSAGE = "✅ Test message from the rank logger. This channel will receive rank-change logs."


def _error(status, message):
    return web.json_response({"message": message}, status=status)


def _monitor_id(request):
    try:
        return int(request.match_info["id"])
    except ValueError:
        return None


def _require_text(payload, key, label):
    value = payload.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} is required")
    return value.strip()


def validate_monitor_input(payload):
    """Validate a create-monitor body and return the storage fields."""
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")
    name = _require_text(payload, "name", "Name")
    group_id = _require_text(payload, "robloxGroupId", "Roblox group ID")
    channel_id = _require_text(payload, "discordChannelId", "Discord channel ID")
    if not group_id.isdigit():
        raise ValueError("Roblox group ID must be numeric")
    if not channel_id.isdigit():
        raise ValueError("Discord channel ID must be numeric")
    is_active = payload.get("isActive", True)
    if not isinstance(is_active, bool):
        raise ValueError("isActive must be a boolean")
    return {"name": name, "group_id": group_id, "channel_id": channel_id, "is_active": is_active}


async def _read_json(request):
    try:
        return await request.json()
    except json.JSONDecodeError:
        raise ValueError("Request body must be valid JSON") from None


async def list_monitors(request):
    rank_logger = request.app[RANK_LOGGER]
    monitors = await rank_logger.storage.list_monitors()
    return web.json_response([monitor.to_json() for monitor in monitors])


async def create_monitor(request):
    rank_logger = request.app[RANK_LOGGER]
    try:
        fields = validate_monitor_input(await _read_json(request))
    except ValueError as e:
        return _error(400, str(e))
    # Seeded on insert to prevent spamming old logs
    monitor = await rank_logger.create_monitor(**fields)
    return web.json_response(monitor.to_json(), status=201)


async def update_monitor(request):
    rank_logger = request.app[RANK_LOGGER]
    monitor_id = _monitor_id(request)
    if monitor_id is None or await rank_logger.storage.get_monitor(monitor_id) is None:
        return _error(404, "Monitor not found")
    try:
        payload = await _read_json(request)
    except ValueError as e:
        return _error(400, str(e))
    is_active = payload.get("isActive") if isinstance(payload, dict) else None
    if not isinstance(is_active, bool):
        return _error(400, "isActive must be a boolean")
    monitor = await rank_logger.storage.set_monitor_active(monitor_id, is_active)
    logger.info(f"Monitor {monitor_id} is now {'active' if is_active else 'paused'}.")
    return web.json_response(monitor.to_json())


async def delete_monitor(request):
    rank_logger = request.app[RANK_LOGGER]
    monitor_id = _monitor_id(request)
    if monitor_id is None:
        return _error(404, "Invalid ID")
    await rank_logger.storage.delete_monitor(monitor_id)
    return web.Response(status=204)


async def test_monitor(request):
    rank_logger = request.app[RANK_LOGGER]
    monitor_id = _monitor_id(request)
    monitor = await rank_logger.storage.get_monitor(monitor_id) if monitor_id is not None else None
    if monitor is None:
        return _error(404, "Monitor not found")
    sent = await request.app[SEND](monitor.channel_id, content=TEST_MESSAGE)
    if not sent:
        return _error(500, "Failed to send test message")
    return web.json_response({"success": True, "message": "Test message sent!"})


async def health(request):
    rank_logger = request.app[RANK_LOGGER]
    return web.json_response({"status": "ok", "polling": rank_logger.is_running})


def create_app(rank_logger, send):
    app = web.Application()
    app[RANK_LOGGER] = rank_logger
    app[SEND] = send
    app.router.add_get("/health", health)
    app.router.add_get("/api/monitors", list_monitors)
    app.router.add_post("/api/monitors", create_monitor)
    app.router.add_patch("/api/monitors/{id}", update_monitor)
    app.router.add_delete("/api/monitors/{id}", delete_monitor)
    app.router.add_post("/api/monitors/{id}/test", test_monitor)
    return app


async def start_dashboard(app, host, port):
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Dashboard listening on {host}:{port}.")
    return runner
