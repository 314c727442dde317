"""
HTTP API handlers: client config, room lookups, membership checks, stats
and admin login
"""
import asyncio
import hashlib
import json
import logging
import time

from aiohttp import web

from .auth import mint_admin_token, verify_admin_user
from .config import Settings
from .errors import InvalidRoomCode, RoomNotFound
from .gateway import SessionGateway
from .reaper import InactivityReaper
from .state import ConnectionRegistry, RoomStore
from .utils import generate_room_code, normalize_room_code

logger = logging.getLogger("tosync.api")

SETTINGS = web.AppKey("settings", Settings)
STORE = web.AppKey("store", RoomStore)
REGISTRY = web.AppKey("registry", ConnectionRegistry)
GATEWAY = web.AppKey("gateway", SessionGateway)
REAPER = web.AppKey("reaper", InactivityReaper)
STARTED_AT = web.AppKey("started_at", float)


# ============================================================
# CONFIGURATION
# ============================================================

async def serve_config(request: web.Request) -> web.Response:
    """Return client configuration"""
    settings = request.app[SETTINGS]
    return web.json_response({
        "roomCodeLength": settings.room_code_length,
        "syncThrottle": settings.sync_throttle,
        "syncTolerance": settings.sync_tolerance,
        "creationRequiresLogin": settings.creation_requires_login,
        "suggestedRoomCode": generate_room_code(settings.room_code_length),
    })


# ============================================================
# ROOMS
# ============================================================

def _room_code(request: web.Request) -> str:
    settings = request.app[SETTINGS]
    try:
        return normalize_room_code(request.match_info["room_code"], settings.room_code_length)
    except InvalidRoomCode as e:
        raise web.HTTPBadRequest(
            text=json.dumps({"ok": False, **e.to_dict()}),
            content_type="application/json",
        )


async def api_room_exists(request: web.Request) -> web.Response:
    """Side-effect-free existence check, used before showing the join form"""
    code = _room_code(request)
    try:
        room = await request.app[STORE].get(code)
    except RoomNotFound as e:
        return web.json_response({"ok": False, "roomCode": code, **e.to_dict()}, status=404)

    return web.json_response({
        "ok": True,
        "roomCode": code,
        "userCount": len(room.members),
    })


async def api_room_authorize(request: web.Request) -> web.Response:
    """Tell a media server whether a connection currently belongs to a room"""
    code = _room_code(request)
    token = request.query.get("token")
    if not token:
        return web.json_response(
            {"ok": False, "error": "token is required"},
            status=400
        )

    if not request.app[REGISTRY].authorize(token, code):
        return web.json_response(
            {"ok": False, "error": "not a member of this room"},
            status=403
        )
    return web.json_response({"ok": True, "roomCode": code})


async def api_stats(request: web.Request) -> web.Response:
    """Room and user statistics with ETag caching"""
    store = request.app[STORE]
    rooms = [room.to_stats() for room in store.rooms()]

    items = {
        "totalUsers": len(request.app[REGISTRY]),
        "totalConnections": len(request.app[GATEWAY].connections),
        "totalRooms": len(rooms),
        "activeRooms": sum(1 for r in rooms if r["userCount"] > 0),
        "rooms": rooms,
    }

    # Generate ETag based on room data, before uptime is added
    content = json.dumps(items, sort_keys=True)
    etag = hashlib.md5(content.encode()).hexdigest()

    if request.headers.get("If-None-Match") == etag:
        return web.Response(status=304)

    items["uptime"] = time.time() - request.app[STARTED_AT]
    response = web.json_response(items)
    response.headers["ETag"] = etag
    response.headers["Cache-Control"] = "max-age=5"
    return response


# ============================================================
# ADMIN LOGIN
# ============================================================

async def api_auth_token(request: web.Request) -> web.Response:
    """Exchange admin credentials for a room-creation token"""
    settings = request.app[SETTINGS]
    if not settings.creation_requires_login:
        return web.json_response(
            {"ok": False, "error": "admin login is not enabled"},
            status=404
        )

    try:
        data = await request.json()
    except ValueError:
        return web.json_response(
            {"ok": False, "error": "invalid JSON"},
            status=400
        )
    if not isinstance(data, dict):
        return web.json_response(
            {"ok": False, "error": "invalid JSON"},
            status=400
        )

    username = data.get("username") or ""
    password = data.get("password") or ""
    if not isinstance(username, str) or not isinstance(password, str):
        return web.json_response(
            {"ok": False, "error": "username and password must be strings"},
            status=400
        )

    loop = asyncio.get_running_loop()
    valid = await loop.run_in_executor(
        None, verify_admin_user, username, password, settings.admin_users
    )
    if not valid:
        logger.warning("Failed admin login for %s", username)
        return web.json_response(
            {"ok": False, "error": "invalid credentials"},
            status=401
        )

    logger.info("🔑 Admin login: %s", username)
    return web.json_response({
        "ok": True,
        "token": mint_admin_token(username, settings.secret_key, settings.token_ttl),
        "expiresIn": settings.token_ttl,
    })
