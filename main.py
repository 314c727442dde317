#!/usr/bin/env python3
"""
Tosync - Entry Point
WebSocket room coordination + rate limiting + inactive room cleanup
"""
import logging
import os
import socket
import time
from collections import defaultdict
from typing import Optional

from aiohttp import web

from tosync.api import (
    GATEWAY, REAPER, REGISTRY, SETTINGS, STARTED_AT, STORE,
    api_auth_token, api_room_authorize, api_room_exists, api_stats, serve_config
)
from tosync.config import Settings
from tosync.gateway import SessionGateway
from tosync.reaper import InactivityReaper
from tosync.resources import RoomResources
from tosync.state import ConnectionRegistry, RoomStore

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("tosync")

RATE_LIMIT = 100  # requests per minute per IP

# Rate limiting storage
rate_limit_store = defaultdict(list)


@web.middleware
async def rate_limit_middleware(request, handler):
    """Simple rate limiting: 100 requests per minute per IP"""
    ip = request.remote
    now = time.time()

    # WebSocket traffic is throttled per message by the gateway
    if request.path == "/ws":
        return await handler(request)

    # Clean old entries
    rate_limit_store[ip] = [t for t in rate_limit_store[ip] if now - t < 60]

    # Check limit
    if len(rate_limit_store[ip]) >= RATE_LIMIT:
        logger.warning(f"Rate limit exceeded for {ip}")
        return web.json_response(
            {"ok": False, "error": "Rate limit exceeded"},
            status=429
        )

    rate_limit_store[ip].append(now)
    return await handler(request)


async def start_background_tasks(app):
    app[REAPER].start()


async def close_connections(app):
    await app[GATEWAY].shutdown()


async def cleanup_background_tasks(app):
    await app[REAPER].stop()
    await app[STORE].close()


def create_app(settings: Optional[Settings] = None,
               resources: Optional[RoomResources] = None) -> web.Application:
    """Create and configure the aiohttp application"""
    settings = settings or Settings.from_env()
    if resources is None:
        resources = RoomResources(settings.data_dir)

    store = RoomStore(
        resources=resources,
        inactivity_timeout=settings.room_inactivity_timeout,
        duplicate_window=settings.media_duplicate_window,
    )
    registry = ConnectionRegistry()
    gateway = SessionGateway(store, registry, settings)

    app = web.Application(middlewares=[rate_limit_middleware])
    app[SETTINGS] = settings
    app[STORE] = store
    app[REGISTRY] = registry
    app[GATEWAY] = gateway
    app[REAPER] = InactivityReaper(
        store,
        interval=settings.room_cleanup_interval,
        timeout=settings.room_inactivity_timeout,
    )
    app[STARTED_AT] = time.time()

    # API routes
    app.router.add_get("/config", serve_config)
    app.router.add_get("/api/rooms/{room_code}", api_room_exists)
    app.router.add_get("/api/rooms/{room_code}/authorize", api_room_authorize)
    app.router.add_get("/api/stats", api_stats)
    app.router.add_post("/auth/token", api_auth_token)

    # WebSocket for room sessions
    app.router.add_get("/ws", gateway.handle)

    app.on_startup.append(start_background_tasks)
    app.on_shutdown.append(close_connections)
    app.on_cleanup.append(cleanup_background_tasks)

    logger.info("🎬 Tosync server ready • WebSocket enabled")
    return app


def get_local_ip():
    """Get local network IP address"""
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        s.connect(("8.8.8.8", 80))
        ip = s.getsockname()[0]
        s.close()
        return ip
    except OSError:
        return "localhost"


def main():
    settings = Settings.from_env()
    app = create_app(settings)
    local_ip = get_local_ip()

    logger.info(f"🚀 Starting server on {settings.host}:{settings.port}")
    logger.info(f"💡 Access at: http://{local_ip}:{settings.port}")

    web.run_app(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
