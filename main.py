#!/usr/bin/env python3
"""
Movie Party - Entry Point
WebSocket signaling + synchronized playback + range streaming + cleanup tasks
"""
import logging
import socket
import time
import weakref
from typing import Optional

from aiohttp import WSCloseCode, web

from movieparty.api import (
    api_health, api_status, api_upload_video, error_middleware, ws_signaling,
)
from movieparty.config import Settings
from movieparty.janitor import Janitor
from movieparty.playback import PlaybackCoordinator
from movieparty.relay import SignalingRelay
from movieparty.state import RoomStore
from movieparty.streaming import serve_movie

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("movieparty")


async def start_background_tasks(app):
    app["settings"].uploads_dir.mkdir(parents=True, exist_ok=True)
    app["janitor"].start()


async def stop_background_tasks(app):
    await app["janitor"].stop()


async def close_websockets(app):
    for ws in set(app["websockets"]):
        await ws.close(code=WSCloseCode.GOING_AWAY, message=b"Server shutdown")


def create_app(settings: Optional[Settings] = None) -> web.Application:
    """Create and configure the aiohttp application"""
    settings = settings or Settings.from_env()
    app = web.Application(middlewares=[error_middleware])

    store = RoomStore()
    janitor = Janitor.from_settings(store, settings)
    playback = PlaybackCoordinator(store, janitor)

    app["settings"] = settings
    app["store"] = store
    app["janitor"] = janitor
    app["playback"] = playback
    app["relay"] = SignalingRelay(store, playback, janitor)
    app["websockets"] = weakref.WeakSet()
    app["started_at"] = time.monotonic()

    # Diagnostics
    app.router.add_get("/health", api_health)
    app.router.add_get("/api/status", api_status)

    # Movie party
    app.router.add_post("/upload-video", api_upload_video)
    app.router.add_get("/movie/{room_id}", serve_movie)

    # Signaling
    app.router.add_get("/ws", ws_signaling)

    app.on_startup.append(start_background_tasks)
    app.on_shutdown.append(close_websockets)
    app.on_cleanup.append(stop_background_tasks)

    logger.info("Movie party server ready, uploads in %s", settings.uploads_dir.resolve())
    return app


def get_local_ip():
    """Get local WiFi IP address"""
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
    logging.getLogger().setLevel(settings.log_level)
    app = create_app(settings)

    logger.info("Starting server on %s:%s", settings.host, settings.port)
    logger.info("Access at: http://%s:%s", get_local_ip(), settings.port)

    web.run_app(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
