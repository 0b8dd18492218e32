"""
HTTP and WebSocket handlers for the movie party server
"""
import asyncio
import logging
import time
from datetime import datetime, timezone

from aiohttp import WSMsgType, web

from .errors import DuplicateNameError, MembershipError, ProtocolError, UploadError
from .protocol import (
    Emoji, Join, MicStatus, MovieAudioState, MoviePause, MoviePlay, MovieSeek,
    RequestVideoState, Signal, StopMovieParty, event, parse_message,
)
from .state import Session
from .uploads import receive_upload

logger = logging.getLogger("movieparty")

# ============================================================
# ERROR HANDLING
# ============================================================

@web.middleware
async def error_middleware(request, handler):
    """Render unexpected handler failures as JSON instead of HTML"""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except UploadError as e:
        return web.json_response({"error": str(e)}, status=e.status)
    except Exception as e:
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return web.json_response({"error": str(e) or e.__class__.__name__}, status=500)

# ============================================================
# DIAGNOSTICS
# ============================================================

async def api_health(request: web.Request) -> web.Response:
    store = request.app["store"]
    return web.json_response({
        "status": "OK",
        "message": "Movie party server is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "activeRooms": len(store.rooms),
        "activeVideoStates": sum(1 for _ in store.playback_states()),
    })


async def api_status(request: web.Request) -> web.Response:
    store = request.app["store"]
    return web.json_response({
        "status": "running",
        "uptime": round(time.monotonic() - request.app["started_at"], 3),
        "activeConnections": store.session_count(),
        "activeStreams": store.stream_count(),
    })

# ============================================================
# VIDEO UPLOAD
# ============================================================

async def api_upload_video(request: web.Request) -> web.Response:
    """Accept one video for a room; the uploader becomes the party host"""
    settings = request.app["settings"]
    store = request.app["store"]

    upload = await receive_upload(
        request,
        settings.uploads_dir,
        settings.max_upload_bytes,
        settings.stream_chunk_size,
    )

    room = store.get(upload.room_id)
    if room is None or room.find(upload.host_name) is None:
        upload.path.unlink(missing_ok=True)
        if room is None:
            return web.json_response({"error": "unknown room"}, status=404)
        logger.warning("Upload for room %s rejected: %s is not in the room", upload.room_id, upload.host_name)
        return web.json_response({"error": "host must be connected to the room"}, status=403)

    request.app["playback"].load(room, upload.path, upload.file_name, upload.host_name)

    return web.json_response({
        "success": True,
        "fileName": upload.file_name,
        "message": "Video uploaded successfully",
    })

# ============================================================
# WEBSOCKET SIGNALING
# ============================================================

def handle_frame(app: web.Application, session: Session, raw: str) -> None:
    """Apply one inbound frame. Runs to completion without yielding."""
    try:
        message = parse_message(raw)
    except ProtocolError as e:
        logger.warning("Dropping message from %s: %s", session.session_id, e)
        return

    relay = app["relay"]
    playback = app["playback"]

    if isinstance(message, Join):
        _join(relay, session, message)
        return

    if not session.joined:
        logger.warning("Dropping %s from %s: not in a room", message.type, session.session_id)
        return

    if isinstance(message, Signal):
        relay.relay(session, message.signal, message.to)
    elif isinstance(message, MicStatus):
        relay.set_muted(session, message.muted)
    elif isinstance(message, MoviePlay):
        playback.play(session, message.current_time)
    elif isinstance(message, MoviePause):
        playback.pause(session, message.current_time)
    elif isinstance(message, MovieSeek):
        playback.seek(session, message.current_time)
    elif isinstance(message, RequestVideoState):
        playback.query_state(session)
    elif isinstance(message, StopMovieParty):
        playback.stop(session, message.host)
    elif isinstance(message, Emoji):
        relay.emoji(session, message.emoji)
    elif isinstance(message, MovieAudioState):
        relay.movie_audio_state(session, message.is_playing)


def _join(relay, session: Session, message: Join) -> None:
    if session.joined:
        logger.warning("%s tried to join %s while in %s", session.name, message.room_id, session.room_id)
        session.send(event("join-error", reason="already joined"))
        return

    session.name = message.name
    session.is_host = message.is_host
    try:
        relay.join(message.room_id, session)
    except MembershipError as e:
        if isinstance(e, DuplicateNameError):
            logger.warning("Name %r already taken in room %s", message.name, message.room_id)
        session.name = None
        session.send(event("join-error", reason=e.reason))


async def _drain_outbox(ws: web.WebSocketResponse, session: Session) -> None:
    """Write queued events to the socket in order"""
    while True:
        payload = await session.outbox.get()
        try:
            if isinstance(payload, str):
                await ws.send_str(payload)
            else:
                await ws.send_json(payload)
        except ConnectionError as e:
            logger.debug("Send to %s failed: %s", session.session_id, e)
            return


async def ws_signaling(request: web.Request) -> web.WebSocketResponse:
    """One participant connection: join, signaling, mic and playback control"""
    ws = web.WebSocketResponse(heartbeat=30.0)
    await ws.prepare(request)

    session = Session()
    sockets = request.app["websockets"]
    sockets.add(ws)
    writer = asyncio.create_task(_drain_outbox(ws, session))
    logger.info("New WebSocket connection: %s", session.session_id)

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                if msg.data == "ping":
                    session.send("pong")
                else:
                    handle_frame(request.app, session, msg.data)
            elif msg.type == WSMsgType.ERROR:
                logger.warning("WebSocket %s closed with exception %s", session.session_id, ws.exception())
    finally:
        request.app["relay"].disconnect(session)
        sockets.discard(ws)
        writer.cancel()
        await asyncio.gather(writer, return_exceptions=True)
        logger.info("WebSocket disconnected: %s", session.session_id)

    return ws
