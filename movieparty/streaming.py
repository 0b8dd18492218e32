"""
Byte-range media streaming with per-room stream handle tracking
"""
import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Optional

from aiohttp import hdrs, web

from .state import Room
from .utils import RangeNotSatisfiable, parse_range

logger = logging.getLogger("movieparty")

DEFAULT_CONTENT_TYPE = "video/mp4"


class StreamHandle:
    """
    One open read of a room's asset.

    The handle sits in ``room.streams`` from before the first byte is sent
    until ``close()``, which runs exactly once no matter which of end of
    data, read error, client abort or a forced ``close_all`` comes first.
    """

    def __init__(self, room: Room, path: Path, start: int, length: int):
        self.room = room
        self.path = path
        self.start = start
        self.length = length
        self.sent = 0
        self.closed = False
        self._file = None
        self._task: Optional[asyncio.Task] = None

    def open(self) -> "StreamHandle":
        self._file = open(self.path, "rb")
        if self.start:
            self._file.seek(self.start)
        self._task = asyncio.current_task()
        self.room.streams.add(self)
        return self

    def close(self, reason: str = "done") -> bool:
        if self.closed:
            return False
        self.closed = True
        self.room.streams.discard(self)
        if self._file is not None:
            self._file.close()
        logger.debug("Stream closed (%s) for room %s after %d bytes", reason, self.room.room_id, self.sent)
        return True

    def abort(self) -> None:
        """Forced closure; also stops the task serving this handle"""
        if self.close("forced") and self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()

    async def pump(self, resp: web.StreamResponse, chunk_size: int) -> None:
        loop = asyncio.get_running_loop()
        remaining = self.length - self.sent
        while remaining > 0 and not self.closed:
            data = await loop.run_in_executor(None, self._file.read, min(chunk_size, remaining))
            if not data:
                break
            await resp.write(data)
            self.sent += len(data)
            remaining -= len(data)


def close_all(room: Optional[Room]) -> int:
    """Force-close every open stream of ``room``. Safe to call repeatedly."""
    if room is None or not room.streams:
        return 0
    handles = list(room.streams)
    logger.info("Closing %d active streams for room %s", len(handles), room.room_id)
    for handle in handles:
        handle.abort()
    room.streams.clear()
    return len(handles)


def _not_found(message: str) -> web.Response:
    return web.json_response({"error": message}, status=404)


async def serve_movie(request: web.Request) -> web.StreamResponse:
    """Serve the room's current video, honouring Range requests"""
    store = request.app["store"]
    settings = request.app["settings"]
    room_id = request.match_info["room_id"]

    room = store.get(room_id)
    playback = room.playback if room is not None else None
    if playback is None:
        return _not_found("No video found for this room")

    path = playback.asset_path
    try:
        size = path.stat().st_size
    except OSError:
        return _not_found("Video file not found")

    range_header = request.headers.get(hdrs.RANGE)
    try:
        span = parse_range(range_header, size)
    except RangeNotSatisfiable:
        return web.Response(status=416, headers={hdrs.CONTENT_RANGE: f"bytes */{size}"})

    headers = {
        hdrs.ACCEPT_RANGES: "bytes",
        hdrs.CONTENT_TYPE: mimetypes.guess_type(path.name)[0] or DEFAULT_CONTENT_TYPE,
        hdrs.CACHE_CONTROL: "no-cache, no-store, must-revalidate",
    }
    if span is not None:
        start, end = span
        status = 206
        headers[hdrs.CONTENT_RANGE] = f"bytes {start}-{end}/{size}"
    else:
        start, end = 0, size - 1
        status = 200
    length = end - start + 1

    logger.info("Streaming video for room %s, range: %s", room_id, range_header or "full")

    handle = StreamHandle(room, path, start, length)
    try:
        handle.open()
    except OSError as e:
        logger.error("Cannot open %s: %s", path.name, e)
        return _not_found("Video file not found")

    resp = web.StreamResponse(status=status, headers=headers)
    resp.content_length = length
    try:
        await resp.prepare(request)
        await handle.pump(resp, settings.stream_chunk_size)
        if handle.closed:
            # Forced closure mid-transfer, the body is incomplete
            _drop_connection(request)
        else:
            await resp.write_eof()
    except ConnectionError:
        logger.debug("Client aborted stream for room %s", room_id)
        handle.close("client abort")
    except asyncio.CancelledError:
        handle.close("cancelled")
        raise
    except (OSError, ValueError) as e:
        logger.error("Stream error for room %s: %s", room_id, e)
        handle.close("error")
        _drop_connection(request)
    finally:
        handle.close()
    return resp


def _drop_connection(request: web.Request) -> None:
    if request.transport is not None:
        request.transport.close()
