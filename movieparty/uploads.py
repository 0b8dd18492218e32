"""
Streaming multipart upload of a room's video into the uploads directory
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from aiohttp import hdrs, web

from .config import GIB
from .errors import UploadError
from .janitor import PARTIAL_PREFIX
from .utils import generate_session_id, now_ms, safe_fragment

logger = logging.getLogger("movieparty")

FILE_FIELD = "video"
MAX_FIELD_BYTES = 1024


@dataclass
class Upload:
    room_id: str
    host_name: str
    path: Path
    file_name: str
    size: int


def _too_large(limit: int) -> UploadError:
    if limit >= GIB:
        ceiling = f"{limit / GIB:g}GB"
    else:
        ceiling = f"{limit} bytes"
    return UploadError(f"File too large. Maximum size is {ceiling}.", status=413)


async def _write_part(part, dest: Path, limit: int, chunk_size: int) -> int:
    loop = asyncio.get_running_loop()
    written = 0
    with open(dest, "wb") as fh:
        while True:
            chunk = await part.read_chunk(chunk_size)
            if not chunk:
                break
            written += len(chunk)
            if written > limit:
                raise _too_large(limit)
            await loop.run_in_executor(None, fh.write, chunk)
    return written


async def receive_upload(request: web.Request, uploads_dir: Path, max_bytes: int,
                         chunk_size: int = 64 * 1024) -> Upload:
    """
    Read a ``multipart/form-data`` body carrying ``video``, ``roomId`` and
    ``hostName``. The file is streamed to disk under a temporary name and
    renamed once the whole body validated; on any failure it is removed.
    """
    if request.content_type != "multipart/form-data":
        raise UploadError("Expected multipart/form-data")
    if request.content_length is not None and request.content_length > max_bytes + 1024 * 1024:
        raise _too_large(max_bytes)

    uploads_dir.mkdir(parents=True, exist_ok=True)
    tmp_path = uploads_dir / f"{PARTIAL_PREFIX}{generate_session_id()}.part"
    fields = {}
    file_name: Optional[str] = None
    size = 0

    try:
        reader = await request.multipart()
        async for part in reader:
            if part.name == FILE_FIELD and part.filename:
                if file_name is not None:
                    raise UploadError("Only one video file per upload")
                content_type = part.headers.get(hdrs.CONTENT_TYPE, "")
                if not content_type.startswith("video/"):
                    raise UploadError("Only video files are allowed!")
                file_name = os.path.basename(part.filename)
                size = await _write_part(part, tmp_path, max_bytes, chunk_size)
            elif part.name in ("roomId", "hostName"):
                fields[part.name] = (await part.read(decode=True))[:MAX_FIELD_BYTES].decode("utf-8", "replace").strip()
            else:
                await part.release()

        if file_name is None:
            raise UploadError("No video file uploaded")
        room_id = fields.get("roomId")
        host_name = fields.get("hostName")
        if not room_id or not host_name:
            raise UploadError("roomId and hostName are required")

        ext = Path(file_name).suffix[:16]
        final_path = uploads_dir / f"movie-{safe_fragment(room_id)}-{now_ms()}{ext}"
        tmp_path.rename(final_path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    logger.info("Video uploaded for room %s by %s (%d bytes)", room_id, host_name, size)
    return Upload(room_id=room_id, host_name=host_name, path=final_path, file_name=file_name, size=size)
