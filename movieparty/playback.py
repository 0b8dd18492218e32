"""
Host-authoritative shared playback clock, one per room
"""
import logging
import math
from pathlib import Path
from typing import Optional

from .protocol import event
from .state import PlaybackState, Room, RoomStore, Session
from .streaming import close_all
from .utils import now_ms

logger = logging.getLogger("movieparty")

REASON_STOPPED = "stopped"
REASON_HOST_LEFT = "host-disconnected"

_END_MESSAGES = {
    REASON_STOPPED: "Movie party has ended",
    REASON_HOST_LEFT: "Movie party ended - host disconnected",
}


def _clamp_position(value) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) and value > 0 else 0.0


class PlaybackCoordinator:
    """
    Owns every room's PlaybackState transitions.

    Only the session whose name equals ``host_name`` may change a room's
    clock; requests from anyone else are dropped without a reply.
    """

    def __init__(self, store: RoomStore, janitor=None):
        self.store = store
        self.janitor = janitor

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def snapshot(self, room: Optional[Room]) -> dict:
        playback = room.playback if room is not None else None
        if playback is None:
            return event(
                "video-state-sync",
                hasVideo=False,
                fileName=None,
                isPlaying=False,
                currentTime=0,
                host=None,
            )
        return event(
            "video-state-sync",
            hasVideo=True,
            fileName=playback.file_name,
            isPlaying=playback.is_playing,
            currentTime=playback.effective_position(self.store.clock()),
            host=playback.host_name,
        )

    def query_state(self, session: Session) -> dict:
        """Reply to ``session`` with the room's current, extrapolated state"""
        state = self.snapshot(self.store.get(session.room_id))
        session.send(state)
        return state

    # ------------------------------------------------------------
    # Asset ready
    # ------------------------------------------------------------

    def load(self, room: Room, asset_path: Path, file_name: str, host_name: str) -> PlaybackState:
        """Install a freshly uploaded asset; the uploader becomes host"""
        previous = room.playback
        room.playback = PlaybackState(
            asset_path=Path(asset_path),
            file_name=file_name,
            host_name=host_name,
            last_update=self.store.clock(),
        )
        if previous is not None and previous.asset_path != room.playback.asset_path:
            close_all(room)
            self._reclaim(previous.asset_path)

        logger.info("Video %s loaded for room %s by %s", file_name, room.room_id, host_name)
        room.broadcast(event("video-uploaded", fileName=file_name, host=host_name))
        return room.playback

    # ------------------------------------------------------------
    # Host controls
    # ------------------------------------------------------------

    def _host_state(self, session: Session, action: str):
        room = self.store.get(session.room_id)
        playback = room.playback if room is not None else None
        if playback is None:
            logger.debug("%s from %s ignored: no video in room %s", action, session.name, session.room_id)
            return None, None
        if playback.host_name != session.name:
            logger.warning("Unauthorized %s by %s in room %s", action, session.name, room.room_id)
            return None, None
        return room, playback

    def _update(self, session: Session, action: str, position, playing: Optional[bool]) -> bool:
        room, playback = self._host_state(session, action)
        if playback is None:
            return False

        position = _clamp_position(position)
        if playing is not None:
            playback.is_playing = playing
        playback.position = position
        playback.last_update = self.store.clock()

        logger.info("%s %s video to %.2fs in room %s", session.name, action, position, room.room_id)
        room.broadcast(event(action, currentTime=position, timestamp=now_ms()), exclude=session)
        return True

    def play(self, session: Session, position) -> bool:
        return self._update(session, "movie-play", position, playing=True)

    def pause(self, session: Session, position) -> bool:
        return self._update(session, "movie-pause", position, playing=False)

    def seek(self, session: Session, position) -> bool:
        return self._update(session, "movie-seek", position, playing=None)

    def stop(self, session: Session, host: Optional[str] = None) -> bool:
        """Host ends the party; everyone in the room is told"""
        room, playback = self._host_state(session, "stop-movie-party")
        if playback is None:
            return False
        if host is not None and host != session.name:
            logger.warning("Unauthorized attempt to stop movie party by %s in room %s", session.name, room.room_id)
            return False

        self._teardown(room, REASON_STOPPED)
        return True

    def host_left(self, room: Room, name: str) -> bool:
        """Called after ``name`` has been removed from ``room``"""
        if room.playback is None or room.playback.host_name != name:
            return False
        logger.info("Movie party host %s disconnected from room %s", name, room.room_id)
        self._teardown(room, REASON_HOST_LEFT)
        return True

    def discard(self, room: Room) -> None:
        """Drop a room's playback state without notifying anyone"""
        playback = room.playback
        room.playback = None
        close_all(room)
        if playback is not None:
            self._reclaim(playback.asset_path)

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    def _teardown(self, room: Room, reason: str) -> None:
        host = room.playback.host_name
        self.discard(room)
        logger.info("Video state cleared for room %s (%s)", room.room_id, reason)
        room.broadcast(event(
            "movie-party-ended",
            host=host,
            reason=reason,
            message=_END_MESSAGES[reason],
        ))

    def _reclaim(self, path: Path) -> None:
        if self.janitor is not None:
            self.janitor.reclaim(path)
