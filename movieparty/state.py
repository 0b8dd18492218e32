"""
In-memory room state.

One RoomStore owns every live room; each Room owns its sessions (in join
order), the mic table, the optional playback clock and the set of open
media streams. Nothing here awaits: every mutation completes before the
event loop can switch to another task.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Set

from .errors import AlreadyJoinedError, DuplicateNameError
from .utils import generate_session_id

logger = logging.getLogger("movieparty")


class Session:
    """One connected participant. Events queued on ``outbox`` are written
    to the socket, in order, by the connection's writer task."""

    def __init__(self, name: Optional[str] = None, is_host: bool = False,
                 session_id: Optional[str] = None):
        self.session_id = session_id or generate_session_id()
        self.name = name
        self.is_host = is_host
        self.room_id: Optional[str] = None
        self.outbox: asyncio.Queue = asyncio.Queue()

    @property
    def joined(self) -> bool:
        return self.room_id is not None

    def send(self, payload: dict) -> None:
        self.outbox.put_nowait(payload)

    def __repr__(self):
        return f"<Session {self.session_id} {self.name!r} room={self.room_id}>"


@dataclass
class PlaybackState:
    asset_path: Path
    file_name: str
    host_name: str
    is_playing: bool = False
    position: float = 0.0
    last_update: float = 0.0
    uploaded_at: float = field(default_factory=time.time)

    def effective_position(self, now: float) -> float:
        """Position right now, extrapolated while playing"""
        if self.is_playing:
            return self.position + max(now - self.last_update, 0.0)
        return self.position


class Room:
    def __init__(self, room_id: str):
        self.room_id = room_id
        self.sessions: Dict[str, Session] = {}
        self.mic: Dict[str, bool] = {}
        self.playback: Optional[PlaybackState] = None
        self.streams: Set = set()

    def __len__(self):
        return len(self.sessions)

    def members(self) -> List[Session]:
        return list(self.sessions.values())

    def others(self, session: Session) -> List[Session]:
        return [s for s in self.sessions.values() if s is not session]

    def find(self, name: str) -> Optional[Session]:
        for s in self.sessions.values():
            if s.name == name:
                return s
        return None

    def broadcast(self, payload: dict, exclude: Optional[Session] = None) -> int:
        sent = 0
        for s in self.sessions.values():
            if s is not exclude:
                s.send(payload)
                sent += 1
        return sent


class RoomStore:
    """Registry of live rooms, injected into every handler"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.rooms: Dict[str, Room] = {}
        self.clock = clock

    def get(self, room_id: str) -> Optional[Room]:
        return self.rooms.get(room_id)

    def join(self, room_id: str, session: Session) -> List[Session]:
        """
        Add ``session`` to ``room_id``, creating the room if needed.

        Returns the sessions that were already present, in join order.
        A session that already belongs to a room, or whose name is taken
        in the target room, is rejected without touching any state.
        """
        if session.joined:
            raise AlreadyJoinedError()

        room = self.rooms.get(room_id)
        if room is not None and room.find(session.name) is not None:
            raise DuplicateNameError()

        if room is None:
            room = self.rooms[room_id] = Room(room_id)
            logger.info("Room created: %s", room_id)

        existing = room.members()
        room.sessions[session.session_id] = session
        session.room_id = room_id
        return existing

    def leave(self, session: Session) -> Optional[Room]:
        """
        Remove ``session`` from its room. Returns the room it left; the
        room is dropped from the registry once it has no sessions left.
        """
        room = self.rooms.get(session.room_id) if session.joined else None
        session.room_id = None
        if room is None or room.sessions.pop(session.session_id, None) is None:
            return None

        if not room.sessions:
            del self.rooms[room.room_id]
            logger.info("Room %s deleted (empty)", room.room_id)
        return room

    def room_sessions(self, room_id: str) -> List[Session]:
        room = self.rooms.get(room_id)
        return room.members() if room else []

    def playback_states(self) -> Iterator[PlaybackState]:
        for room in self.rooms.values():
            if room.playback is not None:
                yield room.playback

    def referenced_assets(self) -> Set[Path]:
        return {p.asset_path.resolve() for p in self.playback_states()}

    def session_count(self) -> int:
        return sum(len(room) for room in self.rooms.values())

    def stream_count(self) -> int:
        return sum(len(room.streams) for room in self.rooms.values())
