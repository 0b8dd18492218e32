"""
Presence, mic state and signaling relay between the sessions of a room
"""
import logging
from typing import Any, List, Optional

from .playback import PlaybackCoordinator
from .protocol import event
from .state import Room, RoomStore, Session

logger = logging.getLogger("movieparty")


class SignalingRelay:
    def __init__(self, store: RoomStore, playback: PlaybackCoordinator, janitor=None):
        self.store = store
        self.playback = playback
        self.janitor = janitor

    # ------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------

    def join(self, room_id: str, session: Session) -> List[Session]:
        """
        Register ``session`` and bring everybody up to date: the newcomer
        gets the present peers, their mic states and the playback state;
        the others get a single new-peer notice. Membership errors
        propagate before anything is sent.
        """
        existing = self.store.join(room_id, session)
        room = self.store.get(room_id)
        logger.info("%s joined room %s (%d present)", session.name, room_id, len(room))

        for peer in existing:
            session.send(event("existing-peer", name=peer.name))

        for name, muted in room.mic.items():
            session.send(event("mic-status", name=name, muted=muted))
        room.mic[session.name] = False

        room.broadcast(event("new-peer", name=session.name), exclude=session)

        if room.playback is not None:
            session.send(self.playback.snapshot(room))
        return existing

    def disconnect(self, session: Session) -> Optional[Room]:
        """Tear down everything ``session`` held, cascading to the room"""
        name = session.name
        room = self.store.leave(session)
        if room is None:
            return None
        logger.info("%s left room %s", name, room.room_id)

        room.broadcast(event("peer-left", name=name))
        room.mic.pop(name, None)

        released = self.playback.host_left(room, name)

        if not room.sessions:
            released = released or room.playback is not None
            self.playback.discard(room)
            room.mic.clear()

        if released and self.janitor is not None:
            self.janitor.schedule_sweep()
        return room

    # ------------------------------------------------------------
    # Relay
    # ------------------------------------------------------------

    def relay(self, session: Session, payload: Any, to: Optional[str] = None) -> int:
        """
        Forward an opaque negotiation payload. Returns the number of
        sessions it reached; a missing target reaches nobody.
        """
        room = self.store.get(session.room_id)
        if room is None:
            return 0

        message = event("signal", **{"from": session.name, "signal": payload})
        if to is None:
            return room.broadcast(message, exclude=session)

        target = room.find(to)
        if target is None or target is session:
            logger.info("Signal from %s to %s dropped: not in room %s", session.name, to, room.room_id)
            return 0
        target.send(message)
        return 1

    def emoji(self, session: Session, emoji: str) -> int:
        room = self.store.get(session.room_id)
        if room is None:
            return 0
        return room.broadcast(event("emoji", **{"from": session.name, "emoji": emoji}), exclude=session)

    def movie_audio_state(self, session: Session, is_playing: bool) -> int:
        """Tell the others the movie's audio started or stopped (echo cancellation hint)"""
        room = self.store.get(session.room_id)
        if room is None:
            return 0
        return room.broadcast(event("movie-audio-state", isPlaying=is_playing, host=session.name), exclude=session)

    # ------------------------------------------------------------
    # Mic state
    # ------------------------------------------------------------

    def set_muted(self, session: Session, muted: bool) -> bool:
        room = self.store.get(session.room_id)
        if room is None or session.name not in room.mic:
            return False
        room.mic[session.name] = muted
        logger.info("%s mic status: %s", session.name, "muted" if muted else "unmuted")
        room.broadcast(event("mic-status", name=session.name, muted=muted), exclude=session)
        return True
