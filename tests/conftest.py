"""Shared test fixtures for the movie party server tests."""
from pathlib import Path

import pytest

from movieparty.config import Settings
from movieparty.playback import PlaybackCoordinator
from movieparty.relay import SignalingRelay
from movieparty.state import RoomStore, Session


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingJanitor:
    """Stands in for the Janitor; remembers what it was asked to reclaim."""

    def __init__(self):
        self.reclaimed = []
        self.sweeps = 0

    def reclaim(self, path, delay=None):
        self.reclaimed.append(Path(path))

    def schedule_sweep(self, delay=None):
        self.sweeps += 1


def drain(session: Session) -> list:
    """Pop every queued event for ``session``."""
    events = []
    while not session.outbox.empty():
        events.append(session.outbox.get_nowait())
    return events


def of_type(events: list, kind: str) -> list:
    return [e for e in events if isinstance(e, dict) and e.get("type") == kind]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return RoomStore(clock=clock)


@pytest.fixture
def janitor():
    return RecordingJanitor()


@pytest.fixture
def playback(store, janitor):
    return PlaybackCoordinator(store, janitor)


@pytest.fixture
def relay(store, playback, janitor):
    return SignalingRelay(store, playback, janitor)


@pytest.fixture
def join(relay):
    """Join a new named session and discard its replay events."""

    def _join(name, room_id="room-1", quiet=True):
        session = Session(name)
        relay.join(room_id, session)
        if quiet:
            drain(session)
        return session

    return _join


@pytest.fixture
def asset(tmp_path):
    path = tmp_path / "uploads" / "movie-room-1-1.mp4"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(bytes(i % 256 for i in range(1000)))
    return path


@pytest.fixture
def settings(tmp_path):
    return Settings(data_dir=tmp_path, stream_chunk_size=64, sweep_interval=3600.0, sweep_delay=60.0)
