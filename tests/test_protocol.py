"""Tests for movieparty/protocol.py: inbound message parsing."""
import json

import pytest

from movieparty.errors import MalformedMessageError, UnknownMessageError
from movieparty.protocol import (
    Join, MicStatus, MoviePlay, RequestVideoState, Signal, StopMovieParty, event, parse_message,
)


def frame(**data):
    return json.dumps(data)


class TestParseMessage:
    def test_join_uses_wire_names(self):
        msg = parse_message(frame(type="join", roomId="r1", name="alice", isHost=True))
        assert isinstance(msg, Join)
        assert msg.room_id == "r1"
        assert msg.name == "alice"
        assert msg.is_host is True

    def test_join_host_defaults_false(self):
        assert parse_message(frame(type="join", roomId="r1", name="a")).is_host is False

    def test_signal_payload_is_opaque(self):
        payload = {"sdp": "v=0...", "nested": [1, {"x": None}]}
        msg = parse_message(frame(type="signal", to="bob", signal=payload))
        assert isinstance(msg, Signal)
        assert msg.to == "bob"
        assert msg.signal == payload

    def test_broadcast_signal_has_no_target(self):
        assert parse_message(frame(type="signal", signal="x")).to is None

    def test_movie_controls(self):
        msg = parse_message(frame(type="movie-play", currentTime=12.5))
        assert isinstance(msg, MoviePlay)
        assert msg.current_time == 12.5

    def test_missing_current_time_is_none(self):
        assert parse_message(frame(type="movie-play")).current_time is None

    def test_null_current_time_is_accepted(self):
        for kind in ("movie-play", "movie-pause", "movie-seek"):
            assert parse_message(frame(type=kind, currentTime=None)).current_time is None

    def test_simple_kinds(self):
        assert isinstance(parse_message(frame(type="request-video-state")), RequestVideoState)
        assert isinstance(parse_message(frame(type="mic-status", muted=True)), MicStatus)
        assert parse_message(frame(type="stop-movie-party", host="h")).host == "h"
        assert isinstance(parse_message(frame(type="stop-movie-party")), StopMovieParty)

    def test_extra_fields_ignored(self):
        msg = parse_message(frame(type="mic-status", muted=False, roomId="legacy"))
        assert msg.muted is False


class TestRejections:
    @pytest.mark.parametrize("raw", ["not json", "{", ""])
    def test_invalid_json(self, raw):
        with pytest.raises(MalformedMessageError):
            parse_message(raw)

    @pytest.mark.parametrize("raw", ["[]", "42", '"join"'])
    def test_non_object(self, raw):
        with pytest.raises(MalformedMessageError):
            parse_message(raw)

    @pytest.mark.parametrize("kind", ["teleport", None, 5, ["join"]])
    def test_unknown_type(self, kind):
        with pytest.raises(UnknownMessageError):
            parse_message(json.dumps({"type": kind}))

    def test_missing_type(self):
        with pytest.raises(UnknownMessageError):
            parse_message(frame(name="x"))

    def test_join_without_name(self):
        with pytest.raises(MalformedMessageError):
            parse_message(frame(type="join", roomId="r1"))

    def test_join_with_empty_room(self):
        with pytest.raises(MalformedMessageError):
            parse_message(frame(type="join", roomId="", name="a"))

    def test_mic_status_needs_bool(self):
        with pytest.raises(MalformedMessageError):
            parse_message(frame(type="mic-status", muted="sometimes"))


def test_event_builder():
    assert event("peer-left", name="a") == {"type": "peer-left", "name": "a"}
