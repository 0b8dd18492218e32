"""End-to-end tests for the HTTP and WebSocket surface."""
import asyncio
import json
from dataclasses import replace

import aiohttp
import pytest

from main import create_app

VIDEO_BYTES = bytes(i % 251 for i in range(1000))


@pytest.fixture
async def client(aiohttp_client, settings):
    return await aiohttp_client(create_app(settings))


async def sync(ws):
    """Round-trip a ping; returns the events that arrived before the pong."""
    await ws.send_str("ping")
    events = []
    while True:
        msg = await ws.receive(timeout=2)
        if msg.data == "pong":
            return events
        events.append(json.loads(msg.data))


async def connect(client, name, room_id="room-1", is_host=False):
    ws = await client.ws_connect("/ws")
    await ws.send_json({"type": "join", "roomId": room_id, "name": name, "isHost": is_host})
    return ws, await sync(ws)


async def receive(ws, count=1):
    return [await ws.receive_json(timeout=2) for _ in range(count)]


def video_form(room_id="room-1", host="H", content_type="video/mp4", payload=VIDEO_BYTES):
    data = aiohttp.FormData()
    data.add_field("roomId", room_id)
    data.add_field("hostName", host)
    data.add_field("video", payload, filename="clip.mp4", content_type=content_type)
    return data


def uploaded_files(settings):
    if not settings.uploads_dir.exists():
        return []
    return sorted(p.name for p in settings.uploads_dir.iterdir())


class TestDiagnostics:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status == 200
        body = await resp.json()
        assert body["status"] == "OK"
        assert body["activeRooms"] == 0
        assert body["activeVideoStates"] == 0
        assert "timestamp" in body

    async def test_status_counts_connections(self, client):
        ws, _ = await connect(client, "A")
        body = await (await client.get("/api/status")).json()
        assert body["status"] == "running"
        assert body["activeConnections"] == 1
        assert body["activeStreams"] == 0
        assert body["uptime"] >= 0
        await ws.close()


class TestUpload:
    async def test_upload_creates_playback_state(self, client):
        host, _ = await connect(client, "H")
        guest, _ = await connect(client, "G")
        assert await receive(host) == [{"type": "new-peer", "name": "G"}]

        resp = await client.post("/upload-video", data=video_form())
        assert resp.status == 200
        assert await resp.json() == {
            "success": True,
            "fileName": "clip.mp4",
            "message": "Video uploaded successfully",
        }

        expected = {"type": "video-uploaded", "fileName": "clip.mp4", "host": "H"}
        assert await receive(host) == [expected]
        assert await receive(guest) == [expected]

        playback = client.server.app["store"].get("room-1").playback
        assert playback.host_name == "H"
        assert playback.asset_path.read_bytes() == VIDEO_BYTES
        assert playback.asset_path.name.startswith("movie-room-1-")
        assert playback.asset_path.suffix == ".mp4"

        await host.close()
        await guest.close()

    async def test_rejects_non_video(self, client, settings):
        ws, _ = await connect(client, "H")
        resp = await client.post("/upload-video", data=video_form(content_type="text/plain"))
        assert resp.status == 400
        assert await resp.json() == {"error": "Only video files are allowed!"}
        assert client.server.app["store"].get("room-1").playback is None
        assert uploaded_files(settings) == []
        await ws.close()

    async def test_rejects_unknown_room(self, client, settings):
        resp = await client.post("/upload-video", data=video_form(room_id="nowhere"))
        assert resp.status == 404
        assert uploaded_files(settings) == []

    async def test_rejects_host_not_in_room(self, client, settings):
        ws, _ = await connect(client, "G")
        resp = await client.post("/upload-video", data=video_form(host="H"))
        assert resp.status == 403
        assert client.server.app["store"].get("room-1").playback is None
        assert uploaded_files(settings) == []
        await ws.close()

    async def test_rejects_missing_file(self, client):
        ws, _ = await connect(client, "H")
        data = aiohttp.FormData()
        data.add_field("roomId", "room-1")
        data.add_field("hostName", "H")
        data.add_field("notes", b"not a video", filename="notes.bin", content_type="video/mp4")
        resp = await client.post("/upload-video", data=data)
        assert resp.status == 400
        assert await resp.json() == {"error": "No video file uploaded"}
        await ws.close()

    async def test_rejects_non_multipart(self, client):
        resp = await client.post("/upload-video", json={"roomId": "room-1"})
        assert resp.status == 400

    async def test_rejects_oversized_upload(self, aiohttp_client, settings):
        client = await aiohttp_client(create_app(replace(settings, max_upload_bytes=100)))
        ws, _ = await connect(client, "H")
        resp = await client.post("/upload-video", data=video_form())
        assert resp.status == 413
        assert "too large" in (await resp.json())["error"]
        assert client.server.app["store"].get("room-1").playback is None
        assert uploaded_files(settings) == []
        await ws.close()


class TestSignaling:
    async def test_presence_and_relay(self, client):
        a, a_joined = await connect(client, "A")
        b, b_joined = await connect(client, "B")
        assert a_joined == []
        assert b_joined == [
            {"type": "existing-peer", "name": "A"},
            {"type": "mic-status", "name": "A", "muted": False},
        ]
        assert await receive(a) == [{"type": "new-peer", "name": "B"}]

        await a.send_json({"type": "signal", "to": "B", "signal": {"sdp": "offer"}})
        assert await receive(b) == [{"type": "signal", "from": "A", "signal": {"sdp": "offer"}}]

        await b.send_json({"type": "mic-status", "muted": True})
        assert await receive(a) == [{"type": "mic-status", "name": "B", "muted": True}]

        await b.close()
        assert await receive(a) == [{"type": "peer-left", "name": "B"}]
        await a.close()

    async def test_signal_to_missing_peer_reaches_nobody(self, client):
        a, _ = await connect(client, "A")
        b, _ = await connect(client, "B")
        await receive(a)
        await a.send_json({"type": "signal", "to": "Z", "signal": "x"})
        assert await sync(a) == []
        assert await sync(b) == []
        await a.close()
        await b.close()

    async def test_bad_frames_do_not_close_connection(self, client):
        ws, _ = await connect(client, "A")
        await ws.send_str("garbage")
        await ws.send_json({"type": "teleport"})
        await ws.send_json({"type": "request-video-state"})
        [state] = await receive(ws)
        assert state["type"] == "video-state-sync"
        assert state["hasVideo"] is False
        await ws.close()

    async def test_messages_before_join_are_dropped(self, client):
        ws = await client.ws_connect("/ws")
        await ws.send_json({"type": "request-video-state"})
        assert await sync(ws) == []
        await ws.close()

    async def test_duplicate_name_rejected(self, client):
        a, _ = await connect(client, "A")
        dup, events = await connect(client, "A")
        assert events == [{"type": "join-error", "reason": "name already taken in this room"}]
        assert client.server.app["store"].session_count() == 1
        assert await sync(a) == []
        await dup.close()
        await a.close()

    async def test_second_join_rejected(self, client):
        a, _ = await connect(client, "A")
        await a.send_json({"type": "join", "roomId": "room-2", "name": "A2"})
        assert await sync(a) == [{"type": "join-error", "reason": "already joined"}]
        assert client.server.app["store"].get("room-2") is None
        await a.close()


class TestMovieParty:
    async def party(self, client):
        host, _ = await connect(client, "H", is_host=True)
        guest, _ = await connect(client, "G")
        await receive(host)
        resp = await client.post("/upload-video", data=video_form())
        assert resp.status == 200
        await receive(host)
        await receive(guest)
        return host, guest

    async def test_full_party_lifecycle(self, client):
        host, guest = await self.party(client)

        await host.send_json({"type": "movie-play", "currentTime": 5})
        [play] = await receive(guest)
        assert play["type"] == "movie-play"
        assert play["currentTime"] == 5

        await guest.send_json({"type": "movie-pause", "currentTime": 1})
        await guest.send_json({"type": "request-video-state"})
        [state] = await receive(guest)
        assert state["type"] == "video-state-sync"
        assert state["isPlaying"] is True
        assert state["currentTime"] >= 5
        assert state["host"] == "H"
        assert await sync(host) == []

        movie = await client.get("/movie/room-1", headers={"Range": "bytes=100-199"})
        assert movie.status == 206
        assert await movie.read() == VIDEO_BYTES[100:200]

        await host.close()
        events = await receive(guest, 2)
        assert [e["type"] for e in events] == ["peer-left", "movie-party-ended"]
        assert events[1]["host"] == "H"

        room = client.server.app["store"].get("room-1")
        assert room.playback is None
        assert room.streams == set()
        assert (await client.get("/movie/room-1")).status == 404
        await guest.close()

    async def test_pause_with_null_position(self, client):
        host, guest = await self.party(client)
        await host.send_json({"type": "movie-play", "currentTime": 5})
        await receive(guest)

        await host.send_json({"type": "movie-pause", "currentTime": None})
        [pause] = await receive(guest)
        assert pause["type"] == "movie-pause"
        assert pause["currentTime"] == 0

        await guest.send_json({"type": "request-video-state"})
        [state] = await receive(guest)
        assert state["isPlaying"] is False
        assert state["currentTime"] == 0
        await host.close()
        await guest.close()

    async def test_host_stop(self, client):
        host, guest = await self.party(client)

        await guest.send_json({"type": "stop-movie-party", "host": "H"})
        await host.send_json({"type": "stop-movie-party", "host": "H"})
        for ws in (host, guest):
            [ended] = await receive(ws)
            assert ended["type"] == "movie-party-ended"
            assert ended["reason"] == "stopped"
        assert client.server.app["store"].get("room-1").playback is None
        await host.close()
        await guest.close()

    async def test_late_joiner_gets_state(self, client):
        host, guest = await self.party(client)
        late, events = await connect(client, "L")
        kinds = [e["type"] for e in events]
        assert kinds == ["existing-peer", "existing-peer", "mic-status", "mic-status", "video-state-sync"]
        assert events[-1]["hasVideo"] is True
        assert events[-1]["fileName"] == "clip.mp4"
        for ws in (host, guest, late):
            await ws.close()

    async def test_last_leave_removes_room(self, client):
        ws, _ = await connect(client, "H")
        await client.post("/upload-video", data=video_form())
        await receive(ws)
        await ws.close()
        # the server handles the close asynchronously
        for _ in range(50):
            body = await (await client.get("/health")).json()
            if body["activeRooms"] == 0:
                break
            await asyncio.sleep(0.02)
        assert body["activeRooms"] == 0
        assert body["activeVideoStates"] == 0
        assert client.server.app["store"].get("room-1") is None
