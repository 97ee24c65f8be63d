"""Tests for the sync server lifecycle over real sockets."""

import json
import socket
import threading
import time

import httpx
import pytest

from albumsync.errors import ConflictError, NotFoundError, NotRunningError
from albumsync.server import ServerState, SyncServer


@pytest.fixture
def roots(tmp_path):
    photos = tmp_path / "photos"
    out = tmp_path / "out"
    photos.mkdir()
    out.mkdir()
    return photos, out


@pytest.fixture
def server():
    announced = []
    srv = SyncServer(host="127.0.0.1", discovery=announced.append)
    srv.announced = announced
    yield srv
    srv.stop()


def _url(srv: SyncServer, path: str) -> str:
    return f"http://127.0.0.1:{srv.port}{path}"


def _read_event(lines) -> dict:
    """Read SSE lines until one complete event has arrived."""
    event = {}
    for line in lines:
        if line.startswith("event: "):
            event["event"] = line[len("event: "):]
        elif line.startswith("data: "):
            event["data"] = json.loads(line[len("data: "):])
        elif line == "" and "data" in event:
            return event
    raise AssertionError("stream ended before an event arrived")


def test_start_serves_and_stops(server, roots):
    photos, out = roots

    info = server.start(photos, out, 0)

    assert info.port > 0
    assert server.state == ServerState.RUNNING
    assert server.announced == [info.port]
    assert info.url == f"http://{info.host}:{info.port}"
    assert info.albums.endswith(f":{info.port}/albums.json")
    assert httpx.get(_url(server, "/health"), timeout=5).json() == {"ok": True}

    server.stop()

    assert server.state == ServerState.STOPPED
    with pytest.raises(NotRunningError):
        server.get_info()


def test_start_is_idempotent_for_same_roots(server, roots):
    photos, out = roots

    first = server.start(photos, out, 0)
    running = server._server
    second = server.start(photos, out, 0)

    assert second.port == first.port
    assert server._server is running
    assert server.announced == [first.port]


def test_start_with_new_roots_restarts(server, roots, tmp_path):
    photos, out = roots
    other = tmp_path / "other"
    other.mkdir()

    server.start(photos, out, 0)
    old_server = server._server
    old_thread = server._thread

    server.start(other, out, 0)

    assert server._server is not old_server
    assert not old_thread.is_alive()
    assert server.photos_root == other.resolve()
    assert httpx.get(_url(server, "/health"), timeout=5).status_code == 200


def test_missing_roots(server, tmp_path):
    with pytest.raises(NotFoundError):
        server.start(tmp_path / "missing", tmp_path, 0)
    assert server.state == ServerState.STOPPED
    assert server.port is None


def test_two_event_clients_receive_broadcast(server, roots):
    """Both connected event streams get the same payload for one broadcast."""
    photos, out = roots
    server.start(photos, out, 0)

    with httpx.Client(timeout=5) as http:
        with http.stream("GET", _url(server, "/events")) as first, http.stream(
            "GET", _url(server, "/events")
        ) as second:
            first_lines = first.iter_lines()
            second_lines = second.iter_lines()
            assert next(first_lines) == "retry: 10000"
            assert next(second_lines) == "retry: 10000"

            deadline = time.monotonic() + 5
            while server.hub.client_count < 2 and time.monotonic() < deadline:
                time.sleep(0.05)

            assert server.broadcast("change", {"id": "IMG_1"}) == 2

            a = _read_event(first_lines)
            b = _read_event(second_lines)

    assert a == b == {"event": "change", "data": {"id": "IMG_1"}}


def test_token_configured_server(roots):
    photos, out = roots
    srv = SyncServer(host="127.0.0.1", token="s3cret")
    try:
        srv.start(photos, out, 0)
        assert httpx.get(_url(srv, "/health"), timeout=5).status_code == 401
        assert httpx.get(_url(srv, "/health"), headers={"X-Sync-Token": "s3cret"}, timeout=5).status_code == 200
    finally:
        srv.stop()


def _live_server_threads() -> int:
    return sum(1 for t in threading.enumerate() if t.name == "AlbumSyncServer" and t.is_alive())


def test_concurrent_starts_leave_one_server(server, roots, tmp_path):
    """Starts racing from several threads serialize into a single live listener."""
    photos, out = roots
    other = tmp_path / "other"
    other.mkdir()
    before = _live_server_threads()
    errors = []

    def start(root):
        try:
            server.start(root, out, 0)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=start, args=(photos if i % 2 else other,)) for i in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(60)

    assert errors == []
    assert server.state == ServerState.RUNNING
    assert _live_server_threads() == before + 1
    assert httpx.get(_url(server, "/health"), timeout=5).status_code == 200

    server.stop()
    assert _live_server_threads() == before


def test_start_fails_with_conflict_while_transition_held(roots):
    photos, out = roots
    srv = SyncServer(host="127.0.0.1", lock_timeout=0.1)
    srv._lock.acquire()
    try:
        with pytest.raises(ConflictError):
            srv.start(photos, out, 0)
        with pytest.raises(ConflictError):
            srv.stop()
    finally:
        srv._lock.release()

    assert srv.state == ServerState.STOPPED


def test_dropped_event_connection_is_unregistered(server, roots):
    photos, out = roots
    server.start(photos, out, 0)

    sock = socket.create_connection(("127.0.0.1", server.port), timeout=5)
    try:
        sock.sendall(b"GET /events HTTP/1.1\r\nHost: 127.0.0.1\r\nAccept: text/event-stream\r\n\r\n")
        received = b""
        while b"retry: 10000" not in received:
            chunk = sock.recv(4096)
            assert chunk, "connection closed before the stream opened"
            received += chunk
        assert server.hub.client_count == 1
    finally:
        sock.close()

    deadline = time.monotonic() + 5
    while server.hub.client_count and time.monotonic() < deadline:
        time.sleep(0.05)

    assert server.hub.client_count == 0
