"""Lifecycle of the AlbumSync local server.

`SyncServer` owns one uvicorn server running on a background thread.
start/stop are serialized by a lock; a transition that cannot get the lock in
time fails with ConflictError instead of racing the one in progress.

    Stopped -> Starting -> Running -> Stopping -> Stopped
"""

from __future__ import annotations

import dataclasses
import enum
import socket
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

import uvicorn

from .api import create_app
from .config import SyncConfig, UploadConfig
from .errors import ConflictError, NotFoundError, NotRunningError
from .events import EventHub
from .logging_config import get_logger

logger = get_logger(__name__)

# Called with the bound port once the server is listening.
DiscoveryHook = Callable[[int], None]


class ServerState(str, enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclasses.dataclass
class ServerInfo:
    host: str
    port: int
    url: str
    albums: str

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


def _get_lan_ip() -> Optional[str]:
    """Return this machine's LAN IPv4 address, or None if there is no route."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            address = s.getsockname()[0]
    except OSError:
        return None
    if address.startswith("127.") or address == "0.0.0.0":
        return None
    return address


def build_info(port: int) -> ServerInfo:
    host = _get_lan_ip() or "127.0.0.1"
    return ServerInfo(
        host=host,
        port=port,
        url=f"http://{host}:{port}",
        albums=f"{host}:{port}/albums.json",
    )


def _bind(host: str, port: int) -> socket.socket:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    return sock


class SyncServer:
    """The sync server handle: start, stop, info and event broadcast."""

    def __init__(
        self,
        host: str = "0.0.0.0",
        token: Optional[str] = None,
        uploads: Optional[UploadConfig] = None,
        discovery: Optional[DiscoveryHook] = None,
        lock_timeout: float = 30.0,
        startup_timeout: float = 10.0,
        shutdown_timeout: float = 10.0,
    ):
        self.host = host
        self.token = token or None
        self.uploads = uploads or UploadConfig()
        self.discovery = discovery
        self.lock_timeout = lock_timeout
        self.startup_timeout = startup_timeout
        self.shutdown_timeout = shutdown_timeout

        self.hub = EventHub()
        self.state = ServerState.STOPPED
        self.port: Optional[int] = None
        self.photos_root: Optional[Path] = None
        self.out_folder: Optional[Path] = None

        self._lock = threading.Lock()
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, config: SyncConfig, discovery: Optional[DiscoveryHook] = None) -> "SyncServer":
        return cls(
            host=config.server.host,
            token=config.auth.token,
            uploads=config.uploads,
            discovery=discovery,
        )

    @property
    def is_running(self) -> bool:
        return self.state == ServerState.RUNNING

    @contextmanager
    def _transition(self) -> Iterator[None]:
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise ConflictError("server start/stop already in progress")
        try:
            yield
        finally:
            self._lock.release()

    def start(self, photos_root: Path, out_folder: Path, preferred_port: int = 0) -> ServerInfo:
        """Start serving photos_root/out_folder, or return the running instance's info.

        Running with the same roots is a no-op; different roots restart the
        server. Raises NotFoundError if either folder is missing.
        """
        photos_root = Path(photos_root).resolve()
        out_folder = Path(out_folder).resolve()

        with self._transition():
            if self.state == ServerState.RUNNING:
                if self.photos_root == photos_root and self.out_folder == out_folder:
                    return build_info(self.port)
                logger.info("Sync server roots changed, restarting")
                self._stop_locked()

            if not out_folder.is_dir():
                raise NotFoundError(f"outFolder not found: {out_folder}")
            if not photos_root.is_dir():
                raise NotFoundError(f"photosRoot not found: {photos_root}")

            self.state = ServerState.STARTING
            try:
                port = self._launch(photos_root, out_folder, preferred_port)
            except BaseException:
                self.state = ServerState.STOPPED
                raise

            self.port = port
            self.photos_root = photos_root
            self.out_folder = out_folder
            self.state = ServerState.RUNNING
            logger.info(f"Sync server listening on {self.host}:{port}")

        self._announce(port)
        return build_info(port)

    def _launch(self, photos_root: Path, out_folder: Path, preferred_port: int) -> int:
        sock = _bind(self.host, preferred_port)
        port = sock.getsockname()[1]

        app = create_app(
            photos_root,
            out_folder,
            hub=self.hub,
            token=self.token,
            uploads=self.uploads,
        )
        config = uvicorn.Config(
            app,
            log_config=None,
            log_level="info",
            timeout_graceful_shutdown=5,
        )
        server = uvicorn.Server(config)
        thread = threading.Thread(
            target=server.run,
            kwargs={"sockets": [sock]},
            daemon=True,
            name="AlbumSyncServer",
        )
        thread.start()

        deadline = time.monotonic() + self.startup_timeout
        while not server.started:
            if not thread.is_alive():
                sock.close()
                raise OSError(f"Sync server failed to start on port {port}")
            if time.monotonic() > deadline:
                server.should_exit = True
                thread.join(self.shutdown_timeout)
                sock.close()
                raise OSError(f"Sync server did not start within {self.startup_timeout}s")
            time.sleep(0.05)

        self._server = server
        self._thread = thread
        return port

    def _announce(self, port: int) -> None:
        if self.discovery is None:
            return
        try:
            self.discovery(port)
        except Exception as exc:
            logger.error(f"Discovery broadcast failed: {exc}")

    def stop(self) -> None:
        """Close the listener and wait for it to shut down."""
        with self._transition():
            self._stop_locked()

    def _stop_locked(self) -> None:
        if self._server is None:
            self.state = ServerState.STOPPED
            return

        self.state = ServerState.STOPPING
        self._server.should_exit = True
        self.hub.close()
        if self._thread is not None:
            self._thread.join(self.shutdown_timeout)
            if self._thread.is_alive():
                logger.warning("Sync server thread did not exit in time")
                self._server.force_exit = True
                self._thread.join(self.shutdown_timeout)

        logger.info(f"Sync server on port {self.port} stopped")
        self._server = None
        self._thread = None
        self.port = None
        self.photos_root = None
        self.out_folder = None
        self.state = ServerState.STOPPED

    def get_info(self) -> ServerInfo:
        if self.port is None:
            raise NotRunningError("server not running")
        return build_info(self.port)

    def broadcast(self, event: str, data: Any) -> int:
        return self.hub.broadcast(event, data)
