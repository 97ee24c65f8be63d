"""Server-sent event fan-out for the sync server.

Each `/events` connection registers an asyncio queue bound to the event loop
serving it. `broadcast()` may be called from any thread: it snapshots the
client set under a lock and hands the formatted message to each client's loop.
"""

from __future__ import annotations

import asyncio
import json
import threading
from typing import Any, Optional

from .logging_config import get_logger

logger = get_logger(__name__)

RETRY_HINT = "retry: 10000\n\n"


def format_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


class EventClient:
    """One connected `/events` stream."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.queue: asyncio.Queue[Optional[str]] = asyncio.Queue()

    def push(self, message: Optional[str]) -> None:
        self.loop.call_soon_threadsafe(self.queue.put_nowait, message)

    async def get(self) -> Optional[str]:
        return await self.queue.get()


class EventHub:
    """Registry of live event clients with a thread-safe broadcast."""

    def __init__(self) -> None:
        self._clients: set[EventClient] = set()
        self._lock = threading.Lock()

    def register(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> EventClient:
        client = EventClient(loop or asyncio.get_running_loop())
        with self._lock:
            self._clients.add(client)
        return client

    def unregister(self, client: EventClient) -> None:
        with self._lock:
            self._clients.discard(client)

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def broadcast(self, event: str, data: Any) -> int:
        """Send a named event to every client; returns how many were reached."""
        message = format_event(event, data)
        with self._lock:
            clients = list(self._clients)
        delivered = 0
        for client in clients:
            try:
                client.push(message)
                delivered += 1
            except RuntimeError:
                # Loop already closed: the connection is gone.
                self.unregister(client)
        return delivered

    def close(self) -> None:
        """End every open stream."""
        with self._lock:
            clients = list(self._clients)
            self._clients.clear()
        for client in clients:
            try:
                client.push(None)
            except RuntimeError:
                pass
