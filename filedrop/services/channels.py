"""
SSE channel registry.

Each open channel owns a transport and exactly one heartbeat task. Closing a
channel (client went away, or a write failed) cancels the heartbeat, drops the
entry and closes the transport, once.
"""
from __future__ import annotations
import asyncio
import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from ..core.exceptions import TransportError
from ..core.logger import get_logger
from ..obs.events import record_event

log = get_logger("channels")

DEFAULT_HEARTBEAT_INTERVAL = 10.0

def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def format_sse(event: str, payload: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(payload, default=str)}\n\n"

class ChannelTransport(Protocol):
    def write(self, event: str, payload: Any) -> None: ...
    def close(self) -> None: ...

class QueueTransport:
    """Bounded queue drained by a StreamingResponse generator.

    A write to a closed or full queue raises TransportError, which the
    registry treats as a dead channel.
    """

    _CLOSED = object()

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, event: str, payload: Any) -> None:
        if self._closed:
            raise TransportError("transport closed")
        try:
            self._queue.put_nowait(format_sse(event, payload))
        except asyncio.QueueFull:
            raise TransportError("client is not reading; queue full")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(self._CLOSED)
        except asyncio.QueueFull:
            # the reader checks `closed` after every chunk
            pass

    async def stream(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is self._CLOSED:
                return
            yield item
            if self._closed and self._queue.empty():
                return

@dataclass
class Channel:
    id: str
    transport: ChannelTransport
    heartbeat: Optional[asyncio.Task] = None
    opened_at: float = field(default_factory=time.time)

class ConnectionRegistry:
    def __init__(self, heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL) -> None:
        self.heartbeat_interval = heartbeat_interval
        self._channels: Dict[str, Channel] = {}
        self._lock = threading.Lock()
        self._last_stamp = 0

    def _next_id(self) -> str:
        # caller holds the lock; strictly increasing even if the clock stalls
        stamp = max(time.time_ns(), self._last_stamp + 1)
        self._last_stamp = stamp
        return f"client-{stamp}"

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._channels)

    def channel_ids(self) -> List[str]:
        with self._lock:
            return list(self._channels)

    def open(self, transport: ChannelTransport) -> str:
        """Register a transport and start its heartbeat. Needs a running event loop."""
        loop = asyncio.get_running_loop()
        with self._lock:
            channel_id = self._next_id()
            channel = Channel(id=channel_id, transport=transport)
            self._channels[channel_id] = channel
        channel.heartbeat = loop.create_task(self._heartbeat(channel_id), name=f"heartbeat-{channel_id}")
        log.info("Channel opened: %s (%d open)", channel_id, self.count)
        record_event("channel_open", {"client_id": channel_id})
        return channel_id

    def get(self, channel_id: str | None) -> ChannelTransport | None:
        if not channel_id:
            return None
        with self._lock:
            channel = self._channels.get(channel_id)
        return channel.transport if channel else None

    def close(self, channel_id: str) -> bool:
        """Dispose a channel. Returns False if it was already gone."""
        with self._lock:
            channel = self._channels.pop(channel_id, None)
        if channel is None:
            return False
        task = channel.heartbeat
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()
        try:
            channel.transport.close()
        except Exception:
            log.exception("Error closing transport for %s", channel_id)
        log.info("Channel closed: %s (%d open)", channel_id, self.count)
        record_event("channel_close", {"client_id": channel_id})
        return True

    def close_all(self) -> int:
        closed = 0
        for channel_id in self.channel_ids():
            if self.close(channel_id):
                closed += 1
        return closed

    def deliver(self, channel_id: str, event: str, payload: Any) -> bool:
        """Write one event; a failed write closes the channel instead of raising."""
        transport = self.get(channel_id)
        if transport is None:
            return False
        try:
            transport.write(event, payload)
            return True
        except TransportError as e:
            log.warning("Dropping channel %s: %s", channel_id, e)
        except Exception:
            log.exception("Unexpected transport failure on %s", channel_id)
        self.close(channel_id)
        return False

    async def _heartbeat(self, channel_id: str) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            if not self.deliver(channel_id, "heartbeat", {"timestamp": utc_now()}):
                return

def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
