"""
Wires storage, channels, tools and the dispatcher together for one server process.
"""
from __future__ import annotations
from dataclasses import dataclass

from ..core.config import Settings
from .channels import ConnectionRegistry, QueueTransport
from .notifier import Broadcaster
from .rpc import RpcDispatcher
from .storage import FileStorage
from .tools import ToolExecutor

@dataclass
class Gateway:
    settings: Settings
    storage: FileStorage
    registry: ConnectionRegistry
    broadcaster: Broadcaster
    executor: ToolExecutor
    dispatcher: RpcDispatcher

    def new_transport(self) -> QueueTransport:
        return QueueTransport(maxsize=self.settings.channel_queue_size)

    def shutdown(self) -> int:
        return self.registry.close_all()

def build_gateway(settings: Settings) -> Gateway:
    storage = FileStorage(settings.upload_dir, max_bytes=settings.max_upload_bytes)
    registry = ConnectionRegistry(heartbeat_interval=settings.heartbeat_interval)
    broadcaster = Broadcaster(registry)
    base = (settings.public_base_url or "").rstrip("/")
    executor = ToolExecutor(storage, broadcaster, upload_endpoint=f"{base}/upload")
    dispatcher = RpcDispatcher(
        executor,
        broadcaster,
        server_info=settings.server_info(),
        protocol_version=settings.protocol_version,
    )
    return Gateway(
        settings=settings,
        storage=storage,
        registry=registry,
        broadcaster=broadcaster,
        executor=executor,
        dispatcher=dispatcher,
    )
