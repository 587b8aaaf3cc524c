"""
Pushes named events to open SSE channels. Best effort: a dead channel is
pruned by the registry and never reported back to the caller.
"""
from __future__ import annotations
from typing import Any

from ..core.logger import get_logger
from .channels import ConnectionRegistry

log = get_logger("notifier")

class Broadcaster:
    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    def send(self, channel_id: str, event: str, payload: Any) -> bool:
        return self.registry.deliver(channel_id, event, payload)

    def broadcast(self, event: str, payload: Any) -> int:
        delivered = 0
        for channel_id in self.registry.channel_ids():
            if self.registry.deliver(channel_id, event, payload):
                delivered += 1
        log.debug("Broadcast %s to %d channel(s)", event, delivered)
        return delivered
