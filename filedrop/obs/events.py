"""
Lightweight event sink → JSONL at settings.events_file (default data/logs/events.jsonl)
"""
from __future__ import annotations
from pathlib import Path
import json
import time
from typing import Any, Dict

from ..core.config import settings
from ..core.logger import get_logger

log = get_logger("events")

def record_event(kind: str, payload: Dict[str, Any]) -> None:
    log.debug("%s %s", kind, payload)
    if not settings.events_file:
        return
    rec = {
        "ts": time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime()),
        "kind": kind,
        "payload": payload,
    }
    path = Path(settings.events_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(rec, ensure_ascii=False, default=str) + "\n")
    except OSError:
        # best effort
        log.warning("Could not write event %s to %s", kind, path)
