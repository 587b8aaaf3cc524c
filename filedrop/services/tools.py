"""
Tool catalog and executor shared by the JSON-RPC dispatcher and the REST routes.
"""
from __future__ import annotations
import copy
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..core.exceptions import InvalidArguments, UnknownTool
from ..core.logger import get_logger
from ..obs.events import record_event
from .channels import utc_now
from .notifier import Broadcaster
from .storage import FileStorage, UploadRecord

log = get_logger("tools")

TOOLS: Tuple[Dict[str, Any], ...] = (
    {
        "name": "upload_file",
        "description": "Upload files to the Origin Brain Trainer server with optional processing instructions",
        "inputSchema": {
            "type": "object",
            "properties": {
                "instructions": {
                    "type": "string",
                    "description": "Processing instructions for the uploaded files",
                },
            },
        },
    },
    {
        "name": "list_files",
        "description": "List all uploaded files",
        "inputSchema": {"type": "object", "properties": {}},
    },
    {
        "name": "delete_file",
        "description": "Delete a specific uploaded file",
        "inputSchema": {
            "type": "object",
            "properties": {
                "filename": {"type": "string", "description": "Name of the file to delete"},
            },
            "required": ["filename"],
        },
    },
)

_SIZE_UNITS = ("Bytes", "KB", "MB", "GB")

def format_size(num_bytes: int) -> str:
    """Human readable size in binary units: 1000 -> "1000 Bytes", 2097152 -> "2 MB"."""
    value = float(num_bytes)
    unit = 0
    while value >= 1024 and unit < len(_SIZE_UNITS) - 1:
        value /= 1024
        unit += 1
    text = f"{round(value, 2):.2f}".rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[unit]}"

class ToolExecutor:
    def __init__(self, storage: FileStorage, broadcaster: Broadcaster, upload_endpoint: str = "/upload") -> None:
        self.storage = storage
        self.broadcaster = broadcaster
        self.upload_endpoint = upload_endpoint
        self._handlers: Dict[str, Callable[[Mapping[str, Any]], Dict[str, Any]]] = {
            "upload_file": self._upload_file,
            "list_files": self._list_files,
            "delete_file": self._delete_file,
        }

    @staticmethod
    def catalog() -> List[Dict[str, Any]]:
        return copy.deepcopy(list(TOOLS))

    def call(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        handler = self._handlers.get(name)
        if handler is None:
            raise UnknownTool(f"Unknown tool: {name}")
        return handler(arguments or {})

    # ---------- tools ----------
    def _list_files(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        files = [
            {
                "name": f.name,
                "size": f.size,
                "sizeFormatted": format_size(f.size),
                "created": f.created.isoformat(),
                "modified": f.modified.isoformat(),
            }
            for f in self.storage.list_entries()
        ]
        return {"success": True, "count": len(files), "files": files}

    def _delete_file(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        filename = arguments.get("filename")
        if not isinstance(filename, str) or not filename.strip():
            raise InvalidArguments("filename is required")
        self.storage.delete(filename)
        log.info("Deleted %s", filename)
        record_event("file_deleted", {"filename": filename})
        self.broadcaster.broadcast("file_deleted", {"filename": filename, "timestamp": utc_now()})
        return {"success": True, "message": f"File {filename} deleted successfully"}

    def _upload_file(self, arguments: Mapping[str, Any]) -> Dict[str, Any]:
        # binary payloads don't travel over JSON-RPC; point the caller at POST /upload
        return {
            "success": True,
            "message": "File upload endpoint ready. Use POST /upload to upload files.",
            "uploadEndpoint": self.upload_endpoint,
            "instructions": arguments.get("instructions") or "No instructions provided",
        }

    # ---------- multipart uploads ----------
    def store_uploads(
        self,
        parts: Iterable[Tuple[str, Any]],
        instructions: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> List[UploadRecord]:
        """Write (field_name, upload) pairs to storage and announce them.

        `upload` is anything with `filename`, `file` and `content_type`,
        i.e. a Starlette UploadFile.
        """
        records: List[UploadRecord] = []
        try:
            for field_name, upload in parts:
                rec = self.storage.write_new(
                    original_name=upload.filename or "upload",
                    source=upload.file,
                    media_type=upload.content_type or "application/octet-stream",
                    field_name=field_name,
                )
                log.info("Stored %s as %s (%s)", rec.original_name, rec.stored_name, format_size(rec.size))
                records.append(rec)
        except Exception:
            # all-or-nothing: drop the parts already written
            for rec in records:
                if self.storage.exists(rec.stored_name):
                    self.storage.delete(rec.stored_name)
            raise

        files = [r.to_dict() for r in records]
        record_event("upload", {"files": [r.stored_name for r in records], "instructions": instructions})
        self.broadcaster.broadcast("upload", {
            "fileCount": len(records),
            "files": files,
            "instructions": instructions,
            "metadata": metadata or {},
        })
        return records
