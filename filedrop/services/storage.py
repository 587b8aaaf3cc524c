"""
Flat-directory storage backend for uploaded files.

The directory listing is the source of truth: there is no index or manifest.
Stored names are `{field}-{epoch_ms}-{random}{ext}` so concurrent uploads of
the same original name never collide.
"""
from __future__ import annotations
import random
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Dict, List

from ..core.exceptions import FileMissing, InvalidArguments, StorageError, UploadTooLarge

DEFAULT_MAX_BYTES = 50 * 1024 * 1024
_CHUNK = 1024 * 1024
_FIELD_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")
_EXT_SAFE = re.compile(r"\.[A-Za-z0-9_-]{1,16}")

@dataclass
class UploadRecord:
    original_name: str
    stored_name: str
    size: int
    media_type: str
    path: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalName": self.original_name,
            "storedName": self.stored_name,
            "size": self.size,
            "mediaType": self.media_type,
            "path": self.path,
        }

@dataclass
class StoredFile:
    name: str
    size: int
    created: datetime
    modified: datetime

def _ts(epoch: float) -> datetime:
    return datetime.fromtimestamp(epoch, tz=timezone.utc)

class FileStorage:
    def __init__(self, root: str | Path, max_bytes: int = DEFAULT_MAX_BYTES) -> None:
        self.root = Path(root).resolve()
        self.max_bytes = max_bytes
        self.root.mkdir(parents=True, exist_ok=True)

    def _stored_name(self, original_name: str, field_name: str) -> str:
        # field names come from the client; keep a plain token only
        field = _FIELD_UNSAFE.sub("", Path(field_name.replace("\\", "/")).name) or "file"
        suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
        ext = Path(original_name.replace("\\", "/")).suffix
        if not _EXT_SAFE.fullmatch(ext):
            ext = ""
        return f"{field}-{suffix}{ext}"

    def _resolve(self, name: str) -> Path | None:
        # only bare names inside root; anything else is treated as absent
        if not name or name in {".", ".."} or Path(name).name != name or "\\" in name:
            return None
        return self.root / name

    def write_new(
        self,
        original_name: str,
        source: BinaryIO,
        media_type: str = "application/octet-stream",
        field_name: str = "file",
    ) -> UploadRecord:
        stored = self._stored_name(original_name, field_name)
        dest = self.root / stored
        if dest.parent != self.root:
            raise InvalidArguments(f"Invalid field name: {field_name!r}")
        written = 0
        try:
            with dest.open("wb") as out:
                while True:
                    chunk = source.read(_CHUNK)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise UploadTooLarge(f"File too large: {original_name} exceeds {self.max_bytes} bytes")
                    out.write(chunk)
        except UploadTooLarge:
            dest.unlink(missing_ok=True)
            raise
        except OSError as e:
            dest.unlink(missing_ok=True)
            raise StorageError(f"Could not store {original_name}: {e}") from e
        return UploadRecord(
            original_name=original_name,
            stored_name=stored,
            size=written,
            media_type=media_type,
            path=str(dest),
        )

    def list_entries(self) -> List[StoredFile]:
        try:
            paths = sorted(p for p in self.root.iterdir() if p.is_file())
        except OSError as e:
            raise StorageError(f"Could not list {self.root}: {e}") from e
        out: List[StoredFile] = []
        for p in paths:
            try:
                st = p.stat()
            except FileNotFoundError:
                # deleted between iterdir and stat
                continue
            created = getattr(st, "st_birthtime", st.st_ctime)
            out.append(StoredFile(name=p.name, size=st.st_size, created=_ts(created), modified=_ts(st.st_mtime)))
        return out

    def exists(self, name: str) -> bool:
        p = self._resolve(name)
        return p is not None and p.is_file()

    def delete(self, name: str) -> None:
        p = self._resolve(name)
        if p is None or not p.is_file():
            raise FileMissing()
        try:
            p.unlink()
        except FileNotFoundError:
            raise FileMissing()
        except OSError as e:
            raise StorageError(f"Could not delete {name}: {e}") from e

