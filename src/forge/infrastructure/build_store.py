from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol
import uuid


class BuildStore(Protocol):
    def insert_build(self, record: Dict[str, Any]) -> str: ...

    def insert_files(self, build_id: str, files: List[Dict[str, str]]) -> None: ...


@dataclass
class _Build:
    build_id: str
    created_at: str
    record: Dict[str, Any]
    files: List[Dict[str, str]] = field(default_factory=list)


class InMemoryBuildStore:
    """Keeps finished builds in process memory (dev and tests)."""

    def __init__(self) -> None:
        self._builds: Dict[str, _Build] = {}
        self._lock = RLock()

    def _now_iso(self) -> str:
        return datetime.now(UTC).isoformat().replace("+00:00", "Z")

    def insert_build(self, record: Dict[str, Any]) -> str:
        with self._lock:
            build_id = uuid.uuid4().hex
            self._builds[build_id] = _Build(build_id=build_id, created_at=self._now_iso(), record=dict(record))
            return build_id

    def insert_files(self, build_id: str, files: List[Dict[str, str]]) -> None:
        with self._lock:
            build = self._builds.get(build_id)
            if build is None:
                raise KeyError(f"Unknown build: {build_id}")
            build.files.extend(dict(f) for f in files)

    def get(self, build_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            build = self._builds.get(build_id)
            if build is None:
                return None
            return {"id": build.build_id, "created_at": build.created_at, **build.record, "files": list(build.files)}

    def count(self) -> int:
        with self._lock:
            return len(self._builds)
