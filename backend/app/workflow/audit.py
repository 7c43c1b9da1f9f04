"""Append-only audit log of workflow transitions."""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from app.workflow.models import AuditEntry

logger = logging.getLogger(__name__)


class AuditLogStore(ABC):
    @abstractmethod
    def append(self, entry: AuditEntry) -> None:
        """Durably record ``entry``.  Must raise if the entry was not stored."""

    @abstractmethod
    def entries(self, request_id: Optional[str] = None) -> list[AuditEntry]:
        pass


class InMemoryAuditLogStore(AuditLogStore):
    def __init__(self):
        self._entries: list[AuditEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self, request_id: Optional[str] = None) -> list[AuditEntry]:
        with self._lock:
            return [e for e in self._entries if request_id is None or e.request_id == request_id]


class JsonlAuditLogStore(AuditLogStore):
    """One JSON object per line; every append is flushed and fsynced."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> None:
        line = json.dumps(entry.to_dict(), ensure_ascii=False)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())

    def entries(self, request_id: Optional[str] = None) -> list[AuditEntry]:
        if not self.path.exists():
            return []
        result = []
        with self._lock:
            with open(self.path, encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = AuditEntry.from_dict(json.loads(line))
                    except (json.JSONDecodeError, KeyError, ValueError) as e:
                        logger.warning(f"Audit log {self.path.name}:{lineno} unreadable: {e}")
                        continue
                    if request_id is None or entry.request_id == request_id:
                        result.append(entry)
        return result
