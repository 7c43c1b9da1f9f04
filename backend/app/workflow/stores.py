"""Change-request persistence with optimistic concurrency.

``compare_and_swap`` only replaces the stored request when the stored
``version`` equals ``expected_version``; otherwise it raises
ConcurrentModificationError and leaves the store untouched.
"""

import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from app.errors import ConcurrentModificationError, RequestNotFoundError
from app.workflow.models import ChangeRequest

logger = logging.getLogger(__name__)


class ChangeRequestStore(ABC):
    @abstractmethod
    def create(self, request: ChangeRequest) -> ChangeRequest:
        """Insert a new request.  Raises ValueError if the id is taken."""

    @abstractmethod
    def get(self, request_id: str) -> Optional[ChangeRequest]:
        pass

    @abstractmethod
    def compare_and_swap(self, request: ChangeRequest, expected_version: int) -> ChangeRequest:
        pass

    @abstractmethod
    def delete(self, request_id: str) -> None:
        pass

    @abstractmethod
    def list_all(self) -> list[ChangeRequest]:
        pass


class InMemoryChangeRequestStore(ChangeRequestStore):
    def __init__(self):
        self._requests: dict[str, ChangeRequest] = {}
        self._lock = threading.Lock()

    def create(self, request: ChangeRequest) -> ChangeRequest:
        with self._lock:
            if request.id in self._requests:
                raise ValueError(f"Change request {request.id} already exists")
            self._requests[request.id] = request
        return request

    def get(self, request_id: str) -> Optional[ChangeRequest]:
        return self._requests.get(request_id)

    def compare_and_swap(self, request: ChangeRequest, expected_version: int) -> ChangeRequest:
        with self._lock:
            current = self._requests.get(request.id)
            if current is None:
                raise RequestNotFoundError(request.id)
            if current.version != expected_version:
                raise ConcurrentModificationError(request.id, expected_version, current.version)
            self._requests[request.id] = request
        return request

    def delete(self, request_id: str) -> None:
        with self._lock:
            self._requests.pop(request_id, None)

    def list_all(self) -> list[ChangeRequest]:
        return sorted(self._requests.values(), key=lambda r: r.created_at)


class JsonFileChangeRequestStore(ChangeRequestStore):
    """One JSON file per request under ``directory``.

    The lock serializes read-compare-write within this process; each write
    goes to a temp file in the same directory and is moved into place with
    os.replace() so a crash never leaves half-written JSON behind.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, request_id: str) -> Path:
        return self.directory / f"{request_id}.json"

    def _read(self, request_id: str) -> Optional[ChangeRequest]:
        path = self._path(request_id)
        if not path.exists():
            return None
        return ChangeRequest.from_dict(json.loads(path.read_text(encoding="utf-8")))

    def _write(self, request: ChangeRequest):
        data = json.dumps(request.to_dict(), indent=2, default=str, ensure_ascii=False)
        # Temp in the same directory so os.replace() is same-device
        fd, tmp_path = tempfile.mkstemp(dir=str(self.directory), suffix=".tmp", prefix="cr_")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(data)
            os.replace(tmp_path, str(self._path(request.id)))
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def create(self, request: ChangeRequest) -> ChangeRequest:
        with self._lock:
            if self._path(request.id).exists():
                raise ValueError(f"Change request {request.id} already exists")
            self._write(request)
        return request

    def get(self, request_id: str) -> Optional[ChangeRequest]:
        with self._lock:
            return self._read(request_id)

    def compare_and_swap(self, request: ChangeRequest, expected_version: int) -> ChangeRequest:
        with self._lock:
            current = self._read(request.id)
            if current is None:
                raise RequestNotFoundError(request.id)
            if current.version != expected_version:
                raise ConcurrentModificationError(request.id, expected_version, current.version)
            self._write(request)
        return request

    def delete(self, request_id: str) -> None:
        with self._lock:
            try:
                self._path(request_id).unlink()
            except FileNotFoundError:
                pass

    def list_all(self) -> list[ChangeRequest]:
        with self._lock:
            requests = []
            for path in self.directory.glob("*.json"):
                try:
                    requests.append(ChangeRequest.from_dict(json.loads(path.read_text(encoding="utf-8"))))
                except (json.JSONDecodeError, KeyError, ValueError) as e:
                    logger.warning(f"Skipping unreadable change request file {path.name}: {e}")
        return sorted(requests, key=lambda r: r.created_at)
