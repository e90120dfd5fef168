"""Document-store capability and local implementations."""
import asyncio
import copy
import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Protocol

from pydantic import BaseModel, Field

from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str], None]
CancelHandle = Callable[[], None]

SUBCOLLECTIONS_KEY = "__collections__"


def normalize_path(path: str) -> str:
    return "/".join(segment for segment in path.strip().split("/") if segment)


class DocumentRef(BaseModel):
    """A document listed from a collection, with its data snapshot."""
    id: str
    path: str
    data: dict[str, Any] = Field(default_factory=dict)


class DocumentStore(Protocol):
    """What the engine needs from the hierarchical store."""

    async def list_collection(self, path: str) -> list[DocumentRef]:
        ...

    async def get_document(self, path: str) -> dict[str, Any] | None:
        ...

    def subscribe_collection(self, path: str, on_change: ChangeCallback) -> CancelHandle:
        ...


class _ListenerRegistry:
    """Collection listeners; a write fires every listener at or above it."""

    def __init__(self):
        self._listeners: dict[int, tuple[str, ChangeCallback]] = {}
        self._next_token = 0
        self._lock = threading.Lock()

    def add(self, path: str, on_change: ChangeCallback) -> CancelHandle:
        path = normalize_path(path)
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._listeners[token] = (path, on_change)

        def cancel() -> None:
            with self._lock:
                self._listeners.pop(token, None)

        return cancel

    def notify(self, changed_path: str) -> None:
        with self._lock:
            targets = [
                callback for watched, callback in self._listeners.values()
                if changed_path == watched or changed_path.startswith(watched + "/")
            ]
        for callback in targets:
            callback(changed_path)

    def __len__(self) -> int:
        return len(self._listeners)


class _LocalStore:
    """Shared behaviour for stores that live in this process."""

    def __init__(self):
        self._registry = _ListenerRegistry()

    def subscribe_collection(self, path: str, on_change: ChangeCallback) -> CancelHandle:
        return self._registry.add(path, on_change)

    @property
    def listener_count(self) -> int:
        return len(self._registry)

    def _write(self, path: str, data: dict[str, Any]) -> None:
        raise NotImplementedError

    def load_export(self, tree: dict[str, Any], prefix: str = "") -> int:
        """Load a nested export: {collection: {doc_id: {fields..., "__collections__": {...}}}}."""
        count = 0
        for collection, documents in tree.items():
            for doc_id, body in documents.items():
                path = normalize_path(f"{prefix}/{collection}/{doc_id}")
                fields = {k: v for k, v in body.items() if k != SUBCOLLECTIONS_KEY}
                self._write(path, fields)
                count += 1
                count += self.load_export(body.get(SUBCOLLECTIONS_KEY, {}), path)
        return count


class MemoryDocumentStore(_LocalStore):
    """In-process store with failure injection."""

    def __init__(self, documents: dict[str, dict[str, Any]] | None = None):
        super().__init__()
        self._documents: dict[str, dict[str, Any]] = {}
        self._failing: set[str] = set()
        for path, data in (documents or {}).items():
            self._documents[normalize_path(path)] = copy.deepcopy(data)

    def _check(self, path: str) -> None:
        for prefix in self._failing:
            if path == prefix or path.startswith(prefix + "/"):
                raise StoreUnavailable(path, "injected failure")

    def fail_path(self, path: str) -> None:
        """Make every read at or beneath `path` raise StoreUnavailable."""
        self._failing.add(normalize_path(path))

    def heal_path(self, path: str) -> None:
        self._failing.discard(normalize_path(path))

    async def list_collection(self, path: str) -> list[DocumentRef]:
        path = normalize_path(path)
        self._check(path)
        await asyncio.sleep(0)
        prefix = path + "/"
        refs = []
        for doc_path in sorted(self._documents):
            if doc_path.startswith(prefix) and "/" not in doc_path[len(prefix):]:
                refs.append(DocumentRef(
                    id=doc_path[len(prefix):],
                    path=doc_path,
                    data=copy.deepcopy(self._documents[doc_path]),
                ))
        return refs

    async def get_document(self, path: str) -> dict[str, Any] | None:
        path = normalize_path(path)
        self._check(path)
        await asyncio.sleep(0)
        data = self._documents.get(path)
        return copy.deepcopy(data) if data is not None else None

    def _write(self, path: str, data: dict[str, Any]) -> None:
        self._documents[path] = copy.deepcopy(data)

    def set_document(self, path: str, data: dict[str, Any]) -> None:
        path = normalize_path(path)
        self._write(path, data)
        self._registry.notify(path)

    def delete_document(self, path: str) -> None:
        path = normalize_path(path)
        if self._documents.pop(path, None) is not None:
            self._registry.notify(path)


class FileDocumentStore(_LocalStore):
    """Directory tree of JSON documents: <root>/<collection>/<doc>.json"""

    def __init__(self, root: Path):
        super().__init__()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _file(self, path: str) -> Path:
        return self.root / f"{normalize_path(path)}.json"

    def _read(self, file: Path, path: str) -> dict[str, Any]:
        try:
            return json.loads(file.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailable(path, str(e)) from e

    def _list(self, path: str) -> list[DocumentRef]:
        directory = self.root / normalize_path(path)
        if not directory.is_dir():
            return []
        refs = []
        for file in sorted(directory.glob("*.json")):
            doc_path = f"{normalize_path(path)}/{file.stem}"
            refs.append(DocumentRef(id=file.stem, path=doc_path, data=self._read(file, doc_path)))
        return refs

    def _get(self, path: str) -> dict[str, Any] | None:
        file = self._file(path)
        if not file.exists():
            return None
        return self._read(file, path)

    async def list_collection(self, path: str) -> list[DocumentRef]:
        return await asyncio.to_thread(self._list, path)

    async def get_document(self, path: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._get, path)

    def _write(self, path: str, data: dict[str, Any]) -> None:
        file = self._file(path)
        file.parent.mkdir(parents=True, exist_ok=True)
        file.write_text(json.dumps(data, indent=2, default=str))

    def save_document(self, path: str, data: dict[str, Any]) -> None:
        """Write a document and notify listeners."""
        path = normalize_path(path)
        self._write(path, data)
        logger.debug("Saved %s", path)
        self._registry.notify(path)
