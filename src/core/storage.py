"""Key/value storage adapters for persisted checkout blobs.

Each checkout flow writes plain JSON blobs under well-known string keys,
scoped to a namespace (the customer's user id). Three adapters implement
the same port: in-memory for tests and single-process development, one
JSON file per namespace on disk, and a Supabase table.
"""

import json
import logging
import os
import re
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from src.core.config import Settings

logger = logging.getLogger(__name__)


class StorageBackend(Protocol):
    """Namespaced key/value store for JSON-compatible values."""

    def get(self, namespace: str, key: str) -> Any | None: ...

    def set(self, namespace: str, key: str, value: Any) -> None: ...

    def delete(self, namespace: str, key: str) -> None: ...

    def keys(self, namespace: str) -> list[str]: ...


class InMemoryStorage:
    """Process-local storage. Values are stored as JSON text so reads never alias writes."""

    def __init__(self) -> None:
        self._data: dict[str, dict[str, str]] = {}
        self._lock = Lock()

    def get(self, namespace: str, key: str) -> Any | None:
        with self._lock:
            raw = self._data.get(namespace, {}).get(key)
        return None if raw is None else json.loads(raw)

    def set(self, namespace: str, key: str, value: Any) -> None:
        raw = json.dumps(value)
        with self._lock:
            self._data.setdefault(namespace, {})[key] = raw

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._data.get(namespace, {}).pop(key, None)

    def keys(self, namespace: str) -> list[str]:
        with self._lock:
            return sorted(self._data.get(namespace, {}))


class FileStorage:
    """One JSON document per namespace inside a directory."""

    _SAFE_NAME = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    def _path(self, namespace: str) -> Path:
        return self.directory / f"{self._SAFE_NAME.sub('_', namespace)}.json"

    def _load(self, namespace: str) -> dict[str, Any]:
        path = self._path(namespace)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Unreadable checkout storage file %s: %s", path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, namespace: str, data: dict[str, Any]) -> None:
        path = self._path(namespace)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(json.dumps(data), encoding="utf-8")
        os.replace(tmp_path, path)

    def get(self, namespace: str, key: str) -> Any | None:
        with self._lock:
            return self._load(namespace).get(key)

    def set(self, namespace: str, key: str, value: Any) -> None:
        with self._lock:
            data = self._load(namespace)
            data[key] = value
            self._write(namespace, data)

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            data = self._load(namespace)
            if key in data:
                del data[key]
                self._write(namespace, data)

    def keys(self, namespace: str) -> list[str]:
        with self._lock:
            return sorted(self._load(namespace))


class SupabaseStorage:
    """Rows of (namespace, key, value) in a Supabase table.

    Expects a table with a unique constraint on (namespace, key) and a
    JSONB ``value`` column.
    """

    def __init__(self, client: Any, table: str = "checkout_storage") -> None:
        self.client = client
        self.table = table

    def get(self, namespace: str, key: str) -> Any | None:
        response = (
            self.client.table(self.table)
            .select("value")
            .eq("namespace", namespace)
            .eq("key", key)
            .maybe_single()
            .execute()
        )
        return response.data["value"] if response and response.data else None

    def set(self, namespace: str, key: str, value: Any) -> None:
        (
            self.client.table(self.table)
            .upsert({"namespace": namespace, "key": key, "value": value}, on_conflict="namespace,key")
            .execute()
        )

    def delete(self, namespace: str, key: str) -> None:
        self.client.table(self.table).delete().eq("namespace", namespace).eq("key", key).execute()

    def keys(self, namespace: str) -> list[str]:
        response = self.client.table(self.table).select("key").eq("namespace", namespace).execute()
        return sorted(row["key"] for row in (response.data or []))


def create_storage_backend(settings: Settings) -> StorageBackend:
    """Build the storage adapter selected by configuration.

    Args:
        settings: Application settings.

    Returns:
        StorageBackend: The configured adapter.
    """
    backend = settings.checkout_storage_backend
    if backend == "file":
        logger.info("Checkout state stored in %s", settings.checkout_storage_dir)
        return FileStorage(settings.checkout_storage_dir)
    if backend == "supabase":
        from src.core.supabase import get_supabase_client

        logger.info("Checkout state stored in supabase table %s", settings.checkout_storage_table)
        return SupabaseStorage(get_supabase_client(), settings.checkout_storage_table)

    logger.info("Checkout state stored in memory")
    return InMemoryStorage()
