"""Durable key/value media behind the token store.

- `FileStorage`: one JSON object per file, written atomically (temp file + os.replace)
  so another process never reads half a document. Optional encoder/decoder hooks
  (str -> str) allow wrapping the content, e.g. with an OS keyring cipher.
- `MemoryStorage`: process-local, used in tests and as the no-persistence fallback.

Read problems (missing, unreadable, corrupt) are reported as an empty mapping.
Write problems raise OSError/ValueError; the token store decides what to do.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from typing import Callable, Dict, Optional, Protocol


logger = logging.getLogger(__name__)

STORAGE_DIRNAME = "session-keeper"
STORAGE_FILENAME = "session.json"


def _dir_writable(path: str) -> bool:
    try:
        os.makedirs(path, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            dir=path,
            prefix=".session_keeper_write_test_",
            suffix=".tmp",
            delete=True,
        ) as f:
            f.write(b"ok")
            f.flush()
        return True
    except OSError:
        return False


def default_storage_path() -> str:
    state_home = os.environ.get("XDG_STATE_HOME") or os.path.join(os.path.expanduser("~"), ".local", "state")
    preferred_dir = os.path.join(state_home, STORAGE_DIRNAME)
    fallback_dir = os.path.join(tempfile.gettempdir(), STORAGE_DIRNAME)

    base_dir = preferred_dir if _dir_writable(preferred_dir) else fallback_dir
    return os.path.join(base_dir, STORAGE_FILENAME)


class StorageBackend(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def remove(self, key: str) -> None:
        ...


class MemoryStorage:
    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, str]:
        return dict(self._data)


class FileStorage:
    def __init__(
        self,
        path: Optional[str] = None,
        encoder: Optional[Callable[[str], str]] = None,
        decoder: Optional[Callable[[str], str]] = None,
    ) -> None:
        self.path = path or default_storage_path()
        self.encoder = encoder
        self.decoder = decoder

    # --- Public API ---
    def get(self, key: str) -> Optional[str]:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove(self, key: str) -> None:
        data = self._read_all()
        if key not in data:
            return
        del data[key]
        if data:
            self._write_all(data)
        else:
            self.delete()

    def delete(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            return

    # --- Internal ---
    def _read_all(self) -> Dict[str, str]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                content = f.read()
        except FileNotFoundError:
            return {}
        except OSError as exc:
            logger.warning("storage file unreadable, treating as empty: %s", exc)
            return {}

        if self.decoder:
            try:
                content = self.decoder(content)
            except Exception as exc:  # noqa: BLE001
                logger.warning("storage file could not be decoded, treating as empty: %s", exc)
                return {}

        try:
            data = json.loads(content)
        except ValueError:
            logger.warning("storage file is not valid JSON, treating as empty: %s", self.path)
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: Dict[str, str]) -> None:
        parent = os.path.dirname(self.path) or "."
        os.makedirs(parent, exist_ok=True)
        content = json.dumps(data, ensure_ascii=False)
        if self.encoder:
            try:
                content = self.encoder(content)
            except Exception as exc:  # noqa: BLE001
                raise ValueError("failed to encode storage file") from exc

        tmp_fd, tmp_path = tempfile.mkstemp(prefix=".session_keeper_", suffix=".tmp", dir=parent)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)


__all__ = ["FileStorage", "MemoryStorage", "StorageBackend", "default_storage_path"]
