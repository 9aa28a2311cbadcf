"""
Key-Value Storage for apidesk

String-valued key/value stores used for session and log persistence.
MemoryStorage keeps values for the life of the process; JsonFileStorage
writes every change through to a JSON file so values survive restarts.
"""

import os
import json
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger('apidesk.core.storage')

class StorageError(Exception):
    """Raised when durable storage cannot be read or written"""
    pass

class KeyValueStorage(ABC):
    """Interface shared by all storage backends"""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass

    @abstractmethod
    def clear(self) -> None:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    def __contains__(self, key: str) -> bool:
        return self.get_item(key) is not None

    def __len__(self) -> int:
        return len(self.keys())

class MemoryStorage(KeyValueStorage):
    """In-process storage"""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = str(value)

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> List[str]:
        return list(self._data.keys())

class JsonFileStorage(KeyValueStorage):
    """
    Storage persisted as a single JSON object on disk.

    The file is loaded once at construction and rewritten atomically
    (temporary file + rename) on every mutation.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._data: Dict[str, str] = self._load()
        logger.debug(f"JsonFileStorage opened at {self.path} ({len(self._data)} keys)")

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = str(value)
        self._flush()

    def remove_item(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()

    def clear(self) -> None:
        self._data.clear()
        self._flush()

    def keys(self) -> List[str]:
        return list(self._data.keys())

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read storage file {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise StorageError(f"Storage file {self.path} does not contain a JSON object")

        return {str(key): str(value) for key, value in data.items()}

    def _flush(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.")
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self._data, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StorageError(f"Failed to write storage file {self.path}: {e}") from e
