# zone_engine/node/core/document_store.py

import json
import os
import copy
import threading
from abc import ABC, abstractmethod
from typing import Any

from zone_engine.node.exceptions import PersistenceError


class DocumentStore(ABC):
    """
    Minimal persistence interface: a single JSON-compatible document
    that is always loaded and rewritten as a whole.
    """

    @abstractmethod
    def load(self) -> Any | None:
        """Return the stored document, or None if nothing usable is stored."""

    @abstractmethod
    def save(self, document: Any) -> None:
        """
        Replace the stored document.

        :raises PersistenceError: if the document cannot be written.
        """


class JsonFileStore(DocumentStore):
    """Stores the document as an indented JSON file, written through a temp file and os.replace."""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()

    def load(self) -> Any | None:
        with self._lock:
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    return json.load(f)
            except FileNotFoundError:
                return None
            except (json.JSONDecodeError, OSError, UnicodeDecodeError):
                return None

    def save(self, document: Any) -> None:
        tmp_path = f"{self.path}.tmp"
        with self._lock:
            try:
                directory = os.path.dirname(self.path)
                if directory:
                    os.makedirs(directory, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(document, f, indent=2)
                os.replace(tmp_path, self.path)
            except (OSError, TypeError, ValueError) as e:
                raise PersistenceError(f"Failed to write {self.path}: {e}") from e

    def __repr__(self) -> str:
        return f"JsonFileStore({self.path!r})"


class MemoryStore(DocumentStore):
    """Keeps a deep copy of the document in memory. Used for tests and ephemeral setups."""

    def __init__(self, document: Any | None = None):
        self._document = copy.deepcopy(document)
        self.save_count = 0

    def load(self) -> Any | None:
        return copy.deepcopy(self._document)

    def save(self, document: Any) -> None:
        self._document = copy.deepcopy(document)
        self.save_count += 1
