import json
import logging
import os
import tempfile
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_PATH = os.getenv(
    "STOREFRONT_STORAGE_PATH",
    os.path.join(os.path.expanduser("~"), ".storefront", "storage.json")
)

class LocalStorage:
    """
    Key/value store kept in a single JSON file.

    Holds the state that lives on the shopper's device between sessions:
    the cart and the guest favorites.
    """

    def __init__(self, path: str = DEFAULT_STORAGE_PATH):
        self.path = path
        self._data = self._read()

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            logger.warning(f"Unreadable storage file {self.path}, starting empty", exc_info=True)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self):
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except Exception:
            # Leave no stray temp file behind
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any):
        self._data[key] = value
        self._write()

    def remove(self, key: str):
        if self._data.pop(key, None) is not None:
            self._write()
