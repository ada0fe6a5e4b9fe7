"""File-backed key-value storage for local durable state."""

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from tempfile import NamedTemporaryFile

from nano_lens.services.history import KeyValueStorage

logger = logging.getLogger(__name__)

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


@dataclass
class JsonFileStorage(KeyValueStorage):
    """Stores each key as its own UTF-8 file under a directory."""

    directory: Path

    def get_item(self, key: str) -> str | None:
        """Return the stored value, or None when the key was never written."""
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set_item(self, key: str, value: str) -> None:
        """Write the value atomically so readers never see a partial file."""
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = NamedTemporaryFile(
            "w", delete=False, encoding="utf-8", dir=str(path.parent), suffix=".tmp"
        )
        tmp_path = Path(tmp.name)
        try:
            with tmp:
                tmp.write(value)
                tmp.flush()
                os.fsync(tmp.fileno())
            tmp_path.replace(path)
        except Exception:
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Stored %s (%s chars)", key, len(value))

    def _path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"
