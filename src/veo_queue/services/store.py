"""JSON document store for queue and settings snapshots."""

import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger()

SETTINGS_KEY = "settings"
QUEUE_KEY = "queue"

_VALID_KEY_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


class JsonStore:
    """Stores whole documents as JSON files under a data directory.

    Each save overwrites the document; there is no incremental format.
    Failures are logged and swallowed so the in-memory state stays
    authoritative until the next successful write.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)

    def path_for(self, key: str) -> Path:
        """Build the file path for a document key."""
        if not _VALID_KEY_RE.match(key):
            raise ValueError(f"Invalid document key: {key!r}")
        return self.data_dir / f"{key}.json"

    def load(self, key: str, default: Any = None) -> Any:
        """Load a document, falling back to ``default`` if missing or unreadable."""
        path = self.path_for(key)
        try:
            with path.open(encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return default
        except (OSError, ValueError) as e:
            logger.warning("Failed to load document", key=key, path=str(path), error=str(e))
            return default

    def save(self, key: str, value: Any) -> bool:
        """Overwrite a document. Returns False if the write failed."""
        path = self.path_for(key)
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.data_dir, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(value, f, indent=2, ensure_ascii=False)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to save document", key=key, path=str(path), error=str(e))
            return False
        return True
