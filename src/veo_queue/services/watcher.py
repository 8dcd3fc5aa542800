"""Folder watcher that imports new TXT/CSV prompt files."""

import csv
from collections.abc import Callable
from pathlib import Path

import structlog

from veo_queue.services.importers import SUPPORTED_SUFFIXES
from veo_queue.services.timers import TimerHandle, Timers

logger = structlog.get_logger()


class FolderWatcher:
    """Scans a directory on an interval and imports each new file once.

    Files already present when watching starts are imported on the first
    scan. A file that disappears is forgotten, so dropping it in again
    imports it again.
    """

    def __init__(
        self,
        import_file: Callable[[Path], int],
        timers: Timers,
        interval: float = 5.0,
    ) -> None:
        self.import_file = import_file
        self.timers = timers
        self.interval = interval
        self.directory: Path | None = None
        self._seen: set[Path] = set()
        self._handle: TimerHandle | None = None

    @property
    def watching(self) -> bool:
        return self._handle is not None

    def watch(self, directory: Path) -> None:
        """Start watching ``directory``, replacing any previous watch."""
        self.stop()
        self.directory = Path(directory)
        self._seen = set()
        logger.info("Watching folder", directory=str(self.directory))
        self._handle = self.timers.call_every(self.interval, self.scan)
        self.scan()

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.info("Stopped watching folder", directory=str(self.directory))

    def scan(self) -> int:
        """Import files not seen before. Returns the number of jobs enqueued."""
        if self.directory is None:
            return 0
        try:
            candidates = sorted(
                p
                for p in self.directory.iterdir()
                if p.is_file() and p.suffix.lower() in SUPPORTED_SUFFIXES
            )
        except OSError as e:
            logger.warning("Folder scan failed", directory=str(self.directory), error=str(e))
            return 0

        self._seen &= set(candidates)
        enqueued = 0
        for path in candidates:
            if path in self._seen:
                continue
            self._seen.add(path)
            try:
                count = self.import_file(path)
            except (OSError, UnicodeDecodeError, ValueError, csv.Error) as e:
                logger.error("Watch import failed", path=str(path), error=str(e))
                continue
            logger.info("Imported watched file", path=str(path), jobs=count)
            enqueued += count
        return enqueued
