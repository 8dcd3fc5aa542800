"""Tests for the folder watcher."""

from pathlib import Path

from fakes import FakeTimers

from veo_queue.services.importers import read_prompts
from veo_queue.services.watcher import FolderWatcher


class Importer:
    """Records imported files."""

    def __init__(self) -> None:
        self.paths: list[Path] = []

    def __call__(self, path: Path) -> int:
        self.paths.append(path)
        return len(list(read_prompts(path)))


class TestFolderWatcher:
    """Tests for FolderWatcher."""

    def test_imports_existing_files_immediately(self, tmp_path: Path, timers: FakeTimers) -> None:
        """Files present when watching starts are imported on the first scan."""
        (tmp_path / "b.txt").write_text("two\n", encoding="utf-8")
        (tmp_path / "a.csv").write_text("prompt\none\n", encoding="utf-8")
        (tmp_path / "notes.md").write_text("ignored", encoding="utf-8")
        importer = Importer()

        FolderWatcher(importer, timers, interval=5).watch(tmp_path)

        assert [p.name for p in importer.paths] == ["a.csv", "b.txt"]

    def test_new_files_imported_once(self, tmp_path: Path, timers: FakeTimers) -> None:
        """Each file is imported exactly once across scans."""
        importer = Importer()
        watcher = FolderWatcher(importer, timers, interval=5)
        watcher.watch(tmp_path)

        (tmp_path / "new.txt").write_text("hello\n", encoding="utf-8")
        timers.advance(5)
        timers.advance(5)

        assert [p.name for p in importer.paths] == ["new.txt"]

    def test_readded_file_is_imported_again(self, tmp_path: Path, timers: FakeTimers) -> None:
        """A file removed and dropped in again under the same name is new again."""
        prompts = tmp_path / "prompts.txt"
        prompts.write_text("first\n", encoding="utf-8")
        importer = Importer()
        watcher = FolderWatcher(importer, timers, interval=5)
        watcher.watch(tmp_path)

        prompts.unlink()
        timers.advance(5)
        prompts.write_text("second\n", encoding="utf-8")
        timers.advance(5)
        timers.advance(5)

        assert [p.name for p in importer.paths] == ["prompts.txt", "prompts.txt"]

    def test_scan_returns_enqueued_count(self, tmp_path: Path, timers: FakeTimers) -> None:
        """scan() reports how many prompts were imported."""
        watcher = FolderWatcher(Importer(), timers)
        watcher.watch(tmp_path)
        (tmp_path / "x.txt").write_text("a\nb\nc\n", encoding="utf-8")

        assert watcher.scan() == 3
        assert watcher.scan() == 0

    def test_import_errors_do_not_stop_scanning(
        self, tmp_path: Path, timers: FakeTimers
    ) -> None:
        """A file that fails to import is skipped and not retried."""
        (tmp_path / "a.txt").write_bytes(b"\xff\xfe\xfa")
        (tmp_path / "b.txt").write_text("ok\n", encoding="utf-8")
        importer = Importer()
        watcher = FolderWatcher(importer, timers)

        watcher.watch(tmp_path)
        timers.advance(watcher.interval)

        assert [p.name for p in importer.paths] == ["a.txt", "b.txt"]

    def test_stop_cancels_scans(self, tmp_path: Path, timers: FakeTimers) -> None:
        """After stop() no further scans happen."""
        importer = Importer()
        watcher = FolderWatcher(importer, timers)
        watcher.watch(tmp_path)
        watcher.stop()

        (tmp_path / "late.txt").write_text("x\n", encoding="utf-8")
        timers.advance(60)

        assert importer.paths == []
        assert watcher.watching is False
        assert timers.pending() == []

    def test_rewatch_replaces_previous(self, tmp_path: Path, timers: FakeTimers) -> None:
        """Watching a new folder cancels the old timer."""
        first = tmp_path / "first"
        second = tmp_path / "second"
        first.mkdir()
        second.mkdir()
        watcher = FolderWatcher(Importer(), timers)

        watcher.watch(first)
        watcher.watch(second)

        assert watcher.directory == second
        assert len(timers.pending()) == 1

    def test_missing_directory_scan_is_soft(self, tmp_path: Path, timers: FakeTimers) -> None:
        """A folder removed while watched logs and yields nothing."""
        folder = tmp_path / "gone"
        folder.mkdir()
        watcher = FolderWatcher(Importer(), timers)
        watcher.watch(folder)
        folder.rmdir()

        assert watcher.scan() == 0
