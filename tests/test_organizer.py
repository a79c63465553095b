"""
End-to-end tests for the folder organizer.
"""

import os
from datetime import datetime

import pytest

from stellar.actions.file_operations import SkipReason
from stellar.actions.folder_lock import LOCK_FILENAME
from stellar.config.modes import OrganizationMode, RenameMode
from stellar.monitoring.watcher import WatcherState
from stellar.organizer import FolderOrganizer, RunOutcome, EXIT_OK, EXIT_WITH_SKIPS
from stellar.utils.exceptions import (
    ErrorCode,
    InvalidTargetError,
    JournalError,
    LockBusyError,
    ProtectedPathError,
)

JAN_15 = datetime(2024, 1, 15, 12, 0)


def tree(folder):
    """Relative paths of every file under a folder, sorted."""
    return sorted(
        str(p.relative_to(folder)) for p in folder.rglob("*")
        if p.is_file() and p.name != LOCK_FILENAME
    )


class TestOrganize:
    """Tests for batch organization."""

    def test_category_mode_with_clean_names(self, organizer, target, make_file):
        make_file(target / "Élève Café.PDF")
        make_file(target / "photo (1).jpg")
        make_file(target / "song.mp3")
        make_file(target / "mystery.qqq")

        report = organizer.organize(target)

        assert tree(target) == [
            "Audio/song.mp3",
            "Documents/eleve-cafe.PDF",
            "Images/photo.jpg",
            "Others/mystery.qqq",
        ]
        assert report.outcome is RunOutcome.CLEAN
        assert report.exit_code == EXIT_OK
        assert report.committed is True
        assert report.session.stats.files_moved == 4
        assert report.session.stats.files_renamed == 2

    def test_conflicting_names(self, organizer, target, make_file):
        """Test files cleaning to the same name never overwrite each other."""
        make_file(target / "Report.pdf", b"one")
        make_file(target / "report (1).pdf", b"two")
        make_file(target / "Documents" / "report.pdf", b"zero")

        organizer.organize(target)

        contents = sorted((target / "Documents").iterdir())
        assert [p.name for p in contents] == ["report-1.pdf", "report-2.pdf", "report.pdf"]
        assert (target / "Documents" / "report.pdf").read_bytes() == b"zero"

    def test_date_mode(self, organizer, target, make_file):
        make_file(target / "scan.pdf", modified=JAN_15)

        organizer.organize(target, mode=OrganizationMode.DATE, rename_mode=RenameMode.SKIP)

        assert tree(target) == ["2024/01-january/scan.pdf"]

    def test_hybrid_mode_with_date_prefix(self, organizer, target, make_file):
        make_file(target / "report.pdf", modified=JAN_15)

        organizer.organize(target, mode="hybrid", rename_mode="date-prefix")

        assert tree(target) == ["Documents/2024/2024-01-15-report.pdf"]

    def test_dry_run_touches_nothing(self, organizer, target, make_file):
        make_file(target / "a.pdf")
        make_file(target / "A.pdf")

        report = organizer.organize(target, dry_run=True)

        assert tree(target) == ["A.pdf", "a.pdf"]
        assert report.outcome is RunOutcome.DRY_RUN
        assert report.committed is False
        assert sorted(op.destination.name for op in report.moved) == ["a-1.pdf", "a.pdf"]
        assert organizer.history(target) == []
        assert "Would move 2 items" in report.summary()

    def test_empty_folder(self, organizer, target):
        report = organizer.organize(target)

        assert report.outcome is RunOutcome.NOTHING_TO_DO
        assert report.exit_code == EXIT_OK
        assert report.committed is False

    def test_second_run_is_noop(self, organizer, target, make_file):
        """Test organized folders are not walked again."""
        make_file(target / "a.pdf")
        organizer.organize(target)

        report = organizer.organize(target, recursive=True)

        assert report.outcome is RunOutcome.NOTHING_TO_DO
        assert tree(target) == ["Documents/a.pdf"]

    def test_skips_set_exit_code(self, organizer, target, make_file, monkeypatch):
        make_file(target / "a.pdf")
        make_file(target / "b.pdf")

        replace = os.replace

        def denied(src, dst):
            if str(src).endswith(".pdf"):
                raise PermissionError(13, "Permission denied")
            return replace(src, dst)

        monkeypatch.setattr(os, "replace", denied)
        report = organizer.organize(target)

        assert report.outcome is RunOutcome.COMPLETED_WITH_SKIPS
        assert report.exit_code == EXIT_WITH_SKIPS
        assert [op.skip_reason for op in report.skipped] == [SkipReason.PERMISSION_DENIED] * 2
        assert report.skipped_preview(limit=1) == [
            "a.pdf: permission denied ([Errno 13] Permission denied)",
            "... and 1 more",
        ]
        assert tree(target) == ["a.pdf", "b.pdf"]

    def test_lock_released_after_run(self, organizer, target, make_file):
        make_file(target / "a.pdf")

        organizer.organize(target)

        assert not (target / LOCK_FILENAME).exists()


class TestRecursiveAndFolders:
    """Tests for subfolder handling."""

    def test_recursive_flattens_into_categories(self, organizer, target, make_file):
        make_file(target / "misc" / "deep" / "a.pdf")
        make_file(target / "misc" / "b.jpg")
        make_file(target / "app" / "package.json")
        make_file(target / "app" / "index.js")

        organizer.organize(target, recursive=True)

        assert "Documents/a.pdf" in tree(target)
        assert "Images/b.jpg" in tree(target)
        assert (target / "app" / "index.js").exists()

    def test_dominant_folder_moved_whole(self, organizer, target, make_file):
        for i in range(3):
            make_file(target / "holiday" / f"img{i}.jpg")
        make_file(target / "holiday" / "notes.txt")
        make_file(target / "mixed" / "a.jpg")
        make_file(target / "mixed" / "b.pdf")

        report = organizer.organize(target)

        assert (target / "Images" / "holiday" / "notes.txt").exists()
        assert (target / "mixed" / "a.jpg").exists()
        assert report.session.stats.folders_moved == 1

    def test_folders_left_alone_when_disabled(self, config, target, make_file):
        config.organization.organize_folders = False
        organizer = FolderOrganizer(config=config)
        for i in range(3):
            make_file(target / "holiday" / f"img{i}.jpg")

        organizer.organize(target)

        assert tree(target) == ["holiday/img0.jpg", "holiday/img1.jpg", "holiday/img2.jpg"]


class TestTargetValidation:
    """Tests for rejected targets."""

    def test_missing_target(self, organizer, tmp_path):
        with pytest.raises(InvalidTargetError) as exc_info:
            organizer.organize(tmp_path / "missing")

        assert exc_info.value.error_code == ErrorCode.TARGET_NOT_FOUND

    def test_file_target(self, organizer, target, make_file):
        path = make_file(target / "a.pdf")

        with pytest.raises(InvalidTargetError) as exc_info:
            organizer.organize(path)

        assert exc_info.value.error_code == ErrorCode.TARGET_NOT_DIRECTORY

    def test_protected_target(self, organizer):
        with pytest.raises(ProtectedPathError):
            organizer.organize("/")

    def test_project_folder_target(self, organizer, target, make_file):
        make_file(target / "pyproject.toml")

        with pytest.raises(ProtectedPathError) as exc_info:
            organizer.organize(target)

        assert exc_info.value.rule == "project_folder"

    def test_busy_target(self, organizer, target, make_file):
        """Test a folder locked by a live process is refused untouched."""
        make_file(target / "a.pdf")

        with organizer.locks.acquire(target):
            with pytest.raises(LockBusyError):
                organizer.organize(target)

        assert tree(target) == ["a.pdf"]

    def test_corrupted_journal_blocks_run(self, organizer, target, make_file):
        """Test nothing moves when the session could not be recorded."""
        make_file(target / "a.pdf")
        journal = organizer.journal.journal_path(target)
        journal.parent.mkdir(parents=True)
        journal.write_text("not json")

        with pytest.raises(JournalError):
            organizer.organize(target)

        assert tree(target) == ["a.pdf"]
        assert not (target / LOCK_FILENAME).exists()


class TestUndo:
    """Tests for reversing runs."""

    def test_undo_restores_files_and_folders(self, organizer, target, make_file):
        make_file(target / "Report (1).pdf")
        make_file(target / "b.jpg")
        make_file(target / "c.mp3")
        for i in range(3):
            make_file(target / "album" / f"{i}.jpg")
        for i in range(3):
            make_file(target / "talks" / f"{i}.mp4")
        before = tree(target)

        organizer.organize(target)
        report = organizer.undo(target)

        assert len(report.restored) == 5
        assert report.failed == []
        assert tree(target) == before
        assert sorted(p.name for p in target.iterdir()) == [
            "Report (1).pdf", "album", "b.jpg", "c.mp3", "talks",
        ]

    def test_undo_twice(self, organizer, target, make_file):
        make_file(target / "a.pdf")
        organizer.organize(target)

        organizer.undo(target)
        second = organizer.undo(target)

        assert second.nothing_to_undo
        assert tree(target) == ["a.pdf"]

    def test_undo_without_history(self, organizer, target):
        assert organizer.undo(target).nothing_to_undo

    def test_history_lists_sessions(self, organizer, target, make_file):
        make_file(target / "a.pdf")
        first = organizer.organize(target)
        make_file(target / "b.pdf")
        second = organizer.organize(target)

        sessions = organizer.history(target)

        assert [s.id for s in sessions] == [second.session.id, first.session.id]
        assert sessions[0].stats.files_moved == 1

    def test_interrupted_run_can_be_undone(self, organizer, target, make_file, monkeypatch):
        """Test moves made before an interruption are journaled."""
        make_file(target / "a.pdf")
        make_file(target / "b.pdf")
        execute = organizer.engine.execute
        calls = []

        def interrupt_second(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise KeyboardInterrupt
            return execute(*args, **kwargs)

        monkeypatch.setattr(organizer.engine, "execute", interrupt_second)

        with pytest.raises(KeyboardInterrupt):
            organizer.organize(target)

        assert tree(target) == ["Documents/a.pdf", "b.pdf"]
        assert not (target / LOCK_FILENAME).exists()
        sessions = organizer.history(target)
        assert len(sessions) == 1
        assert sessions[0].stats.files_moved == 1

        report = organizer.undo(target)

        assert len(report.restored) == 1
        assert tree(target) == ["a.pdf", "b.pdf"]

    def test_journal_failure_keeps_interruption(self, organizer, target, make_file, monkeypatch):
        """Test a failing journal write does not replace the original error."""
        make_file(target / "a.pdf")

        def interrupt(*args, **kwargs):
            raise KeyboardInterrupt

        def failing_commit(session):
            raise JournalError("disk full")

        monkeypatch.setattr(organizer.engine, "execute", interrupt)
        monkeypatch.setattr(organizer.journal, "commit", failing_commit)

        with pytest.raises(KeyboardInterrupt):
            organizer.organize(target)

        assert not (target / LOCK_FILENAME).exists()


class TestDuplicates:
    """Tests for duplicate search and removal."""

    def test_find_across_organized_folders(self, organizer, target, make_file):
        make_file(target / "Documents" / "a.pdf", b"same")
        make_file(target / "inbox-copy.pdf", b"same")
        make_file(target / "unique.pdf", b"diff")

        report = organizer.find_duplicates(target, recursive=True)

        assert len(report.groups) == 1
        assert report.groups[0].files == [target / "Documents" / "a.pdf", target / "inbox-copy.pdf"]

    def test_find_does_not_delete(self, organizer, target, make_file):
        make_file(target / "a.txt", b"same")
        make_file(target / "b.txt", b"same")

        organizer.find_duplicates(target)

        assert tree(target) == ["a.txt", "b.txt"]

    def test_remove_keeps_first(self, organizer, target, make_file):
        make_file(target / "a.txt", b"same")
        make_file(target / "b.txt", b"same")
        make_file(target / "c.txt", b"same")
        report = organizer.find_duplicates(target)

        removal = organizer.remove_duplicates(target, report)

        assert tree(target) == ["a.txt"]
        assert len(removal.removed) == 2
        assert removal.freed_bytes == 8

    def test_remove_by_index(self, organizer, target, make_file):
        make_file(target / "a.txt", b"same")
        make_file(target / "b.txt", b"same")
        report = organizer.find_duplicates(target)

        organizer.remove_duplicates(target, report, keep=-1)

        assert tree(target) == ["b.txt"]

    def test_changed_file_not_removed(self, organizer, target, make_file):
        """Test content is re-checked before deleting."""
        make_file(target / "a.txt", b"same")
        changed = make_file(target / "b.txt", b"same")
        report = organizer.find_duplicates(target)
        changed.write_bytes(b"edited")

        removal = organizer.remove_duplicates(target, report)

        assert removal.removed == []
        assert tree(target) == ["a.txt", "b.txt"]

    def test_dry_run_removal(self, organizer, target, make_file):
        make_file(target / "a.txt", b"same")
        make_file(target / "b.txt", b"same")
        report = organizer.find_duplicates(target)

        removal = organizer.remove_duplicates(target, report, dry_run=True)

        assert len(removal.removed) == 1
        assert tree(target) == ["a.txt", "b.txt"]

    def test_bad_keep_value(self, organizer, target):
        report = organizer.find_duplicates(target)

        with pytest.raises(ValueError):
            organizer.remove_duplicates(target, report, keep="newest")


class TestWatchMode:
    """Tests for the single-file pipeline and watcher wiring."""

    def test_organize_file_is_its_own_session(self, organizer, target, make_file):
        path = make_file(target / "a.pdf")

        operation = organizer.organize_file(target, path)

        assert operation.destination == target / "Documents" / "a.pdf"
        session = organizer.history(target)[0]
        assert session.origin == "watch"
        assert len(session.moves) == 1

    def test_organize_file_skips_hidden(self, organizer, target, make_file):
        path = make_file(target / ".partial")

        assert organizer.organize_file(target, path) is None
        assert organizer.history(target) == []

    def test_watcher_organizes_new_file(self, organizer, target, make_file):
        class Observer:
            def schedule(self, handler, path, recursive=False):
                pass

            def start(self):
                pass

            def stop(self):
                pass

            def join(self, timeout=None):
                pass

        watcher = organizer.create_watcher(target, mode="date", rename_mode="skip", observer=Observer())
        watcher.start()
        path = make_file(target / "a.pdf", modified=JAN_15)

        watcher.notify(path)
        watcher.poll(timeout=0)
        watcher.shutdown()

        assert tree(target) == ["2024/01-january/a.pdf"]
        assert watcher.state is WatcherState.STOPPED
