"""
Unit tests for the move engine.
"""

import errno
import os
import shutil

import pytest

from stellar.actions.file_operations import (
    MoveEngine,
    RunContext,
    SkipReason,
    OperationOutcome,
)
from stellar.actions.conflict_resolver import ConflictResolver
from stellar.actions.history_tracker import Session
from stellar.config.settings import ProtectionConfig
from stellar.scanning.path_guard import PathGuard
from stellar.scanning.scanner import Scanner


@pytest.fixture
def engine():
    return MoveEngine()


@pytest.fixture
def context(target):
    return RunContext(target=target, session=Session.start(target))


def entry_for(path):
    return Scanner(include_extensionless=True).entry_for(path)


def cross_device_replace(src, dst):
    """os.replace stand-in failing as it does across filesystems."""
    raise OSError(errno.EXDEV, "Invalid cross-device link")


class TestMove:
    """Tests for same-filesystem moves."""

    def test_moves_and_records(self, engine, context, target, make_file):
        """Test a plain move creates folders and records everything."""
        source = make_file(target / "report.pdf", b"12345")

        op = engine.execute(context, entry_for(source), target / "Documents", "report.pdf", "Documents")

        assert op.succeeded
        assert op.destination == target / "Documents" / "report.pdf"
        assert op.renamed is False
        assert not source.exists()
        assert op.destination.read_bytes() == b"12345"

        session = context.session
        assert [m.destination for m in session.moves] == [str(op.destination)]
        assert session.created_dirs == [str(target / "Documents")]
        assert session.stats.files_moved == 1
        assert session.stats.bytes_moved == 5
        assert session.stats.by_category == {"Documents": 1}

    def test_nested_folders_recorded_top_down(self, engine, context, target, make_file):
        """Test every created level is recorded."""
        source = make_file(target / "a.jpg")

        engine.execute(context, entry_for(source), target / "Images" / "2024", "a.jpg")

        assert context.session.created_dirs == [
            str(target / "Images"),
            str(target / "Images" / "2024"),
        ]

    def test_conflict_gets_suffix(self, engine, context, target, make_file):
        """Test an existing destination is never overwritten."""
        make_file(target / "Documents" / "rapport.pdf", b"old")
        source = make_file(target / "rapport.pdf", b"new")

        op = engine.execute(context, entry_for(source), target / "Documents", "rapport.pdf")

        assert op.destination.name == "rapport-1.pdf"
        assert op.renamed is True
        assert (target / "Documents" / "rapport.pdf").read_bytes() == b"old"
        assert context.session.stats.files_renamed == 1

    def test_rename_counts(self, engine, context, target, make_file):
        source = make_file(target / "Report (1).pdf")

        op = engine.execute(context, entry_for(source), target / "Documents", "report.pdf")

        assert op.destination.name == "report.pdf"
        assert op.renamed is True

    def test_directory_move(self, engine, context, target, make_file):
        """Test a whole folder keeps its name and content."""
        make_file(target / "holiday" / "a.jpg")
        make_file(target / "holiday" / "b.jpg")

        op = engine.execute_directory(context, target / "holiday", target / "Images", "Images")

        assert op.succeeded
        assert op.is_directory
        assert sorted(p.name for p in (target / "Images" / "holiday").iterdir()) == ["a.jpg", "b.jpg"]
        assert context.session.stats.folders_moved == 1


class TestDryRun:
    """Tests for planned moves."""

    def test_nothing_touched(self, engine, target, make_file):
        """Test a dry run creates no folder and moves nothing."""
        context = RunContext(target=target, session=Session.start(target), dry_run=True)
        source = make_file(target / "a.pdf")

        op = engine.execute(context, entry_for(source), target / "Documents", "a.pdf")

        assert op.succeeded
        assert op.dry_run is True
        assert op.destination == target / "Documents" / "a.pdf"
        assert source.exists()
        assert not (target / "Documents").exists()
        assert context.session.is_empty

    def test_planned_names_reserved(self, engine, target, make_file):
        """Test two files planned for the same name get distinct destinations."""
        context = RunContext(target=target, session=Session.start(target), dry_run=True)
        first = make_file(target / "Report.pdf")
        second = make_file(target / "report (1).pdf")

        op1 = engine.execute(context, entry_for(first), target / "Documents", "report.pdf")
        op2 = engine.execute(context, entry_for(second), target / "Documents", "report.pdf")

        assert op1.destination.name == "report.pdf"
        assert op2.destination.name == "report-1.pdf"


class TestSkips:
    """Tests for per-file failures."""

    def test_missing_source(self, engine, context, target, make_file):
        source = make_file(target / "gone.txt")
        entry = entry_for(source)
        source.unlink()

        op = engine.execute(context, entry, target / "Documents", "gone.txt")

        assert op.outcome is OperationOutcome.SKIPPED
        assert op.skip_reason is SkipReason.SOURCE_NOT_FOUND
        assert context.session.stats.skipped_count == 1
        assert context.session.moves == []

    def test_protected_destination(self, context, target, make_file):
        """Test nothing is moved into a protected folder."""
        guard = PathGuard(ProtectionConfig.from_dict({"protected_paths": [str(target / "vault")]}))
        engine = MoveEngine(guard=guard)
        source = make_file(target / "a.txt")

        op = engine.execute(context, entry_for(source), target / "vault", "a.txt")

        assert op.skip_reason is SkipReason.PROTECTED_PATH
        assert source.exists()
        assert not (target / "vault").exists()

    def test_directory_create_failure(self, engine, context, target, make_file):
        """Test a file sitting where a folder is needed."""
        make_file(target / "Documents")
        source = make_file(target / "a.pdf")

        op = engine.execute(context, entry_for(source), target / "Documents" / "2024", "a.pdf")

        assert op.skip_reason is SkipReason.DIRECTORY_CREATE_FAILED
        assert source.exists()

    def test_permission_denied(self, engine, context, target, make_file, monkeypatch):
        source = make_file(target / "a.pdf")

        def denied(src, dst):
            raise PermissionError(errno.EACCES, "Permission denied")

        monkeypatch.setattr(os, "replace", denied)
        op = engine.execute(context, entry_for(source), target / "Documents", "a.pdf")

        assert op.skip_reason is SkipReason.PERMISSION_DENIED
        assert source.exists()
        assert list((target / "Documents").iterdir()) == []

    def test_other_io_error_detail(self, engine, context, target, make_file, monkeypatch):
        source = make_file(target / "a.pdf")

        def broken(src, dst):
            raise OSError(errno.EIO, "Input/output error")

        monkeypatch.setattr(os, "replace", broken)
        op = engine.execute(context, entry_for(source), target / "Documents", "a.pdf")

        assert op.skip_reason is SkipReason.OTHER_IO_ERROR
        assert "Input/output error" in op.detail
        assert "other io error" in op.describe()


def appear_after_resolve(monkeypatch, engine, make_directory=False):
    """Make an item appear at the first resolved name before the move."""
    resolve = engine.resolver.resolve
    taken = []

    def resolve_then_taken(directory, name, reserved=None):
        path = resolve(directory, name, reserved)
        if not taken:
            if make_directory:
                path.mkdir()
            else:
                path.write_bytes(b"someone else")
            taken.append(path)
        return path

    monkeypatch.setattr(engine.resolver, "resolve", resolve_then_taken)
    return taken


class TestLateArrivals:
    """Tests for names taken between resolving and moving."""

    def test_late_file_not_overwritten(self, engine, context, target, make_file, monkeypatch):
        source = make_file(target / "a.pdf", b"mine")
        (target / "Documents").mkdir()
        taken = appear_after_resolve(monkeypatch, engine)

        op = engine.execute(context, entry_for(source), target / "Documents", "a.pdf")

        assert op.succeeded
        assert taken == [target / "Documents" / "a.pdf"]
        assert taken[0].read_bytes() == b"someone else"
        assert op.destination == target / "Documents" / "a-1.pdf"
        assert op.destination.read_bytes() == b"mine"
        assert not source.exists()

    def test_late_file_across_devices(self, engine, context, target, make_file, monkeypatch):
        source = make_file(target / "a.pdf", b"mine")
        (target / "Documents").mkdir()
        taken = appear_after_resolve(monkeypatch, engine)
        monkeypatch.setattr(os, "replace", cross_device_replace)

        op = engine.execute(context, entry_for(source), target / "Documents", "a.pdf")

        assert op.succeeded
        assert taken[0].read_bytes() == b"someone else"
        assert op.destination.read_bytes() == b"mine"

    def test_late_folder_not_merged(self, engine, context, target, make_file, monkeypatch):
        make_file(target / "album" / "a.jpg")
        (target / "Images").mkdir()
        taken = appear_after_resolve(monkeypatch, engine, make_directory=True)

        op = engine.execute_directory(context, target / "album", target / "Images")

        assert op.succeeded
        assert list(taken[0].iterdir()) == []
        assert op.destination == target / "Images" / "album-1"
        assert (op.destination / "a.jpg").exists()

    def test_name_never_free(self, engine, context, target, make_file, monkeypatch):
        """Test giving up leaves the source and no placeholder behind."""
        source = make_file(target / "a.pdf")
        (target / "Documents").mkdir()
        occupied = make_file(target / "Documents" / "a.pdf", b"occupied")
        monkeypatch.setattr(engine.resolver, "resolve", lambda directory, name, reserved=None: occupied)

        op = engine.execute(context, entry_for(source), target / "Documents", "a.pdf")

        assert op.skip_reason is SkipReason.OTHER_IO_ERROR
        assert "No free destination name" in op.detail
        assert source.exists()
        assert occupied.read_bytes() == b"occupied"
        assert [p.name for p in (target / "Documents").iterdir()] == ["a.pdf"]


class TestCrossDevice:
    """Tests for the copy, verify, delete fallback."""

    def test_file_copied_then_source_removed(self, target, context, make_file, monkeypatch):
        engine = MoveEngine(verify_checksum=True)
        source = make_file(target / "movie.mp4", b"frames" * 100)
        monkeypatch.setattr(os, "replace", cross_device_replace)

        op = engine.execute(context, entry_for(source), target / "Videos", "movie.mp4")

        assert op.succeeded
        assert not source.exists()
        assert (target / "Videos" / "movie.mp4").read_bytes() == b"frames" * 100
        assert len(context.session.moves) == 1

    def test_failed_copy_leaves_no_partial(self, engine, target, context, make_file, monkeypatch):
        """Test a copy interrupted midway keeps the source and cleans up."""
        source = make_file(target / "movie.mp4", b"frames" * 100)
        monkeypatch.setattr(os, "replace", cross_device_replace)

        def partial_copy(src, dst, follow_symlinks=True):
            with open(dst, "wb") as f:
                f.write(b"fra")
            raise OSError(errno.ENOSPC, "No space left on device")

        monkeypatch.setattr(shutil, "copy2", partial_copy)
        op = engine.execute(context, entry_for(source), target / "Videos", "movie.mp4")

        assert op.skip_reason is SkipReason.CROSS_DEVICE_COPY_FAILED
        assert source.read_bytes() == b"frames" * 100
        assert not (target / "Videos" / "movie.mp4").exists()
        assert context.session.moves == []

    def test_truncated_copy_rejected(self, engine, target, context, make_file, monkeypatch):
        """Test a copy that silently comes up short is discarded."""
        source = make_file(target / "movie.mp4", b"frames" * 100)
        monkeypatch.setattr(os, "replace", cross_device_replace)

        def truncated_copy(src, dst, follow_symlinks=True):
            with open(dst, "wb") as f:
                f.write(b"frames")

        monkeypatch.setattr(shutil, "copy2", truncated_copy)
        op = engine.execute(context, entry_for(source), target / "Videos", "movie.mp4")

        assert op.skip_reason is SkipReason.CROSS_DEVICE_COPY_FAILED
        assert op.detail == "copied file size differs"
        assert source.read_bytes() == b"frames" * 100
        assert list((target / "Videos").iterdir()) == []
        assert context.session.moves == []

    def test_altered_copy_rejected_by_checksum(self, target, context, make_file, monkeypatch):
        """Test a same-size copy with different bytes is discarded."""
        engine = MoveEngine(verify_checksum=True)
        source = make_file(target / "movie.mp4", b"frames" * 100)
        monkeypatch.setattr(os, "replace", cross_device_replace)

        def altered_copy(src, dst, follow_symlinks=True):
            with open(dst, "wb") as f:
                f.write(b"FRAMES" * 100)

        monkeypatch.setattr(shutil, "copy2", altered_copy)
        op = engine.execute(context, entry_for(source), target / "Videos", "movie.mp4")

        assert op.skip_reason is SkipReason.CROSS_DEVICE_COPY_FAILED
        assert op.detail == "copied file checksum differs"
        assert source.read_bytes() == b"frames" * 100
        assert list((target / "Videos").iterdir()) == []

    def test_altered_copy_passes_without_checksum(self, engine, target, context, make_file, monkeypatch):
        """Test only the size is compared by default."""
        source = make_file(target / "movie.mp4", b"frames" * 100)
        monkeypatch.setattr(os, "replace", cross_device_replace)

        def altered_copy(src, dst, follow_symlinks=True):
            with open(dst, "wb") as f:
                f.write(b"FRAMES" * 100)

        monkeypatch.setattr(shutil, "copy2", altered_copy)
        op = engine.execute(context, entry_for(source), target / "Videos", "movie.mp4")

        assert op.succeeded
        assert not source.exists()

    def test_directory_across_devices(self, engine, target, context, make_file, monkeypatch):
        make_file(target / "album" / "a.jpg", b"aaa")
        make_file(target / "album" / "nested" / "b.jpg", b"bb")
        monkeypatch.setattr(os, "replace", cross_device_replace)

        op = engine.execute_directory(context, target / "album", target / "Images")

        assert op.succeeded
        assert not (target / "album").exists()
        assert (target / "Images" / "album" / "nested" / "b.jpg").read_bytes() == b"bb"


class TestDelete:
    """Tests for duplicate deletion."""

    def test_permanent_delete(self, engine, context, target, make_file):
        path = make_file(target / "copy.txt", b"abc")

        op = engine.delete(context, path)

        assert op.succeeded
        assert op.destination is None
        assert op.size == 3
        assert not path.exists()

    def test_trash(self, engine, context, target, make_file, monkeypatch):
        """Test the trash is used when asked."""
        trashed = []
        monkeypatch.setattr("stellar.actions.file_operations.send2trash", trashed.append)
        path = make_file(target / "copy.txt")

        op = engine.delete(context, path, use_trash=True)

        assert op.succeeded
        assert trashed == [str(path)]

    def test_dry_run_delete(self, engine, target, make_file):
        context = RunContext(target=target, session=Session.start(target), dry_run=True)
        path = make_file(target / "copy.txt")

        op = engine.delete(context, path)

        assert op.dry_run is True
        assert path.exists()

    def test_missing_file(self, engine, context, target):
        op = engine.delete(context, target / "nope.txt")

        assert op.skip_reason is SkipReason.SOURCE_NOT_FOUND


class TestRestore:
    """Tests for reversing a recorded move."""

    def test_restore(self, engine, context, target, make_file):
        source = make_file(target / "a.pdf", b"x")
        engine.execute(context, entry_for(source), target / "Documents", "a.pdf")
        record = context.session.moves[0]

        assert engine.restore(record) is None
        assert source.read_bytes() == b"x"
        assert not (target / "Documents" / "a.pdf").exists()

    def test_moved_item_gone(self, engine, context, target, make_file):
        source = make_file(target / "a.pdf")
        engine.execute(context, entry_for(source), target / "Documents", "a.pdf")
        record = context.session.moves[0]
        (target / "Documents" / "a.pdf").unlink()

        assert engine.restore(record) == "moved item no longer exists"

    def test_original_path_occupied(self, engine, context, target, make_file):
        """Test a new file at the original path is never overwritten."""
        source = make_file(target / "a.pdf", b"moved")
        engine.execute(context, entry_for(source), target / "Documents", "a.pdf")
        record = context.session.moves[0]
        make_file(source, b"newcomer")

        assert engine.restore(record) == "original path is occupied"
        assert source.read_bytes() == b"newcomer"
        assert (target / "Documents" / "a.pdf").read_bytes() == b"moved"


class TestConflictResolver:
    """Tests for ConflictResolver."""

    def test_free_name_unchanged(self, target):
        resolver = ConflictResolver()

        assert resolver.resolve(target, "a.pdf") == target / "a.pdf"

    def test_counter(self, target, make_file):
        make_file(target / "rapport.pdf")
        make_file(target / "rapport-1.pdf")
        resolver = ConflictResolver()

        result = resolver.resolve(target, "rapport.pdf")

        assert result == target / "rapport-2.pdf"

    def test_dangling_link_occupies_name(self, target):
        os.symlink(target / "gone", target / "a.pdf")

        assert ConflictResolver().resolve(target, "a.pdf").name == "a-1.pdf"

    def test_reserved_names(self, target):
        reserved = {str(target / "a.pdf")}

        assert ConflictResolver().resolve(target, "a.pdf", reserved).name == "a-1.pdf"
