"""Tests for fail-fast error handling and cancellation."""

import asyncio
import tempfile
from pathlib import Path

import pytest
from fsdoubles import GatedFilesystem, RecordingFilesystem

from asyncrmrf.deleter import TreeDeleter, check_root_path
from asyncrmrf.errors import FatalIOError
from asyncrmrf.fs import CancelToken, LocalFilesystem


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def deep_tree(temp_dir):
    """root/{top.txt, l1/{one.txt, l2/{bad.txt, ok.txt}}, side/{s1.txt, s2.txt}}."""
    root = temp_dir / "root"
    (root / "l1" / "l2").mkdir(parents=True)
    (root / "side").mkdir()
    for path in ["top.txt", "l1/one.txt", "l1/l2/bad.txt", "l1/l2/ok.txt", "side/s1.txt", "side/s2.txt"]:
        (root / path).write_text("x")
    return root


@pytest.mark.asyncio
async def test_leaf_failure_three_levels_deep(deep_tree):
    """Test that a failing leaf aborts the run and keeps every ancestor."""
    bad = deep_tree / "l1" / "l2" / "bad.txt"
    fs = RecordingFilesystem(fail_on=[bad])
    deleter = TreeDeleter(filesystem=fs)

    with pytest.raises(FatalIOError) as exc_info:
        await deleter.delete_tree(deep_tree)

    assert exc_info.value.path == bad
    assert exc_info.value.operation == "remove file"
    assert "Injected failure" in str(exc_info.value)

    for ancestor in [deep_tree / "l1" / "l2", deep_tree / "l1", deep_tree]:
        assert ancestor.exists()
        assert ancestor not in fs.deleted
    assert bad.exists()
    assert deleter.operations_in_flight == 0


@pytest.mark.asyncio
async def test_every_sink_invoked_once_after_failure(deep_tree):
    """Test that aborted directory tasks still report exactly once."""
    bad = deep_tree / "l1" / "l2" / "bad.txt"
    deleter = TreeDeleter(filesystem=RecordingFilesystem(fail_on=[bad]), batch_size=1)

    with pytest.raises(FatalIOError):
        await deleter.delete_tree(deep_tree)

    assert deleter.stats["sinks_invoked"] == deleter.stats["directories_started"]


@pytest.mark.asyncio
async def test_directory_delete_failure(deep_tree):
    """Test that a failing directory delete is fatal and keeps its ancestors."""
    side = deep_tree / "side"
    fs = RecordingFilesystem(fail_on=[side])

    with pytest.raises(FatalIOError) as exc_info:
        await TreeDeleter(filesystem=fs).delete_tree(deep_tree)

    assert exc_info.value.path == side
    assert exc_info.value.operation == "remove directory"
    assert side.exists()
    assert deep_tree.exists()
    assert deep_tree not in fs.deleted


@pytest.fixture
def nested_tree(temp_dir):
    """root/{top.txt, a/{one.txt, b/{x.txt, y.txt}}, side/{s.txt}}."""
    root = temp_dir / "root"
    (root / "a" / "b").mkdir(parents=True)
    (root / "side").mkdir()
    for path in ["top.txt", "a/one.txt", "a/b/x.txt", "a/b/y.txt", "side/s.txt"]:
        (root / path).write_text("x")
    return root


@pytest.mark.asyncio
async def test_nested_batch_read_failure(nested_tree):
    """Test that a failing batch read below the root aborts the run and keeps its ancestors."""
    failing = nested_tree / "a" / "b"
    fs = RecordingFilesystem(fail_read_on=[failing])
    deleter = TreeDeleter(filesystem=fs, batch_size=1)

    with pytest.raises(FatalIOError) as exc_info:
        await deleter.delete_tree(nested_tree)

    assert exc_info.value.operation == "read directory"
    assert exc_info.value.path == failing
    for ancestor in [failing, nested_tree / "a", nested_tree]:
        assert ancestor.exists()
        assert ancestor not in fs.deleted
    assert (failing / "x.txt").exists()
    assert (failing / "y.txt").exists()
    assert deleter.stats["sinks_invoked"] == deleter.stats["directories_started"]
    assert deleter.operations_in_flight == 0


@pytest.mark.asyncio
async def test_nested_listing_open_failure(nested_tree):
    """Test that a sub-directory that cannot be listed aborts the run and keeps its ancestors."""
    failing = nested_tree / "a" / "b"
    fs = RecordingFilesystem(fail_open_on=[failing])
    deleter = TreeDeleter(filesystem=fs, batch_size=1)

    with pytest.raises(FatalIOError) as exc_info:
        await deleter.delete_tree(nested_tree)

    assert exc_info.value.operation == "list directory"
    assert exc_info.value.path == failing
    for ancestor in [failing, nested_tree / "a", nested_tree]:
        assert ancestor.exists()
        assert ancestor not in fs.deleted
    assert (failing / "x.txt").exists()
    assert deleter.stats["sinks_invoked"] == deleter.stats["directories_started"]
    assert deleter.operations_in_flight == 0


@pytest.mark.asyncio
async def test_missing_root(temp_dir):
    """Test that a root that does not exist fails with FatalIOError."""
    missing = temp_dir / "missing"

    with pytest.raises(FatalIOError) as exc_info:
        await TreeDeleter().delete_tree(missing)

    assert exc_info.value.operation == "list directory"
    assert exc_info.value.errno is not None


@pytest.mark.asyncio
async def test_root_is_a_file(temp_dir):
    """Test that a regular file given as root is refused, not deleted."""
    path = temp_dir / "file.txt"
    path.write_text("x")

    with pytest.raises(FatalIOError):
        await TreeDeleter().delete_tree(path)

    assert path.exists()


@pytest.mark.asyncio
async def test_root_symlink_refused(temp_dir):
    """Test that a symlinked root is not followed."""
    target = temp_dir / "target"
    target.mkdir()
    (target / "keep.txt").write_text("keep")
    link = temp_dir / "link"
    link.symlink_to(target, target_is_directory=True)

    with pytest.raises(FatalIOError) as exc_info:
        await TreeDeleter().delete_tree(link)

    assert "symbolic link" in str(exc_info.value)
    assert (target / "keep.txt").exists()


@pytest.mark.asyncio
async def test_fatal_error_logged_once(deep_tree, caplog):
    """Test that only the first fatal error is logged."""
    bad = deep_tree / "l1" / "l2" / "bad.txt"
    deleter = TreeDeleter(filesystem=RecordingFilesystem(fail_on=[bad, deep_tree / "top.txt"]))

    with pytest.raises(FatalIOError):
        await deleter.delete_tree(deep_tree)

    fatal_logs = [r for r in caplog.records if "Fatal error, aborting deletion" in r.message]
    assert len(fatal_logs) == 1
    assert fatal_logs[0].extra_fields["error_type"] == "FatalIOError"


@pytest.mark.asyncio
async def test_cancelled_before_start(deep_tree):
    """Test that a cancelled token stops the run before anything is deleted."""
    token = CancelToken()
    token.cancel()
    fs = RecordingFilesystem()

    with pytest.raises(FatalIOError) as exc_info:
        await TreeDeleter(filesystem=fs, cancel_token=token).delete_tree(deep_tree)

    assert exc_info.value.is_cancellation
    assert fs.deleted == []
    assert fs.listed == []
    assert deep_tree.exists()


@pytest.mark.asyncio
async def test_cancelled_mid_run(temp_dir):
    """Test that cancelling stops new work while in-flight deletes finish."""
    root = temp_dir / "root"
    busy = root / "busy"
    busy.mkdir(parents=True)
    for i in range(3):
        (busy / f"f{i}.txt").write_text("x")

    token = CancelToken()
    fs = GatedFilesystem(gated_dir=busy)
    deleter = TreeDeleter(filesystem=fs, cancel_token=token)
    done = deleter.start(root)

    while fs.waiting < 3:
        await asyncio.sleep(0.01)

    token.cancel("test")
    fs.gate.set()

    with pytest.raises(FatalIOError) as exc_info:
        await asyncio.wait_for(done, timeout=5)
    await deleter.wait_idle()

    assert exc_info.value.is_cancellation
    assert "(test)" in str(exc_info.value)
    # The leaf deletes were already issued and complete; the directories are not removed
    assert not any(busy.iterdir())
    assert busy.exists()
    assert root.exists()


@pytest.mark.asyncio
async def test_unexpected_exception_does_not_hang(temp_dir):
    """Test that a bug in the filesystem layer fails the run instead of stalling it."""

    class BrokenFilesystem(LocalFilesystem):
        async def delete(self, path):
            raise RuntimeError("boom")

    root = temp_dir / "root"
    root.mkdir()
    (root / "f.txt").write_text("x")

    with pytest.raises(RuntimeError, match="boom"):
        await asyncio.wait_for(TreeDeleter(filesystem=BrokenFilesystem()).delete_tree(root), timeout=5)

    assert root.exists()


@pytest.mark.parametrize("path", ["/", "/etc", "/usr/bin", "/usr/lib/python3", "/proc/self"])
def test_protected_paths_refused(path):
    """Test that system directories are refused as deletion roots."""
    with pytest.raises(ValueError, match="Refusing to delete system directory"):
        check_root_path(Path(path))


def test_unprotected_path_accepted(temp_dir):
    """Test that an ordinary directory passes the root check."""
    assert check_root_path(temp_dir) == temp_dir.absolute()


@pytest.mark.parametrize("path", ["/usr", "/usr/local/src/build", "/usr/src/myproj"])
def test_usr_subtrees_accepted(path):
    """Test that only the binary and library directories under /usr are protected."""
    assert check_root_path(Path(path)) == Path(path)


def test_invalid_batch_size():
    """Test that a non-positive batch size is rejected."""
    with pytest.raises(ValueError, match="batch_size"):
        TreeDeleter(batch_size=0)


@pytest.mark.asyncio
async def test_start_twice(temp_dir):
    """Test that a deleter cannot be started twice."""
    root = temp_dir / "root"
    root.mkdir()
    deleter = TreeDeleter()
    done = deleter.start(root)

    with pytest.raises(RuntimeError):
        deleter.start(root)

    assert await done == 1
