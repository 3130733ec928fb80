import errno
import os

import pytest

from dfs_mount.client.exceptions import PermissionDeniedError


def test_release_flushes_and_cleans_up(fs, accessor, staging_dir):
    node = fs.create_node('/a', 0o644)
    handle = node.open(True, True)
    handle.write(0, b"data")
    scratch_path = handle.buffer.scratch_path

    handle.release()

    assert accessor.files['/a'] == b"data"
    assert not os.path.exists(scratch_path)
    assert node.active_handle_count == 0
    assert handle.closed


def test_release_removes_scratch_even_if_flush_fails(fs, accessor):
    node = fs.create_node('/a', 0o644)
    handle = node.open(True, True)
    handle.write(0, b"data")
    scratch_path = handle.buffer.scratch_path
    accessor.create_failures = [PermissionDeniedError("denied")]

    with pytest.raises(PermissionDeniedError):
        handle.release()

    assert not os.path.exists(scratch_path)
    assert node.active_handle_count == 0


def test_release_twice_is_harmless(fs):
    handle = fs.create_node('/a', 0o644).open(True, True)
    handle.release()
    handle.release()


def test_operations_on_released_handle_fail(fs):
    handle = fs.create_node('/a', 0o644).open(True, True)
    handle.release()

    with pytest.raises(OSError) as exc_info:
        handle.write(0, b"late")
    assert exc_info.value.errno == errno.EBADF


def test_read_only_handle_rejects_writes(fs, accessor):
    accessor.put('/b', b"content")
    handle = fs.lookup('/b').open(False)

    with pytest.raises(OSError) as exc_info:
        handle.write(0, b"x")
    assert exc_info.value.errno == errno.EBADF
    with pytest.raises(OSError):
        handle.truncate(0)


def test_read_only_handle_streams_remote_content(fs, accessor):
    accessor.put('/b', b"0123456789")
    handle = fs.lookup('/b').open(False)

    assert handle.read(3, 4) == b"3456"
    assert handle.read(0, 2) == b"01"
    assert accessor.calls['open_read'] == 1

    handle.fsync()
    handle.release()
    assert accessor.calls['create_file'] == 0


def test_writable_handle_reads_its_own_writes(fs, accessor):
    accessor.put('/b', b"0123456789")
    handle = fs.lookup('/b').open(True, False)

    handle.write(8, b"abcd")

    assert handle.read(6, 10) == b"67abcd"
    assert accessor.files['/b'] == b"0123456789"


def test_flush_uses_configured_timeout(fs, accessor, config):
    from dfs_mount.client.exceptions import FlushTimeoutError, RemoteUnavailableError

    config.flush_timeout = 5
    handle = fs.create_node('/a', 0o644).open(True, True)
    handle.write(0, b"data")
    accessor.create_failures = [RemoteUnavailableError("EOF")]

    with pytest.raises(FlushTimeoutError):
        handle.flush()


def test_release_after_failed_flush_uploads_staged_data(fs, accessor):
    accessor.put('/b', b"original")
    handle = fs.lookup('/b').open(True, False)
    handle.write(0, b"NEW")
    accessor.create_failures = [PermissionDeniedError("denied")]
    with pytest.raises(PermissionDeniedError):
        handle.flush()

    handle.release()

    assert accessor.files['/b'] == b"NEWginal"


def test_release_reports_data_loss_after_failed_flush(fs, accessor):
    accessor.put('/b', b"original")
    handle = fs.lookup('/b').open(True, False)
    handle.write(0, b"NEW")
    accessor.create_failures = [PermissionDeniedError("denied"), PermissionDeniedError("still denied")]
    with pytest.raises(PermissionDeniedError):
        handle.flush()

    with pytest.raises(PermissionDeniedError, match="still denied"):
        handle.release()

    assert '/b' not in accessor.files
    assert handle.closed
