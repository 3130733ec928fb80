import io
import os
import stat
import threading
from collections import Counter

import grpc
import pytest

from dfs_mount.client.accessor import RemoteStorageAccessor
from dfs_mount.client.exceptions import RemoteNotFoundError
from dfs_mount.client.types import FileInfo
from dfs_mount.fuse.config import MountConfig
from dfs_mount.fuse.directory import FileSystem


class FakeClock:
    """Clock whose time only moves when a test (or a backoff sleep) advances it."""

    def __init__(self, start=1000.0):
        self.current = start
        self.sleeps = []

    def now(self):
        return self.current

    def advance(self, seconds):
        self.current += seconds

    def sleep(self, seconds, cancel=None):
        self.sleeps.append(seconds)
        if cancel is not None and cancel.is_set():
            return True
        self.current += seconds
        return False


class FakeRpcError(grpc.RpcError):
    def __init__(self, code, details=""):
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self):
        return self._code

    def details(self):
        return self._details


class FakeWriter(io.BytesIO):
    """Remote write stream; content becomes visible when it is closed."""

    def __init__(self, accessor, path, fail_write=None):
        super().__init__()
        self.accessor = accessor
        self.path = path
        self.fail_write = fail_write

    def write(self, b):
        if self.fail_write is not None:
            raise self.fail_write
        return super().write(b)

    def close(self):
        if not self.closed:
            self.accessor.commit(self.path, self.getvalue())
        super().close()


class FakeAccessor(RemoteStorageAccessor):
    """
    In-memory remote backend.

    Every primitive is counted in ``calls``. Failures are injected through the
    ``*_error`` attributes, or ``create_failures`` (consumed one per
    create_file call). ``on_<op>`` hooks let tests observe state mid-call.
    """

    def __init__(self, clock):
        self.clock = clock
        self.files = {}
        self.dirs = {"/"}
        self.modes = {}
        self.mtimes = {}
        self.owners = {}
        self.calls = Counter()
        self.free = 1 << 40
        self.free_space_error = None
        self.stat_error = None
        self.open_read_error = None
        self.chmod_error = None
        self.chown_error = None
        self.write_error = None
        self.create_failures = []
        self.on_remove = None
        self.on_open_read = None
        self.lock = threading.Lock()

    def put(self, path, data, mode=0o644):
        self.files[path] = bytes(data)
        self.modes[path] = mode
        self.mtimes[path] = self.clock.now()

    def commit(self, path, data):
        with self.lock:
            self.files[path] = bytes(data)
            self.mtimes[path] = self.clock.now()

    def stat(self, path):
        self.calls['stat'] += 1
        if self.stat_error is not None:
            raise self.stat_error
        if path in self.dirs:
            return FileInfo(name=os.path.basename(path) or "/", mode=stat.S_IFDIR | 0o755, size=4096, mtime=0.0)
        if path not in self.files:
            raise RemoteNotFoundError(f"{path} does not exist", path=path)
        return FileInfo(name=os.path.basename(path), mode=stat.S_IFREG | self.modes[path],
                        size=len(self.files[path]), mtime=self.mtimes[path],
                        uid=self.owners.get(path, (0, 0))[0], gid=self.owners.get(path, (0, 0))[1])

    def open_read(self, path):
        self.calls['open_read'] += 1
        if self.on_open_read is not None:
            self.on_open_read(path)
        if self.open_read_error is not None:
            raise self.open_read_error
        if path not in self.files:
            raise RemoteNotFoundError(f"{path} does not exist", path=path)
        return io.BytesIO(self.files[path])

    def create_file(self, path, mode):
        self.calls['create_file'] += 1
        if self.create_failures:
            raise self.create_failures.pop(0)
        self.files[path] = b''
        self.modes[path] = stat.S_IMODE(mode)
        return FakeWriter(self, path, fail_write=self.write_error)

    def remove(self, path):
        self.calls['remove'] += 1
        if self.on_remove is not None:
            self.on_remove(path)
        self.files.pop(path, None)

    def chmod(self, path, mode):
        self.calls['chmod'] += 1
        if self.chmod_error is not None:
            raise self.chmod_error
        self.modes[path] = stat.S_IMODE(mode)

    def chown(self, path, owner, group):
        self.calls['chown'] += 1
        if self.chown_error is not None:
            raise self.chown_error
        self.owners[path] = (int(owner), int(group))

    def free_space(self):
        self.calls['free_space'] += 1
        if self.free_space_error is not None:
            raise self.free_space_error
        return self.free

    def close(self):
        self.calls['close'] += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def accessor(clock):
    return FakeAccessor(clock)


@pytest.fixture
def staging_dir(tmp_path):
    return tmp_path / "staging"


@pytest.fixture
def config(staging_dir):
    return MountConfig(staging_dir=str(staging_dir), attr_ttl=60, flush_backoff=30,
                       retry_max_attempts=5, retry_time_limit=300)


@pytest.fixture
def fs(accessor, config, clock):
    return FileSystem(accessor, config, clock=clock)
