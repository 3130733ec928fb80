"""
Accessor backed by a local export directory.

Useful for exercising the mount end to end without a cluster: every remote
path is resolved below ``root`` and OS errors are translated to the DFS mount
error kinds.
"""
import errno
import os
import stat
from contextlib import contextmanager

from .accessor import RemoteStorageAccessor
from .exceptions import (
    CapacityExceededError,
    DFSMountError,
    PermissionDeniedError,
    RemoteNotFoundError,
    RemoteUnavailableError,
)
from .types import FileInfo
from ..fuse.utils import logger


@contextmanager
def _translate_os_errors(operation, path):
    try:
        yield
    except OSError as e:
        if e.errno == errno.ENOENT:
            raise RemoteNotFoundError(f"{path} does not exist", path=path) from e
        if e.errno in (errno.EACCES, errno.EPERM):
            raise PermissionDeniedError(f"{operation} on {path}: {e.strerror}", operation=operation) from e
        if e.errno in (errno.ENOSPC, errno.EDQUOT):
            raise CapacityExceededError(f"{operation} on {path}: {e.strerror}") from e
        if e.errno in (errno.ECONNRESET, errno.ETIMEDOUT, errno.EHOSTUNREACH):
            raise RemoteUnavailableError(f"{operation} on {path}: {e.strerror}", operation=operation) from e
        raise DFSMountError(f"{operation} on {path}: {e}") from e


class LocalStorageAccessor(RemoteStorageAccessor):
    """
    Serve the remote namespace from a directory on the local machine.

    Args:
        root (str): Export directory. Remote path ``/a/b`` maps to ``root/a/b``.
    """

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        self.resets = 0

    def _local(self, path: str) -> str:
        return os.path.join(self.root, path.lstrip('/'))

    def stat(self, path):
        with _translate_os_errors("stat", path):
            st = os.stat(self._local(path))
        name = os.path.basename(path.rstrip('/')) or '/'
        return FileInfo(name=name, mode=st.st_mode, size=st.st_size, mtime=st.st_mtime,
                        uid=st.st_uid, gid=st.st_gid, atime=st.st_atime)

    def open_read(self, path):
        with _translate_os_errors("open", path):
            return open(self._local(path), 'rb')

    def create_file(self, path, mode):
        local = self._local(path)
        with _translate_os_errors("create", path):
            fd = os.open(local, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IMODE(mode))
            os.chmod(local, stat.S_IMODE(mode))
            return os.fdopen(fd, 'wb')

    def remove(self, path):
        try:
            with _translate_os_errors("remove", path):
                os.unlink(self._local(path))
        except RemoteNotFoundError:
            logger.debug(f"remove: {path} already absent")

    def chmod(self, path, mode):
        with _translate_os_errors("chmod", path):
            os.chmod(self._local(path), stat.S_IMODE(mode))

    def chown(self, path, owner, group):
        with _translate_os_errors("chown", path):
            os.chown(self._local(path), int(owner), int(group))

    def free_space(self):
        with _translate_os_errors("statvfs", '/'):
            st = os.statvfs(self.root)
        return st.f_bavail * st.f_frsize

    def close(self):
        self.resets += 1
        logger.debug(f"Connection to {self.root} reset")
