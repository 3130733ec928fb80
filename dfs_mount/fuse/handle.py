# Copyright 2025 Accelerated Cloud Storage Corporation. All Rights Reserved.
"""
File handles for the DFS FUSE filesystem.

One handle is created per open() call. A handle opened for writing is a
:class:`WritableHandle` and owns a :class:`~dfs_mount.fuse.buffer.WriteBuffer`
for its whole lifetime; read-only handles own no buffer and stream directly
from the remote backend.
"""
import errno
import io
import threading

from .buffer import WriteBuffer
from .utils import logger


class FileHandle:
    """
    Logical file handle. There may be multiple open file handles
    corresponding to the same file node.
    """

    writable = False

    def __init__(self, node):
        self.node = node
        self.closed = False
        self.lock = threading.RLock()

    def _check_open(self):
        if self.closed:
            raise OSError(errno.EBADF, "Operation on a closed file")

    def is_writable(self) -> bool:
        return self.writable

    def read(self, offset: int, size: int) -> bytes:
        raise NotImplementedError

    def write(self, offset: int, data: bytes) -> int:
        raise OSError(errno.EBADF, "File not writeable")

    def truncate(self, size: int) -> None:
        raise OSError(errno.EBADF, "File not writeable")

    def flush(self, timeout=None, cancel=None) -> None:
        """Nothing is staged on a read-only handle."""

    def fsync(self, timeout=None, cancel=None) -> None:
        self.flush(timeout=timeout, cancel=cancel)

    def release(self) -> None:
        raise NotImplementedError


class ReadOnlyHandle(FileHandle):
    """Handle streaming content straight from the remote backend."""

    def __init__(self, node):
        super().__init__(node)
        self._reader = None

    def read(self, offset, size):
        with self.lock:
            self._check_open()
            if self._reader is None:
                self._reader = self.node.fs.accessor.open_read(self.node.absolute_path())
            self._reader.seek(offset)
            return self._reader.read(size)

    def release(self):
        with self.lock:
            if self.closed:
                return
            self.closed = True
            reader, self._reader = self._reader, None
        try:
            if reader is not None:
                reader.close()
        finally:
            self.node.close_handle(self)


class WritableHandle(FileHandle):
    """
    Handle opened with write intent.

    Writes land in the handle's write buffer; reads are served from the same
    staged content so the handle always sees its own writes.
    """

    writable = True

    def __init__(self, node, is_new_file: bool):
        super().__init__(node)
        self.buffer = WriteBuffer(self, is_new_file)

    def read(self, offset, size):
        self._check_open()
        return self.buffer.read(offset, size)

    def write(self, offset, data):
        self._check_open()
        return self.buffer.write(offset, data)

    def truncate(self, size):
        self._check_open()
        self.buffer.truncate(size)

    def flush(self, timeout=None, cancel=None):
        with self.lock:
            self._check_open()
            if timeout is None:
                timeout = self.node.fs.config.flush_timeout
            self.buffer.flush(timeout=timeout, cancel=cancel)

    def release(self, cancel=None):
        """
        Flush pending writes, then drop the scratch file and unregister.

        The scratch file is removed even if the flush fails; the flush error
        is raised afterwards since the staged data is lost at that point.
        """
        with self.lock:
            if self.closed:
                return
            try:
                self.flush(cancel=cancel)
            except Exception as e:
                logger.error(f"Final flush of {self.node.absolute_path()} failed, staged data is lost: {e}")
                raise
            finally:
                self.closed = True
                try:
                    self.buffer.close()
                finally:
                    self.node.close_handle(self)


class HandleReader(io.RawIOBase):
    """Seekable binary stream over a read-only handle. Closing it releases the handle."""

    def __init__(self, handle):
        super().__init__()
        self.handle = handle
        self._pos = 0

    def readable(self):
        return True

    def seekable(self):
        return True

    def readinto(self, b):
        data = self.handle.read(self._pos, len(b))
        n = len(data)
        b[:n] = data
        self._pos += n
        return n

    def seek(self, offset, whence=io.SEEK_SET):
        if whence == io.SEEK_SET:
            self._pos = offset
        elif whence == io.SEEK_CUR:
            self._pos += offset
        elif whence == io.SEEK_END:
            self._pos = self.handle.node.get_attributes().size + offset
        else:
            raise ValueError(f"invalid whence ({whence})")
        return self._pos

    def tell(self):
        return self._pos

    def close(self):
        if not self.closed:
            try:
                self.handle.release()
            finally:
                super().close()
