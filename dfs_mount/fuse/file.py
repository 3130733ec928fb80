# Copyright 2025 Accelerated Cloud Storage Corporation. All Rights Reserved.
"""
File nodes for the DFS FUSE filesystem.

A FileNode stands for one remote file path. It owns the cached attribute
snapshot of the file and the registry of handles currently open on it, and
it is the entry point for open, fsync and the metadata mutations of the
kernel "set attributes" request.

Locking: the registry lock guards only in-memory state (handle membership
and snapshot fields). Remote calls, including the seed read performed while
opening a handle for writing and every flush of an fsync fan-out, run outside
of it, so a slow backend never blocks other opens on the same node.
"""
import posixpath
import pwd
import stat
import threading
import time
import weakref

from ..client.exceptions import PrincipalResolutionError, RemoteNotFoundError
from .handle import HandleReader, ReadOnlyHandle, WritableHandle
from .utils import logger, time_function, trace_op


class HandleRegistry:
    """
    Set of handles open on one node.

    Attributes:
        lock (threading.Lock): Node lock, also used for snapshot mutation.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self._handles = []

    def add(self, handle) -> None:
        with self.lock:
            self._handles.append(handle)

    def remove(self, handle) -> bool:
        """Unregister *handle*. Returns False if it was not registered."""
        with self.lock:
            try:
                self._handles.remove(handle)
            except ValueError:
                return False
            return True

    def snapshot(self) -> tuple:
        with self.lock:
            return tuple(self._handles)

    def __len__(self):
        with self.lock:
            return len(self._handles)


class FileNode:
    """
    A remote file.

    Attributes:
        fs (FileSystem): Owning filesystem context.
        attrs (Attrs): Cached attribute snapshot.
    """

    def __init__(self, fs, parent, attrs):
        self.fs = fs
        self.attrs = attrs
        self._parent = weakref.ref(parent)
        self._registry = HandleRegistry()

    @property
    def parent(self):
        return self._parent()

    def absolute_path(self) -> str:
        """Path of the file in the remote namespace, computed from the parent chain."""
        return posixpath.join(self.parent.absolute_path(), self.attrs.name)

    @property
    def active_handle_count(self) -> int:
        return len(self._registry)

    def handles(self) -> tuple:
        return self._registry.snapshot()

    def get_attributes(self):
        """
        Return the attribute snapshot, refetching it once it has expired.

        A file that disappeared remotely and has no open handles is dropped
        from the node table.

        Raises:
            DFSMountError: If the parent cannot re-resolve the entry.
        """
        if self.fs.clock.now() > self.attrs.expires:
            logger.debug(f"Attributes of {self.absolute_path()} expired, refetching")
            try:
                self.attrs = self.parent.lookup_attrs(self.attrs.name)
            except RemoteNotFoundError:
                if self.active_handle_count == 0:
                    self.fs.evict(self)
                raise
        return self.attrs.copy()

    def invalidate_attribute_cache(self) -> None:
        """Force the next get_attributes call to refetch from the remote backend."""
        self.attrs.expires = self.fs.clock.now() - 1

    def update_cached_attributes(self, **changes) -> None:
        with self._registry.lock:
            for name, value in changes.items():
                setattr(self.attrs, name, value)

    def open(self, write_intent: bool, is_new_file: bool = False):
        """
        Open a new handle on this file and register it.

        Args:
            write_intent (bool): Open for writing (creates a write buffer).
            is_new_file (bool): Discard existing remote content instead of seeding from it.

        Returns:
            FileHandle: The registered handle.
        """
        path = self.absolute_path()
        trace_op("open", path, write=write_intent, new=is_new_file)
        logger.debug(f"Opening file {path} (write={write_intent}, new={is_new_file})")
        if write_intent:
            handle = WritableHandle(self, is_new_file)
        else:
            handle = ReadOnlyHandle(self)
        self._registry.add(handle)
        return handle

    def open_read(self) -> HandleReader:
        """Open a read-only handle wrapped as a seekable binary stream."""
        return HandleReader(self.open(write_intent=False))

    def close_handle(self, handle) -> None:
        if self._registry.remove(handle):
            logger.debug(f"Closed handle on {self.absolute_path()}, {self.active_handle_count} still open")

    def fsync(self) -> None:
        """
        Flush every open handle.

        Every handle is attempted even if an earlier one fails; the last
        failure is raised once all of them have been tried.
        """
        handles = self._registry.snapshot()
        logger.info(f"Dispatching fsync request to all open handles: {len(handles)}")
        start_time = time.time()
        error = None
        for handle in handles:
            try:
                with handle.lock:
                    # Released after the snapshot; release already flushed it
                    if handle.closed:
                        continue
                    handle.fsync()
            except Exception as e:
                logger.error(f"fsync of handle on {self.absolute_path()} failed: {e}")
                error = e
        time_function("fsync", start_time)
        if error is not None:
            raise error

    def set_size(self, size: int) -> None:
        """
        Truncate every writable handle's staged content to *size*.

        Read-only handles are skipped. All writable handles are attempted and
        the first failure is raised afterwards.
        """
        error = None
        for handle in self._registry.snapshot():
            if not handle.writable:
                continue
            try:
                with handle.lock:
                    if handle.closed:
                        continue
                    handle.truncate(size)
            except Exception as e:
                logger.error(f"Truncating {self.absolute_path()} to {size} failed: {e}")
                if error is None:
                    error = e
        if error is not None:
            raise error

    def set_mode(self, mode: int) -> None:
        path = self.absolute_path()
        logger.info(f"Setting mode of {path} to {oct(mode)}")
        try:
            self.fs.accessor.chmod(path, mode)
        except Exception as e:
            logger.error(f"Failed to set mode of {path} to {oct(mode)}: {e}")
            raise
        new_mode = stat.S_IFMT(self.attrs.mode) | stat.S_IMODE(mode)
        self.update_cached_attributes(mode=new_mode)

    def set_owner(self, uid: int, gid: int) -> None:
        """
        Change the owner of the file.

        The uid is resolved to a user name for logging only; the backend is
        always called with the numeric ids, even when resolution fails.
        """
        path = self.absolute_path()
        owner, group = str(uid), str(gid)
        user = None
        try:
            user = pwd.getpwuid(uid).pw_name
        except KeyError:
            err = PrincipalResolutionError(f"no user name for uid {uid}")
            logger.error(f"Chown: username for uid {uid} not found, use uid/gid instead ({err})")

        logger.info(f"Setting owner of {path} to {user or owner}:{user or group} (uid={owner}, gid={group})")
        try:
            self.fs.accessor.chown(path, owner, group)
        except Exception as e:
            logger.error(f"Failed to set owner of {path} to {owner}:{group}: {e}")
            raise
        self.update_cached_attributes(uid=uid, gid=gid)
