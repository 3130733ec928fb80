# Copyright 2025 Accelerated Cloud Storage Corporation. All Rights Reserved.
"""
FUSE implementation for DFS mount.

This module provides the kernel-facing side of the mount: it resolves FUSE
paths to file nodes, keeps the table of open file handles and translates
DFS mount errors into FUSE error numbers.

Usage:
    # Create a mount point
    mkdir -p /mnt/dfs

    # Mount an export directory
    python -m dfs_mount.fuse /srv/export /mnt/dfs

    # Now you can work with the files as if they were local
    echo hello > /mnt/dfs/greeting.txt
    cat /mnt/dfs/greeting.txt
"""

from fuse import FUSE, FuseOSError, Operations, fuse_get_context
from contextlib import contextmanager
import errno
import itertools
import os
import subprocess
import sys
import time
from threading import Lock

import grpc

from dfs_mount.client.exceptions import DFSMountError
from dfs_mount.client.local import LocalStorageAccessor
from dfs_mount.client.retry import convert_grpc_error

from .config import MountConfig
from .directory import Directory, FileSystem
from .utils import logger, time_function, trace_op
from .mount_utils import unmount, setup_signal_handlers, get_mount_options


@contextmanager
def fuse_errors(operation, path):
    """Translate exceptions raised by the core into FuseOSError."""
    try:
        yield
    except FuseOSError:
        raise
    except DFSMountError as e:
        logger.error(f"{operation} on {path} failed: {e}")
        raise FuseOSError(e.errno) from e
    except grpc.RpcError as e:
        err = convert_grpc_error(e, operation)
        logger.error(f"{operation} on {path} failed: {err}")
        raise FuseOSError(err.errno) from e
    except OSError as e:
        logger.error(f"{operation} on {path} failed: {e}")
        raise FuseOSError(e.errno or errno.EIO) from e
    except Exception as e:
        logger.error(f"{operation} error for {path}: {e}", exc_info=True)
        raise FuseOSError(errno.EIO) from e


class DFSFuse(Operations):
    """
    FUSE operations for a remote distributed filesystem.

    Attributes:
        fs (FileSystem): Node table and shared collaborators.
    """

    def __init__(self, accessor, config=None):
        """
        Args:
            accessor (RemoteStorageAccessor): Remote storage client.
            config (MountConfig, optional): Defaults to MountConfig.from_env().
        """
        self.fs = FileSystem(accessor, config or MountConfig.from_env())
        self._handles = {}
        self._handles_lock = Lock()
        self._fh_counter = itertools.count(1)

    def _register_handle(self, handle):
        with self._handles_lock:
            fh = next(self._fh_counter)
            self._handles[fh] = handle
        return fh

    def _get_handle(self, fh):
        with self._handles_lock:
            handle = self._handles.get(fh)
        if handle is None:
            raise FuseOSError(errno.EBADF)
        return handle

    def _file_node(self, path):
        node = self.fs.lookup(path)
        if isinstance(node, Directory):
            raise FuseOSError(errno.EISDIR)
        return node

    def release_all(self):
        """Flush and release every open handle, e.g. before unmounting."""
        with self._handles_lock:
            handles = list(self._handles.values())
            self._handles.clear()
        for handle in handles:
            try:
                handle.release()
            except Exception as e:
                logger.error(f"Error releasing handle on {handle.node.absolute_path()}: {e}", exc_info=True)

    def destroy(self, path):
        logger.info("Cleaning up DFSFuse resources...")
        self.release_all()
        self.fs.accessor.close()

    def getattr(self, path, fh=None):
        trace_op("getattr", path, fh=fh)
        with fuse_errors("getattr", path):
            return self.fs.lookup(path).get_attributes().to_stat()

    def open(self, path, flags):
        """
        Open a file.

        Write intent comes from the access mode; O_TRUNC makes the handle
        start from an empty file instead of the current remote content.

        Returns:
            int: File handle
        """
        trace_op("open", path, flags=flags)
        start_time = time.time()
        writable = (flags & os.O_ACCMODE) in (os.O_WRONLY, os.O_RDWR)
        is_new_file = writable and bool(flags & os.O_TRUNC)
        with fuse_errors("open", path):
            handle = self._file_node(path).open(writable, is_new_file)
        time_function("open", start_time)
        return self._register_handle(handle)

    def create(self, path, mode, fi=None):
        trace_op("create", path, mode=oct(mode))
        logger.info(f"create: Creating new file at {path} with mode {oct(mode)}")
        start_time = time.time()
        uid, gid, _ = fuse_get_context()
        with fuse_errors("create", path):
            node = self.fs.create_node(path, mode, uid, gid)
            handle = node.open(write_intent=True, is_new_file=True)
        time_function("create", start_time)
        return self._register_handle(handle)

    def read(self, path, size, offset, fh):
        trace_op("read", path, size=size, offset=offset, fh=fh)
        handle = self._get_handle(fh)
        with fuse_errors("read", path):
            return handle.read(offset, size)

    def write(self, path, data, offset, fh):
        trace_op("write", path, offset=offset, size=len(data))
        handle = self._get_handle(fh)
        with fuse_errors("write", path):
            return handle.write(offset, data)

    def truncate(self, path, length, fh=None):
        """
        Truncate file to specified length.

        Applies to every writable handle open on the file. When nobody has
        the file open for writing, a temporary handle seeded from the remote
        content is used and flushed right away.

        The writable-handle check and the temporary open are not atomic: a
        writer opening in between gets its own seeded buffer, and the two
        uploads race at release with the last one winning.
        """
        trace_op("truncate", path, length=length, fh=fh)
        start_time = time.time()
        with fuse_errors("truncate", path):
            node = self._file_node(path)
            if any(h.writable for h in node.handles()):
                node.set_size(length)
            else:
                handle = node.open(write_intent=True, is_new_file=False)
                try:
                    handle.truncate(length)
                finally:
                    handle.release()
        time_function("truncate", start_time)
        return 0

    def flush(self, path, fh):
        trace_op("flush", path, fh=fh)
        handle = self._get_handle(fh)
        with fuse_errors("flush", path):
            handle.flush()
        return 0

    def fsync(self, path, datasync, fh):
        trace_op("fsync", path, datasync=datasync, fh=fh)
        with fuse_errors("fsync", path):
            self._file_node(path).fsync()
        return 0

    def release(self, path, fh):
        trace_op("release", path, fh=fh)
        start_time = time.time()
        with self._handles_lock:
            handle = self._handles.pop(fh, None)
        if handle is None:
            logger.debug(f"release: No handle {fh} for {path}")
            return 0
        with fuse_errors("release", path):
            handle.release()
        time_function("release", start_time)
        return 0

    def chmod(self, path, mode):
        trace_op("chmod", path, mode=oct(mode))
        with fuse_errors("chmod", path):
            node = self.fs.lookup(path)
            if isinstance(node, Directory):
                self.fs.accessor.chmod(node.absolute_path(), mode)
                node.attrs.expires = 0.0
            else:
                node.set_mode(mode)
        return 0

    def chown(self, path, uid, gid):
        trace_op("chown", path, uid=uid, gid=gid)
        with fuse_errors("chown", path):
            node = self._file_node(path)
            attrs = node.get_attributes()
            # -1 leaves the corresponding id unchanged
            node.set_owner(attrs.uid if uid == -1 else uid, attrs.gid if gid == -1 else gid)
        return 0

    def statfs(self, path):
        trace_op("statfs", path)
        block_size = 4096
        with fuse_errors("statfs", path):
            free_blocks = self.fs.accessor.free_space() // block_size
        return {
            'f_bsize': block_size,
            'f_frsize': block_size,
            'f_blocks': free_blocks,
            'f_bfree': free_blocks,
            'f_bavail': free_blocks,
            'f_namemax': 255,
        }


def mount(accessor, mountpoint: str, foreground: bool = True, allow_other: bool = False,
          config: MountConfig = None):
    """
    Mount a remote filesystem at the specified mountpoint.

    Args:
        accessor (RemoteStorageAccessor): Remote storage client to serve files from
        mountpoint (str): Local path where the filesystem should be mounted
        foreground (bool, optional): Run in foreground. Defaults to True.
        allow_other (bool, optional): Allow other users to access the mount.
            Requires 'user_allow_other' in /etc/fuse.conf. Defaults to False.
        config (MountConfig, optional): Defaults to MountConfig.from_env().
    """
    logger.info(f"Mounting at {mountpoint}")
    start_time = time.time()

    if os.path.exists(mountpoint):
        if not os.path.isdir(mountpoint):
            logger.error(f"Mountpoint path exists but is not a directory: {mountpoint}")
            print(f"Error: {mountpoint} exists but is not a directory. Please specify a directory path.")
            return
    else:
        logger.info(f"Mountpoint {mountpoint} does not exist, creating it...")
        try:
            os.makedirs(mountpoint, mode=0o755)
        except OSError as e:
            logger.error(f"Failed to create mountpoint {mountpoint}: {e}")
            print(f"Error: Failed to create mountpoint directory {mountpoint}: {e}")
            return

    try:
        process = subprocess.run(["mountpoint", "-q", mountpoint], check=False)
        if process.returncode == 0:
            logger.error(f"Mountpoint {mountpoint} is already mounted")
            print(f"Error: {mountpoint} is already mounted. Unmount it first: fusermount -u {mountpoint}")
            return
    except OSError as e:
        logger.warning(f"Could not check if {mountpoint} is mounted: {e}")

    operations = DFSFuse(accessor, config)
    options = get_mount_options(foreground, allow_other)
    setup_signal_handlers(mountpoint, lambda mp: unmount(mp, operations))

    try:
        logger.info(f"Starting FUSE mount with options: {options}")
        FUSE(operations, mountpoint, nothreads=False, **options)
        time_function("mount", start_time)
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, unmounting...")
        unmount(mountpoint, operations)
    except RuntimeError as e:
        logger.error(f"Error during mount: {e}")
        print(f"Error: {e}")
        unmount(mountpoint, operations)


def main():
    """
    CLI entry point.

    Usage:
        python -m dfs_mount.fuse <export_dir> <mountpoint>

    Options:
        --allow-other: Allow other users to access the mount
            (requires user_allow_other in /etc/fuse.conf)
        --staging-dir: Directory for write staging files
        --trace: Enable detailed tracing of file operations for debugging
    """
    import argparse
    parser = argparse.ArgumentParser(description='Mount an export directory through the DFS write-staging layer')
    parser.add_argument('export_dir', help='Directory served as the remote namespace')
    parser.add_argument('mountpoint', help='The directory to mount on')
    parser.add_argument('--allow-other', action='store_true',
                        help='Allow other users to access the mount (requires user_allow_other in /etc/fuse.conf)')
    parser.add_argument('--staging-dir', help='Directory for write staging files')
    parser.add_argument('--trace', action='store_true',
                        help='Enable detailed tracing of file operations for debugging')
    args = parser.parse_args()

    if args.trace:
        os.environ['DFS_MOUNT_TRACE_OPS'] = 'true'
        print("Detailed operation tracing enabled")

    config = MountConfig.from_env()
    if args.staging_dir:
        config.staging_dir = args.staging_dir

    logger.info(f"Starting DFS mount CLI with arguments: {sys.argv}")
    mount(LocalStorageAccessor(args.export_dir), args.mountpoint,
          allow_other=args.allow_other, config=config)


if __name__ == '__main__':
    main()
