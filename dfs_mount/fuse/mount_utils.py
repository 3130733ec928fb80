# Copyright 2025 Accelerated Cloud Storage Corporation. All Rights Reserved.
"""
Mount utilities for the DFS FUSE filesystem.

This module provides functions for unmounting, signal handling and the
FUSE mount options used by :func:`dfs_mount.fuse.fuse_mount.mount`.
"""

import sys
import signal
import subprocess
import time
from .utils import logger, time_function

def unmount(mountpoint, fuse_ops=None):
    """
    Unmount the filesystem using fusermount (Linux).

    Open handles are flushed and released first so staged writes reach the
    remote backend before the mount disappears.

    Args:
        mountpoint (str): Path where the filesystem is mounted
        fuse_ops (DFSFuse, optional): The mounted operations instance
    """
    logger.info(f"Unmounting filesystem at {mountpoint}")
    start_time = time.time()

    mountpoint = mountpoint.rstrip('/')
    try:
        cp = subprocess.run(["mountpoint", "-q", mountpoint])
        if cp.returncode != 0:
            logger.warning(f"{mountpoint} is not mounted, nothing to unmount.")
            time_function("unmount", start_time)
            return

        if fuse_ops is not None:
            fuse_ops.release_all()
            logger.info("Flushed and released open handles")

        subprocess.run(["fusermount", "-u", mountpoint], check=True)
        logger.info(f"Unmounted {mountpoint} gracefully.")
    except (OSError, subprocess.CalledProcessError) as e:
        logger.error(f"Error during unmounting: {e}")
    finally:
        time_function("unmount", start_time)

def setup_signal_handlers(mountpoint, unmount_func):
    """
    Set up signal handlers for graceful unmounting.

    Args:
        mountpoint (str): Path where the filesystem is mounted
        unmount_func (callable): Function to call for unmounting

    Returns:
        callable: The signal handler function
    """
    def signal_handler(sig, frame):
        logger.info(f"Signal {sig} received, unmounting...")
        unmount_func(mountpoint)
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    return signal_handler

def get_mount_options(foreground=True, allow_other=False):
    """
    Get standard mount options for FUSE.

    Kernel attribute caching is kept short because file nodes cache
    attributes themselves and invalidate them after every flush; a long
    kernel timeout would hide the new size and mtime.

    Args:
        foreground (bool, optional): Run in foreground. Defaults to True.
        allow_other (bool, optional): Allow other users to access the mount.
            Requires 'user_allow_other' in /etc/fuse.conf. Defaults to False.

    Returns:
        dict: Dictionary of mount options
    """
    options = {
        'foreground': foreground,
        'default_permissions': True,
        'rw': True,
        'big_writes': True,
        'attr_timeout': 1,
        'entry_timeout': 1,
        'negative_timeout': 0,
    }

    if allow_other:
        options['allow_other'] = True

    return options
