# Copyright 2025 Accelerated Cloud Storage Corporation. All Rights Reserved.
"""
Mount configuration.

Values default to constants below and can be overridden through
``DFS_MOUNT_*`` environment variables, see :meth:`MountConfig.from_env`.
"""
import os
import tempfile
from dataclasses import dataclass
from typing import Optional

DEFAULT_STAGING_DIR = os.path.join(tempfile.gettempdir(), 'dfs-mount-staging')
DEFAULT_ATTR_TTL = 300  # 5 minutes
# Long enough for the namenode to stop handing out a stale datanode
DEFAULT_FLUSH_BACKOFF = 30
DEFAULT_RETRY_MAX_ATTEMPTS = 10
DEFAULT_RETRY_TIME_LIMIT = 300
FLUSH_CHUNK_SIZE = 64 * 1024


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, '') else default


@dataclass
class MountConfig:
    """
    Tunables for the file data path.

    Attributes:
        staging_dir (str): Directory holding per-handle scratch files.
        attr_ttl (float): Seconds an attribute snapshot stays valid.
        flush_backoff (float): Seconds to wait between flush attempts.
        flush_timeout (float, optional): Deadline for a whole flush, None for no deadline.
        retry_max_attempts (int): Flush attempts before giving up.
        retry_time_limit (float): Seconds after which no further attempt is started.
        flush_chunk_size (int): Chunk size used when uploading the scratch file.
    """
    staging_dir: str = DEFAULT_STAGING_DIR
    attr_ttl: float = DEFAULT_ATTR_TTL
    flush_backoff: float = DEFAULT_FLUSH_BACKOFF
    flush_timeout: Optional[float] = None
    retry_max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    retry_time_limit: float = DEFAULT_RETRY_TIME_LIMIT
    flush_chunk_size: int = FLUSH_CHUNK_SIZE

    @classmethod
    def from_env(cls) -> "MountConfig":
        return cls(
            staging_dir=os.environ.get('DFS_MOUNT_STAGING_DIR') or DEFAULT_STAGING_DIR,
            attr_ttl=_env_float('DFS_MOUNT_ATTR_TTL', DEFAULT_ATTR_TTL),
            flush_backoff=_env_float('DFS_MOUNT_FLUSH_BACKOFF', DEFAULT_FLUSH_BACKOFF),
            flush_timeout=_env_float('DFS_MOUNT_FLUSH_TIMEOUT', None),
            retry_max_attempts=int(_env_float('DFS_MOUNT_RETRY_MAX_ATTEMPTS', DEFAULT_RETRY_MAX_ATTEMPTS)),
            retry_time_limit=_env_float('DFS_MOUNT_RETRY_TIME_LIMIT', DEFAULT_RETRY_TIME_LIMIT),
        )
