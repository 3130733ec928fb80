# Copyright 2025 Accelerated Cloud Storage Corporation. All Rights Reserved.
"""
Filesystem context and directory nodes.

Directories only know how to compose absolute paths and re-resolve the
attributes of one of their entries; listing is not supported.
"""
import posixpath
import stat
import threading
import weakref

from ..client.exceptions import RemoteNotFoundError
from ..client.retry import RetryPolicy
from ..client.types import Attrs
from .clock import Clock
from .config import MountConfig
from .file import FileNode
from .utils import logger


class Directory:
    """
    A remote directory.

    Args:
        fs (FileSystem): Owning filesystem context.
        attrs (Attrs): Initial attribute snapshot.
        parent (Directory, optional): Parent directory, None for the root.
    """

    def __init__(self, fs, attrs, parent=None):
        self.fs = fs
        self.attrs = attrs
        self._parent = weakref.ref(parent) if parent is not None else None

    @property
    def parent(self):
        return self._parent() if self._parent is not None else None

    def absolute_path(self) -> str:
        parent = self.parent
        if parent is None:
            return '/'
        return posixpath.join(parent.absolute_path(), self.attrs.name)

    def lookup_attrs(self, name: str) -> Attrs:
        """Fetch fresh attributes of the entry *name* from the remote backend."""
        path = posixpath.join(self.absolute_path(), name)
        info = self.fs.accessor.stat(path)
        return Attrs.from_info(info, expires=self.fs.clock.now() + self.fs.config.attr_ttl)

    def get_attributes(self) -> Attrs:
        if self.fs.clock.now() > self.attrs.expires:
            parent = self.parent
            if parent is None:
                info = self.fs.accessor.stat('/')
                attrs = Attrs.from_info(info, expires=self.fs.clock.now() + self.fs.config.attr_ttl)
                attrs.name = ''
                self.attrs = attrs
            else:
                self.attrs = parent.lookup_attrs(self.attrs.name)
        return self.attrs.copy()


class FileSystem:
    """
    Shared context of one mount.

    Holds the collaborators every node needs and a table with one node per
    resolved path, so repeated lookups return the same node and its open
    handles.

    Args:
        accessor (RemoteStorageAccessor): Remote storage client.
        config (MountConfig, optional): Tunables. Defaults to MountConfig().
        retry_policy (RetryPolicy, optional): Defaults to one built from config.
        clock (Clock, optional): Defaults to the wall clock.
    """

    def __init__(self, accessor, config=None, retry_policy=None, clock=None):
        self.accessor = accessor
        self.config = config or MountConfig()
        self.clock = clock or Clock()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.config.retry_max_attempts,
            time_limit=self.config.retry_time_limit,
            now=self.clock.now,
        )
        self.root = Directory(self, Attrs(name='', mode=stat.S_IFDIR | 0o755, expires=0.0))
        self._nodes = {'/': self.root}
        self._lock = threading.Lock()

    @staticmethod
    def _normalize(path: str) -> str:
        return posixpath.normpath('/' + path.lstrip('/'))

    def lookup(self, path: str):
        """
        Resolve *path* to a Directory or FileNode, creating the node on first use.

        Raises:
            RemoteNotFoundError: If the path or one of its ancestors does not exist.
        """
        path = self._normalize(path)
        with self._lock:
            node = self._nodes.get(path)
        if node is not None:
            return node

        parent = self.lookup(posixpath.dirname(path))
        if not isinstance(parent, Directory):
            raise RemoteNotFoundError(f"{posixpath.dirname(path)} is not a directory", path=path)
        attrs = parent.lookup_attrs(posixpath.basename(path))
        if attrs.is_dir:
            node = Directory(self, attrs, parent)
        else:
            node = FileNode(self, parent, attrs)
        with self._lock:
            return self._nodes.setdefault(path, node)

    def evict(self, node) -> None:
        """Drop *node* from the node table unless a handle is still open on it."""
        path = self._normalize(node.absolute_path())
        with self._lock:
            if self._nodes.get(path) is node and node.active_handle_count == 0:
                del self._nodes[path]
                logger.debug(f"Evicted {path} from the node table")

    def create_node(self, path: str, mode: int, uid: int = 0, gid: int = 0) -> FileNode:
        """
        Register a node for a file that is about to be created.

        The snapshot is authoritative (the caller is creating the file with
        exactly these attributes), so it starts out valid for a full TTL.
        """
        path = self._normalize(path)
        parent = self.lookup(posixpath.dirname(path))
        if not isinstance(parent, Directory):
            raise RemoteNotFoundError(f"{posixpath.dirname(path)} is not a directory", path=path)
        now = self.clock.now()
        attrs = Attrs(name=posixpath.basename(path), mode=stat.S_IFREG | stat.S_IMODE(mode),
                      uid=uid, gid=gid, mtime=now, atime=now, ctime=now,
                      expires=now + self.config.attr_ttl)
        with self._lock:
            node = self._nodes.get(path)
            existing = node if isinstance(node, FileNode) else None
            if existing is None:
                node = FileNode(self, parent, attrs)
                self._nodes[path] = node
        if existing is not None:
            existing.update_cached_attributes(mode=attrs.mode)
            return existing
        logger.debug(f"Registered new file node for {path}")
        return node
