"""
Remote storage accessor contract.

The FUSE core never talks to the wire directly. It goes through an accessor
exposing the primitive remote operations below. Implementations raise
:class:`~dfs_mount.client.exceptions.DFSMountError` subclasses (or
``grpc.RpcError`` for gRPC based gateways, see ``convert_grpc_error``).
"""
from abc import ABC, abstractmethod
from typing import BinaryIO

from .types import FileInfo


class RemoteStorageAccessor(ABC):

    @abstractmethod
    def stat(self, path: str) -> FileInfo:
        """Return metadata for *path*, raising RemoteNotFoundError if absent."""

    @abstractmethod
    def open_read(self, path: str) -> BinaryIO:
        """Open a readable, seekable stream over the remote file content."""

    @abstractmethod
    def create_file(self, path: str, mode: int) -> BinaryIO:
        """Create (or recreate) *path* and return a writable stream."""

    @abstractmethod
    def remove(self, path: str) -> None:
        """Remove *path*. Absence is not an error."""

    @abstractmethod
    def chmod(self, path: str, mode: int) -> None:
        pass

    @abstractmethod
    def chown(self, path: str, owner: str, group: str) -> None:
        pass

    @abstractmethod
    def free_space(self) -> int:
        """Return the remaining capacity of the backend in bytes."""

    @abstractmethod
    def close(self) -> None:
        """Drop the current connection; the next call reconnects."""
