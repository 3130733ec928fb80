# Copyright 2025 Accelerated Cloud Storage Corporation. All Rights Reserved.
"""
Write buffering for the DFS FUSE filesystem.

The remote backend can only create, read and remove whole files, so every
writable handle stages the complete intended content of its file in a local
scratch file. Flushing re-uploads that scratch file in full, replacing the
remote file, and retries with a fresh connection when the backend drops the
stream half way (a stale replica or an expired connection).
"""

import enum
import os
import shutil
import tempfile

import grpc

from ..client.exceptions import (
    CapacityExceededError,
    DFSMountError,
    FlushCancelledError,
    FlushTimeoutError,
    LocalStagingError,
)
from ..client.retry import convert_grpc_error, is_success_or_benign_error, is_transient_error
from .utils import logger, trace_op


class FlushState(enum.Enum):
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    EXHAUSTED = "exhausted"
    DONE = "done"


class WriteBuffer:
    """
    Staging area and flush engine of one writable handle.

    The scratch file always holds the full content the remote file should
    have: what was there when the buffer was created (or last flushed) plus
    every write issued since.

    Attributes:
        handle (WritableHandle): Owning handle.
        scratch_path (str): Path of the local scratch file.
        bytes_written (int): Bytes written since the last flush.
    """

    def __init__(self, handle, is_new_file: bool):
        """
        Prepare the remote file and the scratch file.

        Args:
            handle (WritableHandle): The handle this buffer belongs to.
            is_new_file (bool): Replace the remote file with an empty one instead
                of seeding the scratch file from it.

        Raises:
            LocalStagingError: If the scratch file cannot be created.
            DFSMountError: If the remote file cannot be created or its content
                cannot be copied into the scratch file.
        """
        self.handle = handle
        self.bytes_written = 0
        self.scratch_path = None
        self._scratch = None

        node = handle.node
        accessor = node.fs.accessor
        path = node.absolute_path()
        logger.info(f"Create file {path}, new_file: {is_new_file}")

        if is_new_file:
            accessor.remove(path)
            try:
                writer = accessor.create_file(path, node.attrs.mode)
            except Exception as e:
                logger.error(f"Creating {path}: {e}")
                raise
            writer.close()

        self._create_scratch_file(node.fs.config.staging_dir)
        logger.info(f"Staging file for {node.attrs.name} is {self.scratch_path}")

        if not is_new_file:
            self._seed(path)

    @property
    def node(self):
        return self.handle.node

    def _create_scratch_file(self, staging_dir):
        try:
            os.makedirs(staging_dir, mode=0o700, exist_ok=True)
            fd, self.scratch_path = tempfile.mkstemp(prefix='stage', dir=staging_dir)
        except OSError as e:
            logger.error(f"Failed to create staging file in {staging_dir}: {e}")
            raise LocalStagingError(f"cannot create staging file in {staging_dir}: {e}") from e
        self._scratch = os.fdopen(fd, 'w+b', buffering=0)

    def _seed(self, path):
        accessor = self.node.fs.accessor
        try:
            accessor.stat(path)
        except (DFSMountError, grpc.RpcError, OSError) as e:
            logger.warning(f"[{path}] Can't stat file, starting from an empty staging file: {e}")
            return

        logger.info(f"Buffering contents of the file {path} to the staging area {self.scratch_path}")
        try:
            reader = accessor.open_read(path)
            try:
                shutil.copyfileobj(reader, self._scratch, self.node.fs.config.flush_chunk_size)
            finally:
                reader.close()
        except Exception as e:
            logger.warning(f"Copy of {path} into {self.scratch_path} failed: {e}")
            self._discard_scratch()
            raise
        logger.info(f"Copied {os.fstat(self._scratch.fileno()).st_size} bytes")

    def _discard_scratch(self):
        scratch, self._scratch = self._scratch, None
        try:
            if scratch is not None:
                scratch.close()
        finally:
            if self.scratch_path is not None:
                try:
                    os.unlink(self.scratch_path)
                except FileNotFoundError:
                    pass

    def _fileno(self):
        if self._scratch is None:
            raise LocalStagingError("staging file is closed")
        return self._scratch.fileno()

    def write(self, offset: int, data: bytes) -> int:
        """
        Write *data* into the scratch file at *offset*.

        The remote free space is checked before every write; a failing
        free-space query is logged and the write goes ahead.

        Returns:
            int: Number of bytes written.

        Raises:
            CapacityExceededError: If *offset* is at or beyond the remaining capacity.
            LocalStagingError: If the scratch file write fails.
        """
        path = self.node.absolute_path()
        trace_op("write", path, offset=offset, size=len(data))
        try:
            remaining = self.node.fs.accessor.free_space()
        except (DFSMountError, grpc.RpcError, OSError) as e:
            logger.error(f"Failed to get remote usage, continuing write: {e}")
        else:
            if offset >= remaining:
                logger.error(f"[{path}] writes at offset {offset}, beyond the remote available size ({remaining})")
                raise CapacityExceededError(f"write at offset {offset} exceeds remaining capacity {remaining}")

        try:
            written = os.pwrite(self._fileno(), data, offset)
        except OSError as e:
            raise LocalStagingError(f"write to {self.scratch_path} failed: {e}") from e
        self.bytes_written += written
        logger.debug(f"{self.node.attrs.name} write {written} bytes")
        return written

    def read(self, offset: int, size: int) -> bytes:
        try:
            return os.pread(self._fileno(), size, offset)
        except OSError as e:
            raise LocalStagingError(f"read from {self.scratch_path} failed: {e}") from e

    def truncate(self, size: int) -> None:
        try:
            os.ftruncate(self._fileno(), size)
        except OSError as e:
            raise LocalStagingError(f"truncate of {self.scratch_path} failed: {e}") from e
        # Mark dirty so the truncation reaches the next flush
        self.bytes_written += 1

    def flush(self, timeout=None, cancel=None) -> None:
        """
        Upload the scratch file if anything changed since the last flush.

        Args:
            timeout (float, optional): Give up once this many seconds have passed.
            cancel (threading.Event, optional): Abort the retry loop when set.

        Raises:
            DFSMountError: The error of the last attempt once retries are over,
                FlushTimeoutError or FlushCancelledError.
        """
        path = self.node.absolute_path()
        logger.info(f"[{path}] flushing ({self.bytes_written} new bytes written)")
        if self.bytes_written == 0:
            return
        # Writes racing with the upload count towards the next flush
        pending, self.bytes_written = self.bytes_written, 0
        try:
            self._flush_with_retry(path, timeout, cancel)
        except Exception:
            # The remote copy may already be removed; keep the changes pending
            self.bytes_written += pending
            raise
        finally:
            self.node.invalidate_attribute_cache()

    def _flush_with_retry(self, path, timeout, cancel):
        fs = self.node.fs
        op = fs.retry_policy.start_operation()
        deadline = None if timeout is None else fs.clock.now() + timeout
        backoff = fs.config.flush_backoff
        state = FlushState.ATTEMPTING
        last_error = None

        while state is not FlushState.DONE:
            if state is FlushState.ATTEMPTING:
                try:
                    self.flush_attempt()
                except Exception as e:
                    last_error = e
                    state = self._after_failure(path, op, e)
                else:
                    logger.info(f"[{path}] flushed")
                    state = FlushState.DONE

            elif state is FlushState.BACKOFF:
                # Drop the connection so the next attempt gets another set of replicas
                try:
                    fs.accessor.close()
                except Exception as e:
                    logger.warning(f"Resetting remote connection failed: {e}")
                logger.error(f"[{path}] failed flushing, retrying in {backoff}s")
                if deadline is not None and fs.clock.now() + backoff > deadline:
                    raise FlushTimeoutError(f"flush of {path} did not complete within {timeout}s") from last_error
                if fs.clock.sleep(backoff, cancel):
                    raise FlushCancelledError(f"flush of {path} cancelled") from last_error
                state = FlushState.ATTEMPTING

            elif state is FlushState.EXHAUSTED:
                if isinstance(last_error, grpc.RpcError):
                    raise convert_grpc_error(last_error, operation="flush") from last_error
                raise last_error

    def _after_failure(self, path, op, err):
        if is_success_or_benign_error(err):
            logger.info(f"[{path}] flush finished with benign error: {err}")
            return FlushState.DONE
        if not is_transient_error(err):
            logger.error(f"[{path}] flush failed with non-retriable error: {err}")
            return FlushState.EXHAUSTED
        if not op.should_retry("flush", err):
            return FlushState.EXHAUSTED
        return FlushState.BACKOFF

    def flush_attempt(self) -> None:
        """Replace the remote file with the full content of the scratch file."""
        accessor = self.node.fs.accessor
        path = self.node.absolute_path()
        chunk_size = self.node.fs.config.flush_chunk_size

        if self._scratch is None:
            raise LocalStagingError("staging file is closed")
        accessor.remove(path)
        try:
            writer = accessor.create_file(path, self.node.attrs.mode)
        except Exception as e:
            logger.error(f"Creating {path}: {e}")
            raise

        self._scratch.seek(0)
        while True:
            try:
                chunk = self._scratch.read(chunk_size)
            except OSError as e:
                logger.error(f"Reading staging file {self.scratch_path}: {e}")
                break
            if not chunk:
                break
            try:
                writer.write(chunk)
            except Exception as e:
                logger.error(f"Writing {path}: {e}")
                try:
                    writer.close()
                except Exception as close_err:
                    logger.error(f"Closing {path} after failed write: {close_err}")
                raise

        try:
            writer.close()
        except Exception as e:
            logger.error(f"Closing {path}: {e}")
            raise

    def close(self) -> None:
        """Close and remove the scratch file. Does not flush."""
        if self._scratch is None:
            return
        logger.info(f"Closing staging file {self.scratch_path}")
        self._discard_scratch()
