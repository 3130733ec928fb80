# Copyright 2025 Accelerated Cloud Storage Corporation. All Rights Reserved.
"""
Retry Module.

This module provides the retry policy consulted by long-running remote
operations (most importantly the write buffer flush loop) together with the
error classification that decides which failures are worth retrying.

Classes:
    RetryPolicy: Limits on attempts and elapsed time shared by all operations.
    RetryOperation: One retry session started from a policy.

Functions:
    convert_grpc_error: Convert gRPC errors to DFS mount exceptions.
    is_transient_error: True for end-of-stream/connection class failures.
    is_success_or_benign_error: True for outcomes equivalent to success.
"""
import time
from typing import Callable, Optional

import grpc

from .exceptions import (
    DFSMountError,
    PermissionDeniedError,
    RemoteNotFoundError,
    RemoteUnavailableError,
)
from ..fuse.utils import logger

RETRYABLE_STATUS_CODES = {
    grpc.StatusCode.UNAVAILABLE,
    grpc.StatusCode.RESOURCE_EXHAUSTED,
    grpc.StatusCode.DEADLINE_EXCEEDED,
}


def convert_grpc_error(e: grpc.RpcError, operation: str = None) -> DFSMountError:
    """
    Convert gRPC errors to appropriate DFS mount errors.

    Args:
        e (grpc.RpcError): The gRPC error to convert.
        operation (str, optional): The operation being performed. Defaults to None.

    Returns:
        DFSMountError: The converted error.
    """
    error_msg = str(e.details() if hasattr(e, 'details') else str(e))
    error_code = e.code() if hasattr(e, 'code') else None

    if error_code in RETRYABLE_STATUS_CODES:
        return RemoteUnavailableError(error_msg, operation=operation)
    if error_code == grpc.StatusCode.NOT_FOUND:
        return RemoteNotFoundError(error_msg)
    if error_code in (grpc.StatusCode.PERMISSION_DENIED, grpc.StatusCode.UNAUTHENTICATED):
        return PermissionDeniedError(error_msg, operation=operation)
    return DFSMountError(error_msg)


def is_transient_error(err: Optional[BaseException]) -> bool:
    """
    Check whether an error belongs to the end-of-stream class.

    Those are the failures caused by a dropped connection or a stale replica;
    a fresh connection has a reasonable chance of succeeding.
    """
    if err is None:
        return False
    if isinstance(err, grpc.RpcError):
        err = convert_grpc_error(err)
    return isinstance(err, (EOFError, ConnectionError, RemoteUnavailableError))


def is_success_or_benign_error(err: Optional[BaseException]) -> bool:
    return err is None or isinstance(err, FileExistsError)


class RetryOperation:
    """
    A single retry session.

    Attributes:
        policy (RetryPolicy): Policy the session was started from.
        attempt (int): Number of failed attempts reported so far.
        started (float): Time the session started, from the policy clock.
    """

    def __init__(self, policy: "RetryPolicy"):
        self.policy = policy
        self.attempt = 0
        self.started = policy.now()

    def should_retry(self, op_name: str, err: BaseException) -> bool:
        """
        Record a failed attempt and decide whether another one is permitted.

        Args:
            op_name (str): Name of the operation, for logging.
            err (BaseException): The error the attempt failed with.

        Returns:
            bool: True if the caller may try again.
        """
        self.attempt += 1
        elapsed = self.policy.now() - self.started
        if self.attempt >= self.policy.max_attempts:
            logger.error(f"{op_name} failed after {self.attempt} attempts, giving up: {err}")
            return False
        if elapsed > self.policy.time_limit:
            logger.error(f"{op_name} failed, retry time limit ({self.policy.time_limit}s) exceeded: {err}")
            return False
        logger.warning(f"{op_name} failed (attempt {self.attempt}/{self.policy.max_attempts}), retrying: {err}")
        return True


class RetryPolicy:
    """
    Limits on how long and how often a remote operation is retried.

    Args:
        max_attempts (int): Maximum number of attempts. Defaults to 10.
        time_limit (float): Maximum seconds since the session started. Defaults to 300.
        now (Callable[[], float], optional): Time source. Defaults to time.time.
    """

    def __init__(self, max_attempts: int = 10, time_limit: float = 300.0,
                 now: Callable[[], float] = None):
        self.max_attempts = max_attempts
        self.time_limit = time_limit
        self.now = now or time.time

    def start_operation(self) -> RetryOperation:
        return RetryOperation(self)
