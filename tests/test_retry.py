import grpc
import pytest

from dfs_mount.client.exceptions import (
    DFSMountError,
    PermissionDeniedError,
    RemoteNotFoundError,
    RemoteUnavailableError,
)
from dfs_mount.client.retry import (
    RetryPolicy,
    convert_grpc_error,
    is_success_or_benign_error,
    is_transient_error,
)
from conftest import FakeClock, FakeRpcError


@pytest.mark.parametrize("code, expected", [
    (grpc.StatusCode.UNAVAILABLE, RemoteUnavailableError),
    (grpc.StatusCode.DEADLINE_EXCEEDED, RemoteUnavailableError),
    (grpc.StatusCode.NOT_FOUND, RemoteNotFoundError),
    (grpc.StatusCode.PERMISSION_DENIED, PermissionDeniedError),
    (grpc.StatusCode.INTERNAL, DFSMountError),
])
def test_convert_grpc_error(code, expected):
    err = convert_grpc_error(FakeRpcError(code, "boom"), operation="flush")
    assert type(err) is expected
    assert "boom" in str(err)


def test_transient_classification():
    assert is_transient_error(EOFError())
    assert is_transient_error(ConnectionResetError())
    assert is_transient_error(RemoteUnavailableError("gone"))
    assert is_transient_error(FakeRpcError(grpc.StatusCode.UNAVAILABLE))
    assert not is_transient_error(FakeRpcError(grpc.StatusCode.NOT_FOUND))
    assert not is_transient_error(PermissionDeniedError("no"))
    assert not is_transient_error(None)


def test_benign_classification():
    assert is_success_or_benign_error(None)
    assert is_success_or_benign_error(FileExistsError())
    assert not is_success_or_benign_error(RemoteUnavailableError("gone"))


def test_policy_limits_attempts():
    clock = FakeClock()
    op = RetryPolicy(max_attempts=3, time_limit=100, now=clock.now).start_operation()

    assert op.should_retry("flush", EOFError())
    assert op.should_retry("flush", EOFError())
    assert not op.should_retry("flush", EOFError())


def test_policy_limits_time():
    clock = FakeClock()
    op = RetryPolicy(max_attempts=100, time_limit=60, now=clock.now).start_operation()

    assert op.should_retry("flush", EOFError())
    clock.advance(61)
    assert not op.should_retry("flush", EOFError())


def test_sessions_are_independent():
    policy = RetryPolicy(max_attempts=2)
    first = policy.start_operation()
    first.should_retry("flush", EOFError())
    assert first.attempt == 1
    second = policy.start_operation()
    assert second.attempt == 0
