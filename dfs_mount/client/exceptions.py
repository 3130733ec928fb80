"""
Exceptions raised by the DFS mount core.

Every error carries a short ``code`` string for logs and an ``errno`` value
that the FUSE adapter reports back to the kernel.
"""
import errno as _errno


class DFSMountError(Exception):
    """Base exception for DFS mount errors."""
    errno = _errno.EIO

    def __init__(self, message: str, code: str = "ERR_UNKNOWN"):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


class RemoteUnavailableError(DFSMountError):
    """Connection or transport failure talking to the remote backend."""
    def __init__(self, message: str, operation: str = None):
        code = "ERR_UNAVAILABLE"
        if operation:
            code = f"ERR_UNAVAILABLE_{operation.upper()}"
        super().__init__(message, code=code)


class RemoteNotFoundError(DFSMountError):
    """Remote path does not exist."""
    errno = _errno.ENOENT

    def __init__(self, message: str, path: str = None):
        self.path = path
        super().__init__(message, code="ERR_NOT_FOUND")


class CapacityExceededError(DFSMountError):
    """Write rejected because the remote backend is out of space."""
    errno = _errno.ENOSPC

    def __init__(self, message: str):
        super().__init__(message, code="ERR_CAPACITY")


class LocalStagingError(DFSMountError):
    """Scratch file creation or I/O failed."""
    def __init__(self, message: str):
        super().__init__(message, code="ERR_STAGING")


class PermissionDeniedError(DFSMountError):
    """Remote backend rejected a chmod/chown or access."""
    errno = _errno.EPERM

    def __init__(self, message: str, operation: str = None):
        code = "ERR_PERMISSION"
        if operation:
            code = f"ERR_PERMISSION_{operation.upper()}"
        super().__init__(message, code=code)


class PrincipalResolutionError(DFSMountError):
    """A uid could not be mapped to a user name. Only used for diagnostics."""
    def __init__(self, message: str):
        super().__init__(message, code="ERR_PRINCIPAL")


class FlushCancelledError(DFSMountError):
    """Flush retry loop was cancelled while waiting to retry."""
    errno = _errno.EINTR

    def __init__(self, message: str):
        super().__init__(message, code="ERR_FLUSH_CANCELLED")


class FlushTimeoutError(DFSMountError):
    """Flush retry loop ran past its deadline."""
    errno = _errno.ETIMEDOUT

    def __init__(self, message: str):
        super().__init__(message, code="ERR_FLUSH_TIMEOUT")
