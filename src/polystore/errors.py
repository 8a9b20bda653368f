"""Error definitions for polystore."""


class PolystoreError(Exception):
    """Base error raised by polystore engines and reference backends.

    Attributes:
        code: Short machine-readable error code (e.g. "NotFound").
        message: Human-readable error description.
    """

    def __init__(self, code: str, message: str) -> None:
        """Initialize the error.

        Args:
            code: Error code.
            message: Error description.
        """
        super().__init__(message)
        self.code = code
        self.message = message


# -- Taxonomy -----------------------------------------------------------------


class NotFoundError(PolystoreError):
    """A path or channel does not exist."""

    def __init__(self, target: str = "", message: str | None = None) -> None:
        super().__init__(
            code="NotFound",
            message=message or f"The specified resource does not exist: {target!r}",
        )
        self.target = target


class PreconditionFailedError(PolystoreError):
    """A precondition (lease, etag, expected state) did not hold."""

    def __init__(self, message: str = "A precondition did not hold.") -> None:
        super().__init__(code="PreconditionFailed", message=message)


class ConflictError(PolystoreError):
    """The operation conflicts with the current state (e.g. channel already exists)."""

    def __init__(self, message: str = "The operation conflicts with the current state.") -> None:
        super().__init__(code="Conflict", message=message)


class UnsupportedOperationError(PolystoreError):
    """The backend does not implement the requested operation."""

    def __init__(self, operation: str, backend: str = "") -> None:
        where = f" by {backend}" if backend else ""
        super().__init__(
            code="Unsupported",
            message=f"Operation {operation!r} is not supported{where}.",
        )
        self.operation = operation
        self.backend = backend


class TransientBackendError(PolystoreError):
    """A network or service fault that may succeed when retried."""

    def __init__(self, message: str = "The backend is temporarily unavailable.") -> None:
        super().__init__(code="TransientFault", message=message)


class CapacityError(PolystoreError):
    """A write would exceed the backend's configured capacity."""

    def __init__(self, message: str) -> None:
        super().__init__(code="CapacityExceeded", message=message)


class InvalidArgumentError(PolystoreError, ValueError):
    """An invalid argument was provided."""

    def __init__(self, message: str = "Invalid Argument") -> None:
        super().__init__(code="InvalidArgument", message=message)


class InvalidPathError(InvalidArgumentError):
    """The path is not valid for the requested operation."""

    def __init__(self, path: str | None, reason: str) -> None:
        super().__init__(message=f"Invalid path {path!r}: {reason}")
        self.code = "InvalidPath"
        self.path = path


class PumpAlreadyRunningError(PolystoreError):
    """A message pump is already running on this receiver."""

    def __init__(self, message: str = "A message pump is already running on this receiver.") -> None:
        super().__init__(code="PumpAlreadyRunning", message=message)
