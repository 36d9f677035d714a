"""Error taxonomy for calls against the remote content service.

The API client raises these; the components catch them at their boundary and
turn them into a failed Settlement instead of letting them escape.
"""


class ClientError(Exception):
    """Base class for every failure the client layer reports."""

    kind = "client_error"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, status_code={self.status_code})"


class AuthenticationRequired(ClientError):
    """A mutation was attempted without a session. No request was issued."""

    kind = "authentication_required"

    def __init__(self, message: str = "Authentication required."):
        super().__init__(message, status_code=None)


class NetworkFailure(ClientError):
    """The transport could not reach the service (connection error, timeout)."""

    kind = "network_failure"


class RemoteRejection(ClientError):
    """The service answered with a non-success response."""

    kind = "remote_rejection"


class DataShapeMismatch(ClientError):
    """The response did not have the expected shape."""

    kind = "data_shape_mismatch"
