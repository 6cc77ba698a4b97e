class GatewayError(Exception):
    """Base class for all errors raised by the gateway."""


class ConfigurationError(GatewayError):
    """Missing or malformed bucket, region or credentials. Fatal at startup."""


class InvalidInput(GatewayError):
    """A display name, key or ttl was rejected before reaching the backend."""


class LocalResourceError(GatewayError):
    """Staging file could not be created or written on the gateway host."""


class BackendError(GatewayError):
    """The object store refused or failed an operation.

    Wraps botocore errors so callers never see raw SDK exceptions.
    """

    def __init__(self, message, operation=None, key=None, status=None, code=None):
        super().__init__(message)
        self.operation = operation
        self.key = key
        self.status = status
        self.code = code


class BackendUnavailable(BackendError):
    """Network failure, timeout or 5xx from the backend. Transient."""


class BackendRejected(BackendError):
    """Backend rejected the request (authorization, bad request, ...)."""


class NotFound(BackendError):
    """Bucket or key does not exist."""
