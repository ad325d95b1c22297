class MpciumError(Exception):
    """Base exception for mpcium client errors"""
    pass


class MpciumConfigurationError(MpciumError):
    """Raised when required client configuration is missing or invalid."""
    pass


class KeyLoadError(MpciumError):
    """Raised when the identity key cannot be read, decrypted or validated.

    Always fatal to client construction.
    """
    pass


class SigningError(MpciumError):
    """Raised when a request message cannot be signed with the identity key."""
    pass


class ProvisionError(MpciumError):
    """Raised when a durable stream or consumer cannot be created.

    "Already exists" races are never reported with this error.
    """

    def __init__(self, message: str, resource: str = "", err_code: int | None = None):
        super().__init__(message)
        self.resource = resource
        self.err_code = err_code


class DecodeError(MpciumError):
    """Raised when a delivered result payload cannot be decoded."""
    pass


class CallbackError(MpciumError):
    """Wraps an exception raised by a caller's result callback."""

    def __init__(self, category: str, correlation_id: str, cause: BaseException):
        super().__init__(f"{category} callback failed for {correlation_id}: {cause!r}")
        self.category = category
        self.correlation_id = correlation_id
        self.cause = cause


class ClientClosedError(MpciumError):
    """Raised when an operation is attempted on a client after cleanup()."""
    pass


class PublishDegradedWarning(UserWarning):
    """Durable publish was unavailable; the request went out best-effort."""
    pass
