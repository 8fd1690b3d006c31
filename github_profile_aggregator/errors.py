"""Exceptions raised while fetching user profiles."""


class ProfileFetchError(Exception):
    """Base class for every profile fetching failure."""


class TransportError(ProfileFetchError):
    """The request never produced a usable HTTP 200 response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(TransportError):
    """GitHub refused the request because of rate limiting."""

    def __init__(self, message: str, status_code: int | None = None, retry_after: float | None = None):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class ProtocolError(ProfileFetchError):
    """GraphQL executed the request but reported errors.

    The message is the first reported error; all of them are kept in ``messages``.
    """

    def __init__(self, messages: list[str]):
        super().__init__(messages[0] if messages else "unknown GraphQL error")
        self.messages = messages


class DecodeError(ProfileFetchError):
    """Response body could not be read into user records."""


class FetchCancelledError(ProfileFetchError):
    """The cancellation token fired before the request completed."""


class BatchFetchError(ProfileFetchError):
    """A batch failed, so the whole fetch failed."""

    def __init__(self, start: int, end: int, cause: BaseException, failed_batches: int = 1):
        message = f"failed to fetch users (batch {start}-{end}): {cause}"
        if failed_batches > 1:
            message += f" ({failed_batches} batches failed)"
        super().__init__(message)
        self.start = start
        self.end = end
        self.cause = cause
        self.failed_batches = failed_batches


class BatchCancelledError(BatchFetchError):
    """The fetch was cancelled or hit its deadline before every batch finished."""
