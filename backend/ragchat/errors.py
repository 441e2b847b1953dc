"""Error taxonomy for the chat pipeline.

Transport and rejection errors are recovered locally by tier failover or
retrieval fallback. Only exhaustion of every completion tier reaches the
caller, using the machine-readable ``code`` of the last failure.
"""


class ChatServiceError(Exception):
    """Base class for chat pipeline errors."""

    code = "internal_error"
    # True when the same backend should be retried once without streaming
    retry_same_backend = False

    def __init__(self, message: str, *, backend: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.backend = backend


class TransportUnavailable(ChatServiceError):
    """Connection refused, DNS failure or timeout talking to a backend."""

    code = "upstream_unreachable"


class StreamInterrupted(TransportUnavailable):
    """Transport failed after the streaming response had started."""

    retry_same_backend = True


class UpstreamTimeout(TransportUnavailable):
    """Backend did not answer within the configured ceiling."""


class UpstreamRejected(ChatServiceError):
    """Backend was reachable but answered with an error status."""

    code = "upstream_rejected"

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        backend: str | None = None,
        body: str = "",
    ) -> None:
        super().__init__(message, backend=backend)
        self.status_code = status_code
        self.body = body


class StreamingRejected(UpstreamRejected):
    """Backend explicitly refused ``stream: true`` for this request."""

    retry_same_backend = True


class DecodeAnomaly(ChatServiceError):
    """A single stream frame could not be decoded.

    Recorded and logged by the stream decoder; never raised out of it.
    """

    code = "decode_anomaly"

    def __init__(self, message: str, *, frame: str) -> None:
        super().__init__(message)
        self.frame = frame


class PersistenceFailure(ChatServiceError):
    """Writing to the thread or chunk store failed."""

    code = "persistence_failure"


class AuthorizationFailure(ChatServiceError):
    """Caller is not the owner of the referenced thread or document."""

    code = "not_found"
