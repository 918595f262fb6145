"""
Error hierarchy for the NLP bus service

Every error raised while serving a request carries a stable ``kind`` that is
sent back to the caller in the failure reply.
"""
from typing import Optional, Tuple


class NlpServiceError(Exception):
    """
    Base class for request-scoped service errors

    Attributes:
        message: Human-readable error message
        kind: Error kind transmitted in failure replies
        original_error: Original exception if wrapped
    """

    kind = "ServiceError"

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def to_reply(self) -> Tuple[str, str]:
        """Return the (kind, message) pair used for failure replies"""
        return self.kind, self.message

    def __str__(self):
        return f"{self.kind}: {self.message}"


class ModelError(NlpServiceError):
    """
    Underlying analyzer invoked incorrectly or failed

    Examples: call before load, inference exception, tagger output misaligned
    with its input tokens
    """

    kind = "ModelError"


class ModelLoadError(ModelError):
    """A model resource could not be loaded; fatal at startup"""

    def __init__(self, message: str, resource: Optional[str] = None, original_error: Optional[Exception] = None):
        super().__init__(message, original_error=original_error)
        self.resource = resource


class SpanIndexError(NlpServiceError, IndexError):
    """Span lies outside its token sequence (Model Port contract breach)"""

    kind = "IndexError"


class NotFoundError(NlpServiceError):
    """Reference store entry or its message field is absent"""

    kind = "NotFoundError"

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.identifier = identifier


class CodecError(NlpServiceError):
    """Wire payload could not be framed or parsed"""

    kind = "CodecError"


class ReplyError(Exception):
    """
    Failure reply received by a requester

    Raised on the caller side of the bus. ``kind`` is the remote error kind
    (e.g. ``NotFoundError``) or a bus-level kind (``NoHandlers``, ``Timeout``,
    ``InternalError``).
    """

    def __init__(self, kind: str, message: str, address: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.address = address

    def __str__(self):
        parts = [f"{self.kind}: {self.message}"]
        if self.address:
            parts.append(f"(address: {self.address})")
        return " ".join(parts)
