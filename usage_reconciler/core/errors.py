"""
Error taxonomy for ingestion and reconciliation.

Every error carries a stable reason code so per-item batch results and
HTTP responses can report failures without leaking payload content.
"""

from typing import Iterable, List


class UsageError(Exception):
    """Base class for all usage ingestion and query failures."""
    reason = "UsageError"
    default_message = "Usage request failed"

    def __init__(self, message: str = ""):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class MalformedInput(UsageError):
    """Request body could not be parsed as JSON."""
    reason = "MalformedInput"
    default_message = "Invalid JSON in request body"


class UnrecognizedPayloadShape(UsageError):
    """Payload matched none of the accepted shapes.

    Only the top-level keys are kept, never the values.
    """
    reason = "UnrecognizedPayloadShape"
    default_message = (
        "Unknown data format. Expected {modelName, imageCount} or "
        "{model, count} or an array of these formats."
    )

    def __init__(self, keys: Iterable[str] = ()):
        super().__init__()
        self.keys: List[str] = sorted(str(key) for key in keys)


class InvalidModelName(UsageError):
    reason = "InvalidModelName"
    default_message = "Invalid model name"


class InvalidImageCount(UsageError):
    reason = "InvalidImageCount"
    default_message = "Invalid image count"


class StoreUnavailable(UsageError):
    """The record store failed; the original driver error text is preserved.

    ``written`` lists canonical records a batch committed before the
    failure.
    """
    reason = "StoreUnavailable"
    default_message = "Record store unavailable"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.written: list = []


class IdentityMiss(UsageError):
    """No stored record matched any form of the requested identifier.

    Not a hard error: the reconciliation service raises and handles it
    internally to route into the degraded path.
    """
    reason = "IdentityMiss"
    default_message = "No records matched the requested identifier"

    def __init__(self, identifier: str, tried: Iterable[str] = ()):
        super().__init__(f"No records for {identifier!r}")
        self.identifier = identifier
        self.tried = list(tried)
