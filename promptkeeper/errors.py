"""
Error kinds raised by the PromptKeeper service layer.

Routes do not translate these individually; ``promptkeeper.main`` registers a
single exception handler that renders ``{"error": kind, "detail": message}``
with the class's ``status_code``.
"""


class PromptKeeperError(Exception):
    """Base class for all domain errors."""

    kind = "Error"
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message}


class NotFoundError(PromptKeeperError):
    """A referenced entity does not exist."""

    kind = "NotFound"
    status_code = 404


class InvalidReferenceError(PromptKeeperError):
    """A category name or tag id does not resolve to an existing row."""

    kind = "InvalidReference"
    status_code = 400


class InvalidInputError(PromptKeeperError):
    """Malformed payload, malformed version string or undecodable text."""

    kind = "InvalidInput"
    status_code = 400


class ConflictError(PromptKeeperError):
    """A write collided with concurrent state (version mint, unique name)."""

    kind = "Conflict"
    status_code = 409


class StoreFailureError(PromptKeeperError):
    """The record store failed; the transaction was rolled back."""

    kind = "StoreFailure"
    status_code = 500


class ProviderError(PromptKeeperError):
    """An LLM provider call failed or is not configured."""

    kind = "ProviderError"
    status_code = 502


__all__ = [
    "PromptKeeperError",
    "NotFoundError",
    "InvalidReferenceError",
    "InvalidInputError",
    "ConflictError",
    "StoreFailureError",
    "ProviderError",
]
