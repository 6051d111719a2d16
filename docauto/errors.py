"""Exceptions raised by the document automation engine."""


class DocAutoError(Exception):
    """Base class for engine errors."""


class MissingCredentialError(DocAutoError):
    """No API key configured; raised before any unit is processed."""


class NoContentError(DocAutoError):
    """The document has no section long enough to work on."""


class GenerationError(DocAutoError):
    """The generation service failed (HTTP error, API error object, or empty result)."""


class StaleSnapshotError(DocAutoError):
    """A section snapshot was used after the document changed."""
