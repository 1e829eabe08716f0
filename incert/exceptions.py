"""Errors raised by incert.

Every error aborts the whole run; nothing is retried or recovered locally.
"""


class IncertError(Exception):
    """Base exception for all incert errors."""


class ConfigurationError(IncertError):
    """Raised when required options are missing or contradict each other."""


class ReferenceParseError(IncertError):
    """Raised when an image reference is malformed."""


class CertificateFormatError(IncertError):
    """Raised when the input contains no PEM encoded certificate."""


class FetchError(IncertError):
    """Raised when the source registry is unreachable or refuses a pull."""


class AuthenticationError(FetchError):
    """Raised when a registry requires credentials we do not have."""


class TargetNotFoundError(IncertError):
    """Raised when the certificate file is absent from an image."""

    def __init__(self, path: str, reason: str = "not found in image"):
        super().__init__(f"{path} {reason}")
        self.path = path


class UnknownMediaTypeError(IncertError):
    """Raised when an index entry is neither an image nor an index."""

    def __init__(self, media_type: str | None):
        super().__init__(f"Unknown media type: {media_type}")
        self.media_type = media_type


class IndexDepthError(IncertError):
    """Raised when indexes are nested deeper than we are willing to follow."""


class BuildError(IncertError):
    """Raised when a layer or manifest can not be constructed."""


class PushError(IncertError):
    """Raised when the destination registry refuses or fails a push."""
