from __future__ import annotations


class NormalizationError(RuntimeError):
    """Base class for errors raised while normalizing one upload."""


class DownloadError(NormalizationError):
    """Raised when the raw object cannot be fetched."""


class NotFoundOrEmptyError(DownloadError):
    """Raised when the store has no body (or an empty one) for a key."""


class ProbeDegraded(NormalizationError):
    """Raised inside the prober; callers only ever see an unknown result."""


class TranscodeError(NormalizationError):
    """Raised when an encoder invocation fails or times out."""


class SecondaryTranscodeError(TranscodeError):
    """Raised when the optional WebM variant cannot be produced."""


class UploadError(NormalizationError):
    """Raised when an artifact cannot be written to the store."""


class UndetectedMediaError(NormalizationError):
    """Raised when probing gives no signal and the policy is to fail."""


class CleanupWarning(NormalizationError):
    """Raised inside the store client when scratch deletion fails."""
