"""
Typed provider errors.

Provider clients translate SDK failures into a ProviderError tagged as
transient or fatal, so the retry policy never inspects message text.
"""

from enum import Enum


class ErrorKind(Enum):
    """Retry classification of a provider failure."""
    TRANSIENT = "transient"  # overload, rate limit, timeout, connection
    FATAL = "fatal"          # auth, bad request, unusable output


class ProviderError(Exception):
    """Failure raised by an ICompletionProvider."""

    def __init__(self, kind: ErrorKind, detail: str):
        super().__init__(detail)
        self.kind = kind
        self.detail = detail

    @property
    def is_transient(self) -> bool:
        return self.kind == ErrorKind.TRANSIENT

    @classmethod
    def transient(cls, detail: str) -> "ProviderError":
        return cls(ErrorKind.TRANSIENT, detail)

    @classmethod
    def fatal(cls, detail: str) -> "ProviderError":
        return cls(ErrorKind.FATAL, detail)

    def __repr__(self) -> str:
        return f"ProviderError(kind={self.kind.value!r}, detail={self.detail!r})"
