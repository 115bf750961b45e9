"""Error taxonomy for the voice entry pipeline.

Capture errors come from the speech session, parse failures from the
orchestrator, budget violations from enforce-mode hour checks. None of them are
fatal: each one concerns a single utterance and the caller can simply retry.
"""

from __future__ import annotations

from enum import Enum


class VoiceLogError(Exception):
    """Base class for all voicelog errors."""


class ConfigError(VoiceLogError):
    """Raised when configuration values cannot be loaded or coerced."""


class CaptureErrorKind(str, Enum):
    UNSUPPORTED = "unsupported"
    PERMISSION_DENIED = "permission-denied"
    NO_SPEECH = "no-speech"
    TRANSPORT = "transport"
    ABORTED = "aborted"


_CAPTURE_MESSAGES = {
    CaptureErrorKind.UNSUPPORTED: "Speech recognition is not supported on this device.",
    CaptureErrorKind.PERMISSION_DENIED: "Could not access microphone. Please check your permissions.",
    CaptureErrorKind.NO_SPEECH: "No speech detected. Please try speaking again.",
    CaptureErrorKind.TRANSPORT: "Network error occurred. Please check your connection.",
    CaptureErrorKind.ABORTED: "Recording was interrupted. Please try again.",
}


class CaptureError(VoiceLogError):
    """A speech capture failure. Always recoverable by calling ``start()`` again."""

    def __init__(self, kind: CaptureErrorKind, detail: str | None = None) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(detail or _CAPTURE_MESSAGES[kind])

    @property
    def retryable(self) -> bool:
        return True


class ParseFailureReason(str, Enum):
    NO_PROJECT_MATCH = "no-project-match"
    NO_JSON_IN_RESPONSE = "no-json-in-response"
    MISSING_FIELD = "missing-field"
    SERVICE_UNREACHABLE = "service-unreachable"
    UNRECOGNIZABLE_TEXT = "unrecognizable-text"


class ParseFailure(VoiceLogError):
    """An utterance could not be turned into a candidate entry.

    Parsers raise it; the orchestrator catches it and hands it back to the
    caller as a value on ``ParseResult.failure``.
    """

    def __init__(self, reason: ParseFailureReason, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class BudgetViolation(VoiceLogError):
    """Enforce mode could not fit even the minimum entry into the remaining budget."""

    def __init__(self, budget: str, remaining: float, minimum: float) -> None:
        self.budget = budget
        self.remaining = remaining
        self.minimum = minimum
        super().__init__(
            f"{budget}: only {remaining:g}h remaining, below the {minimum:g}h minimum entry."
        )
