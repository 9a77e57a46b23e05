"""Custom exception hierarchy for the WonderWhiz package."""

from __future__ import annotations


class WonderWhizError(Exception):
    """Base class for all WonderWhiz specific errors."""


class TopicNotFoundError(WonderWhizError):
    """Raised when a topic lookup fails."""


class SequenceViolation(WonderWhizError):
    """Raised when a section or progress transition is attempted out of order."""


class GenerationFailure(WonderWhizError):
    """Raised by content generators on errors, timeouts or malformed payloads.

    The section resolver absorbs this error and answers with fallback content,
    so it never reaches a learner.
    """


class DuplicateRewardAttempt(WonderWhizError):
    """Signals a reward for an already completed section.

    Callers absorb it as a no-op; it is not an error from their perspective.
    """


class PersistenceFailure(WonderWhizError):
    """Raised when a content, progress, streak or ledger store is unreachable."""
