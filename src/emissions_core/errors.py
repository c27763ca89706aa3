"""Exceptions raised by the scoring engine.

Every error aborts the scoring of the current round (or of the affected
participant). Nothing is retried inside the engine.
"""


class ScoringError(Exception):
    """Base exception for scoring engine errors."""

    pass


class DomainError(ScoringError):
    """Raised when a value falls outside the math domain (e.g. loss <= 0)."""

    pass


class InvalidInputError(ScoringError):
    """Raised on malformed round input: length mismatch, zero total stake, duplicates."""

    pass


class IdentityError(ScoringError):
    """Raised when a participant address cannot be parsed."""

    pass


class NotFoundError(ScoringError):
    """Raised when stake, roster or another keeper entry is missing."""

    pass


class PersistenceError(ScoringError):
    """Raised when a keeper write fails."""

    pass


class DuplicateScoreError(PersistenceError):
    """Raised when a score already exists for (topic, block, address)."""

    pass
