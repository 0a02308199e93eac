class DomainError(Exception):
    """Base exception for business rule violations."""


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""


class StoreUnavailableError(DomainError):
    """Raised when the relational store cannot be reached.

    Fatal to an ingestion cycle: the caller retries the whole cycle later.
    """


class PersistenceError(DomainError):
    """Raised when a single statement is rejected by the store."""


class CycleAlreadyRunningError(DomainError):
    """Raised when another ingestion cycle holds the cycle lock."""
