"""
Exception Classes - Strongly typed exception hierarchy.

Business-rule rejections (invalid code, maxed-out code, ...) are NOT exceptions;
they come back as RedemptionResult outcomes. Everything here is either a caller
error or an infrastructure failure. Infrastructure failures carry `retryable`.
"""

from uuid import UUID


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    retryable: bool = False


class UserNotFoundError(LedgerError):
    """Raised when a user row doesn't exist."""

    def __init__(self, user_id: UUID | str) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class CodeGenerationError(LedgerError):
    """Raised when no unique referral code could be found."""

    retryable = True

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Could not generate a unique referral code after {attempts} attempts")


class IdempotencyConflictError(LedgerError):
    """Raised when an external transaction id is replayed."""

    def __init__(self, existing_id: UUID) -> None:
        self.existing_id = existing_id
        super().__init__(f"Idempotency conflict: existing ID {existing_id}")


class DuplicateKeyError(LedgerError):
    """Raised by a store when a unique constraint rejects a write."""

    def __init__(self, constraint: str) -> None:
        self.constraint = constraint
        super().__init__(f"Unique constraint violated: {constraint}")


class WriteVerificationError(LedgerError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(LedgerError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class DatabaseError(LedgerError):
    """Raised when database operation fails unexpectedly."""

    def __init__(self, message: str, retryable: bool = False) -> None:
        self.message = message
        self.retryable = retryable
        super().__init__(f"Database error: {message}")


class ConcurrencyError(LedgerError):
    """Raised when concurrent modification detected (deadlock, serialization failure)."""

    retryable = True

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")


class StoreTimeoutError(LedgerError):
    """Raised when a store operation exceeds its time bound."""

    retryable = True

    def __init__(self, operation: str, timeout: float | None = None) -> None:
        self.operation = operation
        self.timeout = timeout
        suffix = f" after {timeout}s" if timeout is not None else ""
        super().__init__(f"Ledger store timed out during {operation}{suffix}")
