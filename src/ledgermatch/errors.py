"""
Exception hierarchy.

I/O and lock failures propagate to the caller unchanged; algorithmic
bounds (depth, timeout, cycle) are never raised, they are reported as
counters on the run result.
"""


class LedgerMatchError(Exception):
    """Base exception for all reconciliation errors."""

    pass


class ConfigValidationError(LedgerMatchError):
    """Raised when configuration validation fails."""

    pass


class StoreError(LedgerMatchError):
    """Base exception for document store failures."""

    pass


class StoreReadError(StoreError):
    """Snapshot could not be read (store unreachable or malformed rows).

    A read failure aborts the run before any write is attempted.
    """

    def __init__(self, message: str, retryable: bool = True):
        self.retryable = retryable
        super().__init__(message)


class StoreWriteError(StoreError):
    """Batched write was rejected; the whole batch counts as not applied."""

    pass


class LockTimeoutError(LedgerMatchError):
    """Lock for a reconciliation pair could not be acquired in time."""

    def __init__(self, resource_id: str, timeout_ms: int):
        self.resource_id = resource_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Failed to acquire lock for {resource_id} within {timeout_ms}ms")


class RetriesExhaustedError(LedgerMatchError):
    """Every attempt of a retried operation failed."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Operation failed after {attempts} attempt(s): {last_error}")


class ExchangeRateError(LedgerMatchError):
    """Exchange rate could not be fetched or parsed."""

    pass
