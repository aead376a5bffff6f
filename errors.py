class LedgerError(ValueError):
    """Domain validation failure. Never retried automatically."""


class InvalidAmount(LedgerError):
    pass


class TypeMismatch(LedgerError):
    pass


class SelfReference(LedgerError):
    pass


class HierarchyCycle(SelfReference):
    """A parent link would make a category its own ancestor."""


class DuplicateName(LedgerError):
    pass


class NotFound(LedgerError):
    pass


class UserNotFound(NotFound):
    pass


class CategoryNotFound(NotFound):
    pass


class TransactionNotFound(NotFound):
    pass


class InvalidRange(LedgerError):
    pass


class StorageError(RuntimeError):
    """Storage-layer failure (I/O error, lock timeout). Callers may retry."""

    retryable = True
