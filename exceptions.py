"""Error taxonomy for the ledger services.

Request-level errors derive from ``ValueError`` so callers that only care
about "bad input" can keep catching that. ``StoreFailure`` is a server-side
error and sits outside that hierarchy.
"""

from typing import Optional


class LedgerError(ValueError):
    """Base class for ledger failures."""


class NotFound(LedgerError):
    """The requested row does not exist for this owner."""


class ReferenceNotFound(LedgerError):
    """A referenced account, card or category is missing or owned by someone else."""

    def __init__(self, field: str, ref_id: Optional[int] = None) -> None:
        self.field = field
        self.ref_id = ref_id
        super().__init__(f"{field} {ref_id} not found")


class CategoryKindMismatch(LedgerError):
    """Category kind differs from the transaction kind."""


class InvalidTransferTarget(LedgerError):
    """A transfer moves money from a ledger into itself."""


class UnexpectedReference(LedgerError):
    """A reference is present that the transaction kind forbids."""

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message or f"{field} is not allowed here")


class MissingReference(LedgerError):
    """A reference the transaction kind requires is absent."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"{field} is required")


class EntityInUse(LedgerError):
    """Deletion blocked because transactions still reference the row."""


class DuplicateName(LedgerError):
    pass


class StoreFailure(RuntimeError):
    """The store failed mid-operation; the unit was rolled back."""
