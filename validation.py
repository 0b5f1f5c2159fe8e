from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from effects import LedgerRef, TransactionDraft, primary_ref, transfer_ref
from exceptions import (
    CategoryKindMismatch,
    InvalidTransferTarget,
    MissingReference,
    ReferenceNotFound,
    UnexpectedReference,
)
from models import Category, TransactionKind
from store import Ledger, LedgerStore


@dataclass
class ResolvedReferences:
    source: Ledger
    category: Optional[Category] = None
    target: Optional[Ledger] = None


def _ref_field(ref: LedgerRef, *, transfer: bool) -> str:
    prefix = "transfer_" if transfer else ""
    return f"{prefix}{ref.kind.value}_id"


class ReferenceValidator:
    """Checks that a transaction's references exist, belong to the user and
    fit the transaction kind. Read-only; raises on the first violation."""

    def __init__(self, store: LedgerStore) -> None:
        self.store = store

    def validate(self, user_id: int, draft: TransactionDraft) -> ResolvedReferences:
        self._check_shape(draft)

        source_ref = primary_ref(draft)
        assert source_ref is not None
        source = self.store.get_ledger(source_ref, user_id)
        if source is None:
            raise ReferenceNotFound(
                _ref_field(source_ref, transfer=False), source_ref.id
            )

        resolved = ResolvedReferences(source=source)
        if draft.kind == TransactionKind.transfer:
            target_ref = transfer_ref(draft)
            assert target_ref is not None
            target = self.store.get_ledger(target_ref, user_id)
            if target is None:
                raise ReferenceNotFound(
                    _ref_field(target_ref, transfer=True), target_ref.id
                )
            resolved.target = target
            return resolved

        assert draft.category_id is not None
        category = self.store.get_category(draft.category_id, user_id)
        if category is None:
            raise ReferenceNotFound("category_id", draft.category_id)
        if category.kind.value != draft.kind.value:
            raise CategoryKindMismatch(
                f"Category '{category.name}' is {category.kind.value}, "
                f"transaction is {draft.kind.value}"
            )
        resolved.category = category
        return resolved

    def _check_shape(self, draft: TransactionDraft) -> None:
        if draft.account_id is not None and draft.credit_card_id is not None:
            raise UnexpectedReference(
                "credit_card_id", "Use either account_id or credit_card_id, not both"
            )
        if (
            draft.transfer_account_id is not None
            and draft.transfer_credit_card_id is not None
        ):
            raise UnexpectedReference(
                "transfer_credit_card_id",
                "Use either transfer_account_id or transfer_credit_card_id, not both",
            )

        source_ref = primary_ref(draft)
        if source_ref is None:
            raise MissingReference("account_id")
        target_ref = transfer_ref(draft)

        if draft.kind == TransactionKind.transfer:
            if draft.category_id is not None:
                raise UnexpectedReference(
                    "category_id", "Transfers cannot have a category"
                )
            if target_ref is None:
                raise MissingReference("transfer_account_id")
            if target_ref == source_ref:
                raise InvalidTransferTarget(
                    "Transfer source and target must be different"
                )
            return

        if target_ref is not None:
            raise UnexpectedReference(
                _ref_field(target_ref, transfer=True),
                f"{draft.kind.value.capitalize()} transactions cannot have a "
                "transfer target",
            )
        if draft.category_id is None:
            raise MissingReference("category_id")
