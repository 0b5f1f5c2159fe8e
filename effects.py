"""Balance effects of a transaction.

An effect is the signed change a transaction makes to one ledger (an
account or a credit card). Effects are computed from the transaction image
alone, so reversing an old image and applying a new one never needs to know
which fields changed.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from exceptions import MissingReference
from models import LedgerKind, TransactionKind, to_money


@dataclass(frozen=True, order=True)
class LedgerRef:
    kind: LedgerKind
    id: int

    @property
    def label(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass(frozen=True)
class Effect:
    target: LedgerRef
    delta: Decimal


class TransactionImage(Protocol):
    kind: TransactionKind
    amount: Decimal
    account_id: Optional[int]
    credit_card_id: Optional[int]
    transfer_account_id: Optional[int]
    transfer_credit_card_id: Optional[int]


@dataclass
class TransactionDraft:
    """Field values of a transaction before (or without) being a stored row."""

    kind: TransactionKind
    amount: Decimal
    account_id: Optional[int] = None
    credit_card_id: Optional[int] = None
    category_id: Optional[int] = None
    transfer_account_id: Optional[int] = None
    transfer_credit_card_id: Optional[int] = None

    @classmethod
    def from_image(cls, txn: TransactionImage) -> "TransactionDraft":
        return cls(
            kind=txn.kind,
            amount=txn.amount,
            account_id=txn.account_id,
            credit_card_id=txn.credit_card_id,
            category_id=getattr(txn, "category_id", None),
            transfer_account_id=txn.transfer_account_id,
            transfer_credit_card_id=txn.transfer_credit_card_id,
        )


def primary_ref(txn: TransactionImage) -> Optional[LedgerRef]:
    if txn.account_id is not None:
        return LedgerRef(LedgerKind.account, txn.account_id)
    if txn.credit_card_id is not None:
        return LedgerRef(LedgerKind.credit_card, txn.credit_card_id)
    return None


def transfer_ref(txn: TransactionImage) -> Optional[LedgerRef]:
    if txn.transfer_account_id is not None:
        return LedgerRef(LedgerKind.account, txn.transfer_account_id)
    if txn.transfer_credit_card_id is not None:
        return LedgerRef(LedgerKind.credit_card, txn.transfer_credit_card_id)
    return None


def effects_of(txn: TransactionImage) -> list[Effect]:
    amount = to_money(txn.amount)
    source = primary_ref(txn)
    if source is None:
        raise MissingReference("account_id")

    if txn.kind == TransactionKind.expense:
        return [Effect(source, -amount)]
    if txn.kind == TransactionKind.income:
        return [Effect(source, amount)]

    target = transfer_ref(txn)
    if target is None:
        raise MissingReference("transfer_account_id")
    return [Effect(source, -amount), Effect(target, amount)]


def reversal_of(effects: Iterable[Effect]) -> list[Effect]:
    return [Effect(effect.target, -effect.delta) for effect in effects]


def net_effects(old: TransactionImage, new: TransactionImage) -> list[Effect]:
    """Combined change of replacing ``old`` by ``new``, one entry per ledger."""
    totals: dict[LedgerRef, Decimal] = {}
    for effect in reversal_of(effects_of(old)) + effects_of(new):
        current = totals.get(effect.target, Decimal("0.00"))
        totals[effect.target] = current + effect.delta
    return [
        Effect(target, delta)
        for target, delta in sorted(totals.items())
        if delta != 0
    ]
