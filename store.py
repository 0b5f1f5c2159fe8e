from __future__ import annotations

from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session, joinedload

from effects import LedgerRef
from exceptions import StoreFailure
from models import Account, Category, CreditCard, LedgerKind, Transaction, to_money

Ledger = Union[Account, CreditCard]


class LedgerStore:
    """Owner-scoped reads and writes used by the ledger services.

    Nothing here commits: callers group these statements into one unit.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def get_account(self, account_id: int, user_id: int) -> Optional[Account]:
        return self.session.scalar(
            select(Account).where(Account.id == account_id, Account.user_id == user_id)
        )

    def get_credit_card(self, card_id: int, user_id: int) -> Optional[CreditCard]:
        return self.session.scalar(
            select(CreditCard).where(
                CreditCard.id == card_id, CreditCard.user_id == user_id
            )
        )

    def get_category(self, category_id: int, user_id: int) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.id == category_id, Category.user_id == user_id
            )
        )

    def get_ledger(self, ref: LedgerRef, user_id: int) -> Optional[Ledger]:
        if ref.kind == LedgerKind.account:
            return self.get_account(ref.id, user_id)
        return self.get_credit_card(ref.id, user_id)

    def get_transaction(
        self, transaction_id: int, user_id: int, *, for_update: bool = False
    ) -> Optional[Transaction]:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.account),
                joinedload(Transaction.credit_card),
                joinedload(Transaction.category),
                joinedload(Transaction.transfer_account),
                joinedload(Transaction.transfer_credit_card),
            )
            .where(Transaction.id == transaction_id, Transaction.user_id == user_id)
        )
        if for_update:
            stmt = stmt.with_for_update(of=Transaction)
        return self.session.scalar(stmt)

    def adjust_balance(self, ref: LedgerRef, user_id: int, delta: Decimal) -> None:
        """Add ``delta`` to a ledger in a single UPDATE statement.

        Credit cards hold debt, so a positive effect lowers ``current_value``.
        """
        delta = to_money(delta)
        if ref.kind == LedgerKind.account:
            model = Account
            new_value = Account.current_value + delta
        else:
            model = CreditCard
            new_value = CreditCard.current_value - delta

        result = self.session.execute(
            update(model)
            .where(model.id == ref.id, model.user_id == user_id)
            .values(current_value=new_value)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StoreFailure(f"Balance update matched no row for {ref.label}")
        key = self.session.identity_key(model, ref.id)
        cached = self.session.identity_map.get(key)
        if cached is not None:
            self.session.expire(cached, ["current_value"])

    def insert_transaction(self, txn: Transaction) -> Transaction:
        self.session.add(txn)
        self.session.flush()
        return txn

    def save_transaction(self, txn: Transaction) -> Transaction:
        self.session.flush()
        return txn

    def delete_transaction(self, txn: Transaction) -> None:
        self.session.delete(txn)
        self.session.flush()

    def count_ledger_references(self, ref: LedgerRef) -> int:
        if ref.kind == LedgerKind.account:
            condition = or_(
                Transaction.account_id == ref.id,
                Transaction.transfer_account_id == ref.id,
            )
        else:
            condition = or_(
                Transaction.credit_card_id == ref.id,
                Transaction.transfer_credit_card_id == ref.id,
            )
        return int(
            self.session.execute(
                select(func.count(Transaction.id)).where(condition)
            ).scalar_one()
            or 0
        )

    def count_category_references(self, category_id: int) -> int:
        return int(
            self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id == category_id
                )
            ).scalar_one()
            or 0
        )
