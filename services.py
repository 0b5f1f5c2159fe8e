from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from database import atomic
from effects import (
    Effect,
    LedgerRef,
    TransactionDraft,
    effects_of,
    net_effects,
    reversal_of,
)
from exceptions import DuplicateName, EntityInUse, NotFound
from models import (
    CENT,
    Account,
    Category,
    CategoryKind,
    CreditCard,
    LedgerKind,
    Transaction,
    TransactionKind,
    to_money,
)
from periods import Period, month_period
from schemas import (
    AccountIn,
    AccountUpdate,
    CategoryIn,
    CategoryUpdate,
    CreditCardIn,
    CreditCardUpdate,
    TransactionIn,
    TransactionPatch,
)
from store import LedgerStore
from validation import ReferenceValidator

logger = logging.getLogger(__name__)

DRAFT_FIELDS = {f.name for f in fields(TransactionDraft)}


@dataclass
class TransactionFilters:
    kind: Optional[TransactionKind] = None
    account_id: Optional[int] = None
    credit_card_id: Optional[int] = None
    category_id: Optional[int] = None
    settled: Optional[bool] = None
    period: Optional[Period] = None


class TransactionService:
    """Creates, changes and removes transactions together with their
    balance effects.

    Each mutating call is one atomic unit: validation, the balance
    adjustments and the row write either all commit or none do.
    """

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.store = LedgerStore(session)
        self.validator = ReferenceValidator(self.store)

    def _apply(self, effects: Iterable[Effect]) -> None:
        for effect in effects:
            self.store.adjust_balance(effect.target, self.user_id, effect.delta)

    def create(self, data: TransactionIn) -> Transaction:
        draft = TransactionDraft(
            kind=data.kind,
            amount=to_money(data.amount),
            account_id=data.account_id,
            credit_card_id=data.credit_card_id,
            category_id=data.category_id,
            transfer_account_id=data.transfer_account_id,
            transfer_credit_card_id=data.transfer_credit_card_id,
        )
        with atomic(self.session, "transaction_create"):
            self.validator.validate(self.user_id, draft)
            txn = Transaction(
                user_id=self.user_id,
                kind=draft.kind,
                amount=draft.amount,
                occurred_at=data.occurred_at or datetime.utcnow(),
                settled=data.settled,
                note=data.note,
                account_id=draft.account_id,
                credit_card_id=draft.credit_card_id,
                category_id=draft.category_id,
                transfer_account_id=draft.transfer_account_id,
                transfer_credit_card_id=draft.transfer_credit_card_id,
            )
            self.store.insert_transaction(txn)
            self._apply(effects_of(txn))

        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} id={txn.id} "
            f"kind={txn.kind.value} amount={txn.amount}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.store.get_transaction(transaction_id, self.user_id)
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def update(self, transaction_id: int, patch: TransactionPatch) -> Transaction:
        changes = patch.changes()
        with atomic(self.session, "transaction_update"):
            txn = self.store.get_transaction(
                transaction_id, self.user_id, for_update=True
            )
            if not txn:
                raise NotFound("Transaction not found")
            if not changes:
                return txn

            old = TransactionDraft.from_image(txn)
            new = replace(
                old, **{k: v for k, v in changes.items() if k in DRAFT_FIELDS}
            )
            new.amount = to_money(new.amount)
            self.validator.validate(self.user_id, new)

            self._apply(net_effects(old, new))

            for name, value in changes.items():
                setattr(txn, name, value)
            txn.amount = new.amount
            self.store.save_transaction(txn)

        self.session.refresh(txn)
        logger.info(
            f"transaction_updated: user_id={self.user_id} id={txn.id} "
            f"fields={','.join(sorted(changes))}"
        )
        return txn

    def delete(self, transaction_id: int) -> bool:
        with atomic(self.session, "transaction_delete"):
            txn = self.store.get_transaction(
                transaction_id, self.user_id, for_update=True
            )
            if not txn:
                return False
            self._apply(reversal_of(effects_of(txn)))
            self.store.delete_transaction(txn)

        logger.info(
            f"transaction_deleted: user_id={self.user_id} id={transaction_id}"
        )
        return True

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.account),
                joinedload(Transaction.credit_card),
                joinedload(Transaction.category),
                joinedload(Transaction.transfer_account),
                joinedload(Transaction.transfer_credit_card),
            )
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .offset(max(offset, 0))
            .limit(min(max(limit, 1), 100))
        )
        if filters.kind:
            stmt = stmt.where(Transaction.kind == filters.kind)
        if filters.account_id:
            stmt = stmt.where(
                or_(
                    Transaction.account_id == filters.account_id,
                    Transaction.transfer_account_id == filters.account_id,
                )
            )
        if filters.credit_card_id:
            stmt = stmt.where(
                or_(
                    Transaction.credit_card_id == filters.credit_card_id,
                    Transaction.transfer_credit_card_id == filters.credit_card_id,
                )
            )
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.settled is not None:
            stmt = stmt.where(Transaction.settled.is_(filters.settled))
        if filters.period:
            start, end = filters.period.bounds()
            stmt = stmt.where(
                Transaction.occurred_at >= start, Transaction.occurred_at < end
            )
        return self.session.scalars(stmt).unique().all()


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.store = LedgerStore(session)

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            current_value=to_money(data.current_value),
        )
        with atomic(self.session, "account_create"):
            self.session.add(account)
        self.session.refresh(account)
        logger.info(f"account_created: user_id={self.user_id} id={account.id}")
        return account

    def get(self, account_id: int) -> Account:
        account = self.store.get_account(account_id, self.user_id)
        if not account:
            raise NotFound("Account not found")
        return account

    def list(self, limit: int = 50, offset: int = 0) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.desc(), Account.id.desc())
            .offset(max(offset, 0))
            .limit(min(max(limit, 1), 100))
        )
        return self.session.scalars(stmt).all()

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        with atomic(self.session, "account_update"):
            account = self.get(account_id)
            if data.name is not None:
                account.name = data.name.strip()
        return account

    def delete(self, account_id: int) -> bool:
        with atomic(self.session, "account_delete"):
            account = self.store.get_account(account_id, self.user_id)
            if not account:
                return False
            ref = LedgerRef(LedgerKind.account, account.id)
            if self.store.count_ledger_references(ref):
                raise EntityInUse("Cannot delete account with existing transactions")
            self.session.delete(account)
        logger.info(f"account_deleted: user_id={self.user_id} id={account_id}")
        return True


class CreditCardService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.store = LedgerStore(session)

    def create(self, data: CreditCardIn) -> CreditCard:
        card = CreditCard(
            user_id=self.user_id,
            name=data.name.strip(),
            current_value=to_money(data.current_value),
            limit_value=to_money(data.limit_value),
            due_date=data.due_date,
            closing_date=data.closing_date,
            paid=data.paid,
        )
        with atomic(self.session, "credit_card_create"):
            self.session.add(card)
        self.session.refresh(card)
        logger.info(f"credit_card_created: user_id={self.user_id} id={card.id}")
        return card

    def get(self, card_id: int) -> CreditCard:
        card = self.store.get_credit_card(card_id, self.user_id)
        if not card:
            raise NotFound("Credit card not found")
        return card

    def list(self, limit: int = 50, offset: int = 0) -> list[CreditCard]:
        stmt = (
            select(CreditCard)
            .where(CreditCard.user_id == self.user_id)
            .order_by(CreditCard.due_date.asc(), CreditCard.id.asc())
            .offset(max(offset, 0))
            .limit(min(max(limit, 1), 100))
        )
        return self.session.scalars(stmt).all()

    def update(self, card_id: int, data: CreditCardUpdate) -> CreditCard:
        with atomic(self.session, "credit_card_update"):
            card = self.get(card_id)
            if data.name is not None:
                card.name = data.name.strip()
            if data.limit_value is not None:
                card.limit_value = to_money(data.limit_value)
            if data.due_date is not None:
                card.due_date = data.due_date
            if data.closing_date is not None:
                card.closing_date = data.closing_date
            if data.paid is not None:
                card.paid = data.paid
        return card

    def delete(self, card_id: int) -> bool:
        with atomic(self.session, "credit_card_delete"):
            card = self.store.get_credit_card(card_id, self.user_id)
            if not card:
                return False
            ref = LedgerRef(LedgerKind.credit_card, card.id)
            if self.store.count_ledger_references(ref):
                raise EntityInUse(
                    "Cannot delete credit card with existing transactions"
                )
            self.session.delete(card)
        logger.info(f"credit_card_deleted: user_id={self.user_id} id={card_id}")
        return True

    def due_soon(
        self, days_ahead: int = 7, *, today: Optional[date] = None
    ) -> list[CreditCard]:
        today = today or date.today()
        stmt = (
            select(CreditCard)
            .where(
                CreditCard.user_id == self.user_id,
                CreditCard.paid.is_(False),
                CreditCard.due_date.between(today, today + timedelta(days=days_ahead)),
            )
            .order_by(CreditCard.due_date.asc(), CreditCard.id.asc())
        )
        return self.session.scalars(stmt).all()

    def overdue(self, *, today: Optional[date] = None) -> list[CreditCard]:
        today = today or date.today()
        stmt = (
            select(CreditCard)
            .where(
                CreditCard.user_id == self.user_id,
                CreditCard.paid.is_(False),
                CreditCard.due_date < today,
            )
            .order_by(CreditCard.due_date.asc(), CreditCard.id.asc())
        )
        return self.session.scalars(stmt).all()


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.store = LedgerStore(session)

    def _name_taken(self, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(Category.id).where(
            Category.user_id == self.user_id,
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        return self.session.scalar(stmt) is not None

    def _flush_name(self) -> None:
        # uq_category_user_name is the only unique constraint on categories
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateName("Category with this name already exists") from exc

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        with atomic(self.session, "category_create"):
            if self._name_taken(name):
                raise DuplicateName("Category with this name already exists")
            category = Category(
                user_id=self.user_id,
                name=name,
                kind=data.kind,
                display_at_home=data.display_at_home,
            )
            self.session.add(category)
            self._flush_name()
        self.session.refresh(category)
        logger.info(f"category_created: user_id={self.user_id} id={category.id}")
        return category

    def get(self, category_id: int) -> Category:
        category = self.store.get_category(category_id, self.user_id)
        if not category:
            raise NotFound("Category not found")
        return category

    def list(self, kind: Optional[CategoryKind] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.kind, Category.name)
        )
        if kind:
            stmt = stmt.where(Category.kind == kind)
        return self.session.scalars(stmt).all()

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        with atomic(self.session, "category_update"):
            category = self.get(category_id)
            if data.name is not None:
                name = data.name.strip()
                if self._name_taken(name, exclude_id=category.id):
                    raise DuplicateName("Category with this name already exists")
                category.name = name
            if data.kind is not None and data.kind != category.kind:
                if self.store.count_category_references(category.id):
                    raise EntityInUse(
                        "Cannot change the kind of a category with transactions"
                    )
                category.kind = data.kind
            if data.display_at_home is not None:
                category.display_at_home = data.display_at_home
            self._flush_name()
        return category

    def delete(self, category_id: int) -> bool:
        with atomic(self.session, "category_delete"):
            category = self.store.get_category(category_id, self.user_id)
            if not category:
                return False
            if self.store.count_category_references(category.id):
                raise EntityInUse("Cannot delete category with existing transactions")
            self.session.delete(category)
        logger.info(f"category_deleted: user_id={self.user_id} id={category_id}")
        return True

    def search(
        self, term: str, kind: Optional[CategoryKind] = None, limit: int = 20
    ) -> list[Category]:
        clean = term.strip()
        if not clean:
            raise ValueError("Search term is required")
        stmt = (
            select(Category)
            .where(
                Category.user_id == self.user_id,
                Category.name.icontains(clean, autoescape=True),
            )
            .order_by(Category.name.asc())
            .limit(min(max(limit, 1), 100))
        )
        if kind:
            stmt = stmt.where(Category.kind == kind)
        return self.session.scalars(stmt).all()

    def with_counts(
        self, kind: Optional[CategoryKind] = None
    ) -> list[tuple[Category, int]]:
        stmt = (
            select(Category, func.count(Transaction.id))
            .outerjoin(
                Transaction,
                (Transaction.category_id == Category.id)
                & (Transaction.user_id == self.user_id),
            )
            .where(Category.user_id == self.user_id)
            .group_by(Category.id)
            .order_by(Category.name.asc())
        )
        if kind:
            stmt = stmt.where(Category.kind == kind)
        return [(row[0], int(row[1] or 0)) for row in self.session.execute(stmt)]

    def overview(self) -> dict[str, int]:
        row = self.session.execute(
            select(
                func.count(case((Category.kind == CategoryKind.expense, 1))).label(
                    "expense"
                ),
                func.count(case((Category.kind == CategoryKind.income, 1))).label(
                    "income"
                ),
                func.count(Category.id).label("total"),
                func.count(case((Category.display_at_home.is_(True), 1))).label(
                    "home"
                ),
            ).where(Category.user_id == self.user_id)
        ).one()
        return {
            "expense_categories": int(row.expense or 0),
            "income_categories": int(row.income or 0),
            "total_categories": int(row.total or 0),
            "home_display_categories": int(row.home or 0),
        }


class SummaryService:
    """Read-only totals derived from stored balances and transactions."""

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def total_balance(self) -> Decimal:
        total = self.session.scalar(
            select(func.sum(Account.current_value)).where(
                Account.user_id == self.user_id
            )
        )
        return to_money(total)

    def total_debt(self) -> Decimal:
        total = self.session.scalar(
            select(func.sum(CreditCard.current_value)).where(
                CreditCard.user_id == self.user_id
            )
        )
        return to_money(total)

    def total_limit(self) -> Decimal:
        total = self.session.scalar(
            select(func.sum(CreditCard.limit_value)).where(
                CreditCard.user_id == self.user_id
            )
        )
        return to_money(total)

    def total_available_credit(self) -> Decimal:
        return self.total_limit() - self.total_debt()

    def utilization(self) -> dict[str, Decimal]:
        total_limit = self.total_limit()
        total_debt = self.total_debt()
        if total_limit == 0:
            pct = Decimal("0.00")
        else:
            pct = (total_debt / total_limit * 100).quantize(CENT)
        return {
            "total_limit": total_limit,
            "total_debt": total_debt,
            "available_credit": total_limit - total_debt,
            "utilization_pct": pct,
        }

    def transaction_summary(self, period: Optional[Period] = None) -> dict[str, object]:
        stmt = (
            select(
                Transaction.kind,
                func.sum(Transaction.amount).label("total"),
                func.count(Transaction.id).label("rows"),
            )
            .where(Transaction.user_id == self.user_id)
            .group_by(Transaction.kind)
        )
        if period:
            start, end = period.bounds()
            stmt = stmt.where(
                Transaction.occurred_at >= start, Transaction.occurred_at < end
            )

        totals = {kind: Decimal("0.00") for kind in TransactionKind}
        count = 0
        for row in self.session.execute(stmt):
            totals[row.kind] = to_money(row.total)
            count += int(row.rows or 0)

        income = totals[TransactionKind.income]
        expenses = totals[TransactionKind.expense]
        return {
            "total_income": income,
            "total_expenses": expenses,
            "total_transfers": totals[TransactionKind.transfer],
            "net_amount": income - expenses,
            "count": count,
        }

    def monthly_summary(self, year: int, month: int) -> dict[str, object]:
        return self.transaction_summary(month_period(year, month))
