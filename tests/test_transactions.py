import random
from datetime import date, datetime
from decimal import Decimal

import pytest

from database import Base, create_ledger_engine, make_sessionmaker
from effects import LedgerRef, effects_of
from exceptions import NotFound, UnexpectedReference
from models import Account, CategoryKind, CreditCard, LedgerKind, TransactionKind
from periods import Period
from schemas import (
    AccountIn,
    CategoryIn,
    CreditCardIn,
    TransactionIn,
    TransactionPatch,
)
from services import (
    AccountService,
    CategoryService,
    CreditCardService,
    TransactionFilters,
    TransactionService,
)
from store import LedgerStore

USER = 1


def make_session():
    engine = create_ledger_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    return make_sessionmaker(engine)()


def balance(session, account_id: int) -> Decimal:
    return session.get(Account, account_id).current_value


def debt(session, card_id: int) -> Decimal:
    return session.get(CreditCard, card_id).current_value


def test_income_create_update_delete_scenario() -> None:
    session = make_session()
    account = AccountService(session, USER).create(
        AccountIn(name="A", current_value=Decimal("100.00"))
    )
    salary = CategoryService(session, USER).create(
        CategoryIn(name="Salary", kind=CategoryKind.income)
    )
    txns = TransactionService(session, USER)

    txn = txns.create(
        TransactionIn(
            kind=TransactionKind.income,
            amount=Decimal("50.00"),
            account_id=account.id,
            category_id=salary.id,
        )
    )
    assert balance(session, account.id) == Decimal("150.00")

    txns.update(txn.id, TransactionPatch(amount=Decimal("30.00")))
    assert balance(session, account.id) == Decimal("130.00")

    assert txns.delete(txn.id) is True
    assert balance(session, account.id) == Decimal("100.00")


def test_transfer_create_delete_scenario() -> None:
    session = make_session()
    accounts = AccountService(session, USER)
    a = accounts.create(AccountIn(name="A", current_value=Decimal("200.00")))
    b = accounts.create(AccountIn(name="B", current_value=Decimal("50.00")))
    txns = TransactionService(session, USER)

    txn = txns.create(
        TransactionIn(
            kind=TransactionKind.transfer,
            amount=Decimal("40.00"),
            account_id=a.id,
            transfer_account_id=b.id,
        )
    )
    assert balance(session, a.id) == Decimal("160.00")
    assert balance(session, b.id) == Decimal("90.00")
    assert txn.account.name == "A"
    assert txn.transfer_account.name == "B"
    assert txn.category is None

    txns.delete(txn.id)
    assert balance(session, a.id) == Decimal("200.00")
    assert balance(session, b.id) == Decimal("50.00")


def test_update_moving_to_another_account() -> None:
    session = make_session()
    accounts = AccountService(session, USER)
    a = accounts.create(AccountIn(name="A", current_value=Decimal("10.00")))
    b = accounts.create(AccountIn(name="B", current_value=Decimal("10.00")))
    salary = CategoryService(session, USER).create(
        CategoryIn(name="Salary", kind=CategoryKind.income)
    )
    txns = TransactionService(session, USER)
    txn = txns.create(
        TransactionIn(
            kind=TransactionKind.income,
            amount=Decimal("25.00"),
            account_id=a.id,
            category_id=salary.id,
        )
    )

    updated = txns.update(
        txn.id, TransactionPatch(account_id=b.id, amount=Decimal("7.50"))
    )

    assert updated.account_id == b.id
    assert updated.account.name == "B"
    assert balance(session, a.id) == Decimal("10.00")
    assert balance(session, b.id) == Decimal("17.50")


def test_update_kind_with_matching_category_swings_balance() -> None:
    session = make_session()
    account = AccountService(session, USER).create(AccountIn(name="Checking"))
    categories = CategoryService(session, USER)
    food = categories.create(CategoryIn(name="Food", kind=CategoryKind.expense))
    refund = categories.create(CategoryIn(name="Refund", kind=CategoryKind.income))
    txns = TransactionService(session, USER)
    txn = txns.create(
        TransactionIn(
            kind=TransactionKind.expense,
            amount=Decimal("20.00"),
            account_id=account.id,
            category_id=food.id,
        )
    )
    assert balance(session, account.id) == Decimal("-20.00")

    txns.update(
        txn.id, TransactionPatch(kind=TransactionKind.income, category_id=refund.id)
    )
    assert balance(session, account.id) == Decimal("20.00")


def test_partial_update_revalidates_merged_state() -> None:
    session = make_session()
    accounts = AccountService(session, USER)
    a = accounts.create(AccountIn(name="A", current_value=Decimal("100.00")))
    b = accounts.create(AccountIn(name="B"))
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", kind=CategoryKind.expense)
    )
    txns = TransactionService(session, USER)
    txn = txns.create(
        TransactionIn(
            kind=TransactionKind.expense,
            amount=Decimal("15.00"),
            account_id=a.id,
            category_id=food.id,
        )
    )

    # the stored category survives the merge and transfers forbid it
    with pytest.raises(UnexpectedReference):
        txns.update(
            txn.id,
            TransactionPatch(kind=TransactionKind.transfer, transfer_account_id=b.id),
        )
    assert balance(session, a.id) == Decimal("85.00")
    assert balance(session, b.id) == Decimal("0.00")

    txns.update(
        txn.id,
        TransactionPatch(
            kind=TransactionKind.transfer,
            transfer_account_id=b.id,
            category_id=None,
        ),
    )
    assert balance(session, a.id) == Decimal("85.00")
    assert balance(session, b.id) == Decimal("15.00")
    assert txns.get(txn.id).category_id is None


def test_update_without_changes_keeps_everything() -> None:
    session = make_session()
    account = AccountService(session, USER).create(AccountIn(name="A"))
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", kind=CategoryKind.expense)
    )
    txns = TransactionService(session, USER)
    txn = txns.create(
        TransactionIn(
            kind=TransactionKind.expense,
            amount=Decimal("5.00"),
            account_id=account.id,
            category_id=food.id,
            note="Coffee",
        )
    )

    same = txns.update(txn.id, TransactionPatch())
    assert same.note == "Coffee"
    assert balance(session, account.id) == Decimal("-5.00")

    txns.update(txn.id, TransactionPatch(note="Espresso", settled=True))
    reloaded = txns.get(txn.id)
    assert reloaded.note == "Espresso"
    assert reloaded.settled is True
    assert balance(session, account.id) == Decimal("-5.00")


def test_update_touches_only_ledgers_whose_balance_moves(monkeypatch) -> None:
    session = make_session()
    accounts = AccountService(session, USER)
    a = accounts.create(AccountIn(name="A", current_value=Decimal("50.00")))
    b = accounts.create(AccountIn(name="B"))
    txns = TransactionService(session, USER)
    txn = txns.create(
        TransactionIn(
            kind=TransactionKind.transfer,
            amount=Decimal("20.00"),
            account_id=a.id,
            transfer_account_id=b.id,
        )
    )

    adjusted = []
    original = LedgerStore.adjust_balance

    def recording(self, ref, user_id, delta):
        adjusted.append((ref, delta))
        return original(self, ref, user_id, delta)

    monkeypatch.setattr(LedgerStore, "adjust_balance", recording)

    txns.update(txn.id, TransactionPatch(note="Rent share"))
    assert adjusted == []

    txns.update(txn.id, TransactionPatch(amount=Decimal("25.00")))
    assert adjusted == [
        (LedgerRef(LedgerKind.account, a.id), Decimal("-5.00")),
        (LedgerRef(LedgerKind.account, b.id), Decimal("5.00")),
    ]
    assert balance(session, a.id) == Decimal("25.00")
    assert balance(session, b.id) == Decimal("25.00")


def test_delete_missing_transaction_is_a_noop() -> None:
    session = make_session()
    account = AccountService(session, USER).create(
        AccountIn(name="A", current_value=Decimal("1.00"))
    )
    assert TransactionService(session, USER).delete(999) is False
    assert balance(session, account.id) == Decimal("1.00")


def test_other_users_transaction_is_not_found() -> None:
    session = make_session()
    account = AccountService(session, USER).create(AccountIn(name="A"))
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", kind=CategoryKind.expense)
    )
    txn = TransactionService(session, USER).create(
        TransactionIn(
            kind=TransactionKind.expense,
            amount=Decimal("3.00"),
            account_id=account.id,
            category_id=food.id,
        )
    )

    intruder = TransactionService(session, 2)
    with pytest.raises(NotFound):
        intruder.get(txn.id)
    with pytest.raises(NotFound):
        intruder.update(txn.id, TransactionPatch(amount=Decimal("1.00")))
    assert intruder.delete(txn.id) is False
    assert balance(session, account.id) == Decimal("-3.00")


def test_credit_card_holds_debt() -> None:
    session = make_session()
    account = AccountService(session, USER).create(
        AccountIn(name="Checking", current_value=Decimal("500.00"))
    )
    card = CreditCardService(session, USER).create(
        CreditCardIn(
            name="Visa",
            limit_value=Decimal("1000.00"),
            due_date=date(2026, 11, 10),
            closing_date=date(2026, 11, 1),
        )
    )
    food = CategoryService(session, USER).create(
        CategoryIn(name="Food", kind=CategoryKind.expense)
    )
    txns = TransactionService(session, USER)

    txns.create(
        TransactionIn(
            kind=TransactionKind.expense,
            amount=Decimal("200.00"),
            credit_card_id=card.id,
            category_id=food.id,
        )
    )
    assert debt(session, card.id) == Decimal("200.00")

    payment = txns.create(
        TransactionIn(
            kind=TransactionKind.transfer,
            amount=Decimal("150.00"),
            account_id=account.id,
            transfer_credit_card_id=card.id,
        )
    )
    assert payment.transfer_credit_card.name == "Visa"
    assert balance(session, account.id) == Decimal("350.00")
    assert debt(session, card.id) == Decimal("50.00")


def test_list_filters_and_ordering() -> None:
    session = make_session()
    accounts = AccountService(session, USER)
    a = accounts.create(AccountIn(name="A"))
    b = accounts.create(AccountIn(name="B"))
    categories = CategoryService(session, USER)
    food = categories.create(CategoryIn(name="Food", kind=CategoryKind.expense))
    pay = categories.create(CategoryIn(name="Pay", kind=CategoryKind.income))
    txns = TransactionService(session, USER)

    lunch = txns.create(
        TransactionIn(
            kind=TransactionKind.expense,
            amount=Decimal("8.00"),
            occurred_at=datetime(2025, 1, 5, 12, 0),
            account_id=a.id,
            category_id=food.id,
            settled=True,
        )
    )
    salary = txns.create(
        TransactionIn(
            kind=TransactionKind.income,
            amount=Decimal("900.00"),
            occurred_at=datetime(2025, 1, 31, 9, 0),
            account_id=a.id,
            category_id=pay.id,
        )
    )
    move = txns.create(
        TransactionIn(
            kind=TransactionKind.transfer,
            amount=Decimal("100.00"),
            occurred_at=datetime(2025, 2, 1, 9, 0),
            account_id=a.id,
            transfer_account_id=b.id,
        )
    )

    assert [t.id for t in txns.list()] == [move.id, salary.id, lunch.id]
    by_b = txns.list(TransactionFilters(account_id=b.id))
    assert [t.id for t in by_b] == [move.id]
    january = Period("custom", date(2025, 1, 1), date(2025, 1, 31))
    assert [t.id for t in txns.list(TransactionFilters(period=january))] == [
        salary.id,
        lunch.id,
    ]
    settled = txns.list(TransactionFilters(settled=True))
    assert [t.id for t in settled] == [lunch.id]
    expenses = txns.list(TransactionFilters(kind=TransactionKind.expense))
    assert [t.id for t in expenses] == [lunch.id]
    assert [t.id for t in txns.list(limit=1, offset=1)] == [salary.id]
    assert TransactionService(session, 2).list() == []


def test_balances_match_surviving_transactions() -> None:
    session = make_session()
    rng = random.Random(20261017)
    accounts = AccountService(session, USER)
    opening = {
        "A": Decimal("1000.00"),
        "B": Decimal("250.00"),
    }
    a = accounts.create(AccountIn(name="A", current_value=opening["A"]))
    b = accounts.create(AccountIn(name="B", current_value=opening["B"]))
    card = CreditCardService(session, USER).create(
        CreditCardIn(
            name="Card",
            limit_value=Decimal("500.00"),
            due_date=date(2026, 1, 10),
            closing_date=date(2026, 1, 1),
        )
    )
    categories = CategoryService(session, USER)
    food = categories.create(CategoryIn(name="Food", kind=CategoryKind.expense))
    pay = categories.create(CategoryIn(name="Pay", kind=CategoryKind.income))
    txns = TransactionService(session, USER)

    sources = [
        {"account_id": a.id},
        {"account_id": b.id},
        {"credit_card_id": card.id},
    ]

    def random_shape() -> dict:
        kind = rng.choice(list(TransactionKind))
        amount = Decimal(rng.randint(1, 50_000)) / 100
        shape = {"kind": kind, "amount": amount, **rng.choice(sources)}
        if kind == TransactionKind.transfer:
            target = rng.choice(
                [
                    {"transfer_account_id": a.id},
                    {"transfer_account_id": b.id},
                    {"transfer_credit_card_id": card.id},
                ]
            )
            source_key = next(iter(shape.keys() - {"kind", "amount"}))
            target_key = next(iter(target))
            if target_key == f"transfer_{source_key}" and target[
                target_key
            ] == shape[source_key]:
                return random_shape()
            shape.update(target)
        else:
            shape["category_id"] = (
                food.id if kind == TransactionKind.expense else pay.id
            )
        return shape

    def blank_refs() -> dict:
        return {
            "account_id": None,
            "credit_card_id": None,
            "category_id": None,
            "transfer_account_id": None,
            "transfer_credit_card_id": None,
        }

    live: list[int] = []
    for _ in range(60):
        op = rng.random()
        if op < 0.5 or not live:
            live.append(txns.create(TransactionIn(**random_shape())).id)
        elif op < 0.8:
            txns.update(
                rng.choice(live), TransactionPatch(**{**blank_refs(), **random_shape()})
            )
        else:
            victim = live.pop(rng.randrange(len(live)))
            assert txns.delete(victim) is True

    expected = {
        (LedgerKind.account, a.id): opening["A"],
        (LedgerKind.account, b.id): opening["B"],
        (LedgerKind.credit_card, card.id): Decimal("0.00"),
    }
    for txn in txns.list(limit=100):
        for effect in effects_of(txn):
            key = (effect.target.kind, effect.target.id)
            if effect.target.kind == LedgerKind.credit_card:
                expected[key] -= effect.delta
            else:
                expected[key] += effect.delta

    assert len(live) == len(txns.list(limit=100))
    assert balance(session, a.id) == expected[(LedgerKind.account, a.id)]
    assert balance(session, b.id) == expected[(LedgerKind.account, b.id)]
    assert debt(session, card.id) == expected[(LedgerKind.credit_card, card.id)]
