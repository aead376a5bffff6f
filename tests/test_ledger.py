from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from errors import CategoryNotFound, InvalidAmount, TransactionNotFound, TypeMismatch
from models import AuditAction, AuditEntry, Transaction, TransactionType, User
from schemas import CategoryIn, TransactionIn
from services import AuditRecorder, CategoryService, TransactionService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def setup_user(session):
    user = User(username="alice", full_name="Alice")
    session.add(user)
    session.commit()
    categories = CategoryService(session, user.id)
    salary = categories.create(CategoryIn(name="Salary", type=TransactionType.income))
    rent = categories.create(CategoryIn(name="Rent", type=TransactionType.expense))
    food = categories.create(CategoryIn(name="Food", type=TransactionType.expense))
    return user, salary, rent, food


def expense(category_id: int, amount: str, description: str = "Expense") -> TransactionIn:
    return TransactionIn(
        category_id=category_id,
        type=TransactionType.expense,
        amount=Decimal(amount),
        occurred_at=datetime(2025, 1, 10, 9, 30),
        description=description,
    )


def audit_count(session) -> int:
    return session.execute(select(func.count(AuditEntry.id))).scalar_one()


def txn_count(session) -> int:
    return session.execute(select(func.count(Transaction.id))).scalar_one()


def test_create_records_one_created_entry() -> None:
    session = make_session()
    user, _, rent, _ = setup_user(session)
    ledger = TransactionService(session, user.id)

    txn = ledger.create(expense(rent.id, "1500.00", "Monthly rent"))

    assert txn.amount_cents == 150_000
    assert txn.date.isoformat() == "2025-01-10"
    history = AuditRecorder(session, user.id).history(txn.id)
    assert len(history) == 1
    entry = history[0]
    assert entry.action == AuditAction.created
    assert entry.old_amount_cents is None
    assert entry.old_category_id is None
    assert entry.new_amount_cents == 150_000
    assert entry.new_category_id == rent.id
    assert entry.changed_by == "system"


@pytest.mark.parametrize("amount", ["0", "-5.00", "0.00"])
def test_non_positive_amount_is_rejected_without_audit(amount: str) -> None:
    session = make_session()
    user, _, rent, _ = setup_user(session)

    with pytest.raises(InvalidAmount):
        TransactionService(session, user.id).create(expense(rent.id, amount))

    assert txn_count(session) == 0
    assert audit_count(session) == 0


def test_type_mismatch_leaves_ledger_and_audit_unchanged() -> None:
    session = make_session()
    user, _, rent, _ = setup_user(session)

    with pytest.raises(TypeMismatch):
        TransactionService(session, user.id).create(
            TransactionIn(
                category_id=rent.id,
                type=TransactionType.income,
                amount=Decimal("100.00"),
                occurred_at=datetime(2025, 1, 1),
            )
        )

    assert txn_count(session) == 0
    assert audit_count(session) == 0


def test_unknown_category_is_rejected() -> None:
    session = make_session()
    user, _, _, _ = setup_user(session)

    with pytest.raises(CategoryNotFound):
        TransactionService(session, user.id).create(expense(999, "10.00"))
    assert audit_count(session) == 0


def test_update_records_old_and_new_values() -> None:
    session = make_session()
    user, _, rent, food = setup_user(session)
    ledger = TransactionService(session, user.id)
    txn = ledger.create(expense(rent.id, "80.00"))

    ledger.update(txn.id, amount=Decimal("95.50"), actor="alice")
    ledger.update(txn.id, category_id=food.id)

    history = AuditRecorder(session, user.id).history(txn.id)
    assert [e.action for e in history] == [
        AuditAction.created,
        AuditAction.updated,
        AuditAction.updated,
    ]
    amount_change = history[1]
    assert (amount_change.old_amount_cents, amount_change.new_amount_cents) == (
        8_000,
        9_550,
    )
    assert amount_change.old_category_id == amount_change.new_category_id == rent.id
    assert amount_change.changed_by == "alice"

    category_change = history[2]
    assert category_change.old_amount_cents == category_change.new_amount_cents == 9_550
    assert (category_change.old_category_id, category_change.new_category_id) == (
        rent.id,
        food.id,
    )
    assert category_change.changed_by == "system"
    assert ledger.get(txn.id).category_id == food.id


def test_failed_update_changes_nothing() -> None:
    session = make_session()
    user, salary, rent, _ = setup_user(session)
    ledger = TransactionService(session, user.id)
    txn = ledger.create(expense(rent.id, "80.00"))

    with pytest.raises(InvalidAmount):
        ledger.update(txn.id, amount=Decimal("-1"))
    with pytest.raises(TypeMismatch):
        ledger.update(txn.id, category_id=salary.id)
    with pytest.raises(TransactionNotFound):
        ledger.update(txn.id + 100, amount=Decimal("1.00"))

    stored = ledger.get(txn.id)
    assert stored.amount_cents == 8_000
    assert stored.category_id == rent.id
    assert audit_count(session) == 1


@pytest.mark.parametrize("amount", ["1.005", "abc", "NaN"])
def test_update_rejects_malformed_amount(amount: str) -> None:
    session = make_session()
    user, _, rent, _ = setup_user(session)
    ledger = TransactionService(session, user.id)
    txn = ledger.create(expense(rent.id, "10.00"))

    with pytest.raises(InvalidAmount):
        ledger.update(txn.id, amount=amount)

    assert ledger.get(txn.id).amount_cents == 1_000
    assert audit_count(session) == 1


def test_update_rolls_back_when_audit_write_fails(monkeypatch) -> None:
    session = make_session()
    user, _, rent, food = setup_user(session)
    ledger = TransactionService(session, user.id)
    txn = ledger.create(expense(rent.id, "10.00"))

    def broken_append(*args, **kwargs):
        raise RuntimeError("audit log unavailable")

    monkeypatch.setattr(AuditRecorder, "_append", broken_append)

    with pytest.raises(RuntimeError):
        ledger.update(txn.id, amount=Decimal("20.00"), category_id=food.id)

    stored = ledger.get(txn.id)
    assert stored.amount_cents == 1_000
    assert stored.category_id == rent.id
    assert audit_count(session) == 1


def test_delete_rolls_back_when_audit_write_fails(monkeypatch) -> None:
    session = make_session()
    user, _, rent, _ = setup_user(session)
    ledger = TransactionService(session, user.id)
    txn = ledger.create(expense(rent.id, "10.00"))

    def broken_append(*args, **kwargs):
        raise RuntimeError("audit log unavailable")

    monkeypatch.setattr(AuditRecorder, "_append", broken_append)

    with pytest.raises(RuntimeError):
        ledger.delete(txn.id)

    assert ledger.get(txn.id).amount_cents == 1_000
    assert txn_count(session) == 1
    assert audit_count(session) == 1


def test_delete_keeps_audit_entry_after_row_is_gone() -> None:
    session = make_session()
    user, _, rent, _ = setup_user(session)
    ledger = TransactionService(session, user.id)
    txn = ledger.create(expense(rent.id, "200.00"))
    txn_id = txn.id

    ledger.delete(txn_id, actor="cleanup-job")

    with pytest.raises(TransactionNotFound):
        ledger.get(txn_id)
    with pytest.raises(TransactionNotFound):
        ledger.delete(txn_id)

    entry = AuditRecorder(session, user.id).history(txn_id)[-1]
    assert entry.action == AuditAction.deleted
    assert entry.old_amount_cents == 20_000
    assert entry.old_category_id == rent.id
    assert entry.new_amount_cents is None
    assert entry.new_category_id is None
    assert entry.changed_by == "cleanup-job"


def test_audit_count_matches_mutation_count() -> None:
    session = make_session()
    user, _, rent, food = setup_user(session)
    ledger = TransactionService(session, user.id)

    first = ledger.create(expense(rent.id, "10.00"))
    second = ledger.create(expense(food.id, "20.00"))
    ledger.update(first.id, amount="12.00")
    ledger.update(first.id, amount="13.00", category_id=food.id)
    ledger.update(second.id, amount="21.00")
    ledger.delete(first.id)

    recorder = AuditRecorder(session, user.id)
    assert len(recorder.history(first.id)) == 4
    assert len(recorder.history(second.id)) == 2
    assert audit_count(session) == 6


def test_ids_are_not_reused_after_delete() -> None:
    session = make_session()
    user, _, rent, _ = setup_user(session)
    ledger = TransactionService(session, user.id)
    old = ledger.create(expense(rent.id, "10.00"))
    old_id = old.id
    ledger.delete(old_id)

    new = ledger.create(expense(rent.id, "11.00"))

    assert new.id != old_id
    assert len(AuditRecorder(session, user.id).history(new.id)) == 1


def test_other_users_transactions_are_not_visible() -> None:
    session = make_session()
    user, _, rent, _ = setup_user(session)
    txn = TransactionService(session, user.id).create(expense(rent.id, "10.00"))
    mallory = User(username="mallory")
    session.add(mallory)
    session.commit()

    with pytest.raises(TransactionNotFound):
        TransactionService(session, mallory.id).delete(txn.id)
    with pytest.raises(CategoryNotFound):
        TransactionService(session, mallory.id).create(expense(rent.id, "5.00"))
    assert audit_count(session) == 1
