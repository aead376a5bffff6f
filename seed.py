from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import TransactionType, User
from schemas import CategoryIn, TransactionIn
from services import CategoryService, TransactionService

logger = logging.getLogger(__name__)

SEED_ACTOR = "seed"

INCOME = TransactionType.income
EXPENSE = TransactionType.expense

# username -> (full_name, is_active)
SAMPLE_USERS: dict[str, tuple[str, bool]] = {
    "yuvii": ("Yuvii Jadhav", True),
    "sumit": ("Sumit", True),
    "harshit": ("Harshit", True),
    "kartik": ("Kartik", True),
    "prem": ("Prem", False),
}

# username -> [(name, description, type, parent name)], parents listed first
SAMPLE_CATEGORIES: dict[str, list[tuple[str, str, TransactionType, Optional[str]]]] = {
    "yuvii": [
        ("Salary", "Monthly salary", INCOME, None),
        ("Freelance", "Freelance work income", INCOME, None),
        ("Investments", "Stock and bond returns", INCOME, None),
        ("Dividends", "Investment dividends", INCOME, "Investments"),
        ("Bonus", "Annual bonus", INCOME, "Salary"),
        ("Housing", "Rent/mortgage payments", EXPENSE, None),
        ("Utilities", "Electricity, water, etc.", EXPENSE, None),
        ("Groceries", "Food and household items", EXPENSE, None),
        ("Transportation", "Car and public transport", EXPENSE, None),
        ("Entertainment", "Movies, events, etc.", EXPENSE, None),
        ("Dining Out", "Restaurants and cafes", EXPENSE, None),
        ("Healthcare", "Medical expenses", EXPENSE, None),
        ("Education", "Courses and books", EXPENSE, None),
        ("Rent", "Monthly apartment rent", EXPENSE, "Housing"),
        ("Electricity", "Monthly electricity bill", EXPENSE, "Utilities"),
    ],
    "sumit": [
        ("Salary", "Primary job salary", INCOME, None),
        ("Side Hustle", "Side project income", INCOME, None),
        ("Rental", "Property rental income", INCOME, None),
        ("Housing", "Housing costs", EXPENSE, None),
        ("Food", "All food expenses", EXPENSE, None),
        ("Transport", "Transportation costs", EXPENSE, None),
        ("Subscriptions", "Streaming and other subscriptions", EXPENSE, None),
    ],
    "harshit": [
        ("Paycheck", "Bi-weekly paycheck", INCOME, None),
        ("Consulting", "Consulting fees", INCOME, None),
        ("Mortgage", "House mortgage", EXPENSE, None),
        ("Car", "Car payments and maintenance", EXPENSE, None),
        ("Insurance", "Various insurance payments", EXPENSE, None),
    ],
    "kartik": [
        ("Salary", "Monthly paycheck", INCOME, None),
        ("Investments", "Stock market returns", INCOME, None),
        ("Rent", "Apartment rental income", INCOME, None),
        ("Housing", "Mortgage and utilities", EXPENSE, None),
        ("Transportation", "Car and public transit", EXPENSE, None),
        ("Education", "Professional development", EXPENSE, None),
        ("Travel", "Vacation expenses", EXPENSE, None),
    ],
    "prem": [
        ("Salary", "Monthly paycheck", INCOME, None),
        ("Freelance", "Contract work", INCOME, None),
        ("Rent", "Apartment rent", EXPENSE, None),
        ("Utilities", "Electricity and internet", EXPENSE, None),
        ("Food", "Groceries and dining", EXPENSE, None),
        ("Entertainment", "Movies and events", EXPENSE, None),
    ],
}

# username -> [(category name, type, amount, ISO date, description)]
SAMPLE_TRANSACTIONS: dict[str, list[tuple[str, TransactionType, str, str, str]]] = {
    "yuvii": [
        ("Salary", INCOME, "5000.00", "2025-01-05", "Monthly salary"),
        ("Freelance", INCOME, "1200.50", "2025-01-10", "Freelance project A"),
        ("Dividends", INCOME, "350.75", "2025-01-15", "Quarterly dividends"),
        ("Salary", INCOME, "5000.00", "2025-02-05", "Monthly salary"),
        ("Freelance", INCOME, "800.25", "2025-02-12", "Freelance project B"),
        ("Bonus", INCOME, "2000.00", "2025-02-20", "Annual bonus"),
        ("Salary", INCOME, "5000.00", "2025-03-05", "Monthly salary"),
        ("Freelance", INCOME, "1500.00", "2025-03-15", "Freelance project C"),
        ("Housing", EXPENSE, "1500.00", "2025-01-01", "Monthly rent"),
        ("Utilities", EXPENSE, "120.50", "2025-01-03", "Electricity bill"),
        ("Groceries", EXPENSE, "450.75", "2025-01-05", "Weekly groceries"),
        ("Transportation", EXPENSE, "85.25", "2025-01-08", "Gas for car"),
        ("Entertainment", EXPENSE, "65.00", "2025-01-12", "Movie tickets"),
        ("Dining Out", EXPENSE, "120.50", "2025-01-15", "Dinner out"),
    ],
    "sumit": [
        ("Salary", INCOME, "4500.00", "2025-01-05", "Monthly salary"),
        ("Side Hustle", INCOME, "800.00", "2025-01-12", "Side project payment"),
        ("Rental", INCOME, "1200.00", "2025-01-20", "Rental income"),
        ("Housing", EXPENSE, "1200.00", "2025-01-01", "Apartment rent"),
        ("Food", EXPENSE, "350.50", "2025-01-03", "Grocery shopping"),
        ("Transport", EXPENSE, "120.75", "2025-01-08", "Public transport"),
        ("Subscriptions", EXPENSE, "25.99", "2025-01-10", "Streaming service"),
    ],
    "harshit": [
        ("Paycheck", INCOME, "3800.00", "2025-01-07", "Bi-weekly paycheck"),
        ("Paycheck", INCOME, "3800.00", "2025-01-21", "Bi-weekly paycheck"),
        ("Consulting", INCOME, "1500.00", "2025-01-15", "Consulting project"),
        ("Mortgage", EXPENSE, "2200.00", "2025-01-01", "Mortgage payment"),
        ("Car", EXPENSE, "450.00", "2025-01-05", "Car payment"),
        ("Insurance", EXPENSE, "250.00", "2025-01-10", "Car insurance"),
    ],
    "kartik": [
        ("Salary", INCOME, "5200.00", "2025-01-05", "Monthly salary"),
        ("Investments", INCOME, "750.50", "2025-01-15", "Investment dividends"),
        ("Rent", INCOME, "1200.00", "2025-01-20", "Rental income"),
        ("Housing", EXPENSE, "1800.00", "2025-01-01", "Mortgage payment"),
        ("Transportation", EXPENSE, "350.00", "2025-01-03", "Car payment"),
        ("Education", EXPENSE, "450.00", "2025-01-10", "Online course"),
    ],
    "prem": [
        ("Salary", INCOME, "4800.00", "2025-01-07", "Monthly salary"),
        ("Freelance", INCOME, "1200.00", "2025-01-15", "Freelance project"),
        ("Rent", EXPENSE, "1400.00", "2025-01-01", "Apartment rent"),
        ("Utilities", EXPENSE, "150.00", "2025-01-03", "Electricity bill"),
        ("Food", EXPENSE, "450.00", "2025-01-05", "Grocery shopping"),
        ("Entertainment", EXPENSE, "120.00", "2025-01-12", "Concert tickets"),
    ],
}


@dataclass(frozen=True)
class SeedResult:
    users: int
    categories: int
    transactions: int
    skipped_users: list[str]


def load_sample_data(session: Session) -> SeedResult:
    """Insert the sample users, categories and transactions.

    Users that already exist are skipped whole, so the load can be re-run.
    Rows go through the services, so every sample transaction is audited.
    """
    users = categories = transactions = 0
    skipped: list[str] = []

    for username, (full_name, is_active) in SAMPLE_USERS.items():
        if session.scalar(select(User).where(User.username == username)):
            skipped.append(username)
            continue
        user = User(username=username, full_name=full_name, is_active=is_active)
        session.add(user)
        session.commit()
        users += 1

        category_service = CategoryService(session, user.id)
        ids: dict[tuple[str, TransactionType], int] = {}
        for name, description, txn_type, parent_name in SAMPLE_CATEGORIES[username]:
            parent_id = ids[(parent_name, txn_type)] if parent_name else None
            category = category_service.create(
                CategoryIn(
                    name=name,
                    type=txn_type,
                    description=description,
                    parent_id=parent_id,
                )
            )
            ids[(name, txn_type)] = category.id
            categories += 1

        txn_service = TransactionService(session, user.id)
        for category_name, txn_type, amount, day, description in SAMPLE_TRANSACTIONS[
            username
        ]:
            txn_service.create(
                TransactionIn(
                    category_id=ids[(category_name, txn_type)],
                    type=txn_type,
                    amount=Decimal(amount),
                    occurred_at=datetime.fromisoformat(day),
                    description=description,
                ),
                actor=SEED_ACTOR,
            )
            transactions += 1

    logger.info(
        f"seed_loaded: users={users} categories={categories} "
        f"transactions={transactions} skipped={','.join(skipped) or '-'}"
    )
    return SeedResult(
        users=users,
        categories=categories,
        transactions=transactions,
        skipped_users=skipped,
    )


if __name__ == "__main__":
    from database import Base, engine, session_scope

    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(engine)
    with session_scope() as session:
        load_sample_data(session)
