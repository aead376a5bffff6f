from datetime import date

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import AuditEntry, TransactionType, User
from periods import Granularity
from seed import SEED_ACTOR, load_sample_data
from services import MetricsService


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def test_sample_data_loads_once_and_is_audited() -> None:
    session = make_session()

    result = load_sample_data(session)

    assert (result.users, result.categories, result.transactions) == (5, 40, 39)
    actors = session.scalars(select(AuditEntry.changed_by).distinct()).all()
    assert actors == [SEED_ACTOR]
    assert session.execute(select(func.count(AuditEntry.id))).scalar_one() == 39

    again = load_sample_data(session)
    assert again.users == 0
    assert sorted(again.skipped_users) == sorted(
        ["yuvii", "sumit", "harshit", "kartik", "prem"]
    )


def test_sample_data_answers_the_usual_questions() -> None:
    session = make_session()
    load_sample_data(session)
    yuvii = session.scalar(select(User).where(User.username == "yuvii"))
    metrics = MetricsService(session, yuvii.id)

    january = metrics.monthly_summary(2025, 1)
    assert january.income_cents == 655_125
    assert january.expense_cents == 234_200

    # Utilities and Dining Out tie for third place.
    top = metrics.top_categories(TransactionType.expense)
    assert [(r.name, r.rank) for r in top] == [
        ("Housing", 1),
        ("Groceries", 2),
        ("Dining Out", 3),
        ("Utilities", 3),
    ]

    series = metrics.balance_over_time(
        Granularity.monthly, date(2025, 1, 1), date(2025, 6, 30)
    )
    assert len(series) == 6
    assert [b.income_cents for b in series[3:]] == [0, 0, 0]
    assert series[-1].running_balance_cents == metrics.lifetime_balance().balance_cents

    hierarchy = {
        r.child_name: r.parent_name for r in metrics.category_hierarchy()
    }
    assert hierarchy["Dividends"] == "Investments"
    assert hierarchy["Rent"] == "Housing"
    assert hierarchy["Salary"] is None
