from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Hashable, Optional, Union

from pydantic import ValidationError
from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased, joinedload

from config import get_settings
from database import atomic
from errors import (
    CategoryNotFound,
    DuplicateName,
    HierarchyCycle,
    InvalidAmount,
    SelfReference,
    TransactionNotFound,
    TypeMismatch,
    UserNotFound,
)
from models import (
    AuditAction,
    AuditEntry,
    Category,
    Transaction,
    TransactionType,
    TypeFilter,
    User,
    utcnow,
)
from periods import CalendarRange, Granularity, Period, bucket_key, month_bounds
from schemas import CategoryIn, TransactionIn, TransactionUpdate

logger = logging.getLogger(__name__)

AmountLike = Union[Decimal, int, str]

_TYPE_ORDER = {TransactionType.income: 0, TransactionType.expense: 1}


def get_current_user_id() -> int:
    return get_settings().default_user_id


def to_cents(amount: AmountLike) -> int:
    value = Decimal(str(amount))
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def require_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise UserNotFound("User does not exist")
    return user


@dataclass(frozen=True)
class MonthlySummary:
    year: int
    month: int
    income_cents: int
    expense_cents: int
    income_categories: int
    expense_categories: int

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents

    @property
    def total_income(self) -> Decimal:
        return cents_to_amount(self.income_cents)

    @property
    def total_expense(self) -> Decimal:
        return cents_to_amount(self.expense_cents)

    @property
    def net_balance(self) -> Decimal:
        return cents_to_amount(self.net_cents)


@dataclass(frozen=True)
class CategoryTotal:
    category_id: int
    name: str
    type: TransactionType
    total_cents: int
    transaction_count: int

    @property
    def total_amount(self) -> Decimal:
        return cents_to_amount(self.total_cents)


@dataclass(frozen=True)
class BalanceBucket:
    period: Hashable
    start: date
    end: date
    income_cents: int
    expense_cents: int
    running_balance_cents: int

    @property
    def net_cents(self) -> int:
        return self.income_cents - self.expense_cents

    @property
    def income(self) -> Decimal:
        return cents_to_amount(self.income_cents)

    @property
    def expense(self) -> Decimal:
        return cents_to_amount(self.expense_cents)

    @property
    def net_balance(self) -> Decimal:
        return cents_to_amount(self.net_cents)


@dataclass(frozen=True)
class RankedCategory:
    category_id: int
    name: str
    total_cents: int
    rank: int

    @property
    def total_amount(self) -> Decimal:
        return cents_to_amount(self.total_cents)


@dataclass(frozen=True)
class HierarchyRow:
    parent_id: Optional[int]
    parent_name: Optional[str]
    parent_type: Optional[TransactionType]
    child_id: int
    child_name: str
    child_type: TransactionType


@dataclass(frozen=True)
class LifetimeBalance:
    income_cents: int
    expense_cents: int

    @property
    def balance_cents(self) -> int:
        return self.income_cents - self.expense_cents


@dataclass(frozen=True)
class ReportHeader:
    user_id: int
    username: str
    full_name: Optional[str]
    year: int
    month: int
    summary: MonthlySummary


@dataclass(frozen=True)
class ReportTransaction:
    transaction_id: int
    amount_cents: int
    type: TransactionType
    occurred_at: datetime
    description: Optional[str]
    category_name: str


@dataclass(frozen=True)
class MonthlyReport:
    header: ReportHeader
    income_by_category: list[CategoryTotal]
    expense_by_category: list[CategoryTotal]
    top_transactions: list[ReportTransaction]


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise CategoryNotFound("Category not found")
        return category

    def list_all(self, include_inactive: bool = False) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.type, Category.name)
        )
        if not include_inactive:
            stmt = stmt.where(Category.is_active.is_(True))
        return list(self.session.scalars(stmt).all())

    def create(self, data: CategoryIn) -> Category:
        require_user(self.session, self.user_id)
        name = data.name.strip()
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == data.type,
                func.lower(Category.name) == name.lower(),
            )
        )
        if existing:
            raise DuplicateName("Category with this name already exists")
        if data.parent_id is not None:
            self.get(data.parent_id)

        category = Category(
            user_id=self.user_id,
            name=name,
            description=data.description,
            type=data.type,
            parent_id=data.parent_id,
        )
        try:
            with atomic(self.session):
                self.session.add(category)
        except IntegrityError as exc:
            raise DuplicateName("Category with this name already exists") from exc
        self.session.refresh(category)
        logger.info(
            f"category_created: user_id={self.user_id} category_id={category.id} "
            f"type={category.type.value} parent_id={category.parent_id}"
        )
        return category

    def reparent(self, category_id: int, new_parent_id: Optional[int]) -> Category:
        """Move a category under ``new_parent_id`` (``None`` makes it a root).

        Rejects the category itself and any of its descendants as the new
        parent, so the hierarchy stays acyclic.
        """
        with atomic(self.session):
            category = self.session.scalar(
                select(Category)
                .where(Category.id == category_id, Category.user_id == self.user_id)
                .with_for_update()
            )
            if not category:
                raise CategoryNotFound("Category not found")
            if new_parent_id is not None:
                if new_parent_id == category.id:
                    raise SelfReference("A category cannot be its own parent")
                parent = self.get(new_parent_id)
                if any(a.id == category.id for a in self.ancestors(parent.id)):
                    raise HierarchyCycle(
                        "A category cannot be moved under one of its descendants"
                    )
            category.parent_id = new_parent_id
        logger.info(
            f"category_reparented: user_id={self.user_id} category_id={category_id} "
            f"parent_id={new_parent_id}"
        )
        return category

    def resolve_type(self, category_id: int) -> TransactionType:
        return self.get(category_id).type

    def ancestors(self, category_id: int) -> list[Category]:
        """Parent chain of a category, nearest parent first."""
        current = self.get(category_id)
        max_depth = get_settings().max_category_depth
        seen = {current.id}
        chain: list[Category] = []
        while current.parent_id is not None:
            if current.parent_id in seen or len(chain) >= max_depth:
                raise HierarchyCycle(
                    f"Category {category_id} has a cyclic parent chain"
                )
            parent = self.session.get(Category, current.parent_id)
            if parent is None:
                break
            seen.add(parent.id)
            chain.append(parent)
            current = parent
        return chain

    def deactivate(self, category_id: int) -> None:
        self._set_active(category_id, False)

    def activate(self, category_id: int) -> None:
        self._set_active(category_id, True)

    def _set_active(self, category_id: int, active: bool) -> None:
        with atomic(self.session):
            category = self.get(category_id)
            category.is_active = active
        logger.info(
            f"category_active_changed: user_id={self.user_id} "
            f"category_id={category_id} is_active={active}"
        )


class AuditRecorder:
    """Append-only change capture for ledger mutations.

    Only the ledger calls the ``record_*`` methods, inside its own unit of
    work; the recorder never commits.
    """

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def record_created(
        self, txn: Transaction, actor: Optional[str] = None
    ) -> AuditEntry:
        return self._append(
            txn,
            AuditAction.created,
            new_amount_cents=txn.amount_cents,
            new_category_id=txn.category_id,
            actor=actor,
        )

    def record_updated(
        self,
        txn: Transaction,
        old_amount_cents: int,
        old_category_id: int,
        actor: Optional[str] = None,
    ) -> AuditEntry:
        return self._append(
            txn,
            AuditAction.updated,
            old_amount_cents=old_amount_cents,
            new_amount_cents=txn.amount_cents,
            old_category_id=old_category_id,
            new_category_id=txn.category_id,
            actor=actor,
        )

    def record_deleted(
        self, txn: Transaction, actor: Optional[str] = None
    ) -> AuditEntry:
        return self._append(
            txn,
            AuditAction.deleted,
            old_amount_cents=txn.amount_cents,
            old_category_id=txn.category_id,
            actor=actor,
        )

    def history(self, transaction_id: int) -> list[AuditEntry]:
        stmt = (
            select(AuditEntry)
            .where(
                AuditEntry.user_id == self.user_id,
                AuditEntry.transaction_id == transaction_id,
            )
            .order_by(AuditEntry.changed_at, AuditEntry.id)
        )
        return list(self.session.scalars(stmt).all())

    def _append(
        self,
        txn: Transaction,
        action: AuditAction,
        *,
        old_amount_cents: Optional[int] = None,
        new_amount_cents: Optional[int] = None,
        old_category_id: Optional[int] = None,
        new_category_id: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            transaction_id=txn.id,
            user_id=txn.user_id,
            action=action,
            old_amount_cents=old_amount_cents,
            new_amount_cents=new_amount_cents,
            old_category_id=old_category_id,
            new_category_id=new_category_id,
            changed_at=utcnow(),
            changed_by=actor or get_settings().system_actor,
        )
        self.session.add(entry)
        return entry


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.categories = CategoryService(session, self.user_id)
        self.audit = AuditRecorder(session, self.user_id)

    def create(self, data: TransactionIn, actor: Optional[str] = None) -> Transaction:
        amount_cents = to_cents(data.amount)
        if amount_cents <= 0:
            raise InvalidAmount("Amount must be positive")
        if self.categories.resolve_type(data.category_id) != data.type:
            raise TypeMismatch("Transaction type must match category type")

        txn = Transaction(
            user_id=self.user_id,
            category_id=data.category_id,
            amount_cents=amount_cents,
            type=data.type,
            occurred_at=data.occurred_at,
            date=data.occurred_at.date(),
            description=data.description,
        )
        with atomic(self.session):
            self.session.add(txn)
            self.session.flush()
            self.audit.record_created(txn, actor)
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} transaction_id={txn.id} "
            f"type={txn.type.value} amount_cents={txn.amount_cents}"
        )
        return txn

    def update(
        self,
        transaction_id: int,
        *,
        amount: Optional[AmountLike] = None,
        category_id: Optional[int] = None,
        actor: Optional[str] = None,
    ) -> Transaction:
        try:
            changes = TransactionUpdate(amount=amount, category_id=category_id)
        except ValidationError as exc:
            raise InvalidAmount(f"Invalid amount: {amount!r}") from exc

        with atomic(self.session):
            txn = self._lock(transaction_id)
            old_amount_cents = txn.amount_cents
            old_category_id = txn.category_id

            new_amount_cents = old_amount_cents
            if changes.amount is not None:
                new_amount_cents = to_cents(changes.amount)
                if new_amount_cents <= 0:
                    raise InvalidAmount("Amount must be positive")
            new_category_id = old_category_id
            if (
                changes.category_id is not None
                and changes.category_id != old_category_id
            ):
                if self.categories.resolve_type(changes.category_id) != txn.type:
                    raise TypeMismatch("Transaction type must match category type")
                new_category_id = changes.category_id

            txn.amount_cents = new_amount_cents
            txn.category_id = new_category_id
            txn.updated_at = utcnow()
            self.session.flush()
            self.audit.record_updated(txn, old_amount_cents, old_category_id, actor)
        self.session.refresh(txn)
        logger.info(
            f"transaction_updated: user_id={self.user_id} transaction_id={txn.id} "
            f"amount_cents={old_amount_cents}->{txn.amount_cents} "
            f"category_id={old_category_id}->{txn.category_id}"
        )
        return txn

    def delete(self, transaction_id: int, actor: Optional[str] = None) -> None:
        with atomic(self.session):
            txn = self._lock(transaction_id)
            self.audit.record_deleted(txn, actor)
            self.session.delete(txn)
        logger.info(
            f"transaction_deleted: user_id={self.user_id} "
            f"transaction_id={transaction_id}"
        )

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise TransactionNotFound("Transaction not found")
        return txn

    def list_for_period(
        self, period: Period, transaction_type: Optional[TransactionType] = None
    ) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
        )
        if transaction_type:
            stmt = stmt.where(Transaction.type == transaction_type)
        return list(self.session.scalars(stmt).all())

    def _lock(self, transaction_id: int) -> Transaction:
        # Serializes concurrent mutations of one transaction so the audit
        # trail sees a single order of before/after states.
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise TransactionNotFound("Transaction not found")
        return txn


class MetricsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def monthly_summary(self, year: int, month: int) -> MonthlySummary:
        require_user(self.session, self.user_id)
        period = month_bounds(year, month)
        is_income = Transaction.type == TransactionType.income
        is_expense = Transaction.type == TransactionType.expense
        stmt = select(
            func.coalesce(
                func.sum(case((is_income, Transaction.amount_cents), else_=0)), 0
            ).label("income"),
            func.coalesce(
                func.sum(case((is_expense, Transaction.amount_cents), else_=0)), 0
            ).label("expense"),
            func.count(case((is_income, Transaction.category_id)).distinct()).label(
                "income_categories"
            ),
            func.count(case((is_expense, Transaction.category_id)).distinct()).label(
                "expense_categories"
            ),
        ).where(
            Transaction.user_id == self.user_id,
            Transaction.date.between(period.start, period.end),
        )
        row = self.session.execute(stmt).one()
        return MonthlySummary(
            year=year,
            month=month,
            income_cents=int(row.income or 0),
            expense_cents=int(row.expense or 0),
            income_categories=int(row.income_categories or 0),
            expense_categories=int(row.expense_categories or 0),
        )

    def category_totals(
        self,
        start: date,
        end: date,
        type_filter: TypeFilter = TypeFilter.both,
    ) -> list[CategoryTotal]:
        """Totals per category over ``[start, end]``, inclusive.

        Every category of the user is listed, inactive or idle ones with zero
        totals. Income categories come first when both types are requested;
        within a type, larger totals come first.
        """
        require_user(self.session, self.user_id)
        period = Period("range", start, end)
        type_filter = TypeFilter(type_filter)

        stmt = (
            select(
                Category.id,
                Category.name,
                Category.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("txn_count"),
            )
            .select_from(Category)
            .outerjoin(
                Transaction,
                and_(
                    Transaction.category_id == Category.id,
                    Transaction.user_id == self.user_id,
                    Transaction.type == Category.type,
                    Transaction.date.between(period.start, period.end),
                ),
            )
            .where(Category.user_id == self.user_id)
            .group_by(Category.id, Category.name, Category.type)
        )
        if type_filter != TypeFilter.both:
            stmt = stmt.where(Category.type == TransactionType(type_filter.value))

        totals = [
            CategoryTotal(
                category_id=row.id,
                name=row.name,
                type=row.type,
                total_cents=int(row.total or 0),
                transaction_count=int(row.txn_count or 0),
            )
            for row in self.session.execute(stmt)
        ]
        totals.sort(
            key=lambda t: (
                _TYPE_ORDER[t.type],
                -t.total_cents,
                t.name.lower(),
                t.category_id,
            )
        )
        return totals

    def balance_over_time(
        self, granularity: Granularity, start: date, end: date
    ) -> list[BalanceBucket]:
        """Dense income/expense series, one bucket per calendar unit.

        Buckets with no transactions are present with zeros. Bucket bounds are
        clipped to ``[start, end]`` and only transactions inside them count.
        """
        require_user(self.session, self.user_id)
        calendar = CalendarRange(granularity, start, end)

        stmt = (
            select(
                Transaction.date,
                Transaction.type,
                func.sum(Transaction.amount_cents).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(start, end),
            )
            .group_by(Transaction.date, Transaction.type)
        )
        income: dict[Hashable, int] = {}
        expense: dict[Hashable, int] = {}
        for row in self.session.execute(stmt):
            key = bucket_key(calendar.granularity, row.date)
            target = income if row.type == TransactionType.income else expense
            target[key] = target.get(key, 0) + int(row.total or 0)

        series: list[BalanceBucket] = []
        running = 0
        for bucket in calendar:
            income_cents = income.get(bucket.key, 0)
            expense_cents = expense.get(bucket.key, 0)
            running += income_cents - expense_cents
            series.append(
                BalanceBucket(
                    period=bucket.key,
                    start=bucket.start,
                    end=bucket.end,
                    income_cents=income_cents,
                    expense_cents=expense_cents,
                    running_balance_cents=running,
                )
            )
        return series

    def top_categories(
        self,
        transaction_type: TransactionType,
        limit: int = 3,
        period: Optional[Period] = None,
    ) -> list[RankedCategory]:
        """Categories ranked by total, ties sharing a rank (1, 1, 3, ...).

        Every row ranked within ``limit`` is returned, so ties at the cutoff
        can yield more than ``limit`` rows.
        """
        if limit < 1:
            raise ValueError("Limit must be positive")
        require_user(self.session, self.user_id)
        transaction_type = TransactionType(transaction_type)

        join_cond = and_(
            Transaction.category_id == Category.id,
            Transaction.type == Category.type,
        )
        if period is not None:
            join_cond = and_(
                join_cond, Transaction.date.between(period.start, period.end)
            )
        stmt = (
            select(
                Category.id,
                Category.name,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .select_from(Category)
            .outerjoin(Transaction, join_cond)
            .where(
                Category.user_id == self.user_id,
                Category.type == transaction_type,
            )
            .group_by(Category.id, Category.name)
        )
        rows = sorted(
            self.session.execute(stmt).all(),
            key=lambda r: (-int(r.total or 0), r.name.lower(), r.id),
        )

        ranked: list[RankedCategory] = []
        rank = 0
        previous: Optional[int] = None
        for position, row in enumerate(rows, start=1):
            total = int(row.total or 0)
            if total != previous:
                rank = position
                previous = total
            if rank > limit:
                break
            ranked.append(
                RankedCategory(
                    category_id=row.id, name=row.name, total_cents=total, rank=rank
                )
            )
        return ranked

    def category_hierarchy(self) -> list[HierarchyRow]:
        require_user(self.session, self.user_id)
        Parent = aliased(Category)
        stmt = (
            select(Category, Parent)
            .outerjoin(Parent, Category.parent_id == Parent.id)
            .where(Category.user_id == self.user_id)
        )
        rows = [
            HierarchyRow(
                parent_id=parent.id if parent else None,
                parent_name=parent.name if parent else None,
                parent_type=parent.type if parent else None,
                child_id=child.id,
                child_name=child.name,
                child_type=child.type,
            )
            for child, parent in self.session.execute(stmt)
        ]
        rows.sort(
            key=lambda r: (
                r.parent_name is not None,
                (r.parent_name or "").lower(),
                r.child_name.lower(),
                r.child_id,
            )
        )
        return rows

    def lifetime_balance(self) -> LifetimeBalance:
        require_user(self.session, self.user_id)
        stmt = (
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(Transaction.user_id == self.user_id)
            .group_by(Transaction.type)
        )
        totals = {row.type: int(row.total or 0) for row in self.session.execute(stmt)}
        return LifetimeBalance(
            income_cents=totals.get(TransactionType.income, 0),
            expense_cents=totals.get(TransactionType.expense, 0),
        )


class ReportService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.metrics = MetricsService(session, self.user_id)

    def generate_monthly_report(self, year: int, month: int) -> MonthlyReport:
        user = require_user(self.session, self.user_id)
        period = month_bounds(year, month)

        header = ReportHeader(
            user_id=user.id,
            username=user.username,
            full_name=user.full_name,
            year=year,
            month=month,
            summary=self.metrics.monthly_summary(year, month),
        )
        income_by_category = self.metrics.category_totals(
            period.start, period.end, TypeFilter.income
        )
        expense_by_category = self.metrics.category_totals(
            period.start, period.end, TypeFilter.expense
        )

        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.amount_cents.desc(), Transaction.id.asc())
            .limit(get_settings().report_top_transactions)
        )
        top_transactions = [
            ReportTransaction(
                transaction_id=txn.id,
                amount_cents=txn.amount_cents,
                type=txn.type,
                occurred_at=txn.occurred_at,
                description=txn.description,
                category_name=txn.category.name,
            )
            for txn in self.session.scalars(stmt)
        ]

        logger.info(
            f"monthly_report: user_id={self.user_id} period={period.slug} "
            f"top_transactions={len(top_transactions)}"
        )
        return MonthlyReport(
            header=header,
            income_by_category=income_by_category,
            expense_by_category=expense_by_category,
            top_transactions=top_transactions,
        )
