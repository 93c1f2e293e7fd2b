from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from models import (
    Category,
    Transaction,
    TransactionType,
    User,
    cents_to_decimal,
    fold_text,
)
from periods import (
    Period,
    all_time,
    day_end,
    day_start,
    format_month,
    local_now,
    local_today,
    month_period,
    parse_month,
    year_period,
)
from schemas import (
    SORT_FIELDS,
    CategoryIn,
    CategoryUpdate,
    RegisterIn,
    TransactionIn,
    TransactionQuery,
    TransactionUpdate,
    UserUpdate,
)
from security import (
    create_access_token,
    hash_password,
    resolve_access_token,
    verify_password,
)

logger = logging.getLogger(__name__)


class NotFound(ValueError):
    """Entity is missing or belongs to another user."""


class CategoryNotFound(ValueError):
    pass


class CategoryTypeMismatch(ValueError):
    pass


class DefaultCategoryProtected(ValueError):
    pass


class EmailAlreadyRegistered(ValueError):
    pass


@dataclass(frozen=True)
class DefaultCategory:
    name: str
    type: TransactionType
    color: str
    is_default: bool = True


DEFAULT_CATEGORIES: tuple[DefaultCategory, ...] = (
    DefaultCategory("Maaş", TransactionType.income, "#4CAF50"),
    DefaultCategory("Bonus", TransactionType.income, "#8BC34A"),
    DefaultCategory("Yemek", TransactionType.expense, "#FF5722"),
    DefaultCategory("Ulaşım", TransactionType.expense, "#2196F3"),
    DefaultCategory("Alışveriş", TransactionType.expense, "#9C27B0"),
    DefaultCategory("Fatura", TransactionType.expense, "#FF9800"),
)


def to_cents(amount: Decimal) -> int:
    cents = int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents <= 0:
        raise ValueError("Amount must be greater than zero")
    return cents


def percentage(part_cents: int, total_cents: int) -> Decimal:
    if not total_cents:
        return Decimal("0")
    return (Decimal(part_cents) * 100 / Decimal(total_cents)).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )


def type_mismatch_message(category: Category) -> str:
    return (
        f"Category '{category.name}' can only be used for "
        f"{category.type.value} transactions"
    )


def delete_category_cascade(session: Session, category: Category) -> int:
    """Remove a category after removing every transaction that references it.

    Both deletes run in the session's current transaction and are committed
    together. Returns the number of transactions removed.
    """
    if category.is_default:
        raise DefaultCategoryProtected("Default categories cannot be deleted")

    result = session.execute(
        delete(Transaction).where(Transaction.category_id == category.id)
    )
    removed = int(result.rowcount or 0)
    session.flush()
    session.delete(category)
    session.commit()
    logger.info(
        f"category_deleted: id={category.id} user_id={category.user_id} "
        f"transactions_removed={removed}"
    )
    return removed


class CategoryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def list_defaults() -> list[DefaultCategory]:
        return list(DEFAULT_CATEGORIES)

    def seed_defaults(self) -> list[Category]:
        existing = set(
            self.session.scalars(
                select(Category.name).where(
                    Category.user_id == self.user_id, Category.is_default.is_(True)
                )
            ).all()
        )
        created: list[Category] = []
        for entry in DEFAULT_CATEGORIES:
            if entry.name in existing:
                continue
            category = Category(
                user_id=self.user_id,
                name=entry.name,
                type=entry.type,
                color=entry.color,
                is_default=True,
            )
            self.session.add(category)
            created.append(category)
        self.session.commit()
        if created:
            logger.info(
                f"default_categories_seeded: user_id={self.user_id} count={len(created)}"
            )
        return created

    def create(self, data: CategoryIn) -> Category:
        category = Category(
            user_id=self.user_id,
            name=data.name,
            type=data.type,
            color=data.color,
            is_default=False,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def get(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category)
            .options(joinedload(Category.user))
            .where(Category.id == category_id)
        )
        if not category:
            raise NotFound("Category not found")
        return category

    def get_for_owner(self, category_id: int) -> Category:
        category = self.session.scalar(
            select(Category)
            .options(joinedload(Category.user))
            .where(Category.id == category_id, Category.user_id == self.user_id)
        )
        if not category:
            raise NotFound("Category not found")
        return category

    def list_for_owner(self, page: int = 1, limit: int = 10) -> list[Category]:
        # own categories first, then the user's defaults; paging spans both
        page = max(page, 1)
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.is_default.asc(), Category.created_at, Category.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        category = self.get_for_owner(category_id)
        if category.is_default:
            raise DefaultCategoryProtected("Default categories cannot be modified")

        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        new_type = changes.get("type")
        if new_type is not None and new_type != category.type:
            conflicting = self.session.execute(
                select(func.count(Transaction.id)).where(
                    Transaction.category_id == category.id,
                    Transaction.type != new_type,
                )
            ).scalar_one()
            if conflicting:
                raise CategoryTypeMismatch(
                    f"Category '{category.name}' still has {conflicting} "
                    f"{category.type.value} transactions"
                )

        if "name" in changes:
            category.name = changes["name"].strip()
        if "type" in changes:
            category.type = changes["type"]
        if "color" in changes:
            category.color = changes["color"]
        self.session.commit()
        self.session.refresh(category)
        return category

    def delete(self, category_id: int) -> bool:
        category = self.session.scalar(
            select(Category).where(
                Category.id == category_id, Category.user_id == self.user_id
            )
        )
        if not category:
            return False
        delete_category_cascade(self.session, category)
        return True


@dataclass
class TransactionPage:
    items: list[Transaction]
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool
    filters: dict[str, object] = field(default_factory=dict)


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _resolve_category(
        self, category_id: int, transaction_type: TransactionType
    ) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise CategoryNotFound("Category not found")
        if category.type != transaction_type:
            raise CategoryTypeMismatch(type_mismatch_message(category))
        return category

    def create(self, data: TransactionIn) -> Transaction:
        self._resolve_category(data.category_id, data.type)
        txn = Transaction(
            user_id=self.user_id,
            date=data.date or local_now(),
            type=data.type,
            amount_cents=to_cents(data.amount),
            category_id=data.category_id,
            description=data.description,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise NotFound("Transaction not found")
        return txn

    def list(self, query: TransactionQuery) -> TransactionPage:
        conditions = [Transaction.user_id == self.user_id]
        if query.type:
            conditions.append(Transaction.type == query.type)
        if query.category_id:
            conditions.append(Transaction.category_id == query.category_id)
        if query.start_date:
            conditions.append(Transaction.date >= day_start(query.start_date))
        if query.end_date:
            conditions.append(Transaction.date <= day_end(query.end_date))
        if query.min_amount is not None:
            conditions.append(Transaction.amount_cents >= _bound_cents(query.min_amount))
        if query.max_amount is not None:
            conditions.append(Transaction.amount_cents <= _bound_cents(query.max_amount))
        if query.description:
            conditions.append(
                Transaction.description_search.contains(
                    fold_text(query.description), autoescape=True
                )
            )

        sort_columns = {
            "date": Transaction.date,
            "amount": Transaction.amount_cents,
            "type": Transaction.type,
            "description": Transaction.description,
        }
        sort_by, sort_order = query.sort_by, query.sort_order
        if sort_by not in SORT_FIELDS:
            sort_by, sort_order = "date", "desc"
        column = sort_columns[sort_by]
        ordering = column.asc() if sort_order == "asc" else column.desc()
        tiebreak = Transaction.id.asc() if sort_order == "asc" else Transaction.id.desc()

        total = self.session.execute(
            select(func.count(Transaction.id)).where(*conditions)
        ).scalar_one()
        items = self.session.scalars(
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(*conditions)
            .order_by(ordering, tiebreak)
            .offset((query.page - 1) * query.limit)
            .limit(query.limit)
        ).all()

        total_pages = math.ceil(total / query.limit) if total else 0
        filters = query.model_dump(mode="json", exclude_none=True)
        filters.update({"sort_by": sort_by, "sort_order": sort_order})
        return TransactionPage(
            items=list(items),
            total=total,
            page=query.page,
            limit=query.limit,
            total_pages=total_pages,
            has_next=query.page < total_pages,
            has_prev=query.page > 1,
            filters=filters,
        )

    def update(self, transaction_id: int, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}

        if "type" in changes or "category_id" in changes:
            self._resolve_category(
                changes.get("category_id", txn.category_id),
                changes.get("type", txn.type),
            )

        if "amount" in changes:
            txn.amount_cents = to_cents(changes["amount"])
        if "type" in changes:
            txn.type = changes["type"]
        if "category_id" in changes:
            txn.category_id = changes["category_id"]
        if "description" in changes:
            txn.description = changes["description"].strip()
        if "date" in changes:
            txn.date = changes["date"]

        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> bool:
        result = self.session.execute(
            delete(Transaction).where(
                Transaction.id == transaction_id, Transaction.user_id == self.user_id
            )
        )
        self.session.commit()
        return bool(result.rowcount)


def _bound_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class SummaryReport:
    total_income: Decimal
    total_expense: Decimal
    net_amount: Decimal
    transaction_count: int
    month: str


@dataclass(frozen=True)
class CategoryLine:
    category_id: int
    category_name: str
    color: Optional[str]
    total_amount: Decimal
    transaction_count: int
    percentage: Decimal


@dataclass(frozen=True)
class CategoryGroup:
    categories: list[CategoryLine]
    total: Decimal
    total_transactions: int


@dataclass(frozen=True)
class CategoryReport:
    income: CategoryGroup
    expense: CategoryGroup
    month: Optional[str]
    report_date: datetime
    net: Decimal


@dataclass(frozen=True)
class BalanceReport:
    current_balance: Decimal
    monthly_income: Decimal
    monthly_expense: Decimal
    monthly_net: Decimal
    yearly_income: Decimal
    yearly_expense: Decimal
    yearly_net: Decimal
    all_time_income: Decimal
    all_time_expense: Decimal
    all_time_net: Decimal
    current_month: str
    current_year: int
    report_date: datetime


class ReportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _window(self, period: Period) -> list:
        conditions = [Transaction.user_id == self.user_id]
        if period.start is not None:
            conditions.append(Transaction.date >= period.start)
        if period.end is not None:
            conditions.append(Transaction.date <= period.end)
        return conditions

    def _sum(self, period: Period, transaction_type: TransactionType) -> int:
        stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
            *self._window(period), Transaction.type == transaction_type
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def _count(self, period: Period) -> int:
        stmt = select(func.count(Transaction.id)).where(*self._window(period))
        return int(self.session.execute(stmt).scalar_one() or 0)

    def _group(self, period: Period, transaction_type: TransactionType) -> CategoryGroup:
        total_expr = func.sum(Transaction.amount_cents)
        stmt = (
            select(
                Category.id.label("category_id"),
                Category.name.label("name"),
                Category.color.label("color"),
                total_expr.label("total"),
                func.count(Transaction.id).label("count"),
            )
            .join(Category, Category.id == Transaction.category_id)
            .where(*self._window(period), Transaction.type == transaction_type)
            .group_by(Category.id, Category.name, Category.color)
            .order_by(total_expr.desc(), Category.name)
        )
        rows = self.session.execute(stmt).all()
        total_cents = sum(int(row.total or 0) for row in rows)
        lines = [
            CategoryLine(
                category_id=row.category_id,
                category_name=row.name,
                color=row.color,
                total_amount=cents_to_decimal(int(row.total or 0)),
                transaction_count=int(row.count),
                percentage=percentage(int(row.total or 0), total_cents),
            )
            for row in rows
        ]
        return CategoryGroup(
            categories=lines,
            total=cents_to_decimal(total_cents),
            total_transactions=sum(line.transaction_count for line in lines),
        )

    def summary(self, month: str) -> SummaryReport:
        year, month_num = parse_month(month)
        period = month_period(year, month_num)
        income = self._sum(period, TransactionType.income)
        expense = self._sum(period, TransactionType.expense)
        return SummaryReport(
            total_income=cents_to_decimal(income),
            total_expense=cents_to_decimal(expense),
            net_amount=cents_to_decimal(income - expense),
            transaction_count=self._count(period),
            month=format_month(year, month_num),
        )

    def category_report(self, month: Optional[str] = None) -> CategoryReport:
        if month:
            year, month_num = parse_month(month)
            period = month_period(year, month_num)
            month = format_month(year, month_num)
        else:
            period = all_time()
        income = self._group(period, TransactionType.income)
        expense = self._group(period, TransactionType.expense)
        return CategoryReport(
            income=income,
            expense=expense,
            month=month,
            report_date=local_now(),
            net=income.total - expense.total,
        )

    def balance(self, today: Optional[date] = None) -> BalanceReport:
        today = today or local_today()
        windows = {
            "monthly": month_period(today.year, today.month),
            "yearly": year_period(today.year),
            "all_time": all_time(),
        }
        totals: dict[str, tuple[int, int]] = {
            name: (
                self._sum(period, TransactionType.income),
                self._sum(period, TransactionType.expense),
            )
            for name, period in windows.items()
        }

        def amounts(name: str) -> tuple[Decimal, Decimal, Decimal]:
            income, expense = totals[name]
            return (
                cents_to_decimal(income),
                cents_to_decimal(expense),
                cents_to_decimal(income - expense),
            )

        monthly_income, monthly_expense, monthly_net = amounts("monthly")
        yearly_income, yearly_expense, yearly_net = amounts("yearly")
        all_income, all_expense, all_net = amounts("all_time")
        return BalanceReport(
            current_balance=all_net,
            monthly_income=monthly_income,
            monthly_expense=monthly_expense,
            monthly_net=monthly_net,
            yearly_income=yearly_income,
            yearly_expense=yearly_expense,
            yearly_net=yearly_net,
            all_time_income=all_income,
            all_time_expense=all_expense,
            all_time_net=all_net,
            current_month=format_month(today.year, today.month),
            current_year=today.year,
            report_date=local_now(),
        )


class AuthService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _find_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(func.lower(User.email) == email.strip().lower())
        )

    def register(self, data: RegisterIn) -> User:
        if self._find_by_email(data.email):
            raise EmailAlreadyRegistered("Email already registered")
        user = User(
            name=data.name.strip(),
            email=data.email,
            password_hash=hash_password(data.password),
        )
        self.session.add(user)
        try:
            self.session.flush()
        except IntegrityError as exc:
            self.session.rollback()
            raise EmailAlreadyRegistered("Email already registered") from exc

        CategoryService(self.session, user.id).seed_defaults()
        self.session.refresh(user)
        logger.info(f"user_registered: id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> Optional[User]:
        user = self._find_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            return None
        return user

    @staticmethod
    def issue_token(user: User) -> str:
        return create_access_token(user.id)

    def resolve_token(self, token: str) -> Optional[int]:
        user_id = resolve_access_token(token)
        if user_id is None or self.session.get(User, user_id) is None:
            return None
        return user_id


class UserService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def profile(self) -> User:
        user = self.session.get(User, self.user_id)
        if not user:
            raise NotFound("User not found")
        return user

    def update_profile(self, data: UserUpdate) -> User:
        user = self.profile()
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        if "email" in changes and changes["email"] != user.email:
            taken = self.session.scalar(
                select(User.id).where(
                    func.lower(User.email) == changes["email"], User.id != user.id
                )
            )
            if taken:
                raise EmailAlreadyRegistered("Email already registered")
            user.email = changes["email"]
        if "name" in changes:
            user.name = changes["name"].strip()
        if "password" in changes:
            user.password_hash = hash_password(changes["password"])
        self.session.commit()
        self.session.refresh(user)
        return user
