from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker

from database import Base
from models import Transaction, TransactionType, User
from schemas import CategoryIn, TransactionIn, TransactionQuery, TransactionUpdate
from services import (
    CategoryNotFound,
    CategoryService,
    CategoryTypeMismatch,
    NotFound,
    TransactionService,
)


def make_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:", connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return SessionLocal()


def make_user(session, email: str = "ayse@example.com") -> User:
    user = User(name="Ayse", email=email, password_hash="x")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def setup_ledger(session):
    user = make_user(session)
    categories = CategoryService(session, user.id)
    salary = categories.create(
        CategoryIn(name="Salary", type=TransactionType.income, color="#4CAF50")
    )
    food = categories.create(
        CategoryIn(name="Food", type=TransactionType.expense, color="#FF5722")
    )
    return user, salary, food


def add(service, category, kind, amount, when, description=""):
    return service.create(
        TransactionIn(
            amount=Decimal(amount),
            type=kind,
            category_id=category.id,
            description=description,
            date=when,
        )
    )


def test_create_stores_amount_in_cents() -> None:
    session = make_session()
    user, salary, _ = setup_ledger(session)

    txn = TransactionService(session, user.id).create(
        TransactionIn(
            amount=Decimal("1234.56"),
            type=TransactionType.income,
            category_id=salary.id,
            description="  August salary  ",
            date=datetime(2025, 8, 1, 10, 0),
        )
    )

    assert txn.amount_cents == 123456
    assert txn.amount == Decimal("1234.56")
    assert txn.description == "August salary"
    assert txn.user_id == user.id


def test_create_defaults_date_to_now() -> None:
    session = make_session()
    user, _, food = setup_ledger(session)

    txn = TransactionService(session, user.id).create(
        TransactionIn(amount=Decimal("10"), type=TransactionType.expense, category_id=food.id)
    )

    assert isinstance(txn.date, datetime)
    assert txn.description == ""


def test_create_rejects_kind_mismatch_without_persisting() -> None:
    session = make_session()
    user, salary, _ = setup_ledger(session)

    with pytest.raises(CategoryTypeMismatch) as excinfo:
        TransactionService(session, user.id).create(
            TransactionIn(
                amount=Decimal("50"),
                type=TransactionType.expense,
                category_id=salary.id,
            )
        )

    message = str(excinfo.value)
    assert "Salary" in message
    assert "income" in message
    assert session.execute(select(func.count(Transaction.id))).scalar_one() == 0


def test_create_rejects_missing_or_foreign_category() -> None:
    session = make_session()
    user, _, _ = setup_ledger(session)
    stranger = make_user(session, "mehmet@example.com")
    foreign = CategoryService(session, stranger.id).create(
        CategoryIn(name="Theirs", type=TransactionType.expense, color="#000000")
    )
    service = TransactionService(session, user.id)

    with pytest.raises(CategoryNotFound):
        service.create(
            TransactionIn(amount=Decimal("5"), type=TransactionType.expense, category_id=999)
        )
    with pytest.raises(CategoryNotFound):
        service.create(
            TransactionIn(
                amount=Decimal("5"), type=TransactionType.expense, category_id=foreign.id
            )
        )


def test_get_is_scoped_to_owner() -> None:
    session = make_session()
    user, _, food = setup_ledger(session)
    stranger = make_user(session, "mehmet@example.com")
    txn = add(
        TransactionService(session, user.id),
        food,
        TransactionType.expense,
        "12.50",
        datetime(2025, 8, 2),
    )

    assert TransactionService(session, user.id).get(txn.id).id == txn.id
    with pytest.raises(NotFound):
        TransactionService(session, stranger.id).get(txn.id)
    with pytest.raises(NotFound):
        TransactionService(session, user.id).get(txn.id + 100)


def test_update_partial_keeps_other_fields() -> None:
    session = make_session()
    user, _, food = setup_ledger(session)
    service = TransactionService(session, user.id)
    txn = add(service, food, TransactionType.expense, "20", datetime(2025, 8, 2), "lunch")

    updated = service.update(txn.id, TransactionUpdate(amount=Decimal("25.75")))

    assert updated.amount == Decimal("25.75")
    assert updated.description == "lunch"
    assert updated.category_id == food.id
    assert updated.date == datetime(2025, 8, 2)


def test_update_validates_effective_kind_and_category() -> None:
    session = make_session()
    user, salary, food = setup_ledger(session)
    service = TransactionService(session, user.id)
    txn = add(service, food, TransactionType.expense, "20", datetime(2025, 8, 2))

    with pytest.raises(CategoryTypeMismatch):
        service.update(txn.id, TransactionUpdate(type=TransactionType.income))
    with pytest.raises(CategoryTypeMismatch):
        service.update(txn.id, TransactionUpdate(category_id=salary.id))
    with pytest.raises(CategoryNotFound):
        service.update(txn.id, TransactionUpdate(category_id=999))

    session.expire_all()
    unchanged = service.get(txn.id)
    assert unchanged.type == TransactionType.expense
    assert unchanged.category_id == food.id

    moved = service.update(
        txn.id, TransactionUpdate(type=TransactionType.income, category_id=salary.id)
    )
    assert moved.type == TransactionType.income
    assert moved.category_id == salary.id


def test_update_ignores_explicit_nulls() -> None:
    session = make_session()
    user, _, food = setup_ledger(session)
    service = TransactionService(session, user.id)
    txn = add(service, food, TransactionType.expense, "20", datetime(2025, 8, 2), "lunch")

    updated = service.update(txn.id, TransactionUpdate(description=None, amount=None))

    assert updated.description == "lunch"
    assert updated.amount == Decimal("20.00")


def test_delete_is_idempotent_and_scoped() -> None:
    session = make_session()
    user, _, food = setup_ledger(session)
    stranger = make_user(session, "mehmet@example.com")
    service = TransactionService(session, user.id)
    txn = add(service, food, TransactionType.expense, "20", datetime(2025, 8, 2))

    assert TransactionService(session, stranger.id).delete(txn.id) is False
    assert service.delete(txn.id) is True
    assert service.delete(txn.id) is False


def seed_listing(session):
    user, salary, food = setup_ledger(session)
    service = TransactionService(session, user.id)
    add(service, salary, TransactionType.income, "5000", datetime(2025, 1, 1, 9), "Ocak maaşı")
    add(service, food, TransactionType.expense, "150", datetime(2025, 1, 10, 12), "Market")
    add(service, food, TransactionType.expense, "75.50", datetime(2025, 1, 31, 23, 30), "Dinner out")
    add(service, food, TransactionType.expense, "300", datetime(2025, 2, 3, 8), "Weekly MARKET run")
    return user, salary, food, service


def test_list_defaults_to_date_descending() -> None:
    session = make_session()
    _, _, _, service = seed_listing(session)

    page = service.list(TransactionQuery())

    assert page.total == 4
    assert [t.date for t in page.items] == sorted((t.date for t in page.items), reverse=True)
    assert page.filters["sort_by"] == "date"
    assert page.filters["sort_order"] == "desc"


def test_list_filters_combine() -> None:
    session = make_session()
    _, _, food, service = seed_listing(session)

    by_type = service.list(TransactionQuery(type=TransactionType.expense))
    by_category = service.list(TransactionQuery(category_id=food.id))
    by_amount = service.list(
        TransactionQuery(min_amount=Decimal("100"), max_amount=Decimal("300"))
    )
    by_text = service.list(TransactionQuery(description="market"))

    assert by_type.total == 3
    assert by_category.total == 3
    assert sorted(t.amount for t in by_amount.items) == [Decimal("150.00"), Decimal("300.00")]
    assert {t.description for t in by_text.items} == {"Market", "Weekly MARKET run"}
    assert by_text.filters["description"] == "market"


def test_list_end_date_includes_whole_day() -> None:
    session = make_session()
    _, _, _, service = seed_listing(session)

    page = service.list(
        TransactionQuery(start_date=date(2025, 1, 10), end_date=date(2025, 1, 31))
    )

    assert page.total == 2
    assert {t.description for t in page.items} == {"Market", "Dinner out"}


def test_list_sort_and_fallback() -> None:
    session = make_session()
    _, _, _, service = seed_listing(session)

    ascending = service.list(TransactionQuery(sort_by="amount", sort_order="asc"))
    fallback = service.list(TransactionQuery(sort_by="password", sort_order="asc"))

    assert [t.amount for t in ascending.items] == [
        Decimal("75.50"),
        Decimal("150.00"),
        Decimal("300.00"),
        Decimal("5000.00"),
    ]
    assert fallback.filters["sort_by"] == "date"
    assert fallback.filters["sort_order"] == "desc"
    assert fallback.items[0].description == "Weekly MARKET run"


def test_list_pagination_metadata() -> None:
    session = make_session()
    _, _, _, service = seed_listing(session)

    first = service.list(TransactionQuery(page=1, limit=3))
    second = service.list(TransactionQuery(page=2, limit=3))
    beyond = service.list(TransactionQuery(page=5, limit=3))

    assert (first.total, first.total_pages, first.has_next, first.has_prev) == (4, 2, True, False)
    assert len(first.items) == 3
    assert (len(second.items), second.has_next, second.has_prev) == (1, False, True)
    assert beyond.items == []
    assert beyond.total == 4


def test_list_never_shows_other_users_rows() -> None:
    session = make_session()
    seed_listing(session)
    stranger = make_user(session, "mehmet@example.com")

    page = TransactionService(session, stranger.id).list(TransactionQuery())

    assert page.total == 0
    assert page.total_pages == 0
    assert page.has_next is False


def test_description_search_folds_turkish_case() -> None:
    session = make_session()
    user, salary, _ = setup_ledger(session)
    service = TransactionService(session, user.id)
    add(service, salary, TransactionType.income, "5000", datetime(2025, 1, 15), "OCAK MAAŞI")
    add(service, salary, TransactionType.income, "250", datetime(2025, 1, 20), "İkramiye")

    assert service.list(TransactionQuery(description="maaşı")).total == 1
    assert service.list(TransactionQuery(description="Ocak Maaşı")).total == 1
    assert service.list(TransactionQuery(description="ikram")).total == 1
    assert service.list(TransactionQuery(description="prim")).total == 0


def test_description_search_follows_updates() -> None:
    session = make_session()
    user, _, food = setup_ledger(session)
    service = TransactionService(session, user.id)
    txn = add(service, food, TransactionType.expense, "40", datetime(2025, 1, 5), "Market")

    service.update(txn.id, TransactionUpdate(description="ÇARŞI ALIŞVERİŞİ"))

    assert service.list(TransactionQuery(description="market")).total == 0
    assert service.list(TransactionQuery(description="çarşı")).total == 1
