from datetime import date, datetime

import pytest

from periods import all_time, month_period, parse_month, resolve_month, year_period


@pytest.mark.parametrize("value", ["2025-01", "2025/01", "2025.1", " 2025-1 "])
def test_parse_month_accepts_separators(value) -> None:
    assert parse_month(value) == (2025, 1)


@pytest.mark.parametrize(
    "value", ["", "2025", "01-2025", "2025-13", "2025-00", "2025_01", "0000-01"]
)
def test_parse_month_rejects_bad_input(value) -> None:
    with pytest.raises(ValueError):
        parse_month(value)


def test_month_period_reaches_end_of_last_day() -> None:
    period = month_period(2024, 2)

    assert period.start == datetime(2024, 2, 1)
    assert period.end.date() == date(2024, 2, 29)
    assert period.end > datetime(2024, 2, 29, 23, 59, 59)
    assert period.slug == "2024-02"


def test_december_and_year_windows() -> None:
    assert month_period(2025, 12).end.date() == date(2025, 12, 31)
    assert year_period(2025).start == datetime(2025, 1, 1)
    assert year_period(2025).end.date() == date(2025, 12, 31)
    assert not all_time().bounded


def test_resolve_month_defaults_to_today() -> None:
    assert resolve_month(None, today=date(2025, 7, 4)) == "2025-07"
    assert resolve_month("2025/7") == "2025-07"


def test_last_representable_month() -> None:
    assert parse_month("9999-12") == (9999, 12)
    period = month_period(9999, 12)

    assert period.end.date() == date(9999, 12, 31)
