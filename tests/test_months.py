from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from errors import MonthFormatError
from months import Month


def test_parse_and_format_roundtrip_canonical_form():
    month = Month.parse("2025-06")
    assert (month.year, month.month) == (2025, 6)
    assert str(month) == "2025-06"


@pytest.mark.parametrize(
    "value",
    [
        "2025-6",
        "25-06",
        "2025/06",
        "2025-13",
        "2025-00",
        "1899-12",
        "2101-01",
        "",
        "june",
        " 2025-06",
        "2025-06\n",
        "\uff12\uff10\uff12\uff15-\uff10\uff16",
    ],
)
def test_parse_rejects_malformed_or_out_of_range(value):
    with pytest.raises(MonthFormatError):
        Month.parse(value)


def test_previous_and_next_roll_over_year_boundaries():
    assert Month(2025, 1).previous() == Month(2024, 12)
    assert Month(2024, 12).next() == Month(2025, 1)
    assert Month(2025, 6).previous() == Month(2025, 5)
    assert Month(2025, 6).next() == Month(2025, 7)


def test_ordering_is_by_year_then_month():
    assert Month(2024, 12) < Month(2025, 1)
    assert Month(2025, 2).is_after(Month(2025, 1))
    assert Month(2025, 1).is_before(Month(2025, 2))
    assert not Month(2025, 1).is_before(Month(2025, 1))
    assert Month.parse("2025-03") == Month(2025, 3)
    assert max(Month(2025, 3), Month(2024, 11)) == Month(2025, 3)
    assert len({Month(2025, 3), Month.parse("2025-03")}) == 1


def test_from_date_and_current():
    assert Month.from_date(date(2025, 2, 14)) == Month(2025, 2)
    expected = Month.from_date(datetime.now(ZoneInfo("UTC")).date())
    assert Month.current("UTC") == expected


def test_day_clamps_to_last_day_of_month():
    assert Month(2025, 2).day(31) == date(2025, 2, 28)
    assert Month(2024, 2).day(31) == date(2024, 2, 29)
    assert Month(2025, 4).day(31) == date(2025, 4, 30)
    assert Month(2025, 2).day(5) == date(2025, 2, 5)
    assert Month(2025, 12).last_day() == date(2025, 12, 31)
