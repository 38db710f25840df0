"""
业务时区工具测试
"""

from datetime import date, datetime, timezone

import pytest

from tiffin_server.utils.timezone import TimeWindow


@pytest.fixture
def tw():
    return TimeWindow("Asia/Kolkata", clock=lambda: datetime(2025, 1, 9, 20, 0, tzinfo=timezone.utc))


class TestDayBoundaries:

    def test_now_is_in_business_timezone(self, tw):
        # UTC 20:00 已经是印度时间次日 01:30
        assert tw.now().strftime("%Y-%m-%d %H:%M") == "2025-01-10 01:30"

    def test_start_and_end_of_day(self, tw):
        start = tw.start_of_day("2025-01-10")
        end = tw.end_of_day("2025-01-10")
        assert start.isoformat() == "2025-01-10T00:00:00+05:30"
        assert end.isoformat() == "2025-01-10T23:59:59.999999+05:30"
        assert tw.next_day_start("2025-01-10").isoformat() == "2025-01-11T00:00:00+05:30"

    def test_utc_instant_maps_to_local_day(self, tw):
        instant = datetime(2025, 1, 9, 19, 0, tzinfo=timezone.utc)
        assert tw.start_of_day(instant) == tw.start_of_day(date(2025, 1, 10))

    def test_naive_datetime_is_local_wall_time(self, tw):
        assert tw.to_local(datetime(2025, 1, 10, 12, 30)).isoformat() == "2025-01-10T12:30:00+05:30"

    def test_z_suffix_is_parsed(self, tw):
        assert tw.format("2025-01-09T18:30:00Z", "date") == "2025-01-10"

    def test_date_key(self, tw):
        assert tw.date_key("2025-01-10T23:00:00+05:30") == "20250110"


class TestDateArithmetic:

    def test_add_days_keeps_wall_time(self, tw):
        shifted = tw.add_days(3, datetime(2025, 1, 30, 12, 30))
        assert shifted.strftime("%Y-%m-%d %H:%M") == "2025-02-02 12:30"

    def test_add_months_clamps_to_month_end(self, tw):
        assert tw.add_months(1, "2025-01-31").date() == date(2025, 2, 28)
        assert tw.add_months(1, "2024-01-31").date() == date(2024, 2, 29)
        assert tw.add_months(-2, "2025-01-15").date() == date(2024, 11, 15)


class TestTimeStrings:

    @pytest.mark.parametrize("value,expected", [
        ("12:30", True),
        ("9:05", True),
        ("23:59", True),
        ("24:00", False),
        ("12:60", False),
        ("noon", False),
        ("", False),
        (None, False),
    ])
    def test_is_valid_time_string(self, value, expected):
        assert TimeWindow.is_valid_time_string(value) is expected
