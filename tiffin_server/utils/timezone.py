"""
业务时区的日期/时间计算

所有"某一天"的判断（订阅有效期、菜单日期、订单去重、过期扫描）都以
业务时区的日界线为准，避免服务器时区与 UTC 截断造成的差一天问题。

约定：
- 带时区的 datetime 会被换算到业务时区
- 不带时区的 datetime 视为业务时区的墙上时间
- date 视为业务时区当天 00:00
"""

import calendar
import re
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

DateLike = Union[datetime, date, str]

# 24 小时制 HH:MM，允许单数字小时（如 9:30）
TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime, tz: tzinfo) -> datetime:
    """不带时区的 datetime 视为 tz 的墙上时间"""
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value


class TimeWindow:
    """固定业务时区下的日界线与日期加减"""

    def __init__(self, tz_name: str, clock: Optional[Callable[[], datetime]] = None):
        self.tz_name = tz_name
        self.tz = ZoneInfo(tz_name)
        self._clock = clock or _utc_now

    def now(self) -> datetime:
        """当前业务时区时间"""
        return self.to_local(self._clock())

    def to_local(self, value: DateLike) -> datetime:
        """把任意日期输入换算为业务时区的 aware datetime"""
        if isinstance(value, str):
            value = self._parse(value)
        if isinstance(value, datetime):
            return ensure_aware(value, self.tz).astimezone(self.tz)
        if isinstance(value, date):
            return datetime.combine(value, time.min, tzinfo=self.tz)
        raise TypeError(f"Unsupported date value: {value!r}")

    def start_of_day(self, value: Optional[DateLike] = None) -> datetime:
        local = self.to_local(value) if value is not None else self.now()
        return datetime.combine(local.date(), time.min, tzinfo=self.tz)

    def end_of_day(self, value: Optional[DateLike] = None) -> datetime:
        """当天最后一微秒（含）"""
        return self.next_day_start(value) - timedelta(microseconds=1)

    def next_day_start(self, value: Optional[DateLike] = None) -> datetime:
        local = self.to_local(value) if value is not None else self.now()
        return datetime.combine(local.date() + timedelta(days=1), time.min, tzinfo=self.tz)

    def add_days(self, days: int, value: Optional[DateLike] = None) -> datetime:
        local = self.to_local(value) if value is not None else self.now()
        # 按墙上时间加减，保持时分秒不变
        shifted = datetime.combine(local.date() + timedelta(days=days), local.timetz())
        return shifted.replace(tzinfo=self.tz)

    def add_months(self, months: int, value: Optional[DateLike] = None) -> datetime:
        """加减月份；目标月份天数不足时取月末（1月31日 + 1个月 = 2月28/29日）"""
        local = self.to_local(value) if value is not None else self.now()
        month_index = local.month - 1 + months
        year = local.year + month_index // 12
        month = month_index % 12 + 1
        day = min(local.day, calendar.monthrange(year, month)[1])
        return local.replace(year=year, month=month, day=day)

    def format(self, value: DateLike, fmt: str = "datetime") -> str:
        local = self.to_local(value)
        if fmt == "date":
            return local.strftime("%Y-%m-%d")
        if fmt in ("time", "time24"):
            return local.strftime("%H:%M:%S")
        return local.strftime("%Y-%m-%d %H:%M:%S")

    def date_key(self, value: DateLike) -> str:
        """YYYYMMDD，用于订单号和序列号"""
        return self.to_local(value).strftime("%Y%m%d")

    @staticmethod
    def is_valid_time_string(value: Optional[str]) -> bool:
        return bool(value) and TIME_PATTERN.match(value) is not None

    def _parse(self, value: str) -> Union[datetime, date]:
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        # 兼容 JS 风格的 Z 后缀
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
