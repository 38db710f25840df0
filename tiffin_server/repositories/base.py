"""
数据访问抽象

订单生成引擎、订阅服务和调度任务只依赖这里定义的接口，
生产环境使用 DuckDBRepository，单元测试使用 InMemoryRepository。
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from ..models.daily_meal import DailyMeal
from ..models.order import Order
from ..models.order_creation_log import OrderCreationLog
from ..models.subscription import SubscriptionPlan, SubscriptionStatus, UserSubscription


@dataclass
class LogFilter:
    """订单生成日志查询条件"""
    status: Optional[str] = None
    subscription_id: Optional[str] = None
    daily_meal_id: Optional[str] = None
    trigger_from: Optional[datetime] = None
    trigger_to: Optional[datetime] = None


def is_eligible_for_day(
    sub: UserSubscription, subscription_id: str, day_start: datetime, day_end: datetime
) -> bool:
    """订阅是否应参与某一天的订单生成（按日界线比较，不按精确时刻）"""
    return (
        sub.subscription_id == subscription_id
        and sub.status == SubscriptionStatus.ACTIVE
        and not sub.is_expired
        and sub.vendor_details.is_vendor_assigned
        and sub.start_date <= day_end
        and sub.end_date >= day_start
    )


class Repository(ABC):
    """持久化接口"""

    # 套餐

    @abstractmethod
    def save_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan: ...

    @abstractmethod
    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]: ...

    # 用户订阅

    @abstractmethod
    def save_user_subscription(self, sub: UserSubscription) -> UserSubscription: ...

    @abstractmethod
    def get_user_subscription(self, user_subscription_id: str) -> Optional[UserSubscription]: ...

    @abstractmethod
    def find_eligible_subscriptions(
        self, subscription_id: str, day_start: datetime, day_end: datetime
    ) -> List[UserSubscription]:
        """套餐下在 [day_start, day_end] 内有效、已分配供餐方、未过期的 active 订阅"""

    @abstractmethod
    def find_subscriptions_to_expire(self, before: datetime) -> List[UserSubscription]:
        """end_date < before 且尚未打过期标记的订阅"""

    @abstractmethod
    def find_expiring_subscriptions(self, start: datetime, end: datetime) -> List[UserSubscription]:
        """active、非自动续费、end_date 落在 [start, end] 的订阅"""

    @abstractmethod
    def find_active_subscriptions_for_user(self, user_id: str, at: datetime) -> List[UserSubscription]:
        """用户名下 active 且 end_date >= at 的订阅，按到期时间倒序"""

    # 每日菜单

    @abstractmethod
    def save_daily_meal(self, meal: DailyMeal) -> DailyMeal: ...

    @abstractmethod
    def get_daily_meal(self, daily_meal_id: str) -> Optional[DailyMeal]: ...

    @abstractmethod
    def find_daily_meal(
        self, subscription_id: str, day_start: datetime, day_end: datetime
    ) -> Optional[DailyMeal]: ...

    @abstractmethod
    def find_active_daily_meals(self, day_start: datetime, day_end: datetime) -> List[DailyMeal]: ...

    # 订单

    @abstractmethod
    def find_live_order(
        self,
        user_id: str,
        user_subscription_id: str,
        day_start: datetime,
        day_end: datetime,
        meal_type: str,
    ) -> Optional[Order]:
        """同一订阅、同一天、同一餐别下未跳过/未取消的订单"""

    @abstractmethod
    def insert_order(self, order: Order) -> Order: ...

    @abstractmethod
    def save_order(self, order: Order) -> Order: ...

    @abstractmethod
    def list_orders_for_subscription(self, user_subscription_id: str) -> List[Order]: ...

    @abstractmethod
    def next_sequence_value(self, name: str) -> int:
        """原子地递增并返回序列值，从 1 开始"""

    # 订单生成日志

    @abstractmethod
    def insert_log(self, log: OrderCreationLog) -> OrderCreationLog: ...

    @abstractmethod
    def save_log(self, log: OrderCreationLog) -> OrderCreationLog: ...

    @abstractmethod
    def get_log(self, log_id: str) -> Optional[OrderCreationLog]: ...

    @abstractmethod
    def list_logs(
        self, log_filter: LogFilter, offset: int, limit: int
    ) -> Tuple[List[OrderCreationLog], int]:
        """按 trigger_date 倒序分页，返回 (当前页, 总数)"""
