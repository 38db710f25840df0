"""
内存实现
用于单元测试和本地演示；读写都做深拷贝，调用方拿到的对象与存储互不影响
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..models.daily_meal import DailyMeal
from ..models.order import Order
from ..models.order_creation_log import OrderCreationLog
from ..models.subscription import SubscriptionPlan, SubscriptionStatus, UserSubscription
from .base import LogFilter, Repository, is_eligible_for_day


class InMemoryRepository(Repository):

    def __init__(self):
        self._lock = threading.RLock()
        self.plans: Dict[str, SubscriptionPlan] = {}
        self.user_subscriptions: Dict[str, UserSubscription] = {}
        self.daily_meals: Dict[str, DailyMeal] = {}
        self.orders: Dict[str, Order] = {}
        self.logs: Dict[str, OrderCreationLog] = {}
        self.sequences: Dict[str, int] = {}

    @staticmethod
    def _copy(model):
        return model.model_copy(deep=True) if model is not None else None

    def _put(self, table: Dict, model):
        with self._lock:
            table[model.id] = self._copy(model)
        return model

    def save_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        return self._put(self.plans, plan)

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        return self._copy(self.plans.get(plan_id))

    def save_user_subscription(self, sub: UserSubscription) -> UserSubscription:
        return self._put(self.user_subscriptions, sub)

    def get_user_subscription(self, user_subscription_id: str) -> Optional[UserSubscription]:
        return self._copy(self.user_subscriptions.get(user_subscription_id))

    def find_eligible_subscriptions(
        self, subscription_id: str, day_start: datetime, day_end: datetime
    ) -> List[UserSubscription]:
        with self._lock:
            return [
                self._copy(sub)
                for sub in self.user_subscriptions.values()
                if is_eligible_for_day(sub, subscription_id, day_start, day_end)
            ]

    def find_subscriptions_to_expire(self, before: datetime) -> List[UserSubscription]:
        with self._lock:
            return [
                self._copy(sub)
                for sub in self.user_subscriptions.values()
                if sub.end_date < before and not sub.is_expired
            ]

    def find_expiring_subscriptions(self, start: datetime, end: datetime) -> List[UserSubscription]:
        with self._lock:
            return [
                self._copy(sub)
                for sub in self.user_subscriptions.values()
                if sub.status == SubscriptionStatus.ACTIVE
                and not sub.auto_renew
                and start <= sub.end_date <= end
            ]

    def find_active_subscriptions_for_user(self, user_id: str, at: datetime) -> List[UserSubscription]:
        with self._lock:
            matched = [
                sub for sub in self.user_subscriptions.values()
                if sub.user_id == user_id
                and sub.status == SubscriptionStatus.ACTIVE
                and sub.end_date >= at
            ]
            matched.sort(key=lambda sub: sub.end_date, reverse=True)
            return [self._copy(sub) for sub in matched]

    def save_daily_meal(self, meal: DailyMeal) -> DailyMeal:
        return self._put(self.daily_meals, meal)

    def get_daily_meal(self, daily_meal_id: str) -> Optional[DailyMeal]:
        return self._copy(self.daily_meals.get(daily_meal_id))

    def find_daily_meal(
        self, subscription_id: str, day_start: datetime, day_end: datetime
    ) -> Optional[DailyMeal]:
        with self._lock:
            for meal in self.daily_meals.values():
                if meal.subscription_id == subscription_id and day_start <= meal.meal_date <= day_end:
                    return self._copy(meal)
        return None

    def find_active_daily_meals(self, day_start: datetime, day_end: datetime) -> List[DailyMeal]:
        with self._lock:
            return [
                self._copy(meal)
                for meal in self.daily_meals.values()
                if meal.is_active and day_start <= meal.meal_date <= day_end
            ]

    def find_live_order(
        self,
        user_id: str,
        user_subscription_id: str,
        day_start: datetime,
        day_end: datetime,
        meal_type: str,
    ) -> Optional[Order]:
        with self._lock:
            for order in self.orders.values():
                if (
                    order.user_id == user_id
                    and order.user_subscription_id == user_subscription_id
                    and order.meal_type == meal_type
                    and day_start <= order.delivery_date <= day_end
                    and order.is_live
                ):
                    return self._copy(order)
        return None

    def insert_order(self, order: Order) -> Order:
        with self._lock:
            if any(o.order_number == order.order_number for o in self.orders.values()):
                raise ValueError(f"Duplicate order number {order.order_number}")
            return self._put(self.orders, order)

    def save_order(self, order: Order) -> Order:
        return self._put(self.orders, order)

    def list_orders_for_subscription(self, user_subscription_id: str) -> List[Order]:
        with self._lock:
            return [
                self._copy(order)
                for order in self.orders.values()
                if order.user_subscription_id == user_subscription_id
            ]

    def next_sequence_value(self, name: str) -> int:
        with self._lock:
            self.sequences[name] = self.sequences.get(name, 0) + 1
            return self.sequences[name]

    def insert_log(self, log: OrderCreationLog) -> OrderCreationLog:
        return self._put(self.logs, log)

    def save_log(self, log: OrderCreationLog) -> OrderCreationLog:
        return self._put(self.logs, log)

    def get_log(self, log_id: str) -> Optional[OrderCreationLog]:
        return self._copy(self.logs.get(log_id))

    def list_logs(
        self, log_filter: LogFilter, offset: int, limit: int
    ) -> Tuple[List[OrderCreationLog], int]:
        with self._lock:
            matched = [
                log for log in self.logs.values()
                if (log_filter.status is None or log.status == log_filter.status)
                and (log_filter.subscription_id is None or log.subscription_id == log_filter.subscription_id)
                and (log_filter.daily_meal_id is None or log.daily_meal_id == log_filter.daily_meal_id)
                and (log_filter.trigger_from is None or log.trigger_date >= log_filter.trigger_from)
                and (log_filter.trigger_to is None or log.trigger_date <= log_filter.trigger_to)
            ]
            matched.sort(key=lambda log: log.trigger_date, reverse=True)
            page = [self._copy(log) for log in matched[offset:offset + limit]]
            return page, len(matched)
