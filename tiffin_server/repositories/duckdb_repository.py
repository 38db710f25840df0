"""
DuckDB 实现

每张表保存完整的 JSON 文档（doc），查询用的列在写入时同步；
读取一律以 doc 为准。
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from ..core.database import DatabaseManager
from ..models.base import as_business_time
from ..models.daily_meal import DailyMeal
from ..models.order import Order, RELEASED_ORDER_STATUSES
from ..models.order_creation_log import OrderCreationLog
from ..models.subscription import SubscriptionPlan, UserSubscription
from .base import LogFilter, Repository


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """转换为不带时区的 UTC 时间，写入 TIMESTAMP 列；不带时区的输入视为业务时区时间"""
    if value is None:
        return None
    return as_business_time(value).astimezone(timezone.utc).replace(tzinfo=None)


class DuckDBRepository(Repository):

    def __init__(self, db: DatabaseManager):
        self.db = db

    def _exists(self, conn, table: str, entity_id: str) -> bool:
        return conn.execute(f"SELECT 1 FROM {table} WHERE id=?", [entity_id]).fetchone() is not None

    def _fetch_docs(self, query: str, params: list) -> List[str]:
        return [row[0] for row in self.db.execute_query(query, params)]

    # 套餐

    def save_plan(self, plan: SubscriptionPlan) -> SubscriptionPlan:
        doc = plan.model_dump_json()
        with self.db.transaction() as conn:
            if self._exists(conn, "subscription_plans", plan.id):
                conn.execute(
                    "UPDATE subscription_plans SET plan_name=?, category=?, is_active=?, doc=?, updated_at=now() WHERE id=?",
                    [plan.plan_name, plan.category, plan.is_active, doc, plan.id],
                )
            else:
                conn.execute(
                    "INSERT INTO subscription_plans(id, plan_name, category, is_active, doc) VALUES (?,?,?,?,?)",
                    [plan.id, plan.plan_name, plan.category, plan.is_active, doc],
                )
        return plan

    def get_plan(self, plan_id: str) -> Optional[SubscriptionPlan]:
        row = self.db.execute_one("SELECT doc FROM subscription_plans WHERE id=?", [plan_id])
        return SubscriptionPlan.model_validate_json(row[0]) if row else None

    # 用户订阅

    def save_user_subscription(self, sub: UserSubscription) -> UserSubscription:
        doc = sub.model_dump_json()
        assigned = sub.vendor_details.is_vendor_assigned
        with self.db.transaction() as conn:
            if self._exists(conn, "user_subscriptions", sub.id):
                conn.execute(
                    """
                    UPDATE user_subscriptions
                    SET status=?, is_expired=?, is_vendor_assigned=?, auto_renew=?,
                        start_date=?, end_date=?, doc=?, updated_at=now()
                    WHERE id=?
                    """,
                    [sub.status, sub.is_expired, assigned, sub.auto_renew,
                     _utc(sub.start_date), _utc(sub.end_date), doc, sub.id],
                )
            else:
                conn.execute(
                    """
                    INSERT INTO user_subscriptions(
                        id, user_id, subscription_id, status, is_expired, is_vendor_assigned,
                        auto_renew, start_date, end_date, doc
                    ) VALUES (?,?,?,?,?,?,?,?,?,?)
                    """,
                    [sub.id, sub.user_id, sub.subscription_id, sub.status, sub.is_expired,
                     assigned, sub.auto_renew, _utc(sub.start_date), _utc(sub.end_date), doc],
                )
        return sub

    def get_user_subscription(self, user_subscription_id: str) -> Optional[UserSubscription]:
        row = self.db.execute_one("SELECT doc FROM user_subscriptions WHERE id=?", [user_subscription_id])
        return UserSubscription.model_validate_json(row[0]) if row else None

    def find_eligible_subscriptions(
        self, subscription_id: str, day_start: datetime, day_end: datetime
    ) -> List[UserSubscription]:
        docs = self._fetch_docs(
            """
            SELECT doc FROM user_subscriptions
            WHERE subscription_id=?
              AND status='active'
              AND is_expired=FALSE
              AND is_vendor_assigned=TRUE
              AND start_date<=?
              AND end_date>=?
            ORDER BY created_at, id
            """,
            [subscription_id, _utc(day_end), _utc(day_start)],
        )
        return [UserSubscription.model_validate_json(doc) for doc in docs]

    def find_subscriptions_to_expire(self, before: datetime) -> List[UserSubscription]:
        docs = self._fetch_docs(
            "SELECT doc FROM user_subscriptions WHERE end_date<? AND is_expired=FALSE ORDER BY end_date, id",
            [_utc(before)],
        )
        return [UserSubscription.model_validate_json(doc) for doc in docs]

    def find_expiring_subscriptions(self, start: datetime, end: datetime) -> List[UserSubscription]:
        docs = self._fetch_docs(
            """
            SELECT doc FROM user_subscriptions
            WHERE status='active' AND auto_renew=FALSE AND end_date>=? AND end_date<=?
            ORDER BY end_date, id
            """,
            [_utc(start), _utc(end)],
        )
        return [UserSubscription.model_validate_json(doc) for doc in docs]

    def find_active_subscriptions_for_user(self, user_id: str, at: datetime) -> List[UserSubscription]:
        docs = self._fetch_docs(
            "SELECT doc FROM user_subscriptions WHERE user_id=? AND status='active' AND end_date>=? ORDER BY end_date DESC, id",
            [user_id, _utc(at)],
        )
        return [UserSubscription.model_validate_json(doc) for doc in docs]

    # 每日菜单

    def save_daily_meal(self, meal: DailyMeal) -> DailyMeal:
        doc = meal.model_dump_json()
        with self.db.transaction() as conn:
            if self._exists(conn, "daily_meals", meal.id):
                # subscription_id / meal_date 在唯一索引上，发布后不再修改
                conn.execute(
                    "UPDATE daily_meals SET is_active=?, doc=?, updated_at=now() WHERE id=?",
                    [meal.is_active, doc, meal.id],
                )
            else:
                conn.execute(
                    "INSERT INTO daily_meals(id, subscription_id, meal_date, is_active, doc) VALUES (?,?,?,?,?)",
                    [meal.id, meal.subscription_id, _utc(meal.meal_date), meal.is_active, doc],
                )
        return meal

    def get_daily_meal(self, daily_meal_id: str) -> Optional[DailyMeal]:
        row = self.db.execute_one("SELECT doc FROM daily_meals WHERE id=?", [daily_meal_id])
        return DailyMeal.model_validate_json(row[0]) if row else None

    def find_daily_meal(
        self, subscription_id: str, day_start: datetime, day_end: datetime
    ) -> Optional[DailyMeal]:
        row = self.db.execute_one(
            "SELECT doc FROM daily_meals WHERE subscription_id=? AND meal_date>=? AND meal_date<=? LIMIT 1",
            [subscription_id, _utc(day_start), _utc(day_end)],
        )
        return DailyMeal.model_validate_json(row[0]) if row else None

    def find_active_daily_meals(self, day_start: datetime, day_end: datetime) -> List[DailyMeal]:
        docs = self._fetch_docs(
            "SELECT doc FROM daily_meals WHERE is_active=TRUE AND meal_date>=? AND meal_date<=? ORDER BY created_at, id",
            [_utc(day_start), _utc(day_end)],
        )
        return [DailyMeal.model_validate_json(doc) for doc in docs]

    # 订单

    def find_live_order(
        self,
        user_id: str,
        user_subscription_id: str,
        day_start: datetime,
        day_end: datetime,
        meal_type: str,
    ) -> Optional[Order]:
        released = sorted(RELEASED_ORDER_STATUSES)
        row = self.db.execute_one(
            """
            SELECT doc FROM orders
            WHERE user_id=? AND user_subscription_id=? AND meal_type=?
              AND delivery_date>=? AND delivery_date<=?
              AND status NOT IN (?, ?)
            LIMIT 1
            """,
            [user_id, user_subscription_id, str(getattr(meal_type, "value", meal_type)),
             _utc(day_start), _utc(day_end), *released],
        )
        return Order.model_validate_json(row[0]) if row else None

    def insert_order(self, order: Order) -> Order:
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO orders(
                    id, order_number, user_id, user_subscription_id, daily_meal_id,
                    order_date, delivery_date, meal_type, status, doc
                ) VALUES (?,?,?,?,?,?,?,?,?,?)
                """,
                [order.id, order.order_number, order.user_id, order.user_subscription_id,
                 order.daily_meal_id, _utc(order.order_date), _utc(order.delivery_date),
                 order.meal_type, order.status, order.model_dump_json()],
            )
        return order

    def save_order(self, order: Order) -> Order:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE orders SET status=?, doc=?, updated_at=now() WHERE id=?",
                [order.status, order.model_dump_json(), order.id],
            )
        return order

    def list_orders_for_subscription(self, user_subscription_id: str) -> List[Order]:
        docs = self._fetch_docs(
            "SELECT doc FROM orders WHERE user_subscription_id=? ORDER BY delivery_date, meal_type",
            [user_subscription_id],
        )
        return [Order.model_validate_json(doc) for doc in docs]

    def next_sequence_value(self, name: str) -> int:
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT sequence_value FROM order_sequences WHERE name=?", [name]
            ).fetchone()
            if row:
                value = row[0] + 1
                conn.execute("UPDATE order_sequences SET sequence_value=? WHERE name=?", [value, name])
            else:
                value = 1
                conn.execute("INSERT INTO order_sequences(name, sequence_value) VALUES (?, ?)", [name, value])
        return value

    # 订单生成日志

    def insert_log(self, log: OrderCreationLog) -> OrderCreationLog:
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO order_creation_logs(
                    id, daily_meal_id, subscription_id, trigger_date, triggered_by, status, doc
                ) VALUES (?,?,?,?,?,?,?)
                """,
                [log.id, log.daily_meal_id, log.subscription_id, _utc(log.trigger_date),
                 log.triggered_by, log.status, log.model_dump_json()],
            )
        return log

    def save_log(self, log: OrderCreationLog) -> OrderCreationLog:
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE order_creation_logs SET status=?, doc=?, updated_at=now() WHERE id=?",
                [log.status, log.model_dump_json(), log.id],
            )
        return log

    def get_log(self, log_id: str) -> Optional[OrderCreationLog]:
        row = self.db.execute_one("SELECT doc FROM order_creation_logs WHERE id=?", [log_id])
        return OrderCreationLog.model_validate_json(row[0]) if row else None

    def list_logs(
        self, log_filter: LogFilter, offset: int, limit: int
    ) -> Tuple[List[OrderCreationLog], int]:
        clauses, params = [], []
        if log_filter.status:
            clauses.append("status=?")
            params.append(log_filter.status)
        if log_filter.subscription_id:
            clauses.append("subscription_id=?")
            params.append(log_filter.subscription_id)
        if log_filter.daily_meal_id:
            clauses.append("daily_meal_id=?")
            params.append(log_filter.daily_meal_id)
        if log_filter.trigger_from:
            clauses.append("trigger_date>=?")
            params.append(_utc(log_filter.trigger_from))
        if log_filter.trigger_to:
            clauses.append("trigger_date<=?")
            params.append(_utc(log_filter.trigger_to))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total = self.db.execute_one(f"SELECT COUNT(*) FROM order_creation_logs {where}", params)[0]
        docs = self._fetch_docs(
            f"SELECT doc FROM order_creation_logs {where} ORDER BY trigger_date DESC, created_at DESC LIMIT ? OFFSET ?",
            params + [limit, offset],
        )
        return [OrderCreationLog.model_validate_json(doc) for doc in docs], total
