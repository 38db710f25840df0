"""
订单生成日志模型

每次批量生成（一个 DailyMeal 一次）对应一条日志：开始时以 running 状态落库，
处理过程中逐条追加成功/失败记录，结束时置为 completed 或 failed。
这里的方法只修改内存中的对象，落库由 OrderCreationLogRecorder 负责。
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .base import BaseEntity, BusinessDateTime, TimestampMixin, new_id
from .common import MealType


class FailureCode(str, Enum):
    """失败原因分类"""
    SUBSCRIPTION_INACTIVE = "SUBSCRIPTION_INACTIVE"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    ORDER_ALREADY_EXISTS = "ORDER_ALREADY_EXISTS"
    NO_MENU_AVAILABLE = "NO_MENU_AVAILABLE"
    ORDER_CREATION_FAILED = "ORDER_CREATION_FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_CODES


_RETRYABLE_CODES = frozenset({
    FailureCode.NO_MENU_AVAILABLE,
    FailureCode.ORDER_CREATION_FAILED,
    FailureCode.VALIDATION_ERROR,
})


class LogStatus(str, Enum):
    """批处理状态"""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class FailedOrderEntry(BaseModel):
    user_id: str
    user_subscription_id: str
    meal_type: MealType
    failure_code: FailureCode
    reason: str
    can_retry: bool
    failed_at: Optional[BusinessDateTime] = None


class SuccessfulOrderEntry(BaseModel):
    user_id: str
    user_subscription_id: str
    order_id: str
    meal_type: MealType
    created_at: Optional[BusinessDateTime] = None


class OrderCreationLog(BaseEntity, TimestampMixin):
    """订单生成日志"""
    id: str = Field(default_factory=new_id)
    daily_meal_id: str
    subscription_id: str
    trigger_date: BusinessDateTime
    triggered_by: str = Field(..., description="管理员ID或系统操作者")
    total_users_found: int = 0
    total_orders_created: int = 0
    total_orders_failed: int = 0
    status: LogStatus = LogStatus.RUNNING
    completed_at: Optional[BusinessDateTime] = None
    failed_orders: List[FailedOrderEntry] = Field(default_factory=list)
    successful_orders: List[SuccessfulOrderEntry] = Field(default_factory=list)

    @property
    def is_finished(self) -> bool:
        return self.status != LogStatus.RUNNING

    def append_failure(
        self,
        user_id: str,
        user_subscription_id: str,
        meal_type: str,
        failure_code: FailureCode,
        reason: str,
        can_retry: bool,
        at: Optional[datetime] = None,
    ) -> FailedOrderEntry:
        entry = FailedOrderEntry(
            user_id=user_id,
            user_subscription_id=user_subscription_id,
            meal_type=meal_type,
            failure_code=failure_code,
            reason=reason,
            can_retry=can_retry,
            failed_at=at,
        )
        self.failed_orders.append(entry)
        self.total_orders_failed += 1
        return entry

    def append_success(
        self,
        user_id: str,
        user_subscription_id: str,
        order_id: str,
        meal_type: str,
        at: Optional[datetime] = None,
    ) -> SuccessfulOrderEntry:
        entry = SuccessfulOrderEntry(
            user_id=user_id,
            user_subscription_id=user_subscription_id,
            order_id=order_id,
            meal_type=meal_type,
            created_at=at,
        )
        self.successful_orders.append(entry)
        self.total_orders_created += 1
        return entry

    def remove_failure(self, index: int) -> FailedOrderEntry:
        """重试成功后移除对应的失败记录"""
        entry = self.failed_orders.pop(index)
        self.total_orders_failed = max(0, self.total_orders_failed - 1)
        return entry

    def finish(self, status: LogStatus, at: datetime) -> None:
        self.status = status.value
        self.completed_at = at
