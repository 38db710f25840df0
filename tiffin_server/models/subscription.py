"""
订阅相关数据模型

SubscriptionPlan 是管理员维护的套餐模板；UserSubscription 是用户购买后的
快照，同时承担餐次额度账本和生命周期两个职责。
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from .base import BaseEntity, BusinessDateTime, TimestampMixin, new_id
from .common import DeliveryAddress, MealType, VendorType


class SubscriptionStatus(str, Enum):
    """用户订阅状态"""
    PENDING = "pending"         # 已下单，待支付确认/分配供餐方
    ACTIVE = "active"           # 生效中
    EXPIRED = "expired"         # 已过期（终态）
    CANCELLED = "cancelled"     # 已取消（终态）
    FAILED = "failed"           # 支付失败（终态）


TERMINAL_STATUSES = frozenset({
    SubscriptionStatus.EXPIRED.value,
    SubscriptionStatus.CANCELLED.value,
    SubscriptionStatus.FAILED.value,
})


class DurationKind(str, Enum):
    """套餐时长类型"""
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    CUSTOM = "custom"


class MealWindow(BaseModel):
    """套餐层面的餐别开放情况和下单时间窗口"""
    available: bool = False
    start_time: Optional[str] = None
    end_time: Optional[str] = None


class PlanMealTimings(BaseModel):
    lunch: MealWindow = Field(default_factory=MealWindow)
    dinner: MealWindow = Field(default_factory=MealWindow)


class SubscriptionPlan(BaseEntity, TimestampMixin):
    """套餐模板"""
    id: str = Field(default_factory=new_id)
    plan_name: str
    duration: DurationKind = DurationKind.MONTHLY
    duration_days: int = Field(30, ge=1)
    meal_timings: PlanMealTimings = Field(default_factory=PlanMealTimings)
    meals_per_plan: int = Field(..., ge=0, description="购买后授予的餐次额度")
    original_price: float = Field(0, ge=0)
    discounted_price: Optional[float] = Field(None, ge=0)
    category: VendorType = VendorType.HOME_CHEF
    is_active: bool = True

    def available_meal_types(self) -> List[str]:
        return [
            meal_type.value
            for meal_type in MealType
            if getattr(self.meal_timings, meal_type.value).available
        ]

    def end_date_for(self, start_date: datetime, time_window) -> datetime:
        """按套餐时长计算到期日（到期当天 23:59:59.999999）"""
        if self.duration == DurationKind.WEEKLY:
            last_day = time_window.add_days(6, start_date)
        elif self.duration == DurationKind.MONTHLY:
            last_day = time_window.add_days(-1, time_window.add_months(1, start_date))
        elif self.duration == DurationKind.YEARLY:
            last_day = time_window.add_days(-1, time_window.add_months(12, start_date))
        else:
            last_day = time_window.add_days(self.duration_days - 1, start_date)
        return time_window.end_of_day(last_day)


class MealSlotTiming(BaseModel):
    """用户订阅中某一餐别的开关和配送时间"""
    enabled: bool = False
    time: Optional[str] = None


class MealTiming(BaseModel):
    lunch: MealSlotTiming = Field(default_factory=MealSlotTiming)
    dinner: MealSlotTiming = Field(default_factory=MealSlotTiming)

    def slot(self, meal_type: str) -> MealSlotTiming:
        return getattr(self, MealType(meal_type).value)


class CurrentVendor(BaseModel):
    vendor_id: Optional[str] = None
    vendor_type: Optional[VendorType] = None


class SubscriptionVendorDetails(BaseModel):
    current_vendor: Optional[CurrentVendor] = None
    is_vendor_assigned: bool = False


class CancellationDetails(BaseModel):
    cancelled_at: Optional[BusinessDateTime] = None
    reason: Optional[str] = None
    refund_amount: float = 0


class RenewalRecord(BaseModel):
    """续费记录"""
    renewed_at: BusinessDateTime
    previous_end_date: BusinessDateTime
    new_end_date: BusinessDateTime
    transaction_id: Optional[str] = None


class UserSubscription(BaseEntity, TimestampMixin):
    """用户订阅（餐次额度账本 + 生命周期）

    这里的查询方法都是只读的；额度消耗和状态变更由 SubscriptionService 负责。
    """
    id: str = Field(default_factory=new_id)
    user_id: str
    subscription_id: str
    transaction_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    credits_granted: int = Field(..., ge=0)
    credits_used: int = Field(0, ge=0)
    start_date: BusinessDateTime
    end_date: BusinessDateTime
    is_expired: bool = False
    meal_timing: MealTiming = Field(default_factory=MealTiming)
    delivery_address: Optional[DeliveryAddress] = None
    vendor_details: SubscriptionVendorDetails = Field(default_factory=SubscriptionVendorDetails)
    promo_code_used: Optional[str] = None
    original_price: float = Field(0, ge=0)
    discount_applied: float = Field(0, ge=0)
    final_price: float = Field(0, ge=0)
    auto_renew: bool = False
    cancellation_details: Optional[CancellationDetails] = None
    renewal_history: List[RenewalRecord] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_ledger(self):
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        if self.credits_used > self.credits_granted:
            raise ValueError("Credits used cannot exceed credits granted")
        if self.discount_applied > self.original_price:
            raise ValueError("Discount cannot exceed original price")
        return self

    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    def is_terminal(self) -> bool:
        return SubscriptionStatus(self.status).value in TERMINAL_STATUSES

    def check_is_expired(self, at: datetime) -> bool:
        """过期标记已被扫描任务设置，或 at 已超过到期时间"""
        return self.is_expired or at > self.end_date

    def get_remaining_credits(self) -> int:
        return max(0, self.credits_granted - self.credits_used)

    def can_use_credits(self, count: int) -> bool:
        return self.get_remaining_credits() >= count

    def get_meal_types(self) -> List[str]:
        """已开启的餐别，顺序固定为 午餐、晚餐"""
        return [
            meal_type.value
            for meal_type in MealType
            if self.meal_timing.slot(meal_type.value).enabled
        ]

    def get_daily_meal_count(self) -> int:
        return len(self.get_meal_types())

    def delivery_time_for(self, meal_type: str) -> Optional[str]:
        return self.meal_timing.slot(meal_type).time

    def get_days_remaining(self, at: datetime) -> int:
        seconds = (self.end_date - at).total_seconds()
        return max(0, -int(-seconds // 86400))
