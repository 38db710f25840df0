"""
订阅生命周期服务
负责订阅状态流转、餐次额度消耗和每日过期扫描

状态流转：
    pending -> active      支付确认且分配供餐方后
    pending -> failed      支付失败
    pending/active -> cancelled   用户或管理员取消
    * -> expired           过期扫描（end_date 早于今天）
    pending/active 续费只延长 end_date，不改变状态
expired / cancelled / failed 为终态，不能再流转。

订单生成服务只读取订阅；订阅状态和额度只在这里写入。
"""

import logging
from datetime import datetime
from typing import List, Optional

from ..core.events import EventEmitter
from ..core.exceptions import (
    InsufficientCreditsError,
    InvalidStateTransitionError,
    SubscriptionNotFoundError,
    ValidationError,
)
from ..models.subscription import (
    CancellationDetails,
    RenewalRecord,
    SubscriptionStatus,
    UserSubscription,
)
from ..repositories.base import Repository
from ..utils.timezone import TimeWindow

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    SubscriptionStatus.PENDING.value: {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.FAILED.value,
        SubscriptionStatus.CANCELLED.value,
        SubscriptionStatus.EXPIRED.value,
    },
    SubscriptionStatus.ACTIVE.value: {
        SubscriptionStatus.CANCELLED.value,
        SubscriptionStatus.EXPIRED.value,
    },
}


class SubscriptionService:
    """订阅服务"""

    def __init__(
        self,
        repository: Repository,
        time_window: TimeWindow,
        events: Optional[EventEmitter] = None,
    ):
        self.repository = repository
        self.time_window = time_window
        self.events = events or EventEmitter()

    def get_subscription(self, user_subscription_id: str) -> UserSubscription:
        sub = self.repository.get_user_subscription(user_subscription_id)
        if sub is None:
            raise SubscriptionNotFoundError(user_subscription_id)
        return sub

    def _transition(self, sub: UserSubscription, target: SubscriptionStatus) -> None:
        current = SubscriptionStatus(sub.status).value
        if target.value not in ALLOWED_TRANSITIONS.get(current, set()):
            raise InvalidStateTransitionError(current, target.value)
        sub.status = target.value

    def activate(self, user_subscription_id: str) -> UserSubscription:
        """支付确认后激活"""
        sub = self.get_subscription(user_subscription_id)
        self._transition(sub, SubscriptionStatus.ACTIVE)
        self.repository.save_user_subscription(sub)
        self.events.info("subscription.activated", user_subscription_id=sub.id)
        return sub

    def mark_failed(self, user_subscription_id: str, reason: str = "") -> UserSubscription:
        """支付失败"""
        sub = self.get_subscription(user_subscription_id)
        self._transition(sub, SubscriptionStatus.FAILED)
        self.repository.save_user_subscription(sub)
        self.events.warning("subscription.failed", user_subscription_id=sub.id, reason=reason)
        return sub

    def cancel(
        self, user_subscription_id: str, reason: str, refund_amount: float = 0
    ) -> UserSubscription:
        sub = self.get_subscription(user_subscription_id)
        self._transition(sub, SubscriptionStatus.CANCELLED)
        sub.cancellation_details = CancellationDetails(
            cancelled_at=self.time_window.now(),
            reason=reason,
            refund_amount=refund_amount,
        )
        self.repository.save_user_subscription(sub)
        self.events.info(
            "subscription.cancelled", user_subscription_id=sub.id, refund_amount=refund_amount
        )
        return sub

    def consume_credits(self, user_subscription_id: str, count: int = 1) -> UserSubscription:
        """
        消耗餐次额度（订单送达/消费时调用）
        
        Raises:
            ValidationError: count 不是正数
            InvalidStateTransitionError: 订阅不在 active 状态
            InsufficientCreditsError: 剩余额度不足
        """
        if count <= 0:
            raise ValidationError("Credits to consume must be positive", {"count": count})

        sub = self.get_subscription(user_subscription_id)
        if not sub.is_active():
            raise InvalidStateTransitionError(SubscriptionStatus(sub.status).value, "consume_credits")
        if not sub.can_use_credits(count):
            raise InsufficientCreditsError(sub.get_remaining_credits(), count)

        sub.credits_used += count
        self.repository.save_user_subscription(sub)
        self.events.info(
            "subscription.credits_consumed",
            user_subscription_id=sub.id,
            count=count,
            remaining=sub.get_remaining_credits(),
        )
        return sub

    def expire_subscriptions(self) -> int:
        """
        过期扫描：end_date 早于今天 00:00 且未打过期标记的订阅
        
        统一打上 is_expired 标记；pending/active 的同时改为 expired，
        已处于终态的只补标记、保留原状态。
        
        Returns:
            int: 本次更新的订阅数
        """
        today = self.time_window.start_of_day()
        candidates = self.repository.find_subscriptions_to_expire(today)
        self.events.info(
            "subscription_sweep.started",
            today=self.time_window.format(today, "date"),
            candidates=len(candidates),
        )

        updated = 0
        for sub in candidates:
            sub.is_expired = True
            if not sub.is_terminal():
                sub.status = SubscriptionStatus.EXPIRED.value
            self.repository.save_user_subscription(sub)
            updated += 1
            logger.debug(
                "Subscription %s expired (end date %s)",
                sub.id, self.time_window.format(sub.end_date, "date"),
            )

        self.events.info("subscription_sweep.completed", updated=updated)
        return updated

    def find_expiring(self, days: int = 3) -> List[UserSubscription]:
        """未开启自动续费、将在 days 天内到期的订阅"""
        now = self.time_window.now()
        return self.repository.find_expiring_subscriptions(
            now, self.time_window.end_of_day(self.time_window.add_days(days, now))
        )

    def find_active_for_user(self, user_id: str) -> List[UserSubscription]:
        """用户当前生效的订阅，到期时间晚的在前"""
        return self.repository.find_active_subscriptions_for_user(user_id, self.time_window.now())

    def renew(
        self,
        user_subscription_id: str,
        transaction_id: Optional[str] = None,
        new_end_date: Optional[datetime] = None,
    ) -> UserSubscription:
        """
        续费：延长到期时间并追加一条续费记录
        
        未指定 new_end_date 时按套餐时长，从当前到期日的次日起算。
        
        Raises:
            InvalidStateTransitionError: 订阅已处于终态
            ValidationError: 套餐不存在，或新到期时间不晚于当前到期时间
        """
        sub = self.get_subscription(user_subscription_id)
        if sub.is_terminal():
            raise InvalidStateTransitionError(SubscriptionStatus(sub.status).value, "renew")

        if new_end_date is None:
            plan = self.repository.get_plan(sub.subscription_id)
            if plan is None:
                raise ValidationError(
                    "Subscription plan not found", {"subscription_id": sub.subscription_id}
                )
            new_end_date = plan.end_date_for(
                self.time_window.next_day_start(sub.end_date), self.time_window
            )
        else:
            new_end_date = self.time_window.to_local(new_end_date)

        if new_end_date <= sub.end_date:
            raise ValidationError(
                "New end date must be after the current end date",
                {
                    "current_end_date": self.time_window.format(sub.end_date),
                    "new_end_date": self.time_window.format(new_end_date),
                },
            )

        now = self.time_window.now()
        sub.renewal_history.append(RenewalRecord(
            renewed_at=now,
            previous_end_date=sub.end_date,
            new_end_date=new_end_date,
            transaction_id=transaction_id,
        ))
        sub.end_date = new_end_date
        self.repository.save_user_subscription(sub)
        self.events.info(
            "subscription.renewed",
            user_subscription_id=sub.id,
            end_date=self.time_window.format(new_end_date, "date"),
            days_remaining=sub.get_days_remaining(now),
            transaction_id=transaction_id,
        )
        return sub
