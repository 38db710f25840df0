"""
订单生成服务
把某一天发布的每日菜单展开为该套餐下所有有效订阅的具体订单

处理流程：
- 批次开始即落库一条 running 状态的生成日志
- 逐个订阅顺序处理：校验订阅 -> 按已开启的餐别逐个生成订单 -> 记录结果
- 单个订阅/餐别的问题只写入日志失败列表，不中断批次
- 只有循环之外的异常（如查询订阅失败）会把日志置为 failed 并抛给调用方

业务规则：
- 同一 (订阅, 配送日期, 餐别) 最多一张未跳过/未取消的订单
- 生成订单只检查剩余额度，不扣减；额度在送达/消费时由订阅服务扣减
- 可重试与否由失败原因决定，不可重试的记录不会被重试接口处理
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, Optional, Union

from ..core.events import EventEmitter
from ..core.exceptions import OrderCreationLogNotFoundError, OrderValidationError
from ..models.base import PaginationInfo, PaginationParams
from ..models.common import GeoPoint, MealType
from ..models.daily_meal import DailyMeal
from ..models.order import Order, OrderStatus
from ..models.order_creation_log import FailureCode, LogStatus, OrderCreationLog
from ..models.subscription import UserSubscription
from ..repositories.base import LogFilter, Repository, is_eligible_for_day
from ..utils.timezone import TimeWindow

logger = logging.getLogger(__name__)


@dataclass
class OrderOutcome:
    """单个 (订阅, 餐别) 的处理结果"""
    meal_type: str
    order: Optional[Order] = None
    failure_code: Optional[FailureCode] = None
    reason: str = ""
    can_retry: bool = False

    @property
    def success(self) -> bool:
        return self.order is not None

    @classmethod
    def created(cls, order: Order) -> "OrderOutcome":
        return cls(meal_type=order.meal_type, order=order)

    @classmethod
    def failed(cls, meal_type: str, code: FailureCode, reason: str) -> "OrderOutcome":
        return cls(meal_type=meal_type, failure_code=code, reason=reason, can_retry=code.retryable)


@dataclass
class BatchResult:
    success: bool
    message: str
    log: OrderCreationLog

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message, "log": self.log.model_dump(mode="json")}


@dataclass
class RetryResult:
    """重试结果；拒绝重试时 code 为拒绝原因，重试失败时为新的失败原因"""
    success: bool
    message: str
    code: Optional[str] = None
    order: Optional[Order] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "code": self.code,
            "order": self.order.model_dump(mode="json") if self.order else None,
        }


class OrderNumberGenerator:
    """可读订单号：<前缀>-<YYYYMMDD>-<当天序号>，序号按业务时区的自然日递增"""

    def __init__(self, repository: Repository, time_window: TimeWindow, prefix: str = "TFX"):
        self.repository = repository
        self.time_window = time_window
        self.prefix = prefix

    def next_number(self, order_date: datetime) -> str:
        day_key = self.time_window.date_key(order_date)
        sequence = self.repository.next_sequence_value(f"order_{day_key}")
        return f"{self.prefix}-{day_key}-{sequence:04d}"


class OrderCreationLogRecorder:
    """记录批次结果；每次修改都立即落库，进程中途崩溃时日志与已处理进度一致"""

    def __init__(
        self,
        repository: Repository,
        log: OrderCreationLog,
        time_window: TimeWindow,
        events: EventEmitter,
    ):
        self.repository = repository
        self.log = log
        self.time_window = time_window
        self.events = events

    def set_users_found(self, count: int) -> None:
        self.log.total_users_found = count
        self.repository.save_log(self.log)

    def add_failed_order(
        self,
        user_id: str,
        user_subscription_id: str,
        meal_type: str,
        code: FailureCode,
        reason: str,
        can_retry: bool,
    ) -> None:
        self.log.append_failure(
            user_id, user_subscription_id, meal_type, code, reason, can_retry,
            at=self.time_window.now(),
        )
        self.repository.save_log(self.log)
        self.events.warning(
            "order_batch.item_failed",
            log_id=self.log.id,
            user_subscription_id=user_subscription_id,
            meal_type=MealType(meal_type).value,
            code=code.value,
            can_retry=can_retry,
            reason=reason,
        )

    def add_successful_order(
        self, user_id: str, user_subscription_id: str, order_id: str, meal_type: str
    ) -> None:
        self.log.append_success(
            user_id, user_subscription_id, order_id, meal_type, at=self.time_window.now()
        )
        self.repository.save_log(self.log)
        self.events.info(
            "order_batch.item_succeeded",
            log_id=self.log.id,
            user_subscription_id=user_subscription_id,
            meal_type=MealType(meal_type).value,
            order_id=order_id,
        )

    def record(self, sub: UserSubscription, outcome: OrderOutcome) -> None:
        if outcome.success:
            self.add_successful_order(sub.user_id, sub.id, outcome.order.id, outcome.meal_type)
        else:
            self.add_failed_order(
                sub.user_id, sub.id, outcome.meal_type,
                outcome.failure_code, outcome.reason, outcome.can_retry,
            )

    def resolve_failed_order(self, index: int, order: Order) -> None:
        """重试成功：移除失败记录并追加成功记录，一次落库"""
        entry = self.log.remove_failure(index)
        self.log.append_success(
            entry.user_id, entry.user_subscription_id, order.id, order.meal_type,
            at=self.time_window.now(),
        )
        self.repository.save_log(self.log)

    def mark_completed(self) -> None:
        self.log.finish(LogStatus.COMPLETED, self.time_window.now())
        self.repository.save_log(self.log)

    def mark_failed(self) -> None:
        self.log.finish(LogStatus.FAILED, self.time_window.now())
        self.repository.save_log(self.log)


class ValidateSubscription:
    """订阅层面的校验，按顺序检查，第一个不通过的原因即为结果"""

    def __init__(self, time_window: TimeWindow):
        self.time_window = time_window

    def __call__(self, sub: UserSubscription, meal_type: str) -> Optional[OrderOutcome]:
        if not sub.is_active():
            return OrderOutcome.failed(
                meal_type, FailureCode.SUBSCRIPTION_INACTIVE, "Subscription is not active"
            )

        if sub.check_is_expired(self.time_window.now()):
            return OrderOutcome.failed(
                meal_type, FailureCode.SUBSCRIPTION_EXPIRED, "Subscription has expired"
            )

        daily_meal_count = sub.get_daily_meal_count()
        if not sub.can_use_credits(daily_meal_count):
            return OrderOutcome.failed(
                meal_type,
                FailureCode.INSUFFICIENT_CREDITS,
                f"Credits available: {sub.get_remaining_credits()}, Required: {daily_meal_count}",
            )

        return None


class CreateOrder:
    """为一个 (订阅, 每日菜单, 餐别) 生成订单

    业务上的拒绝（已有订单、没有菜单）以失败结果返回；
    组装或落库中的异常直接抛出，由调用方归类为 ORDER_CREATION_FAILED。
    """

    REQUIRED_FIELDS = (
        "user_id",
        "user_subscription_id",
        "daily_meal_id",
        "order_date",
        "delivery_date",
        "meal_type",
        "delivery_time",
    )
    REQUIRED_ADDRESS_FIELDS = ("street", "city", "zip_code")

    def __init__(
        self,
        repository: Repository,
        time_window: TimeWindow,
        order_numbers: OrderNumberGenerator,
        default_country: str = "India",
    ):
        self.repository = repository
        self.time_window = time_window
        self.order_numbers = order_numbers
        self.default_country = default_country

    def __call__(self, sub: UserSubscription, daily_meal: DailyMeal, meal_type: str) -> OrderOutcome:
        meal_type = MealType(meal_type).value
        day_start = self.time_window.start_of_day(daily_meal.meal_date)
        day_end = self.time_window.end_of_day(daily_meal.meal_date)

        existing = self.repository.find_live_order(
            sub.user_id, sub.id, day_start, day_end, meal_type
        )
        if existing is not None:
            return OrderOutcome.failed(
                meal_type,
                FailureCode.ORDER_ALREADY_EXISTS,
                f"Order {existing.order_number} already exists",
            )

        menus = daily_meal.menus_for(meal_type)
        if not menus:
            return OrderOutcome.failed(
                meal_type, FailureCode.NO_MENU_AVAILABLE, f"No {meal_type} menu set for this date"
            )

        order_data = self.build_order_data(sub, daily_meal, meal_type)
        self.validate_order_data(order_data)

        order = Order.model_validate(order_data)
        order.order_number = self.order_numbers.next_number(order.order_date)
        self.repository.insert_order(order)
        logger.debug("Created %s order %s for subscription %s", meal_type, order.order_number, sub.id)
        return OrderOutcome.created(order)

    def build_order_data(
        self, sub: UserSubscription, daily_meal: DailyMeal, meal_type: str
    ) -> Dict[str, Any]:
        """组装订单文档，菜单、地址、供餐方都复制一份快照"""
        address = sub.delivery_address.model_copy(deep=True) if sub.delivery_address else None
        if address is not None:
            if not address.country:
                address.country = self.default_country
            if address.coordinates is None:
                address.coordinates = GeoPoint()

        current_vendor = sub.vendor_details.current_vendor
        return {
            "user_id": sub.user_id,
            "user_subscription_id": sub.id,
            "daily_meal_id": daily_meal.id,
            "order_date": self.time_window.now(),
            "delivery_date": daily_meal.meal_date,
            "meal_type": meal_type,
            "selected_menus": [item.model_copy(deep=True) for item in daily_meal.menus_for(meal_type)],
            "delivery_time": sub.delivery_time_for(meal_type),
            "delivery_address": address,
            "vendor_details": {
                "vendor_id": current_vendor.vendor_id if current_vendor else None,
                "vendor_type": current_vendor.vendor_type if current_vendor else None,
            },
            "status": OrderStatus.UPCOMING.value,
        }

    @classmethod
    def validate_order_data(cls, order_data: Dict[str, Any]) -> None:
        """落库前的必填校验，不依赖模型层校验"""
        for field in cls.REQUIRED_FIELDS:
            if not order_data.get(field):
                raise OrderValidationError(field)

        delivery_time = order_data["delivery_time"]
        if not TimeWindow.is_valid_time_string(delivery_time):
            raise OrderValidationError(
                "delivery_time", f"delivery_time must be in HH:MM format, got: {delivery_time}"
            )

        if not order_data.get("selected_menus"):
            raise OrderValidationError("selected_menus")

        if not (order_data.get("vendor_details") or {}).get("vendor_id"):
            raise OrderValidationError("vendor_details.vendor_id")

        address = order_data.get("delivery_address")
        if address is None:
            raise OrderValidationError("delivery_address")
        for field in cls.REQUIRED_ADDRESS_FIELDS:
            if not getattr(address, field):
                raise OrderValidationError(f"delivery_address.{field}")


class OrderCreationService:
    """订单生成服务"""

    def __init__(
        self,
        repository: Repository,
        time_window: TimeWindow,
        events: Optional[EventEmitter] = None,
        default_country: str = "India",
        order_number_prefix: str = "TFX",
    ):
        self.repository = repository
        self.time_window = time_window
        self.events = events or EventEmitter()
        self.validate_subscription = ValidateSubscription(time_window)
        self.create_order = CreateOrder(
            repository,
            time_window,
            OrderNumberGenerator(repository, time_window, order_number_prefix),
            default_country,
        )

    def _recorder(self, log: OrderCreationLog) -> OrderCreationLogRecorder:
        return OrderCreationLogRecorder(self.repository, log, self.time_window, self.events)

    def create_orders_for_daily_meal(self, daily_meal: DailyMeal, triggered_by: str) -> BatchResult:
        """
        为每日菜单批量生成订单
        
        Args:
            daily_meal: 已发布的每日菜单
            triggered_by: 触发者（管理员ID或系统操作者）
            
        Returns:
            BatchResult: 汇总信息和日志
            
        Raises:
            批次级错误（如查询订阅失败）在日志置为 failed 后原样抛出
        """
        log = OrderCreationLog(
            daily_meal_id=daily_meal.id,
            subscription_id=daily_meal.subscription_id,
            trigger_date=self.time_window.now(),
            triggered_by=triggered_by,
        )
        self.repository.insert_log(log)
        recorder = self._recorder(log)
        self.events.info(
            "order_batch.started",
            log_id=log.id,
            daily_meal_id=daily_meal.id,
            subscription_id=daily_meal.subscription_id,
            meal_date=self.time_window.format(daily_meal.meal_date, "date"),
            triggered_by=triggered_by,
        )

        try:
            subscriptions = self.repository.find_eligible_subscriptions(
                daily_meal.subscription_id,
                self.time_window.start_of_day(daily_meal.meal_date),
                self.time_window.end_of_day(daily_meal.meal_date),
            )
            recorder.set_users_found(len(subscriptions))

            if not subscriptions:
                recorder.mark_completed()
                self.events.info("order_batch.completed", log_id=log.id, users_found=0, created=0, failed=0)
                return BatchResult(True, "No active subscriptions found", log)

            for sub in subscriptions:
                self.create_orders_for_user_subscription(sub, daily_meal, recorder)

            recorder.mark_completed()
        except Exception as exc:
            try:
                recorder.mark_failed()
            except Exception:
                logger.exception("Could not mark order creation log %s as failed", log.id)
            self.events.error("order_batch.failed", log_id=log.id, error=str(exc))
            raise

        self.events.info(
            "order_batch.completed",
            log_id=log.id,
            users_found=log.total_users_found,
            created=log.total_orders_created,
            failed=log.total_orders_failed,
        )
        return BatchResult(
            True,
            f"Orders created successfully. {log.total_orders_created} successful, "
            f"{log.total_orders_failed} failed.",
            log,
        )

    def create_orders_for_user_subscription(
        self, sub: UserSubscription, daily_meal: DailyMeal, recorder: OrderCreationLogRecorder
    ) -> None:
        """处理单个订阅；所有失败都写入日志，不向外抛出业务异常"""
        # 订阅层面的失败没有具体餐别，记在第一个开启的餐别上
        fallback_meal_type = MealType.LUNCH.value
        try:
            meal_types = sub.get_meal_types()
            if meal_types:
                fallback_meal_type = meal_types[0]
            rejection = self.validate_subscription(sub, fallback_meal_type)
        except Exception as exc:
            logger.exception("Error validating user subscription %s", sub.id)
            recorder.add_failed_order(
                sub.user_id, sub.id, fallback_meal_type,
                FailureCode.VALIDATION_ERROR, str(exc), True,
            )
            return

        if rejection is not None:
            recorder.record(sub, rejection)
            return

        # 各餐别互不影响：午餐失败不阻止晚餐
        for meal_type in meal_types:
            try:
                self.create_single_order(sub, daily_meal, meal_type, recorder)
            except Exception as exc:
                logger.exception("Failed to create %s order for subscription %s", meal_type, sub.id)
                recorder.add_failed_order(
                    sub.user_id, sub.id, meal_type,
                    FailureCode.ORDER_CREATION_FAILED, str(exc), True,
                )

    def create_single_order(
        self,
        sub: UserSubscription,
        daily_meal: DailyMeal,
        meal_type: str,
        recorder: OrderCreationLogRecorder,
    ) -> OrderOutcome:
        outcome = self.create_order(sub, daily_meal, meal_type)
        recorder.record(sub, outcome)
        return outcome

    def retry_failed_order(self, log_id: str, failed_order_index: int, actor_id: str) -> RetryResult:
        """
        重试日志中的一条失败记录
        
        拒绝重试（日志不存在、下标越界、不可重试、批次仍在运行等）返回失败结果而不是抛异常；
        重试失败时保留原失败记录不变。
        """
        log = self.repository.get_log(log_id)
        if log is None:
            return RetryResult(False, "Order creation log not found", "LOG_NOT_FOUND")

        if not log.is_finished:
            return RetryResult(False, "Order creation is still running for this log", "BATCH_IN_PROGRESS")

        if failed_order_index < 0 or failed_order_index >= len(log.failed_orders):
            return RetryResult(False, "Invalid failed order index", "INVALID_INDEX")

        entry = log.failed_orders[failed_order_index]
        if not entry.can_retry:
            return RetryResult(False, "This order cannot be retried", "NOT_RETRYABLE")

        sub = self.repository.get_user_subscription(entry.user_subscription_id)
        if sub is None:
            return RetryResult(False, "User subscription not found", "SUBSCRIPTION_NOT_FOUND")

        # 重新读取每日菜单，管理员补发的菜单才能生效
        daily_meal = self.repository.get_daily_meal(log.daily_meal_id)
        if daily_meal is None:
            return RetryResult(False, "Daily meal not found", "DAILY_MEAL_NOT_FOUND")

        meal_type = MealType(entry.meal_type).value

        # 订阅状态在批次之后可能已变化，与批次使用同样的资格和校验条件
        rejection = self.validate_subscription(sub, meal_type)
        if rejection is not None:
            return self._retry_rejected(log, failed_order_index, actor_id, rejection)

        if not is_eligible_for_day(
            sub,
            daily_meal.subscription_id,
            self.time_window.start_of_day(daily_meal.meal_date),
            self.time_window.end_of_day(daily_meal.meal_date),
        ):
            return RetryResult(
                False, "Subscription is not eligible for this meal date", "SUBSCRIPTION_NOT_ELIGIBLE"
            )

        try:
            outcome = self.create_order(sub, daily_meal, meal_type)
        except Exception as exc:
            logger.exception("Retry of %s order for subscription %s failed", meal_type, sub.id)
            outcome = OrderOutcome.failed(meal_type, FailureCode.ORDER_CREATION_FAILED, str(exc))

        if not outcome.success:
            return self._retry_rejected(log, failed_order_index, actor_id, outcome)

        self._recorder(log).resolve_failed_order(failed_order_index, outcome.order)
        self.events.info(
            "order_retry.succeeded",
            log_id=log.id,
            index=failed_order_index,
            actor_id=actor_id,
            order_id=outcome.order.id,
        )
        return RetryResult(True, "Order retry successful", order=outcome.order)

    def _retry_rejected(
        self, log: OrderCreationLog, index: int, actor_id: str, outcome: OrderOutcome
    ) -> RetryResult:
        """重试未成功：日志保持不变，只记录事件"""
        self.events.warning(
            "order_retry.failed",
            log_id=log.id,
            index=index,
            actor_id=actor_id,
            code=outcome.failure_code.value,
            reason=outcome.reason,
        )
        return RetryResult(False, outcome.reason, outcome.failure_code.value)

    def get_order_creation_log(self, log_id: str) -> OrderCreationLog:
        log = self.repository.get_log(log_id)
        if log is None:
            raise OrderCreationLogNotFoundError(log_id)
        return log

    def get_order_creation_logs(
        self,
        status: Optional[str] = None,
        subscription_id: Optional[str] = None,
        daily_meal_id: Optional[str] = None,
        start_date: Optional[Union[date, datetime, str]] = None,
        end_date: Optional[Union[date, datetime, str]] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Dict[str, Any]:
        """分页查询订单生成日志，按触发时间倒序；同一每日菜单每次触发各有一条日志"""
        pagination = PaginationParams(page=page, limit=limit)
        log_filter = LogFilter(
            status=status,
            subscription_id=subscription_id,
            daily_meal_id=daily_meal_id,
            trigger_from=self.time_window.start_of_day(start_date) if start_date else None,
            trigger_to=self.time_window.end_of_day(end_date) if end_date else None,
        )
        logs, total = self.repository.list_logs(log_filter, pagination.offset, pagination.limit)
        return {
            "logs": logs,
            "pagination": PaginationInfo.create(total, pagination),
        }
