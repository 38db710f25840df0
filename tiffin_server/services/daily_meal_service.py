"""
每日菜单服务
发布/更新某套餐某一天的菜单，并可立即触发当天的订单生成
"""

import logging
from typing import Any, Dict, List, Optional

from ..core.exceptions import DailyMealNotFoundError, ValidationError
from ..models.common import MenuItem
from ..models.daily_meal import DailyMeal, SelectedMenus
from ..repositories.base import Repository
from ..utils.timezone import DateLike, TimeWindow
from .order_creation_service import OrderCreationService

logger = logging.getLogger(__name__)


class DailyMealService:
    """每日菜单服务"""

    def __init__(
        self,
        repository: Repository,
        time_window: TimeWindow,
        order_creation: OrderCreationService,
    ):
        self.repository = repository
        self.time_window = time_window
        self.order_creation = order_creation

    def get_daily_meal(self, daily_meal_id: str) -> DailyMeal:
        meal = self.repository.get_daily_meal(daily_meal_id)
        if meal is None:
            raise DailyMealNotFoundError(daily_meal_id)
        return meal

    def publish(
        self,
        subscription_id: str,
        meal_date: DateLike,
        lunch_menus: List[MenuItem],
        dinner_menus: List[MenuItem],
        actor_id: str,
        create_orders: bool = True,
        notes: str = "",
    ) -> Dict[str, Any]:
        """
        发布每日菜单（同一套餐同一天已存在则更新菜单）
        
        Returns:
            dict: daily_meal 以及 order_creation（未触发时为 None）
        """
        if self.repository.get_plan(subscription_id) is None:
            raise ValidationError("Subscription plan not found", {"subscription_id": subscription_id})
        if not lunch_menus and not dinner_menus:
            raise ValidationError("At least one lunch or dinner menu is required")

        day_start, day_end = self.time_window.start_of_day(meal_date), self.time_window.end_of_day(meal_date)
        meal = self.repository.find_daily_meal(subscription_id, day_start, day_end)
        if meal is None:
            plan = self.repository.get_plan(subscription_id)
            meal = DailyMeal(
                subscription_id=subscription_id,
                meal_date=day_start,
                vendor_type=plan.category,
                created_by=actor_id,
                notes=notes,
            )
        else:
            meal.last_modified_by = actor_id
            meal.notes = notes or meal.notes
        meal.selected_menus = SelectedMenus(
            lunch_menus=list(lunch_menus), dinner_menus=list(dinner_menus)
        )
        meal.is_active = True
        self.repository.save_daily_meal(meal)
        logger.info(
            "Published daily meal %s for plan %s on %s",
            meal.id, subscription_id, self.time_window.format(day_start, "date"),
        )

        order_creation = None
        if create_orders:
            order_creation = self.order_creation.create_orders_for_daily_meal(meal, actor_id)
        return {"daily_meal": meal, "order_creation": order_creation}

    def trigger_order_creation(self, daily_meal_id: str, actor_id: str):
        """管理员手动（重新）触发订单生成"""
        meal = self.get_daily_meal(daily_meal_id)
        return self.order_creation.create_orders_for_daily_meal(meal, actor_id)

    def find_meals_for_day(self, day: Optional[DateLike] = None) -> List[DailyMeal]:
        return self.repository.find_active_daily_meals(
            self.time_window.start_of_day(day), self.time_window.end_of_day(day)
        )
