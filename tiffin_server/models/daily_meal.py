"""
每日菜单模型
管理员为某个套餐、某一天发布的午餐/晚餐菜单，是当天能否生成订单的唯一依据
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from .base import BaseEntity, BusinessDateTime, TimestampMixin, new_id
from .common import MealType, MenuItem, VendorType


class SelectedMenus(BaseModel):
    lunch_menus: List[MenuItem] = Field(default_factory=list)
    dinner_menus: List[MenuItem] = Field(default_factory=list)


class DailyMeal(BaseEntity, TimestampMixin):
    """每日菜单"""
    id: str = Field(default_factory=new_id)
    subscription_id: str = Field(..., description="套餐ID")
    meal_date: BusinessDateTime = Field(..., description="菜单日期（业务时区当天 00:00）")
    selected_menus: SelectedMenus = Field(default_factory=SelectedMenus)
    vendor_type: Optional[VendorType] = None
    is_active: bool = True
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    notes: str = Field("", max_length=500)

    def has_lunch_menus(self) -> bool:
        return len(self.selected_menus.lunch_menus) > 0

    def has_dinner_menus(self) -> bool:
        return len(self.selected_menus.dinner_menus) > 0

    def menus_for(self, meal_type: str) -> List[MenuItem]:
        if MealType(meal_type) == MealType.LUNCH:
            return self.selected_menus.lunch_menus
        return self.selected_menus.dinner_menus
