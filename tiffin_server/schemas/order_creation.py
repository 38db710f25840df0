"""
管理员订单生成相关的请求/响应模式
"""

from pydantic import BaseModel, Field
from datetime import date
from typing import List, Optional
from ..models.common import MenuItem


class PublishDailyMealRequest(BaseModel):
    """发布每日菜单请求"""
    subscription_id: str = Field(..., description="订阅套餐ID")
    meal_date: date = Field(..., description="菜单日期（业务时区）")
    lunch_menus: List[MenuItem] = Field(default_factory=list, description="午餐菜品")
    dinner_menus: List[MenuItem] = Field(default_factory=list, description="晚餐菜品")
    create_orders: bool = Field(True, description="发布后立即生成订单")
    notes: str = Field("", description="备注")


class RenewSubscriptionRequest(BaseModel):
    """订阅续费请求"""
    transaction_id: Optional[str] = Field(None, description="续费支付流水号")
    new_end_date: Optional[date] = Field(None, description="新的到期日期；不传则按套餐时长顺延")
