"""
订单相关数据模型
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .base import BaseEntity, BusinessDateTime, TimestampMixin, new_id
from .common import DeliveryAddress, MealType, MenuItem, VendorType


class OrderStatus(str, Enum):
    """订单状态枚举"""
    UPCOMING = "upcoming"                   # 待配送
    PREPARING = "preparing"                 # 备餐中
    OUT_FOR_DELIVERY = "out_for_delivery"   # 配送中
    DELIVERED = "delivered"                 # 已送达
    SKIPPED = "skipped"                     # 用户跳过
    CANCELLED = "cancelled"                 # 已取消


# 不占用 (订阅, 日期, 餐别) 名额的状态
RELEASED_ORDER_STATUSES = frozenset({
    OrderStatus.SKIPPED.value,
    OrderStatus.CANCELLED.value,
})


class OrderVendorDetails(BaseModel):
    vendor_id: str
    vendor_type: Optional[VendorType] = None


class Order(BaseEntity, TimestampMixin):
    """订单完整模型

    selected_menus / delivery_address / vendor_details 都是生成时的快照，
    之后菜单或订阅的修改不会影响已生成的订单。
    """
    id: str = Field(default_factory=new_id)
    order_number: Optional[str] = Field(None, description="可读订单号，落库时生成")
    user_id: str
    user_subscription_id: str
    daily_meal_id: str
    order_date: BusinessDateTime = Field(..., description="生成时间")
    delivery_date: BusinessDateTime = Field(..., description="配送日期")
    meal_type: MealType
    selected_menus: List[MenuItem] = Field(..., min_length=1)
    delivery_time: str = Field(..., pattern=r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")
    delivery_address: DeliveryAddress
    vendor_details: OrderVendorDetails
    status: OrderStatus = OrderStatus.UPCOMING
    credits_used: int = Field(1, ge=0)
    is_credits_deducted: bool = False
    special_instructions: Optional[str] = Field(None, max_length=500)

    @property
    def is_live(self) -> bool:
        return OrderStatus(self.status).value not in RELEASED_ORDER_STATUSES
