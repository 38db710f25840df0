"""
订阅、菜单、订单共用的值对象
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class MealType(str, Enum):
    """餐别"""
    LUNCH = "lunch"
    DINNER = "dinner"


class VendorType(str, Enum):
    """供餐方类型，同时也是套餐分类"""
    HOME_CHEF = "home_chef"
    FOOD_VENDOR = "food_vendor"


class GeoPoint(BaseModel):
    """GeoJSON 点，coordinates 为 [经度, 纬度]"""
    type: str = "Point"
    coordinates: List[float] = Field(default_factory=lambda: [0.0, 0.0])


class DeliveryAddress(BaseModel):
    """配送地址

    字段允许为空：订阅上的地址可能不完整，生成订单前会单独校验必填项。
    """
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None
    landmark: Optional[str] = None
    coordinates: Optional[GeoPoint] = None


class MenuItem(BaseModel):
    """菜单项快照"""
    menu_id: Optional[str] = None
    title: str
    price: float = 0
    image: Optional[str] = None
    description: Optional[str] = None
