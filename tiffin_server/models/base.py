"""
基础数据模型
定义通用的模型基类和常用字段
"""

import uuid
from pydantic import AfterValidator, BaseModel, Field
from datetime import datetime
from typing import Annotated, Optional
from zoneinfo import ZoneInfo

from ..config.settings import settings
from ..utils.timezone import ensure_aware


def new_id() -> str:
    """生成文档ID"""
    return uuid.uuid4().hex


def as_business_time(value: datetime) -> datetime:
    """不带时区的时间一律视为业务时区的墙上时间"""
    return ensure_aware(value, ZoneInfo(settings.business_timezone))


# 实体上的时间字段统一用这个类型，保证与日界线比较时都是 aware datetime
BusinessDateTime = Annotated[datetime, AfterValidator(as_business_time)]


class TimestampMixin(BaseModel):
    """时间戳混入类"""
    created_at: Optional[BusinessDateTime] = None
    updated_at: Optional[BusinessDateTime] = None


class BaseEntity(BaseModel):
    """基础实体模型"""
    
    model_config = {"from_attributes": True, "use_enum_values": True, "validate_default": True}


class PaginationParams(BaseModel):
    """分页参数"""
    page: int = Field(default=1, ge=1, description="页码")
    limit: int = Field(default=20, ge=1, le=100, description="每页大小")
    
    @property
    def offset(self) -> int:
        """计算偏移量"""
        return (self.page - 1) * self.limit


class PaginationInfo(BaseModel):
    """分页信息"""
    current: int
    limit: int
    total: int
    pages: int
    
    @classmethod
    def create(cls, total: int, pagination: PaginationParams):
        """创建分页信息"""
        pages = (total + pagination.limit - 1) // pagination.limit
        return cls(current=pagination.page, limit=pagination.limit, total=total, pages=pages)
