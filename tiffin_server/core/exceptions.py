"""
自定义异常类
提供更精确的错误处理和异常信息
"""

from typing import Any, Dict, Optional


class BaseApplicationError(Exception):
    """应用基础异常类"""
    
    def __init__(
        self,
        message: str,
        error_code: str = None,
        details: Dict[str, Any] = None
    ):
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)


class DatabaseError(BaseApplicationError):
    """数据库相关异常"""
    pass


class AuthenticationError(BaseApplicationError):
    """认证相关异常"""
    pass


class AuthorizationError(BaseApplicationError):
    """授权相关异常"""
    pass


class ValidationError(BaseApplicationError):
    """数据验证异常"""
    
    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message, "VALIDATION_ERROR", details)


class OrderValidationError(ValidationError):
    """订单落库前校验失败"""
    
    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"{field} is required", {"field": field})
        self.field = field


class BusinessLogicError(BaseApplicationError):
    """业务逻辑异常"""
    pass


class NotFoundError(BusinessLogicError):
    """资源不存在"""
    pass


class DailyMealNotFoundError(NotFoundError):
    """每日菜单不存在"""
    
    def __init__(self, daily_meal_id: str):
        super().__init__(
            f"Daily meal {daily_meal_id} not found",
            "DAILY_MEAL_NOT_FOUND",
            {"daily_meal_id": daily_meal_id},
        )


class SubscriptionNotFoundError(NotFoundError):
    """用户订阅不存在"""
    
    def __init__(self, user_subscription_id: str):
        super().__init__(
            f"User subscription {user_subscription_id} not found",
            "SUBSCRIPTION_NOT_FOUND",
            {"user_subscription_id": user_subscription_id},
        )


class OrderCreationLogNotFoundError(NotFoundError):
    """订单生成日志不存在"""
    
    def __init__(self, log_id: str):
        super().__init__(
            f"Order creation log {log_id} not found",
            "LOG_NOT_FOUND",
            {"log_id": log_id},
        )


class InvalidStateTransitionError(BusinessLogicError):
    """订阅状态流转非法"""
    
    def __init__(self, current: str, target: str):
        super().__init__(
            f"Cannot move subscription from {current} to {target}",
            "INVALID_STATE_TRANSITION",
            {"current": current, "target": target},
        )


class InsufficientCreditsError(BusinessLogicError):
    """剩余餐次额度不足"""
    
    def __init__(self, remaining: int, requested: int):
        super().__init__(
            f"Credits available: {remaining}, Required: {requested}",
            "INSUFFICIENT_CREDITS",
            {"remaining": remaining, "requested": requested},
        )


class ConcurrencyError(BaseApplicationError):
    """并发控制错误"""
    pass


class PermissionDeniedError(AuthorizationError):
    """权限拒绝错误"""
    
    def __init__(self, message: str = "Admin permission required"):
        super().__init__(message, "PERMISSION_DENIED")
