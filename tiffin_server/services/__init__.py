"""
Business logic services.
Contains service layer implementations for core business operations.
"""

from .order_creation_service import (
    BatchResult,
    OrderCreationService,
    OrderOutcome,
    RetryResult,
)
from .subscription_service import SubscriptionService
from .daily_meal_service import DailyMealService
from .scheduler_service import SchedulerService, build_scheduler
from .container import ServiceContainer, build_container

__all__ = [
    "BatchResult",
    "OrderCreationService",
    "OrderOutcome",
    "RetryResult",
    "SubscriptionService",
    "DailyMealService",
    "SchedulerService",
    "build_scheduler",
    "ServiceContainer",
    "build_container",
]
