"""
服务装配
显式构造仓储、时间工具和各服务，并管理启动/停止；应用和测试都从这里取依赖
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ..config.settings import Settings
from ..core.database import DatabaseManager
from ..core.events import EventEmitter
from ..repositories.base import Repository
from ..repositories.duckdb_repository import DuckDBRepository
from ..utils.timezone import TimeWindow
from .daily_meal_service import DailyMealService
from .order_creation_service import OrderCreationService
from .scheduler_service import SchedulerService, build_scheduler
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    repository: Repository
    time_window: TimeWindow
    events: EventEmitter
    order_creation: OrderCreationService
    subscriptions: SubscriptionService
    daily_meals: DailyMealService
    scheduler: SchedulerService
    db: Optional[DatabaseManager] = None

    def startup(self) -> None:
        """初始化数据库并按配置启动定时任务"""
        if self.db is not None:
            self.db.init_database()
            logger.info("Database initialized at %s", self.db.db_path)
        if self.settings.scheduler_enabled:
            self.scheduler.start()

    def shutdown(self) -> None:
        self.scheduler.stop()
        if self.db is not None:
            self.db.close()


def build_container(
    settings: Settings,
    repository: Optional[Repository] = None,
    time_window: Optional[TimeWindow] = None,
    events: Optional[EventEmitter] = None,
) -> ServiceContainer:
    """未传入仓储时按 settings.database_url 使用 DuckDB"""
    db = None
    if repository is None:
        db = DatabaseManager(settings.database_url)
        repository = DuckDBRepository(db)
    time_window = time_window or TimeWindow(settings.business_timezone)
    events = events or EventEmitter()

    order_creation = OrderCreationService(
        repository,
        time_window,
        events,
        default_country=settings.default_country,
        order_number_prefix=settings.order_number_prefix,
    )
    subscriptions = SubscriptionService(repository, time_window, events)
    daily_meals = DailyMealService(repository, time_window, order_creation)
    scheduler = build_scheduler(settings, time_window, subscriptions, daily_meals, events)

    return ServiceContainer(
        settings=settings,
        repository=repository,
        time_window=time_window,
        events=events,
        order_creation=order_creation,
        subscriptions=subscriptions,
        daily_meals=daily_meals,
        scheduler=scheduler,
        db=db,
    )
