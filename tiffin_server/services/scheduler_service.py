"""
定时任务服务
基于 Celery beat 按业务时区每天定点执行任务：凌晨的订阅过期扫描、早上的当日订单生成

生命周期：构造 -> register_daily 注册任务和 crontab -> start 启动内嵌 beat 线程 -> stop 停止。
scheduler_run_inline 开启时 beat 到点后直接在本进程执行任务（单进程部署）；
关闭后任务投递到 celery_broker_url，由独立的 celery worker 执行。
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from celery import Celery
from celery.beat import EmbeddedService
from celery.schedules import crontab

from ..core.events import EventEmitter
from ..core.exceptions import ValidationError
from ..utils.timezone import TimeWindow

logger = logging.getLogger(__name__)


@dataclass
class ScheduledJob:
    name: str
    at: str
    schedule: crontab
    task: Any


class SchedulerService:
    """每日定点任务调度器"""

    def __init__(
        self,
        time_window: TimeWindow,
        broker_url: str = "memory://",
        run_inline: bool = True,
        events: Optional[EventEmitter] = None,
    ):
        self.time_window = time_window
        self.events = events or EventEmitter()
        self.jobs: Dict[str, ScheduledJob] = {}
        self.app = Celery("tiffin_server", broker=broker_url, set_as_current=False)
        self.app.conf.update(
            timezone=time_window.tz_name,
            enable_utc=True,
            task_always_eager=run_inline,
            beat_scheduler="celery.beat:Scheduler",
            result_expires=None,
            beat_schedule={},
        )
        self._beat = None

    @property
    def running(self) -> bool:
        return self._beat is not None and self._beat.is_alive()

    def register_daily(self, name: str, at: str, func: Callable[[], Any]) -> ScheduledJob:
        """注册每天 at（HH:MM，业务时区）执行的任务"""
        if not TimeWindow.is_valid_time_string(at):
            raise ValidationError(f"Invalid schedule time for job {name}: {at}")
        hours, minutes = (int(part) for part in at.split(":"))

        def run_scheduled_job():
            return self._run(name, func)

        task = self.app.task(name=f"tiffin_server.{name}", shared=False)(run_scheduled_job)
        schedule = crontab(hour=hours, minute=minutes)
        self.app.conf.beat_schedule[name] = {"task": task.name, "schedule": schedule}

        job = ScheduledJob(name=name, at=at, schedule=schedule, task=task)
        self.jobs[name] = job
        logger.info("Scheduled job %s daily at %s (%s)", name, at, self.time_window.tz_name)
        return job

    def run_job(self, name: str) -> Any:
        """手动触发，在当前进程执行，不影响 beat 的计划"""
        job = self.jobs.get(name)
        if job is None:
            raise ValidationError(f"Unknown job {name}")
        return job.task.apply().get()

    def _run(self, name: str, func: Callable[[], Any]) -> Any:
        self.events.info("scheduler.job_started", job=name, at=self.time_window.format(self.time_window.now()))
        try:
            result = func()
        except Exception as exc:
            # 任务失败只记录，不影响 beat 和其它任务
            logger.exception("Error in scheduled job %s", name)
            self.events.error("scheduler.job_failed", job=name, error=str(exc))
            return None
        self.events.info("scheduler.job_completed", job=name, result=result)
        return result

    def start(self) -> None:
        if self.running:
            return
        # 线程模式的 beat 每秒检查一次到期任务
        self._beat = EmbeddedService(self.app, thread=True)
        self._beat.start()
        self.events.info("scheduler.started", jobs=",".join(sorted(self.jobs)))

    def stop(self) -> None:
        if self._beat is None:
            return
        self._beat.stop()
        self._beat = None
        self.events.info("scheduler.stopped")


def create_orders_for_today(daily_meal_service, actor_id: str) -> int:
    """为今天所有生效的每日菜单生成订单；单个批次失败不影响其它菜单"""
    completed = 0
    for meal in daily_meal_service.find_meals_for_day():
        try:
            daily_meal_service.order_creation.create_orders_for_daily_meal(meal, actor_id)
            completed += 1
        except Exception:
            logger.exception("Order creation batch failed for daily meal %s", meal.id)
    return completed


def build_scheduler(
    settings,
    time_window: TimeWindow,
    subscription_service,
    daily_meal_service,
    events: Optional[EventEmitter] = None,
) -> SchedulerService:
    """注册过期扫描和当日订单生成两个任务"""
    scheduler = SchedulerService(
        time_window,
        broker_url=settings.celery_broker_url,
        run_inline=settings.scheduler_run_inline,
        events=events,
    )
    scheduler.register_daily(
        "expire_subscriptions",
        settings.expiry_sweep_time,
        subscription_service.expire_subscriptions,
    )
    scheduler.register_daily(
        "create_daily_orders",
        settings.order_creation_time,
        lambda: create_orders_for_today(daily_meal_service, settings.system_actor_id),
    )
    return scheduler
