"""
定时任务测试
"""

import pytest
from celery.schedules import crontab

from tiffin_server.core.exceptions import ValidationError
from tiffin_server.services.container import build_container
from tiffin_server.services.scheduler_service import SchedulerService


@pytest.fixture
def scheduler(time_window, events):
    return SchedulerService(time_window, events=events)


class TestSchedulerService:

    def test_register_daily_adds_beat_crontab(self, scheduler):
        job = scheduler.register_daily("job", "06:30", lambda: None)

        entry = scheduler.app.conf.beat_schedule["job"]
        assert entry["task"] == "tiffin_server.job"
        assert isinstance(entry["schedule"], crontab)
        assert entry["schedule"].hour == {6}
        assert entry["schedule"].minute == {30}
        assert job.schedule is entry["schedule"]

    def test_beat_uses_business_timezone(self, scheduler):
        assert scheduler.app.conf.timezone == "Asia/Kolkata"
        assert scheduler.app.conf.task_always_eager is True

    def test_invalid_time_is_rejected(self, scheduler):
        with pytest.raises(ValidationError):
            scheduler.register_daily("bad", "25:00", lambda: None)
        assert "bad" not in scheduler.app.conf.beat_schedule

    def test_tasks_are_local_to_each_scheduler(self, time_window, events):
        first_calls, second_calls = [], []
        first = SchedulerService(time_window, events=events)
        second = SchedulerService(time_window, events=events)
        first.register_daily("job", "06:00", lambda: first_calls.append(1))
        second.register_daily("job", "06:00", lambda: second_calls.append(1))

        second.run_job("job")

        assert first_calls == []
        assert second_calls == [1]

    def test_failing_job_is_logged_and_others_still_run(self, scheduler, events):
        calls = []

        def broken():
            raise RuntimeError("boom")

        scheduler.register_daily("broken", "06:00", broken)
        scheduler.register_daily("healthy", "06:00", lambda: calls.append(1))

        assert scheduler.run_job("broken") is None
        scheduler.run_job("healthy")

        assert calls == [1]
        assert "scheduler.job_failed" in events.names()
        assert "scheduler.job_completed" in events.names()

    def test_run_job_returns_task_result(self, scheduler):
        scheduler.register_daily("job", "06:00", lambda: 7)

        assert scheduler.run_job("job") == 7
        with pytest.raises(ValidationError):
            scheduler.run_job("missing")

    def test_start_and_stop(self, scheduler):
        scheduler.register_daily("job", "06:00", lambda: None)
        scheduler.start()
        assert scheduler.running is True
        scheduler.stop()
        assert scheduler.running is False


class TestScheduledJobs:
    """装配好的两个每日任务"""

    def test_daily_jobs_are_registered(self, container):
        jobs = container.scheduler.jobs
        assert jobs["expire_subscriptions"].at == "00:01"
        assert jobs["create_daily_orders"].at == "05:00"
        beat_schedule = container.scheduler.app.conf.beat_schedule
        assert beat_schedule["expire_subscriptions"]["schedule"].hour == {0}
        assert beat_schedule["expire_subscriptions"]["schedule"].minute == {1}
        assert beat_schedule["create_daily_orders"]["schedule"].hour == {5}

    def test_create_daily_orders_uses_system_actor(self, container, repo, make_plan, make_subscription, make_daily_meal):
        plan = make_plan()
        sub = make_subscription(plan)
        make_daily_meal(plan, day="2025-01-10")
        make_daily_meal(plan, day="2025-01-11")

        container.scheduler.run_job("create_daily_orders")

        [log] = repo.logs.values()
        assert log.triggered_by == "system"
        assert len(repo.list_orders_for_subscription(sub.id)) == 1

    def test_expiry_job(self, container, repo, time_window, make_plan, make_subscription):
        sub = make_subscription(make_plan(), end_date=time_window.end_of_day("2025-01-05"))

        container.scheduler.run_job("expire_subscriptions")

        assert repo.get_user_subscription(sub.id).status == "expired"

    def test_one_failing_batch_does_not_stop_the_rest(self, test_settings, repo, time_window, events, make_plan, make_daily_meal):
        plan = make_plan()
        other = make_plan(plan_name="Dinner Only")
        make_daily_meal(plan)
        make_daily_meal(other)
        container = build_container(test_settings, repository=repo, time_window=time_window, events=events)
        original = container.order_creation.create_orders_for_daily_meal
        attempted = []

        def flaky(meal, actor_id):
            attempted.append(meal.subscription_id)
            if meal.subscription_id == plan.id:
                raise RuntimeError("boom")
            return original(meal, actor_id)

        container.order_creation.create_orders_for_daily_meal = flaky
        container.scheduler.run_job("create_daily_orders")

        assert sorted(attempted) == sorted([plan.id, other.id])
        assert "scheduler.job_completed" in events.names()
