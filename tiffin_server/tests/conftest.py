"""
测试配置文件
提供测试所需的fixtures：固定时钟、内存仓储、DuckDB 内存库、样例数据和测试客户端
"""

import logging
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from tiffin_server.app import create_app
from tiffin_server.config.settings import Settings
from tiffin_server.core.database import DatabaseManager
from tiffin_server.core.events import EventEmitter
from tiffin_server.core.security import SecurityManager
from tiffin_server.models.common import DeliveryAddress, MenuItem
from tiffin_server.models.daily_meal import DailyMeal, SelectedMenus
from tiffin_server.models.subscription import (
    CurrentVendor,
    MealSlotTiming,
    MealTiming,
    MealWindow,
    PlanMealTimings,
    SubscriptionPlan,
    SubscriptionVendorDetails,
    UserSubscription,
)
from tiffin_server.repositories.duckdb_repository import DuckDBRepository
from tiffin_server.repositories.memory import InMemoryRepository
from tiffin_server.services.container import build_container
from tiffin_server.utils.timezone import TimeWindow

TEST_SECRET = "test-secret-key"

# 2025-01-10 05:00 Asia/Kolkata
FIXED_NOW = datetime(2025, 1, 9, 23, 30, tzinfo=timezone.utc)


class Clock:
    """可调的测试时钟"""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current


class RecordingEmitter(EventEmitter):
    """记录所有事件，便于断言"""

    def __init__(self):
        super().__init__()
        self.events = []

    def emit(self, event, level=logging.INFO, **fields):
        self.events.append((event, level, fields))
        super().emit(event, level, **fields)

    def names(self):
        return [event for event, _, _ in self.events]


def dal_rice() -> MenuItem:
    return MenuItem(menu_id="m-dal-rice", title="Dal Rice", price=120)


def paneer_roti() -> MenuItem:
    return MenuItem(menu_id="m-paneer-roti", title="Paneer Roti", price=150)


@pytest.fixture
def clock():
    return Clock(FIXED_NOW)


@pytest.fixture
def time_window(clock):
    return TimeWindow("Asia/Kolkata", clock=clock)


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def events():
    return RecordingEmitter()


@pytest.fixture
def test_settings():
    """测试环境配置"""
    return Settings(
        database_url="duckdb:///:memory:",
        scheduler_enabled=False,
        jwt_secret_key=TEST_SECRET,
        api_title="Tiffin API (Test)",
        api_version="1.0.0-test",
        debug=True,
    )


@pytest.fixture
def test_db():
    """DuckDB 内存数据库"""
    db_manager = DatabaseManager("duckdb:///:memory:")
    db_manager.init_database()
    yield db_manager
    db_manager.close()


@pytest.fixture
def duckdb_repo(test_db):
    return DuckDBRepository(test_db)


@pytest.fixture
def make_plan(repo):
    """创建并保存套餐"""

    def _make(lunch=True, dinner=False, meals_per_plan=30, target=None, **overrides):
        plan = SubscriptionPlan(
            plan_name=overrides.pop("plan_name", "Lunch Only"),
            meals_per_plan=meals_per_plan,
            meal_timings=PlanMealTimings(
                lunch=MealWindow(available=lunch, start_time="11:00", end_time="14:00"),
                dinner=MealWindow(available=dinner, start_time="19:00", end_time="22:00"),
            ),
            original_price=3000,
            **overrides,
        )
        (target or repo).save_plan(plan)
        return plan

    return _make


@pytest.fixture
def make_subscription(repo, time_window):
    """创建并保存 2025-01 全月有效、已分配供餐方的 active 订阅"""

    def _make(plan, user_id="U1", credits_granted=30, credits_used=10,
              lunch=True, dinner=False, target=None, **overrides):
        fields = dict(
            user_id=user_id,
            subscription_id=plan.id,
            status="active",
            credits_granted=credits_granted,
            credits_used=credits_used,
            start_date=time_window.start_of_day("2025-01-01"),
            end_date=time_window.end_of_day("2025-01-31"),
            meal_timing=MealTiming(
                lunch=MealSlotTiming(enabled=lunch, time="12:30"),
                dinner=MealSlotTiming(enabled=dinner, time="19:30"),
            ),
            delivery_address=DeliveryAddress(
                street="12 MG Road", city="Bengaluru", state="KA", zip_code="560001"
            ),
            vendor_details=SubscriptionVendorDetails(
                current_vendor=CurrentVendor(vendor_id="V1", vendor_type="home_chef"),
                is_vendor_assigned=True,
            ),
            original_price=3000,
            final_price=3000,
        )
        fields.update(overrides)
        sub = UserSubscription(**fields)
        (target or repo).save_user_subscription(sub)
        return sub

    return _make


@pytest.fixture
def make_daily_meal(repo, time_window):
    """创建并保存 2025-01-10 的每日菜单，默认只有午餐 Dal Rice"""

    def _make(plan, day="2025-01-10", lunch=None, dinner=None, target=None):
        meal = DailyMeal(
            subscription_id=plan.id,
            meal_date=time_window.start_of_day(day),
            selected_menus=SelectedMenus(
                lunch_menus=[dal_rice()] if lunch is None else lunch,
                dinner_menus=[] if dinner is None else dinner,
            ),
            vendor_type=plan.category,
            created_by="admin-1",
        )
        (target or repo).save_daily_meal(meal)
        return meal

    return _make


@pytest.fixture
def container(test_settings, repo, time_window, events):
    return build_container(test_settings, repository=repo, time_window=time_window, events=events)


@pytest.fixture
def client(container):
    """测试客户端（内存仓储，定时任务关闭）"""
    app = create_app(container=container)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    token = SecurityManager(TEST_SECRET).create_jwt_token("admin-1", "admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def customer_headers():
    token = SecurityManager(TEST_SECRET).create_jwt_token("U1", "customer")
    return {"Authorization": f"Bearer {token}"}
