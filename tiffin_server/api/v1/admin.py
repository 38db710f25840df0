"""
管理员订单生成路由模块
每日菜单发布、手动触发订单生成、订单生成日志查询与失败重试、订阅过期处理
"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ...core.error_handler import ErrorHandler, ErrorResponse, create_success_response
from ...core.security import Actor, require_admin
from ...models.order_creation_log import LogStatus
from ...schemas.order_creation import PublishDailyMealRequest, RenewSubscriptionRequest
from ...services.container import ServiceContainer

logger = logging.getLogger(__name__)

router = APIRouter()


def get_container(request: Request) -> ServiceContainer:
    """从应用状态中获取服务容器"""
    return request.app.state.container


@router.post("/daily-meals")
def publish_daily_meal(
    req: PublishDailyMealRequest,
    actor: Actor = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """发布每日菜单，可选立即生成订单"""
    result = container.daily_meals.publish(
        subscription_id=req.subscription_id,
        meal_date=req.meal_date,
        lunch_menus=req.lunch_menus,
        dinner_menus=req.dinner_menus,
        actor_id=actor.user_id,
        create_orders=req.create_orders,
        notes=req.notes,
    )
    order_creation = result["order_creation"]
    return create_success_response(
        data={
            "daily_meal": result["daily_meal"].model_dump(mode="json"),
            "order_creation": order_creation.to_dict() if order_creation else None,
        },
        message="Daily meal published",
    )


@router.post("/daily-meals/{daily_meal_id}/create-orders")
def create_orders_for_daily_meal(
    daily_meal_id: str,
    actor: Actor = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """手动（重新）触发某个每日菜单的订单生成"""
    result = container.daily_meals.trigger_order_creation(daily_meal_id, actor.user_id)
    return create_success_response(data=result.to_dict(), message=result.message)


@router.get("/order-creation-logs")
def list_order_creation_logs(
    status: Optional[LogStatus] = None,
    subscription_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """分页查询订单生成日志"""
    result = container.order_creation.get_order_creation_logs(
        status=status.value if status else None,
        subscription_id=subscription_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )
    return create_success_response(data={
        "logs": [log.model_dump(mode="json") for log in result["logs"]],
        "pagination": result["pagination"].model_dump(),
    })


@router.get("/daily-meals/{daily_meal_id}/order-creation-logs")
def list_daily_meal_order_creation_logs(
    daily_meal_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """某个每日菜单的订单生成日志（每次触发一条），最新的在前"""
    result = container.order_creation.get_order_creation_logs(
        daily_meal_id=daily_meal_id, page=page, limit=limit
    )
    return create_success_response(data={
        "logs": [log.model_dump(mode="json") for log in result["logs"]],
        "pagination": result["pagination"].model_dump(),
    })


@router.get("/order-creation-logs/{log_id}")
def get_order_creation_log(
    log_id: str,
    actor: Actor = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """获取单条订单生成日志"""
    log = container.order_creation.get_order_creation_log(log_id)
    return create_success_response(data=log.model_dump(mode="json"))


@router.post("/order-creation-logs/{log_id}/retry/{failed_order_index}")
def retry_failed_order(
    log_id: str,
    failed_order_index: int,
    actor: Actor = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """重试日志中的一条失败订单"""
    result = container.order_creation.retry_failed_order(log_id, failed_order_index, actor.user_id)
    if not result.success:
        logger.info("Retry of %s[%d] refused or failed: %s", log_id, failed_order_index, result.code)
        return ErrorResponse(
            error_code=result.code,
            message=result.message,
            details=result.to_dict(),
            http_status=ErrorHandler.ERROR_CODE_STATUS_MAP.get(result.code, 409),
        ).to_json_response()
    return create_success_response(data=result.to_dict(), message=result.message)


@router.post("/subscriptions/expire")
def expire_subscriptions(
    actor: Actor = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """手动执行订阅过期处理"""
    count = container.subscriptions.expire_subscriptions()
    return create_success_response(data={"expired_count": count}, message=f"{count} subscriptions expired")


@router.post("/subscriptions/{user_subscription_id}/renew")
def renew_subscription(
    user_subscription_id: str,
    req: RenewSubscriptionRequest,
    actor: Actor = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """订阅续费"""
    new_end_date = None
    if req.new_end_date is not None:
        new_end_date = container.time_window.end_of_day(req.new_end_date)
    sub = container.subscriptions.renew(
        user_subscription_id, transaction_id=req.transaction_id, new_end_date=new_end_date
    )
    return create_success_response(data=sub.model_dump(mode="json"), message="Subscription renewed")


@router.get("/users/{user_id}/active-subscriptions")
def list_active_subscriptions(
    user_id: str,
    actor: Actor = Depends(require_admin),
    container: ServiceContainer = Depends(get_container),
):
    """用户当前生效的订阅"""
    subs = container.subscriptions.find_active_for_user(user_id)
    return create_success_response(data=[sub.model_dump(mode="json") for sub in subs])
