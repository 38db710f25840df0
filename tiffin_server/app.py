"""
Tiffin 订阅服务后端 - 主应用入口
提供订阅制餐食订单生成引擎的管理员API

主要功能模块：
- 每日菜单发布
- 订阅订单批量生成与失败重试
- 订单生成日志审计
- 订阅过期处理与定时任务

技术栈：FastAPI + DuckDB + JWT认证
"""

import logging
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from contextlib import asynccontextmanager

from .core.exceptions import BaseApplicationError
from .core.error_handler import (
    application_error_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler
)
from .core.logging_config import configure_logging
from .core.security import SecurityManager
from .config.settings import Settings, settings as default_settings
from .services.container import ServiceContainer, build_container
from .api import api_router

logger = logging.getLogger(__name__)


def create_app(
    app_settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None,
) -> FastAPI:
    """创建FastAPI应用；测试可传入预先装配好的服务容器"""
    app_settings = app_settings or (container.settings if container else default_settings)
    container = container or build_container(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        configure_logging(app_settings.log_level)
        container.startup()
        logger.info("%s %s started", app_settings.api_title, app_settings.api_version)
        
        yield
        
        container.shutdown()
        logger.info("%s stopped", app_settings.api_title)

    app = FastAPI(
        title=app_settings.api_title,
        version=app_settings.api_version,
        description="Tiffin 订阅订单生成系统API",
        debug=app_settings.debug,
        lifespan=lifespan
    )
    app.state.container = container
    app.state.security = SecurityManager(
        app_settings.jwt_secret_key,
        app_settings.jwt_algorithm,
        app_settings.jwt_expire_hours,
    )
    
    # 添加中间件
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # 在生产环境中应该限制具体域名
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    # 注册异常处理器
    app.add_exception_handler(BaseApplicationError, application_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
    
    # 注册路由
    app.include_router(api_router, prefix=app_settings.api_prefix)
    
    # 健康检查
    @app.get("/health")
    async def health_check():
        scheduler_state = "running" if container.scheduler.running else "stopped"
        if container.db is None:
            return {
                "status": "healthy",
                "version": app_settings.api_version,
                "database": "in-memory",
                "scheduler": scheduler_state
            }
        try:
            container.db.execute_one("SELECT 1")
            return {
                "status": "healthy",
                "version": app_settings.api_version,
                "database": "connected",
                "scheduler": scheduler_state
            }
        except BaseApplicationError as e:
            return {
                "status": "unhealthy", 
                "version": app_settings.api_version,
                "database": f"error: {e.message}",
                "scheduler": scheduler_state
            }
    
    @app.get("/")
    async def root():
        return {
            "name": app_settings.api_title,
            "version": app_settings.api_version,
            "description": "Tiffin 订阅订单生成系统API"
        }
    
    return app

# 应用实例
app = create_app()


def main():
    """命令行启动入口"""
    import uvicorn
    uvicorn.run("tiffin_server.app:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
