from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # 数据库配置
    database_url: str = "duckdb://./tiffin_server/data/tiffin.duckdb"

    # 业务时区：所有日界线计算都以此为准
    business_timezone: str = "Asia/Kolkata"
    default_country: str = "India"

    # 订单号前缀，如 TFX-20250110-0001
    order_number_prefix: str = "TFX"

    # 定时任务触发时写入日志的操作者
    system_actor_id: str = "system"

    # 定时任务配置
    scheduler_enabled: bool = True
    expiry_sweep_time: str = "00:01"
    order_creation_time: str = "05:00"
    # beat 到点后在本进程执行；关闭后投递到 broker，由 celery worker 执行
    scheduler_run_inline: bool = True
    celery_broker_url: str = "memory://"

    # 日志
    log_level: str = "INFO"

    # JWT配置
    jwt_secret_key: str = "your-secret-key"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24 * 7  # 7天

    # API配置
    api_title: str = "Tiffin Subscription API"
    api_version: str = "1.0.0"
    api_prefix: str = "/api/v1"

    # 开发模式
    debug: bool = False

    class Config:
        env_file = ".env"
        case_sensitive = False

# 全局设置实例
settings = Settings()
