"""
数据库连接和管理模块
DuckDB 连接、表结构定义和串行化的事务控制

各实体以 JSON 文档（doc 列）整体保存，另外冗余出查询需要的列；
时间列统一存 UTC（不带时区）。
"""

import duckdb
from pathlib import Path
from typing import Optional, Generator
from contextlib import contextmanager
import threading
from .exceptions import BaseApplicationError, DatabaseError, ConcurrencyError

# 完整的表结构定义
SCHEMA_SQL = r"""
CREATE TABLE IF NOT EXISTS subscription_plans (
  id TEXT PRIMARY KEY,
  plan_name TEXT NOT NULL,
  category TEXT CHECK(category IN ('home_chef','food_vendor')),
  is_active BOOLEAN DEFAULT TRUE,
  doc TEXT NOT NULL,
  created_at TIMESTAMP DEFAULT now(),
  updated_at TIMESTAMP DEFAULT now()
);

CREATE TABLE IF NOT EXISTS user_subscriptions (
  id TEXT PRIMARY KEY,
  user_id TEXT NOT NULL,
  subscription_id TEXT NOT NULL,
  status TEXT CHECK(status IN ('pending','active','expired','cancelled','failed')) NOT NULL,
  is_expired BOOLEAN DEFAULT FALSE,
  is_vendor_assigned BOOLEAN DEFAULT FALSE,
  auto_renew BOOLEAN DEFAULT FALSE,
  start_date TIMESTAMP NOT NULL,
  end_date TIMESTAMP NOT NULL,
  doc TEXT NOT NULL,  -- 完整订阅文档（额度、餐别时间、地址、供餐方）
  created_at TIMESTAMP DEFAULT now(),
  updated_at TIMESTAMP DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_user_subscriptions_user ON user_subscriptions(user_id);
CREATE INDEX IF NOT EXISTS idx_user_subscriptions_plan ON user_subscriptions(subscription_id);

CREATE TABLE IF NOT EXISTS daily_meals (
  id TEXT PRIMARY KEY,
  subscription_id TEXT NOT NULL,
  meal_date TIMESTAMP NOT NULL,  -- 业务时区当天 00:00 对应的 UTC 时间
  is_active BOOLEAN DEFAULT TRUE,
  doc TEXT NOT NULL,
  created_at TIMESTAMP DEFAULT now(),
  updated_at TIMESTAMP DEFAULT now()
);

CREATE UNIQUE INDEX IF NOT EXISTS uniq_daily_meal_plan_date ON daily_meals(subscription_id, meal_date);

CREATE TABLE IF NOT EXISTS orders (
  id TEXT PRIMARY KEY,
  order_number TEXT UNIQUE NOT NULL,
  user_id TEXT NOT NULL,
  user_subscription_id TEXT NOT NULL,
  daily_meal_id TEXT NOT NULL,
  order_date TIMESTAMP NOT NULL,
  delivery_date TIMESTAMP NOT NULL,
  meal_type TEXT CHECK(meal_type IN ('lunch','dinner')) NOT NULL,
  status TEXT CHECK(status IN ('upcoming','preparing','out_for_delivery','delivered','skipped','cancelled')) NOT NULL,
  doc TEXT NOT NULL,  -- 菜单、地址、供餐方快照
  created_at TIMESTAMP DEFAULT now(),
  updated_at TIMESTAMP DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_orders_user_subscription ON orders(user_subscription_id);
CREATE INDEX IF NOT EXISTS idx_orders_delivery_date ON orders(delivery_date);

-- 按天递增的订单号序列，name 形如 order_20250110
CREATE TABLE IF NOT EXISTS order_sequences (
  name TEXT PRIMARY KEY,
  sequence_value INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS order_creation_logs (
  id TEXT PRIMARY KEY,
  daily_meal_id TEXT NOT NULL,
  subscription_id TEXT NOT NULL,
  trigger_date TIMESTAMP NOT NULL,
  triggered_by TEXT NOT NULL,
  status TEXT CHECK(status IN ('running','completed','failed')) NOT NULL,
  doc TEXT NOT NULL,  -- 计数、失败列表、成功列表
  created_at TIMESTAMP DEFAULT now(),
  updated_at TIMESTAMP DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_order_creation_logs_daily_meal ON order_creation_logs(daily_meal_id);
CREATE INDEX IF NOT EXISTS idx_order_creation_logs_trigger_date ON order_creation_logs(trigger_date);
"""


class DatabaseManager:
    """数据库管理器，封装连接和事务"""
    
    def __init__(self, database_url: str):
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        # 单连接在多线程（请求线程池 + 定时任务）间共享，所有访问都串行化
        self._lock = threading.RLock()
        self.db_path = self._resolve_db_path(database_url)
    
    @staticmethod
    def _resolve_db_path(database_url: str) -> str:
        """从 duckdb://<path> 形式的地址中取出文件路径"""
        path = database_url
        if path.startswith("duckdb://"):
            path = path.replace("duckdb://", "", 1)
        if path.startswith("/:memory:"):
            path = ":memory:"
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
        return path
    
    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        """获取数据库连接"""
        with self._lock:
            if self._connection is None:
                try:
                    self._connection = duckdb.connect(self.db_path)
                except Exception as e:
                    raise DatabaseError(f"Failed to open database {self.db_path}: {e}")
                self._init_schema()
            return self._connection
    
    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self.connection
    
    def _init_schema(self):
        """初始化数据库表结构"""
        try:
            self._connection.execute(SCHEMA_SQL)
        except Exception as e:
            raise DatabaseError(f"Failed to initialize schema: {e}")
    
    def init_database(self):
        """初始化数据库（应用启动时调用）"""
        self.get_connection()
    
    @contextmanager
    def locked(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """独占连接执行单条语句"""
        with self._lock:
            yield self.connection
    
    @contextmanager
    def transaction(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        数据库事务上下文管理器
        
        异常时回滚；冲突类错误转换为 ConcurrencyError，其余转换为 DatabaseError
        """
        with self._lock:
            conn = self.connection
            conn.execute("BEGIN")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception as e:
                try:
                    conn.execute("ROLLBACK")
                except duckdb.Error:
                    pass  # 事务可能已被 DuckDB 自动中止
                if isinstance(e, BaseApplicationError):
                    raise
                if "conflict" in str(e).lower() or "serialization" in str(e).lower():
                    raise ConcurrencyError("Database is busy, please retry")
                raise DatabaseError(f"Database operation failed: {e}") from e
    
    def execute_query(self, query: str, params: list = None) -> list:
        """执行查询并返回结果"""
        try:
            with self.locked() as con:
                return con.execute(query, params or []).fetchall()
        except duckdb.Error as e:
            raise DatabaseError(f"Query execution failed: {e}")
    
    def execute_one(self, query: str, params: list = None) -> Optional[tuple]:
        """执行查询并返回单条结果"""
        try:
            with self.locked() as con:
                return con.execute(query, params or []).fetchone()
        except duckdb.Error as e:
            raise DatabaseError(f"Query execution failed: {e}")
    
    def close(self):
        """关闭连接（应用关闭时调用）"""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
