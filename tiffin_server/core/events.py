"""
结构化事件
订单批处理、重试、过期扫描和定时任务的关键节点都通过这里发出带级别的事件，
日志记录上附带 event / fields 两个属性，便于日志平台按字段检索。
"""

import logging
from typing import Any, Optional

logger = logging.getLogger("tiffin_server.events")


class EventEmitter:
    """结构化事件发射器"""

    def __init__(self, target: Optional[logging.Logger] = None):
        self.logger = target or logger

    def emit(self, event: str, level: int = logging.INFO, **fields: Any) -> None:
        rendered = " ".join(f"{key}={value}" for key, value in fields.items())
        message = f"{event} {rendered}" if rendered else event
        self.logger.log(level, message, extra={"event": event, "fields": fields})

    def info(self, event: str, **fields: Any) -> None:
        self.emit(event, logging.INFO, **fields)

    def warning(self, event: str, **fields: Any) -> None:
        self.emit(event, logging.WARNING, **fields)

    def error(self, event: str, **fields: Any) -> None:
        self.emit(event, logging.ERROR, **fields)
