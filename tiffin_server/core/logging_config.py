"""
日志配置
统一使用标准库 logging，结构化事件的字段以 key=value 形式附加在消息后
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """配置根日志器，重复调用不会重复添加 handler"""
    root = logging.getLogger()
    root.setLevel(level.upper())
    if not any(getattr(h, "_tiffin_handler", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._tiffin_handler = True
        root.addHandler(handler)
