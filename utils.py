import logging
import os
import sys
from datetime import timedelta
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"


# 将日志配置移到这里，作为一个可被调用的函数
def setup_logging(level: int = logging.INFO):
    """配置全局日志"""
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def open_log_file(filename: Optional[str]) -> Optional[logging.Handler]:
    """
    为一次迁移运行附加日志文件。
    返回的 handler 需要在任务结束时交给 close_log_file。
    """
    if not filename:
        return None
    directory = os.path.dirname(os.path.abspath(filename))
    os.makedirs(directory, exist_ok=True)
    handler = logging.FileHandler(filename, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)
    return handler


def close_log_file(handler: Optional[logging.Handler]):
    """移除并关闭 open_log_file 创建的 handler"""
    if handler is None:
        return
    logging.getLogger().removeHandler(handler)
    handler.close()


def format_elapsed(elapsed: timedelta) -> str:
    """HH:MM:SS"""
    seconds = int(elapsed.total_seconds())
    return f"{seconds // 3600:02d}:{seconds % 3600 // 60:02d}:{seconds % 60:02d}"
