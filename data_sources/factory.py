import logging
import os

from context import MigrationContext
from exceptions import ConfigurationError
from .base import SourceRepository
from .json_dump import JsonDumpSourceRepository

logger = logging.getLogger(__name__)


def get_source_repository(context: MigrationContext) -> SourceRepository:
    """
    数据源工厂
    根据 source_path 选择源仓库实现。
    """
    path = context.source_path
    if not path:
        raise ConfigurationError("No source path given")

    if path.lower().endswith(".json") or os.path.isfile(
        os.path.join(path, "history.json")
    ):
        if os.path.isdir(path):
            path = os.path.join(path, "history.json")
        logger.info(f"🔌 [Factory] 初始化数据源: JSON 历史导出 ({path})")
        return JsonDumpSourceRepository(path, encoding=context.encoding)

    raise ConfigurationError(
        f"Unsupported source repository: {context.source_path} "
        "(expected a history .json export or a directory containing history.json)"
    )
