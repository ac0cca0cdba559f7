# context.py
"""
[V1.0] 运行时配置的数据模型
"""
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from config import GlobalConfig
from models import PathMapping


@dataclass
class MigrationContext:
    """
    封装一次迁移运行所需的所有配置。
    这是从 CLI 传递到 Orchestrator 的唯一对象。
    """

    # --- 源仓库 ---
    source_path: str
    project_path: str
    exclude_patterns: List[str] = field(default_factory=list)
    # 为空时使用源仓库自身声明的编码
    encoding: Optional[str] = None

    # --- 输出 ---
    # 为空时只分析和构建变更集，不导出
    output_path: Optional[str] = None
    log_file: Optional[str] = None

    # --- 路径映射 ---
    path_pattern: Optional[str] = None
    path_replacement: str = ""

    # --- 提交身份与信息 ---
    email_domain: Optional[str] = None
    default_comment: Optional[str] = None

    # --- 聚类阈值 ---
    any_comment_threshold: timedelta = timedelta(
        seconds=GlobalConfig.ANY_COMMENT_SECONDS
    )
    same_comment_threshold: timedelta = timedelta(
        seconds=GlobalConfig.SAME_COMMENT_SECONDS
    )

    # --- 标志 ---
    transcode_comments: bool = True
    ignore_errors: bool = False
    force_annotated_tags: bool = False
    fail_fast: bool = False
    write_report: bool = True

    # --- 全局配置 ---
    global_config: GlobalConfig = field(default_factory=GlobalConfig)

    @property
    def path_mappings(self) -> List[PathMapping]:
        if not self.path_pattern:
            return []
        return [PathMapping(self.path_pattern, self.path_replacement or "")]
