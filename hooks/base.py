from abc import ABC
from typing import List

from context import MigrationContext
from models import Changeset, RevisionRecord


class BasePlugin(ABC):
    """
    插件基类
    定义迁移流水线的生命周期钩子。用户自定义插件应继承此类。
    钩子在后台工作线程中调用。
    """

    # 插件名称 (建议子类覆盖)
    name: str = "BasePlugin"
    # 数值越小越先执行 (filter 钩子的管道顺序)
    priority: int = 100

    def on_start(self, context: MigrationContext):
        """
        [钩子] 流水线任务入队前调用。
        """
        pass

    def on_revisions_analyzed(
        self, context: MigrationContext, revisions: List[RevisionRecord]
    ):
        """
        [钩子] 修订分析完成后调用。
        可用于检查数据完整性或统计自定义指标。
        """
        pass

    def on_changesets_built(
        self, context: MigrationContext, changesets: List[Changeset]
    ):
        """
        [钩子] 变更集构建完成后调用。
        """
        pass

    def on_commit_message(
        self, context: MigrationContext, message: str, changeset: Changeset
    ) -> str:
        """
        [Filter 钩子] 写入每个提交前调用。
        **必须返回字符串**。可用于统一换行、追加签名等。

        :param message: 原始提交信息 (注释或默认注释)
        :return: 修改后的提交信息 (若不修改请直接返回 message)
        """
        return message

    def on_finish(self, context: MigrationContext):
        """
        [钩子] 任务集结束时调用 (完成、失败或取消)。
        可用于清理资源。
        """
        pass
