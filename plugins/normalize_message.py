from hooks.base import BasePlugin
from context import MigrationContext
from models import Changeset


class NormalizeMessagePlugin(BasePlugin):
    """
    [插件] 提交信息规范化
    VSS 注释通常带有 CRLF 换行和行尾空白，统一为 LF 并去除行尾空白。
    """

    name = "NormalizeCommitMessage"

    def on_commit_message(
        self, context: MigrationContext, message: str, changeset: Changeset
    ) -> str:
        if not message:
            return message

        lines = message.replace("\r\n", "\n").replace("\r", "\n").split("\n")
        return "\n".join(line.rstrip() for line in lines).strip("\n")
