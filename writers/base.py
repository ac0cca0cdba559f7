from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional


class CommitWriter(ABC):
    """
    提交写入器抽象基类
    定义对目标仓库工作树的修改原语、提交创建和标签创建。
    具体实现负责底层对象写入 (Git 等)。
    """

    @abstractmethod
    def set_commit_encoding(self, encoding: Optional[str]):
        """
        设置提交信息的写入编码。
        None 表示使用规范编码 (UTF-8)。
        """
        pass

    @abstractmethod
    def write_file(self, path: str, data: bytes):
        """在工作树中新增或修改文件"""
        pass

    @abstractmethod
    def delete(self, path: str):
        """删除文件或目录 (目录递归删除)"""
        pass

    @abstractmethod
    def rename(self, old_path: str, new_path: str):
        """重命名文件或目录"""
        pass

    @abstractmethod
    def commit(
        self,
        author_name: str,
        author_email: str,
        when: datetime,
        message: str,
        parent: Optional[str],
    ) -> str:
        """
        以当前工作树状态创建提交。
        :param parent: 父提交 ID，首个提交为 None
        :return: 新提交的 ID
        """
        pass

    @abstractmethod
    def tag(
        self,
        name: str,
        commit_id: str,
        annotated: bool,
        tagger_name: str = "",
        tagger_email: str = "",
        when: Optional[datetime] = None,
        message: str = "",
    ):
        """创建轻量标签或附注标签"""
        pass

    def discard(self):
        """丢弃上一次提交之后的所有未提交修改 (导出失败时调用)"""
        pass

    def close(self):
        """释放底层资源"""
        pass
