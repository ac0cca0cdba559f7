from abc import ABC, abstractmethod
from typing import List

from exceptions import NotAProjectError
from models import HistoryEntry, SourceItem


class SourceRepository(ABC):
    """
    源仓库抽象基类
    定义了读取旧版集中式仓库项目树和逐文件历史的标准接口，
    屏蔽了底层是二进制数据库、导出文件还是内存数据的差异。
    """

    #: 注释和文件名在源仓库中使用的字符编码
    encoding: str = "cp1252"

    @abstractmethod
    def validate(self) -> bool:
        """
        验证数据源是否可用。
        例如：数据库目录是否存在，导出文件是否可解析。
        """
        pass

    @abstractmethod
    def get_item(self, path: str) -> SourceItem:
        """
        将逻辑路径 (如 $/Project/src) 解析为条目。
        路径无法解析时抛出 SourcePathError。
        """
        pass

    @abstractmethod
    def get_children(self, project: SourceItem) -> List[SourceItem]:
        """
        返回项目的直接子条目 (文件和子项目)。
        """
        pass

    @abstractmethod
    def get_history(self, item: SourceItem) -> List[HistoryEntry]:
        """
        返回条目的原始历史记录，按源仓库记录的时间顺序。
        """
        pass

    @abstractmethod
    def get_content(self, item: SourceItem, version: int) -> bytes:
        """
        返回文件在指定版本的内容。
        """
        pass

    def get_project(self, path: str) -> SourceItem:
        """解析路径并确认它是一个项目，否则抛出 NotAProjectError。"""
        item = self.get_item(path)
        if not item.is_project:
            raise NotAProjectError(path)
        return item
