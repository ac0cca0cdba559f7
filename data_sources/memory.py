import logging
from typing import Dict, Iterable, List, Optional, Tuple

from exceptions import SourcePathError
from models import HistoryEntry, SourceItem
from .base import SourceRepository

logger = logging.getLogger(__name__)

ROOT_PATH = "$"


def normalize_path(path: str) -> str:
    """统一逻辑路径: 去掉末尾的 '/'，根目录写作 '$'。"""
    path = (path or "").strip().replace("\\", "/")
    if path in ("$", "$/"):
        return ROOT_PATH
    return path.rstrip("/")


def parent_path(path: str) -> Optional[str]:
    path = normalize_path(path)
    if path == ROOT_PATH or "/" not in path:
        return None
    return path.rsplit("/", 1)[0] or ROOT_PATH


class MemorySourceRepository(SourceRepository):
    """
    内存中的源仓库实现。
    用于测试和嵌入式调用，也是 JSON 导出数据源的基础。
    路径查找不区分大小写 (与 VSS 一致)。
    """

    def __init__(self, encoding: str = "cp1252"):
        self.encoding = encoding
        self._items: Dict[str, SourceItem] = {}
        self._history: Dict[str, List[HistoryEntry]] = {}
        self._contents: Dict[Tuple[str, int], bytes] = {}
        self._next_id = 1
        self.add_project(ROOT_PATH, item_id="0")

    def _new_id(self) -> str:
        while str(self._next_id) in {i.item_id for i in self._items.values()}:
            self._next_id += 1
        item_id = str(self._next_id)
        self._next_id += 1
        return item_id

    def _add(
        self,
        path: str,
        is_project: bool,
        item_id: Optional[str],
        history: Optional[Iterable[HistoryEntry]],
    ) -> SourceItem:
        path = normalize_path(path)
        parent = parent_path(path)
        if parent is not None and parent.lower() not in self._items:
            self.add_project(parent)
        item = SourceItem(
            item_id=item_id or self._new_id(), path=path, is_project=is_project
        )
        self._items[path.lower()] = item
        self._history[path.lower()] = list(history or [])
        return item

    def add_project(
        self,
        path: str,
        history: Optional[Iterable[HistoryEntry]] = None,
        item_id: Optional[str] = None,
    ) -> SourceItem:
        key = normalize_path(path).lower()
        if key in self._items and history is None:
            return self._items[key]
        return self._add(path, True, item_id, history)

    def add_file(
        self,
        path: str,
        history: Optional[Iterable[HistoryEntry]] = None,
        contents: Optional[Dict[int, bytes]] = None,
        item_id: Optional[str] = None,
    ) -> SourceItem:
        item = self._add(path, False, item_id, history)
        for version, data in (contents or {}).items():
            self._contents[(item.item_id, int(version))] = data
        return item

    def validate(self) -> bool:
        return True

    def get_item(self, path: str) -> SourceItem:
        item = self._items.get(normalize_path(path).lower())
        if item is None:
            raise SourcePathError(path)
        return item

    def get_children(self, project: SourceItem) -> List[SourceItem]:
        key = project.path.lower()
        children = [
            item
            for item in self._items.values()
            if (parent_path(item.path) or "").lower() == key
        ]
        return sorted(children, key=lambda i: i.path.lower())

    def get_history(self, item: SourceItem) -> List[HistoryEntry]:
        return list(self._history.get(item.path.lower(), []))

    def get_content(self, item: SourceItem, version: int) -> bytes:
        try:
            return self._contents[(item.item_id, version)]
        except KeyError:
            raise SourcePathError(
                item.path, f"{item.path}: version {version} not found"
            ) from None
