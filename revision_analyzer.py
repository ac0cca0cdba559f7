# revision_analyzer.py
"""
[V1.0] 修订分析器
递归遍历源项目树，为每个条目收集完整的、按时间排序的修订列表。
"""
import fnmatch
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from data_sources.base import SourceRepository
from exceptions import AnalysisError, MigrationError
from models import ActionKind, HistoryEntry, RevisionRecord, SourceItem
from work_queue import WorkQueue

logger = logging.getLogger(__name__)

# 原始动作名到 ActionKind 的别名 (导出文件中可能出现的写法)
ACTION_ALIASES = {
    "create": ActionKind.ADD,
    "checkin": ActionKind.EDIT,
    "destroy": ActionKind.DELETE,
    "undelete": ActionKind.RECOVER,
    "restore": ActionKind.RECOVER,
}


def parse_action(name: str) -> ActionKind:
    key = (name or "").strip().lower()
    if key in ACTION_ALIASES:
        return ACTION_ALIASES[key]
    return ActionKind(key)


class RevisionAnalyzer:
    """
    遍历一个或多个根项目，收集每个条目的修订。

    排除规则 (fnmatch 风格) 同时匹配完整逻辑路径和条目名称；
    被排除的项目连同其整个子树一起跳过。
    """

    def __init__(
        self,
        work_queue: Optional[WorkQueue],
        source: SourceRepository,
        fail_fast: bool = False,
    ):
        self.work_queue = work_queue
        self.source = source
        self.fail_fast = fail_fast
        self.roots: List[SourceItem] = []
        self.exclude_patterns: List[str] = []
        self.file_count = 0
        self.revision_count = 0
        self.skipped_count = 0
        self._revisions: List[RevisionRecord] = []
        # 项目当前路径 (小写) -> [(重命名时间, 重命名前的名称)]
        self._project_renames: Dict[str, List[Tuple[datetime, str]]] = {}

    # --- 配置 ---

    def add_root(self, project: SourceItem):
        if not project.is_project:
            raise AnalysisError(project.path, "root must be a project")
        self.roots.append(project)

    add_item = add_root

    def exclude(self, pattern: str):
        pattern = pattern.strip()
        if pattern:
            self.exclude_patterns.append(pattern)

    @property
    def exclude_files(self) -> str:
        return ";".join(self.exclude_patterns)

    @exclude_files.setter
    def exclude_files(self, value: str):
        """以分号分隔的排除规则列表"""
        self.exclude_patterns = []
        for pattern in (value or "").split(";"):
            self.exclude(pattern)

    def is_excluded(self, path: str) -> bool:
        name = path.rstrip("/").rsplit("/", 1)[-1]
        for pattern in self.exclude_patterns:
            if fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(name, pattern):
                return True
        return False

    # --- 结果 ---

    @property
    def revisions(self) -> Tuple[RevisionRecord, ...]:
        """按遍历顺序、每个条目内按时间排序的修订快照"""
        return tuple(self._revisions)

    def sorted_revisions(self) -> List[RevisionRecord]:
        """全局按时间排序 (稳定排序，同一时刻保持遍历顺序)"""
        return sorted(self._revisions, key=lambda r: r.timestamp)

    # --- 执行 ---

    def analyze(self):
        """将分析任务加入工作队列"""
        self.work_queue.add_last(self.run)

    def run(self) -> Tuple[RevisionRecord, ...]:
        for root in self.roots:
            if self._aborting():
                break
            logger.info(f"🔍 开始分析项目: {root.path}")
            self._walk(root)
        logger.info(
            f"✅ 分析完成: {self.file_count} 个文件, {self.revision_count} 个修订"
            + (f", 跳过 {self.skipped_count} 个条目" if self.skipped_count else "")
        )
        return self.revisions

    def _aborting(self) -> bool:
        return self.work_queue is not None and self.work_queue.is_aborting

    def _walk(self, project: SourceItem):
        stack = [project]
        while stack:
            if self._aborting():
                logger.warning("🛑 分析已取消")
                return
            item = stack.pop()
            if self.is_excluded(item.path):
                logger.info(f"智能过滤: 已排除 {item.path}")
                continue

            self._status(f"Analyzing: {item.path}")
            self._analyze_item(item)

            if item.is_project:
                children = self._children(item)
                # 反向压栈，保持子条目的自然顺序
                stack.extend(reversed(children))

    def _children(self, project: SourceItem) -> List[SourceItem]:
        try:
            return self.source.get_children(project)
        except MigrationError as e:
            self._malformed(project, f"cannot list children: {e}")
            return []

    def _analyze_item(self, item: SourceItem):
        try:
            history = self.source.get_history(item)
        except MigrationError as e:
            self._malformed(item, f"cannot read history: {e}")
            return

        if not history:
            logger.debug(f"条目没有历史记录，跳过: {item.path}")
            return

        try:
            records = self._convert(item, history)
        except (ValueError, TypeError) as e:
            self._malformed(item, str(e))
            return

        if item.is_project:
            self._remember_renames(item, records)
        self._revisions.extend(records)
        if not item.is_project:
            self.file_count += 1
        self.revision_count += len(records)

    def _convert(
        self, item: SourceItem, history: Iterable[HistoryEntry]
    ) -> List[RevisionRecord]:
        entries = list(history)
        for entry in entries:
            if entry.timestamp is None:
                raise ValueError("history entry without timestamp")
            if not entry.user:
                raise ValueError("history entry without user")
        # 同一条目内按源仓库记录的时间排序 (稳定)
        entries.sort(key=lambda e: e.timestamp)
        actions = [parse_action(e.action) for e in entries]

        # 从当前路径倒推每个事件发生时的路径 (重命名之前使用旧路径)，
        # 再换上上级项目在该时刻的名称
        paths = [""] * len(entries)
        current = item.path
        for index in range(len(entries) - 1, -1, -1):
            paths[index] = self._path_at(current, entries[index].timestamp)
            if actions[index] == ActionKind.RENAME and entries[index].from_path:
                current = self._resolve_path(item, entries[index].from_path)

        records = []
        for entry, action, path in zip(entries, actions, paths):
            from_path = entry.from_path
            origin_item_id = entry.origin_item_id
            if from_path:
                from_path = self._path_at(
                    self._resolve_path(item, from_path), entry.timestamp
                )
            if action in (ActionKind.SHARE, ActionKind.BRANCH):
                # 共享/分支必须能追溯到源条目
                origin_item_id = origin_item_id or item.item_id
                from_path = from_path or path
            records.append(
                RevisionRecord(
                    item=item,
                    action=action,
                    timestamp=entry.timestamp,
                    user=entry.user,
                    comment=entry.comment or "",
                    version=entry.version,
                    path=path,
                    from_path=from_path,
                    origin_item_id=origin_item_id,
                    label=entry.label,
                )
            )
        return records

    @staticmethod
    def _resolve_path(item: SourceItem, path: str) -> str:
        """只给出名称时，视为与条目同级"""
        if "/" in path:
            return path.rstrip("/")
        parent = item.path.rsplit("/", 1)[0]
        return f"{parent}/{path}"

    def _remember_renames(self, project: SourceItem, records: List[RevisionRecord]):
        renames = [
            (r.timestamp, r.from_path.rsplit("/", 1)[-1])
            for r in records
            if r.action == ActionKind.RENAME and r.from_path
        ]
        if renames:
            self._project_renames[project.path.lower()] = renames

    def _path_at(self, path: str, timestamp: datetime) -> str:
        """
        把当前路径中的上级项目名换成 timestamp 时刻的名称。
        条目自身的名称不变 (由它自己的重命名历史负责)。
        """
        if not self._project_renames:
            return path
        segments = path.split("/")
        result = list(segments)
        for depth in range(1, len(segments)):
            prefix = "/".join(segments[:depth]).lower()
            for renamed_at, old_name in self._project_renames.get(prefix, ()):
                # 第一个晚于该时刻的重命名给出当时的名称
                if renamed_at > timestamp:
                    result[depth - 1] = old_name
                    break
        return "/".join(result)

    def _malformed(self, item: SourceItem, message: str):
        if self.fail_fast:
            raise AnalysisError(item.path, message)
        self.skipped_count += 1
        logger.warning(f"⚠️ 跳过异常条目 {item.path}: {message}")

    def _status(self, text: str):
        if self.work_queue is not None:
            self.work_queue.set_status(text)
