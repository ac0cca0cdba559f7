import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class ActionKind(str, Enum):
    """源仓库中一次修订的动作类型"""

    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"
    RENAME = "rename"
    SHARE = "share"
    BRANCH = "branch"
    RECOVER = "recover"
    LABEL = "label"


@dataclass(frozen=True)
class SourceItem:
    """源项目树中的一个节点 (文件或项目)"""

    item_id: str
    path: str
    is_project: bool = False

    @property
    def name(self) -> str:
        return self.path.rstrip("/").rsplit("/", 1)[-1]


@dataclass(frozen=True)
class HistoryEntry:
    """源仓库返回的原始历史记录，由 RevisionAnalyzer 校验后转换"""

    action: str
    timestamp: Optional[datetime]
    user: Optional[str]
    comment: str = ""
    version: int = 0
    from_path: Optional[str] = None
    origin_item_id: Optional[str] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class RevisionRecord:
    """单个条目上的一次历史事件，生成后不可变"""

    item: SourceItem
    action: ActionKind
    timestamp: datetime
    user: str
    comment: str
    version: int
    path: str
    from_path: Optional[str] = None
    origin_item_id: Optional[str] = None
    label: Optional[str] = None

    @property
    def is_project(self) -> bool:
        return self.item.is_project


@dataclass(frozen=True)
class Changeset:
    """被视为同一逻辑变更的一组修订"""

    revisions: Tuple[RevisionRecord, ...]
    user: str
    comment: str
    start: datetime
    end: datetime

    def __len__(self) -> int:
        return len(self.revisions)

    @property
    def labels(self) -> Tuple[RevisionRecord, ...]:
        return tuple(r for r in self.revisions if r.action == ActionKind.LABEL)


@dataclass(frozen=True)
class PathMapping:
    """导出路径的正则改写规则"""

    pattern: str
    replacement: str

    def apply(self, path: str) -> str:
        return re.sub(self.pattern, self.replacement, path)


@dataclass(frozen=True)
class TreeOperation:
    """作用在目标工作树上的一次操作"""

    kind: str  # write / delete / rename
    path: str
    from_path: Optional[str] = None


@dataclass(frozen=True)
class ExportCommit:
    """由一个 Changeset 生成的目标提交"""

    commit_id: str
    author_name: str
    author_email: str
    timestamp: datetime
    message: str
    parent: Optional[str]
    operations: Tuple[TreeOperation, ...] = field(default_factory=tuple)
    tags: Tuple[str, ...] = field(default_factory=tuple)
