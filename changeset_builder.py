# changeset_builder.py
"""
[V1.0] 变更集构建器
按作者和时间阈值把独立的逐文件修订聚合为原子变更集。

规则 (对按全局时间排序的每个修订 A/T/C):
  1. A 有未关闭的变更集且 T - last_seen(A) <= any_threshold: 追加
  2. 否则注释非空、与上次相同且 T - last_seen(A) <= same_threshold: 追加
  3. 否则关闭 A 的变更集，并以该修订新开一个
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

from models import Changeset, RevisionRecord
from work_queue import WorkQueue

logger = logging.getLogger(__name__)

DEFAULT_ANY_COMMENT_THRESHOLD = timedelta(seconds=30)
DEFAULT_SAME_COMMENT_THRESHOLD = timedelta(seconds=600)


@dataclass
class _OpenChangeset:
    """某个作者正在累积的变更集"""

    order: int
    revisions: List[RevisionRecord] = field(default_factory=list)
    last_seen: Optional[datetime] = None
    last_comment: str = ""

    def append(self, revision: RevisionRecord):
        """相同注释规则比较的是最近追加的修订的注释，即使它为空"""
        self.revisions.append(revision)
        self.last_seen = revision.timestamp
        self.last_comment = revision.comment

    def freeze(self) -> Changeset:
        comment = next((r.comment for r in self.revisions if r.comment), "")
        return Changeset(
            revisions=tuple(self.revisions),
            user=self.revisions[0].user,
            comment=comment,
            start=self.revisions[0].timestamp,
            end=self.revisions[-1].timestamp,
        )


class ChangesetBuilder:
    """
    聚类状态 (作者 -> 未关闭的变更集) 只存在于一次 build 调用中。
    """

    def __init__(
        self,
        work_queue: Optional[WorkQueue] = None,
        any_comment_threshold: timedelta = DEFAULT_ANY_COMMENT_THRESHOLD,
        same_comment_threshold: timedelta = DEFAULT_SAME_COMMENT_THRESHOLD,
    ):
        self.work_queue = work_queue
        self.any_comment_threshold = any_comment_threshold
        self.same_comment_threshold = same_comment_threshold
        self.changeset_count = 0
        self._changesets: Tuple[Changeset, ...] = ()

    @property
    def changesets(self) -> Tuple[Changeset, ...]:
        return self._changesets

    def build_changesets(self, analyzer):
        """将构建任务加入工作队列，输入为分析器的结果"""

        def task():
            self.build(
                analyzer.revisions,
                self.any_comment_threshold,
                self.same_comment_threshold,
            )

        self.work_queue.add_last(task)

    def build(
        self,
        revisions: Iterable[RevisionRecord],
        any_threshold: Optional[timedelta] = None,
        same_threshold: Optional[timedelta] = None,
    ) -> List[Changeset]:
        any_threshold = (
            self.any_comment_threshold if any_threshold is None else any_threshold
        )
        same_threshold = (
            self.same_comment_threshold if same_threshold is None else same_threshold
        )
        if same_threshold < any_threshold:
            logger.warning(
                f"⚠️ 相同注释阈值 ({same_threshold}) 小于任意注释阈值 ({any_threshold})"
            )

        # 稳定排序: 同一时刻保持原始顺序
        ordered = sorted(revisions, key=lambda r: r.timestamp)
        total = len(ordered)
        logger.info(f"🧩 正在构建变更集: {total} 个修订")
        self.changeset_count = 0

        open_by_user: Dict[str, _OpenChangeset] = {}
        closed: List[_OpenChangeset] = []
        next_order = 0

        for index, revision in enumerate(ordered):
            if self.work_queue is not None:
                if self.work_queue.is_aborting:
                    logger.warning("🛑 变更集构建已取消")
                    break
                self.work_queue.set_progress(index, total)

            pending = open_by_user.get(revision.user)
            if pending is not None:
                gap = revision.timestamp - pending.last_seen
                if gap <= any_threshold:
                    pending.append(revision)
                    continue
                if (
                    revision.comment
                    and revision.comment == pending.last_comment
                    and gap <= same_threshold
                ):
                    pending.append(revision)
                    continue
                logger.debug(
                    f"关闭 {revision.user} 的变更集: 间隔 {gap} 超出阈值"
                )
                closed.append(pending)
                self.changeset_count += 1

            pending = _OpenChangeset(order=next_order)
            next_order += 1
            pending.append(revision)
            open_by_user[revision.user] = pending

        closed.extend(open_by_user.values())
        self.changeset_count = len(closed)

        # 按开始时间排序，相同时按首个修订的原始顺序
        closed.sort(key=lambda c: (c.revisions[0].timestamp, c.order))
        result = [c.freeze() for c in closed]
        self._changesets = tuple(result)
        if self.work_queue is not None:
            self.work_queue.set_progress(total, total)
        logger.info(f"✅ 构建完成: {len(result)} 个变更集")
        return result
