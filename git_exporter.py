# git_exporter.py
"""
[V1.0] 提交导出器
按顺序把变更集写成目标仓库的提交:
- 路径映射 (项目根前缀剥离 + 正则改写)
- 作者身份与邮箱合成
- 提交信息编码策略 (保留源编码或转码为 UTF-8)
- VSS 标签导出为 Git 标签 (轻量或附注)
"""
import logging
import posixpath
import re
from typing import Callable, Iterable, List, Optional, Sequence, Set

from config import GlobalConfig
from data_sources.base import SourceRepository
from exceptions import ExportError
from models import (
    ActionKind,
    Changeset,
    ExportCommit,
    PathMapping,
    RevisionRecord,
    TreeOperation,
)
from work_queue import WorkQueue
from writers.base import CommitWriter

logger = logging.getLogger(__name__)

PLACEHOLDER_EMAIL_DOMAIN = GlobalConfig.PLACEHOLDER_EMAIL_DOMAIN

# 写入文件内容的动作
CONTENT_ACTIONS = (
    ActionKind.ADD,
    ActionKind.EDIT,
    ActionKind.RECOVER,
    ActionKind.SHARE,
    ActionKind.BRANCH,
)

_INVALID_TAG_CHARS = re.compile(r"[\x00-\x20\x7f~^:?*\[\\]+")


def sanitize_tag_name(label: str) -> str:
    """把 VSS 标签名转换为合法的 Git 引用名"""
    name = _INVALID_TAG_CHARS.sub("_", label.strip())
    name = re.sub(r"\.{2,}", ".", name).replace("@{", "@_")
    name = re.sub(r"/{2,}", "/", name)
    name = name.strip("/").lstrip(".-")
    while name.endswith(".lock") or name.endswith("."):
        name = name[: -len(".lock")] if name.endswith(".lock") else name[:-1]
    return name or "label"


class GitExporter:
    """
    变更集 -> 目标提交。每个变更集要么完整提交，要么完全不提交。
    """

    def __init__(
        self,
        work_queue: Optional[WorkQueue],
        source: SourceRepository,
        email_domain: Optional[str] = None,
        default_comment: str = "",
        commit_encoding: Optional[str] = None,
        ignore_errors: bool = False,
        force_annotated_tags: bool = False,
        root_paths: Optional[Sequence[str]] = None,
        plugin_manager=None,
    ):
        self.work_queue = work_queue
        self.source = source
        self.email_domain = email_domain
        self.default_comment = default_comment or ""
        # None 表示转码为 UTF-8；否则按源编码原样写入
        self.commit_encoding = commit_encoding
        self.ignore_errors = ignore_errors
        self.force_annotated_tags = force_annotated_tags
        self.root_paths: List[str] = [p.rstrip("/") for p in (root_paths or [])]
        self.plugin_manager = plugin_manager
        self.path_mappings: List[PathMapping] = []
        self.error_count = 0
        self._commits: List[ExportCommit] = []
        self._tag_names: Set[str] = set()

    # --- 配置 ---

    def add_path_mapping(self, pattern: str, replacement: str = ""):
        if pattern:
            re.compile(pattern)
            self.path_mappings.append(PathMapping(pattern, replacement or ""))

    # --- 结果 ---

    @property
    def commits(self) -> List[ExportCommit]:
        return list(self._commits)

    @property
    def commit_count(self) -> int:
        return len(self._commits)

    @property
    def last_commit_id(self) -> Optional[str]:
        return self._commits[-1].commit_id if self._commits else None

    # --- 身份与信息 ---

    def get_email(self, user: str) -> str:
        local_part = user.strip().lower().replace(" ", ".")
        return f"{local_part}@{self.email_domain or PLACEHOLDER_EMAIL_DOMAIN}"

    def get_message(self, changeset: Changeset) -> str:
        message = changeset.comment or self.default_comment
        if self.plugin_manager is not None:
            message = self.plugin_manager.filter("on_commit_message", message, changeset)
        if self.commit_encoding:
            # 无法用源编码表示的字符以替换字符写入
            message = message.encode(self.commit_encoding, errors="replace").decode(
                self.commit_encoding
            )
        return message

    # --- 路径 ---

    def _derive_roots(self, revisions: Iterable[RevisionRecord]):
        folders = set()
        for revision in revisions:
            if revision.is_project:
                folders.add(revision.path)
            else:
                folders.add(posixpath.dirname(revision.path))
        if folders:
            self.root_paths = [posixpath.commonpath(sorted(folders))]
            logger.info(f"ℹ️ 推断项目根路径: {self.root_paths[0]}")

    def get_target_path(self, source_path: str) -> Optional[str]:
        """
        源逻辑路径 -> 目标工作树相对路径。
        返回 None 表示路径是项目根本身，或被映射为空。
        """
        path = source_path.rstrip("/")
        relative = None
        for root in sorted(self.root_paths, key=len, reverse=True):
            if path.lower() == root.lower():
                return None
            if path.lower().startswith(root.lower() + "/"):
                relative = path[len(root) + 1 :]
                break
        if relative is None:
            relative = path[2:] if path.startswith("$/") else path

        for mapping in self.path_mappings:
            relative = mapping.apply(relative)
        relative = relative.strip("/")
        if not relative:
            logger.warning(f"⚠️ 路径被映射为空，跳过: {source_path}")
            return None
        return relative

    # --- 执行 ---

    def export_to_git(
        self, open_target: Callable[[], CommitWriter], analyzer, builder
    ):
        """
        将导出任务加入工作队列，输入为分析器和构建器的结果。
        目标仓库在工作线程中打开，打开失败同样由队列捕获。
        """

        def task():
            target = open_target()
            try:
                self.export(builder.changesets, analyzer.revisions, target)
            finally:
                target.close()

        self.work_queue.add_last(task)

    def export(
        self,
        changesets: Sequence[Changeset],
        revisions: Sequence[RevisionRecord],
        target: CommitWriter,
    ) -> List[ExportCommit]:
        if not self.root_paths:
            self._derive_roots(revisions)

        target.set_commit_encoding(self.commit_encoding)
        total = len(changesets)
        logger.info(f"🚀 开始导出: {total} 个变更集, {len(revisions)} 个修订")

        for index, changeset in enumerate(changesets):
            if self.work_queue is not None:
                if self.work_queue.is_aborting:
                    logger.warning(f"🛑 导出已取消 (已完成 {index}/{total})")
                    break
                self.work_queue.set_progress(index, total)
                self.work_queue.set_status(
                    f"Exporting changeset {index + 1}/{total} ({changeset.user})"
                )
            try:
                self._export_changeset(index, changeset, target)
            except ExportError:
                self._discard(target)
                raise
        else:
            if self.work_queue is not None:
                self.work_queue.set_progress(total, total)

        logger.info(
            f"✅ 导出结束: {self.commit_count} 个提交"
            + (f", 忽略 {self.error_count} 个错误" if self.error_count else "")
        )
        return self.commits

    @staticmethod
    def _discard(target: CommitWriter):
        """致命错误后让目标停在上一个提交，不留下半个变更集"""
        try:
            target.discard()
        except Exception as e:
            logger.error(f"❌ 丢弃未提交的修改失败: {e}")

    def _export_changeset(
        self, index: int, changeset: Changeset, target: CommitWriter
    ):
        operations: List[TreeOperation] = []
        for revision in changeset.revisions:
            if revision.action == ActionKind.LABEL:
                continue
            try:
                operation = self._apply(revision, target)
            except Exception as e:
                self._handle_error(
                    index, f"{revision.action.value} {revision.path} 失败: {e}", e
                )
                continue
            if operation is not None:
                operations.append(operation)

        commit_id = self.last_commit_id
        parent = commit_id
        if operations:
            email = self.get_email(changeset.user)
            message = self.get_message(changeset)
            try:
                commit_id = target.commit(
                    changeset.user, email, changeset.end, message, parent
                )
            except Exception as e:
                raise ExportError(
                    f"Commit of changeset {index + 1} failed: {e}", index
                ) from e
            tags = self._create_tags(index, changeset, target, commit_id)
            self._commits.append(
                ExportCommit(
                    commit_id=commit_id,
                    author_name=changeset.user,
                    author_email=email,
                    timestamp=changeset.end,
                    message=message,
                    parent=parent,
                    operations=tuple(operations),
                    tags=tuple(tags),
                )
            )
            logger.debug(f"提交 {commit_id[:8]}: {len(operations)} 个操作")
        elif changeset.labels:
            if commit_id is None:
                logger.warning(f"⚠️ 标签之前没有提交，跳过: {changeset.labels[0].label}")
            else:
                tags = self._create_tags(index, changeset, target, commit_id)
                if tags and self._commits:
                    last = self._commits[-1]
                    self._commits[-1] = ExportCommit(
                        commit_id=last.commit_id,
                        author_name=last.author_name,
                        author_email=last.author_email,
                        timestamp=last.timestamp,
                        message=last.message,
                        parent=last.parent,
                        operations=last.operations,
                        tags=last.tags + tuple(tags),
                    )

    def _apply(
        self, revision: RevisionRecord, target: CommitWriter
    ) -> Optional[TreeOperation]:
        path = self.get_target_path(revision.path)
        if path is None:
            return None
        action = revision.action

        if action == ActionKind.DELETE:
            target.delete(path)
            return TreeOperation("delete", path)

        if action == ActionKind.RENAME:
            if not revision.from_path:
                return None
            old_path = self.get_target_path(revision.from_path)
            if old_path is None or old_path == path:
                return None
            target.rename(old_path, path)
            return TreeOperation("rename", path, old_path)

        if revision.is_project:
            # Git 不记录空目录
            return None

        if action in CONTENT_ACTIONS:
            data = self.source.get_content(revision.item, revision.version)
            target.write_file(path, data)
            return TreeOperation("write", path)
        return None

    def _create_tags(
        self,
        index: int,
        changeset: Changeset,
        target: CommitWriter,
        commit_id: str,
    ) -> List[str]:
        created = []
        for revision in changeset.labels:
            name = self._unique_tag_name(sanitize_tag_name(revision.label or ""))
            annotated = self.force_annotated_tags or bool(revision.comment)
            try:
                target.tag(
                    name,
                    commit_id,
                    annotated,
                    tagger_name=revision.user,
                    tagger_email=self.get_email(revision.user),
                    when=revision.timestamp,
                    message=revision.comment or revision.label or name,
                )
            except Exception as e:
                self._handle_error(index, f"创建标签 {name} 失败: {e}", e)
                continue
            self._tag_names.add(name)
            created.append(name)
            logger.info(f"🏷️ 标签 {name} -> {commit_id[:8]}" + (" (附注)" if annotated else ""))
        return created

    def _unique_tag_name(self, name: str) -> str:
        candidate, suffix = name, 2
        while candidate in self._tag_names:
            candidate = f"{name}_{suffix}"
            suffix += 1
        return candidate

    def _handle_error(self, index: int, message: str, error: Exception):
        if self.ignore_errors:
            self.error_count += 1
            logger.warning(f"⚠️ [忽略错误] 变更集 {index + 1}: {message}")
            return
        raise ExportError(f"Changeset {index + 1}: {message}", index) from error
