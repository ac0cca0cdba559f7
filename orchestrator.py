# orchestrator.py
"""
[V1.0] 迁移编排器
- 同步校验配置 (源路径、项目路径、路径映射)，配置错误在任何后台任务开始前抛出
- 将 分析 -> 构建 -> 导出 作为一个任务集加入 WorkQueue
- idle 时生成报告、通知插件并关闭运行日志
"""
import logging
import re
import time
from typing import Any, Callable, Dict, Optional

from context import MigrationContext
from data_sources.base import SourceRepository
from data_sources.factory import get_source_repository
from exceptions import ConfigurationError, NotAProjectError, SourcePathError
from changeset_builder import ChangesetBuilder
from git_exporter import GitExporter
from hooks.manager import PluginManager
from revision_analyzer import RevisionAnalyzer
from work_queue import RunOutcome, WorkQueue
from writers.base import CommitWriter
from writers.git_writer import GitCommitWriter
import report_builder
import utils

logger = logging.getLogger(__name__)


class MigrationOrchestrator:
    """
    负责组装并调度一次完整的迁移运行。
    """

    def __init__(
        self,
        context: MigrationContext,
        work_queue: Optional[WorkQueue] = None,
        source: Optional[SourceRepository] = None,
        writer_factory: Optional[Callable[[str], CommitWriter]] = None,
        plugin_manager: Optional[PluginManager] = None,
    ):
        self.context = context
        self.global_config = context.global_config
        self.work_queue = work_queue or WorkQueue()
        self.source = source
        self.writer_factory = writer_factory or GitCommitWriter

        if plugin_manager is None:
            plugin_manager = PluginManager(context)
            plugin_manager.load_plugins()
        self.plugin_manager = plugin_manager

        self.analyzer: Optional[RevisionAnalyzer] = None
        self.builder: Optional[ChangesetBuilder] = None
        self.exporter: Optional[GitExporter] = None
        self.report_path: Optional[str] = None
        self._log_handler: Optional[logging.Handler] = None

    # ------------------------------------------------------------------
    # 启动
    # ------------------------------------------------------------------

    def _validate(self):
        """同步校验配置，返回根项目条目"""
        if not self.work_queue.is_idle:
            raise ConfigurationError("A migration is already running")

        if self.source is None:
            self.source = get_source_repository(self.context)
        if not self.source.validate():
            raise ConfigurationError(
                f"Invalid source repository: {self.context.source_path}"
            )

        try:
            project = self.source.get_project(self.context.project_path)
        except NotAProjectError as e:
            raise ConfigurationError(f"Invalid project path: {e}") from e
        except SourcePathError as e:
            raise ConfigurationError(f"Invalid project path: {e}") from e

        if self.context.path_pattern:
            try:
                re.compile(self.context.path_pattern)
            except re.error as e:
                raise ConfigurationError(
                    f"Invalid path mapping pattern {self.context.path_pattern!r}: {e}"
                ) from e

        if self.context.any_comment_threshold.total_seconds() < 0 or (
            self.context.same_comment_threshold.total_seconds() < 0
        ):
            raise ConfigurationError("Changeset thresholds must not be negative")
        return project

    def start(self):
        """
        校验配置并把流水线加入工作队列，立即返回。
        配置错误以 ConfigurationError 同步抛出。
        """
        project = self._validate()
        context = self.context

        self._log_handler = utils.open_log_file(context.log_file)
        encoding = context.encoding or self.source.encoding
        logger.info("=" * 50)
        logger.info("🚀 vss-migrate 启动...")
        logger.info(f"   [源仓库]: {context.source_path}")
        logger.info(f"   [项目]: {project.path}")
        logger.info(f"   [输出]: {context.output_path or '(仅分析)'}")
        logger.info(f"   [源编码]: {encoding}")
        logger.info(
            f"   [注释转码]: {'enabled' if context.transcode_comments else 'disabled'}"
        )
        logger.info(f"   [忽略错误]: {'enabled' if context.ignore_errors else 'disabled'}")
        logger.info("=" * 50)

        self.analyzer = RevisionAnalyzer(
            self.work_queue, self.source, fail_fast=context.fail_fast
        )
        for pattern in context.exclude_patterns:
            self.analyzer.exclude(pattern)
        self.analyzer.add_root(project)

        self.builder = ChangesetBuilder(
            self.work_queue,
            any_comment_threshold=context.any_comment_threshold,
            same_comment_threshold=context.same_comment_threshold,
        )

        if context.output_path:
            self.exporter = GitExporter(
                self.work_queue,
                self.source,
                email_domain=context.email_domain,
                default_comment=context.default_comment or "",
                commit_encoding=None if context.transcode_comments else encoding,
                ignore_errors=context.ignore_errors,
                force_annotated_tags=context.force_annotated_tags,
                root_paths=[project.path],
                plugin_manager=self.plugin_manager,
            )
            for mapping in context.path_mappings:
                self.exporter.add_path_mapping(mapping.pattern, mapping.replacement)

        self.plugin_manager.trigger("on_start")
        self.work_queue.on_idle(self._on_idle)

        # 整条流水线属于同一个任务集: 工作线程不会在阶段之间提前结束
        with self.work_queue.batch():
            self.analyzer.analyze()
            self.work_queue.add_last(
                lambda: self.plugin_manager.trigger(
                    "on_revisions_analyzed", list(self.analyzer.revisions)
                )
            )
            self.builder.build_changesets(self.analyzer)
            self.work_queue.add_last(
                lambda: self.plugin_manager.trigger(
                    "on_changesets_built", list(self.builder.changesets)
                )
            )
            if self.exporter is not None:
                output_path = context.output_path
                self.exporter.export_to_git(
                    lambda: self.writer_factory(output_path),
                    self.analyzer,
                    self.builder,
                )

    def abort(self):
        self.work_queue.abort()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.work_queue.wait_idle(timeout)

    # ------------------------------------------------------------------
    # 轮询
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """供前端轮询的进度快照"""
        current, maximum = self.work_queue.progress
        return {
            "status": self.work_queue.status or "Idle",
            "progress": current,
            "maximum": maximum,
            "elapsed": utils.format_elapsed(self.work_queue.active_time),
            "files": self.analyzer.file_count if self.analyzer else 0,
            "revisions": self.analyzer.revision_count if self.analyzer else 0,
            "changesets": self.builder.changeset_count if self.builder else 0,
            "commits": self.exporter.commit_count if self.exporter else 0,
        }

    def run(self) -> RunOutcome:
        """
        启动并轮询直到结束 (CLI 使用)。
        Ctrl-C 请求取消，并等待工作线程在单元边界停下。
        """
        self.start()
        poll_interval = self.global_config.STATUS_POLL_INTERVAL
        last_line, last_logged = None, 0.0
        try:
            while not self.work_queue.wait_idle(poll_interval):
                snap = self.snapshot()
                line = (
                    f"⏳ [{snap['elapsed']}] {snap['status']} | "
                    f"文件 {snap['files']} 修订 {snap['revisions']} "
                    f"变更集 {snap['changesets']} 提交 {snap['commits']}"
                )
                now = time.monotonic()
                if line != last_line and (
                    now - last_logged >= self.global_config.STATUS_LOG_INTERVAL
                ):
                    logger.info(line)
                    last_line, last_logged = line, now
        except KeyboardInterrupt:
            logger.warning("🛑 收到中断信号，正在取消...")
            self.abort()
            self.work_queue.wait_idle()
        return self.work_queue.last_outcome

    # ------------------------------------------------------------------
    # 结束
    # ------------------------------------------------------------------

    def _on_idle(self, work_queue: WorkQueue):
        work_queue.remove_idle_handler(self._on_idle)
        try:
            summary = self._summary(work_queue)
            logger.info("\n" + report_builder.generate_text_report(summary))
            if self.context.write_report:
                html = report_builder.generate_html_report(summary, self.global_config)
                self.report_path = report_builder.save_html_report(html, self.context)
            self.plugin_manager.trigger("on_finish")
        finally:
            utils.close_log_file(self._log_handler)
            self._log_handler = None

    def _summary(self, work_queue: WorkQueue) -> Dict[str, Any]:
        outcome = work_queue.last_outcome
        return report_builder.collect_summary(
            self.context,
            outcome.value if outcome else None,
            work_queue.active_time,
            self.analyzer.file_count if self.analyzer else 0,
            self.analyzer.revision_count if self.analyzer else 0,
            self.builder.changesets if self.builder else (),
            self.exporter.commits if self.exporter else (),
            errors=work_queue.peek_exceptions(),
            ignored_error_count=self.exporter.error_count if self.exporter else 0,
        )
