"""
[V1.0] 迁移报告生成器
运行结束后汇总分析、构建与导出结果，生成纯文本摘要和 Jinja2 渲染的 HTML 报告。
"""
import logging
import os
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, select_autoescape

from config import GlobalConfig
from context import MigrationContext
from models import Changeset, ExportCommit
import utils

logger = logging.getLogger(__name__)


def collect_summary(
    context: MigrationContext,
    outcome: Optional[str],
    elapsed: timedelta,
    file_count: int,
    revision_count: int,
    changesets: Sequence[Changeset],
    commits: Sequence[ExportCommit],
    errors: Sequence[BaseException] = (),
    ignored_error_count: int = 0,
) -> Dict[str, Any]:
    """把一次运行的结果整理为报告上下文"""
    authors = Counter(c.user for c in changesets)
    tags: List[str] = [tag for commit in commits for tag in commit.tags]
    return {
        "project_path": context.project_path,
        "source_path": context.source_path,
        "output_path": context.output_path or "",
        "outcome": outcome or "unknown",
        "elapsed": utils.format_elapsed(elapsed),
        "file_count": file_count,
        "revision_count": revision_count,
        "changeset_count": len(changesets),
        "commit_count": len(commits),
        "authors": authors.most_common(),
        "tags": tags,
        "first_change": changesets[0].start if changesets else None,
        "last_change": changesets[-1].end if changesets else None,
        "errors": [f"{type(e).__name__}: {e}" for e in errors],
        "ignored_error_count": ignored_error_count,
        "commits": list(commits),
    }


def generate_text_report(summary: Dict[str, Any]) -> str:
    """
    生成纯文本格式的报告 (用于终端输出)。
    """
    lines = [
        "=" * 80,
        "                            VSS -> Git 迁移汇总",
        "=" * 80,
        f"生成时间: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"源项目:   {summary['project_path']} ({summary['source_path']})",
        f"运行结果: {summary['outcome']}  (耗时 {summary['elapsed']})",
        f"文件: {summary['file_count']}  修订: {summary['revision_count']}  "
        f"变更集: {summary['changeset_count']}  提交: {summary['commit_count']}",
        "",
    ]
    if summary["authors"]:
        lines.append(f" {'变更集':<8} | 作者")
        lines.append("-" * 80)
        for author, count in summary["authors"]:
            lines.append(f" {count:<8} | {author}")
        lines.append("")
    if summary["tags"]:
        lines.append(f"标签: {', '.join(summary['tags'])}")
    if summary["ignored_error_count"]:
        lines.append(f"⚠️  已忽略错误: {summary['ignored_error_count']}")
    for error in summary["errors"]:
        lines.append(f"❌ {error}")
    lines.append("=" * 80)
    return "\n".join(lines)


def _get_css_styles(global_config: GlobalConfig) -> str:
    """读取 CSS 文件内容"""
    css_path = os.path.join(
        global_config.SCRIPT_BASE_PATH, global_config.TEMPLATES_DIR_NAME, "styles.css"
    )
    try:
        with open(css_path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as e:
        logger.error(f"❌ 加载 CSS 模板失败: {e}")
        return "/* CSS 模板文件未找到 */"


def generate_html_report(summary: Dict[str, Any], global_config: GlobalConfig) -> str:
    """
    使用 Jinja2 模板引擎生成 HTML 报告。
    """
    templates_dir = os.path.join(
        global_config.SCRIPT_BASE_PATH, global_config.TEMPLATES_DIR_NAME
    )
    env = Environment(
        loader=FileSystemLoader(templates_dir),
        autoescape=select_autoescape(["html", "xml", "html.j2"]),
    )
    template = env.get_template(global_config.REPORT_TEMPLATE)
    logger.info(f"🎨 正在渲染 Jinja2 模板: {global_config.REPORT_TEMPLATE}")
    return template.render(
        title=f"迁移报告 - {summary['project_path']}",
        generation_time=datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
        css_content=_get_css_styles(global_config),
        **summary,
    )


def save_html_report(html_content: str, context: MigrationContext) -> Optional[str]:
    """保存 HTML 报告。与日志文件同目录，未配置日志文件时保存在当前目录。"""
    directory = (
        os.path.dirname(os.path.abspath(context.log_file))
        if context.log_file
        else os.getcwd()
    )
    filename = (
        f"{context.global_config.REPORT_FILENAME_PREFIX}_"
        f"{datetime.now().strftime('%Y%m%d_%H%M%S')}.html"
    )
    full_path = os.path.join(directory, filename)

    try:
        with open(full_path, "w", encoding="utf-8") as f:
            f.write(html_content)
        logger.info(f"✅ 迁移报告已保存: {full_path}")
        return full_path
    except OSError as e:
        logger.error(f"❌ 保存迁移报告失败 ({full_path}): {e}")
        return None
