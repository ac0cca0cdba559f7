# cli.py
"""
[V1.0] 命令行界面 (Interface) 层
负责解析参数、组装 MigrationContext，并把执行交给 Orchestrator。
"""
import argparse
import logging
from datetime import timedelta
from typing import List, Optional

from config import GlobalConfig
from context import MigrationContext
from exceptions import ConfigurationError
from orchestrator import MigrationOrchestrator
from work_queue import RunOutcome

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ABORTED = 130


def parse_bool(value: str) -> bool:
    """兼容 'True'/'False' 形式的开关参数"""
    lowered = value.strip().lower()
    if lowered in ("true", "yes", "1", "on"):
        return True
    if lowered in ("false", "no", "0", "off"):
        return False
    raise argparse.ArgumentTypeError(f"expected True or False, got {value!r}")


def split_patterns(value: Optional[str]) -> List[str]:
    return [p.strip() for p in (value or "").split(";") if p.strip()]


def setup_parser() -> argparse.ArgumentParser:
    """
    负责所有 argparse 的定义。
    """
    config = GlobalConfig
    parser = argparse.ArgumentParser(
        description="VSS -> Git 历史迁移工具",
        formatter_class=argparse.RawTextHelpFormatter,
    )

    # --- 源仓库 ---
    parser.add_argument(
        "-a",
        "--vss-dir",
        required=True,
        help="源仓库位置 (历史导出 .json 文件，或包含 history.json 的目录)",
    )
    parser.add_argument(
        "-b",
        "--vss-project",
        default="$",
        help="源仓库中的项目路径 (例如 '$/Project')\n(默认: '$')",
    )
    parser.add_argument(
        "-c",
        "--excludes",
        default="",
        help="要排除的文件 (fnmatch 规则，多个请用分号;分隔)\n例如: '*.tmp;*.scc'",
    )
    parser.add_argument(
        "--encoding",
        default=None,
        help="源仓库的字符编码 (例如 'cp1252', 'gbk')\n(默认: 使用源仓库声明的编码)",
    )

    # --- 输出 ---
    parser.add_argument(
        "-d",
        "--out-dir",
        default=None,
        help="Git 仓库输出目录。\n(不指定时只分析并构建变更集)",
    )
    parser.add_argument(
        "-e", "--path-regex", default=None, help="路径映射的正则表达式"
    )
    parser.add_argument(
        "-f", "--map-to", default="", help="路径映射的替换文本 (与 -e 连用)"
    )

    # --- 提交身份与信息 ---
    parser.add_argument(
        "-g",
        "--email-domain",
        default=config.DEFAULT_EMAIL_DOMAIN or None,
        help="用户邮箱的域名 (user@domain)\n(默认: user@localhost)",
    )
    parser.add_argument(
        "--default-comment",
        default=config.DEFAULT_COMMENT,
        help="空注释变更集使用的默认提交信息",
    )
    parser.add_argument("-i", "--log-file", default=None, help="运行日志文件路径")

    # --- 开关 ---
    parser.add_argument(
        "-j",
        "--transcode",
        type=parse_bool,
        default=True,
        metavar="True|False",
        help="将注释转码为 UTF-8 (默认: True)\nFalse 时按源编码原样写入提交信息",
    )
    parser.add_argument(
        "-k",
        "--annotate",
        type=parse_bool,
        default=False,
        metavar="True|False",
        help="标签总是使用附注标签对象 (默认: False)",
    )
    parser.add_argument(
        "-l",
        "--ignore-errors",
        type=parse_bool,
        default=False,
        metavar="True|False",
        help="忽略单个 Git 操作的错误并继续 (默认: False)",
    )
    parser.add_argument(
        "--fail-fast",
        action="store_true",
        help="分析阶段遇到异常条目时立即失败 (默认: 记录警告并跳过)",
    )
    parser.add_argument(
        "--no-report", action="store_true", help="不生成 HTML 迁移报告"
    )

    # --- 聚类阈值 ---
    parser.add_argument(
        "-m",
        "--any-comment-seconds",
        type=int,
        default=config.ANY_COMMENT_SECONDS,
        help=f"合并任意注释修订的最大间隔秒数 (默认: {config.ANY_COMMENT_SECONDS})",
    )
    parser.add_argument(
        "-n",
        "--same-comment-seconds",
        type=int,
        default=config.SAME_COMMENT_SECONDS,
        help=f"合并相同注释修订的最大间隔秒数 (默认: {config.SAME_COMMENT_SECONDS})",
    )

    return parser


def build_context(args: argparse.Namespace) -> MigrationContext:
    return MigrationContext(
        source_path=args.vss_dir,
        project_path=args.vss_project,
        exclude_patterns=split_patterns(args.excludes),
        encoding=args.encoding,
        output_path=args.out_dir,
        log_file=args.log_file,
        path_pattern=args.path_regex,
        path_replacement=args.map_to,
        email_domain=args.email_domain,
        default_comment=args.default_comment,
        any_comment_threshold=timedelta(seconds=args.any_comment_seconds),
        same_comment_threshold=timedelta(seconds=args.same_comment_seconds),
        transcode_comments=args.transcode,
        ignore_errors=args.ignore_errors,
        force_annotated_tags=args.annotate,
        fail_fast=args.fail_fast,
        write_report=not args.no_report,
    )


def run_cli(argv: Optional[List[str]] = None) -> int:
    """
    主入口点，返回进程退出码。
    """
    parser = setup_parser()
    args = parser.parse_args(argv)
    context = build_context(args)

    orchestrator = MigrationOrchestrator(context)
    try:
        outcome = orchestrator.run()
    except ConfigurationError as e:
        logger.error(f"❌ 配置错误: {e}")
        return EXIT_FAILED

    exceptions = orchestrator.work_queue.fetch_exceptions()
    for exception in exceptions:
        logger.error(f"❌ {type(exception).__name__}: {exception}")

    if outcome == RunOutcome.ABORTED:
        logger.warning("🛑 迁移已取消，目标仓库只包含已完成的提交。")
        return EXIT_ABORTED
    if outcome == RunOutcome.FAILED or exceptions:
        logger.error("❌ 迁移失败。")
        return EXIT_FAILED

    logger.info("✅ 迁移完成。")
    return EXIT_OK
