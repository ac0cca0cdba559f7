# config.py
"""
[V1.0] 全局配置
- 从 .env (脚本目录或 CWD) 加载环境变量覆盖
- 聚类阈值、邮箱域名、编码等默认值
"""
import os
from typing import List

from dotenv import load_dotenv


# --- 脚本基础路径 ---
SCRIPT_BASE_PATH = os.path.abspath(os.path.dirname(__file__))
env_path = os.path.join(SCRIPT_BASE_PATH, ".env")
if os.path.exists(env_path):
    load_dotenv(env_path)
    print(f"✅ 已从脚本目录加载 .env: {env_path}")
else:
    load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "")
    try:
        return int(value) if value.strip() else default
    except ValueError:
        print(f"⚠️ 环境变量 {name}={value!r} 不是整数，使用默认值 {default}")
        return default


class GlobalConfig:
    """
    迁移工具的全局应用配置。
    """

    # --- 路径配置 ---
    SCRIPT_BASE_PATH: str = SCRIPT_BASE_PATH
    TEMPLATES_DIR_NAME: str = "templates"
    PLUGINS_DIR_NAME: str = "plugins"
    # 逗号分隔的插件名称，例如 "NormalizeCommitMessage"
    DISABLED_PLUGINS: List[str] = [
        name.strip()
        for name in os.getenv("VSS_DISABLED_PLUGINS", "").split(",")
        if name.strip()
    ]

    # --- 变更集聚类阈值 (秒) ---
    # 任意注释: 同一作者相邻修订之间的最大间隔
    ANY_COMMENT_SECONDS: int = _env_int("VSS_ANY_COMMENT_SECONDS", 30)
    # 相同注释: 注释完全一致时允许的更大间隔
    SAME_COMMENT_SECONDS: int = _env_int("VSS_SAME_COMMENT_SECONDS", 600)

    # --- 身份与提交信息 ---
    DEFAULT_EMAIL_DOMAIN: str = os.getenv("VSS_EMAIL_DOMAIN", "")
    PLACEHOLDER_EMAIL_DOMAIN: str = "localhost"
    DEFAULT_COMMENT: str = os.getenv("VSS_DEFAULT_COMMENT", "")

    # --- 编码 ---
    DEFAULT_ENCODING: str = os.getenv("VSS_ENCODING", "cp1252")
    CANONICAL_ENCODING: str = "utf-8"

    # --- 进度轮询 (秒) ---
    STATUS_POLL_INTERVAL: float = 0.5
    # 状态未变化时的最长日志间隔
    STATUS_LOG_INTERVAL: float = 5.0

    # --- 报告 ---
    REPORT_TEMPLATE: str = "migration_report.html.j2"
    REPORT_FILENAME_PREFIX: str = "MigrationReport"
