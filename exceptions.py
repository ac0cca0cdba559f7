"""
迁移过程中的异常分类。

- 配置错误: 在后台任务开始前同步抛出
- 分析/导出错误: 在工作线程中抛出，由 WorkQueue 捕获
"""


class MigrationError(Exception):
    """所有迁移异常的基类"""


class ConfigurationError(MigrationError):
    """源路径无效、项目路径无法解析或不是项目"""


class SourcePathError(MigrationError):
    """源仓库中无法解析的路径"""

    def __init__(self, path: str, message: str = ""):
        super().__init__(message or f"Path not found: {path}")
        self.path = path


class NotAProjectError(SourcePathError):
    """路径存在，但指向的是文件而不是项目"""

    def __init__(self, path: str):
        super().__init__(path, f"{path} is not a project")


class AnalysisError(MigrationError):
    """fail-fast 模式下单个条目分析失败"""

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path


class ExportError(MigrationError):
    """导出阶段的致命错误 (树操作或提交失败)"""

    def __init__(self, message: str, changeset_index: int = -1):
        super().__init__(message)
        self.changeset_index = changeset_index
