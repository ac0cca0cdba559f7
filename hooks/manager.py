import importlib.util
import inspect
import logging
import os
from typing import Any, Iterator, List, Optional, Type

from context import MigrationContext
from .base import BasePlugin

logger = logging.getLogger(__name__)


class PluginManager:
    """
    插件管理器
    从 plugins/ 目录动态加载迁移插件，按 priority 排序后依次调用钩子。
    """

    def __init__(self, context: MigrationContext):
        self.context = context
        self.plugins: List[BasePlugin] = []
        self.disabled = {
            name.lower() for name in context.global_config.DISABLED_PLUGINS
        }

    # --- 加载 ---

    def load_plugins(self, plugins_dir: Optional[str] = None):
        """
        加载插件目录 (默认为脚本根路径下的 'plugins') 中的全部 .py 文件。
        目录不存在时静默跳过。
        """
        if plugins_dir is None:
            plugins_dir = os.path.join(
                self.context.global_config.SCRIPT_BASE_PATH,
                self.context.global_config.PLUGINS_DIR_NAME,
            )
        if not os.path.isdir(plugins_dir):
            return

        logger.info(f"🔌 [Hooks] 正在扫描插件目录: {plugins_dir}")
        for filepath in self._plugin_files(plugins_dir):
            self._load_plugin_file(filepath)

    @staticmethod
    def _plugin_files(plugins_dir: str) -> Iterator[str]:
        for filename in sorted(os.listdir(plugins_dir)):
            if filename.endswith(".py") and not filename.startswith("__"):
                yield os.path.join(plugins_dir, filename)

    @staticmethod
    def _plugin_classes(module) -> List[Type[BasePlugin]]:
        """只返回在该模块中定义的 BasePlugin 子类 (忽略 import 进来的)"""
        return [
            obj
            for _, obj in inspect.getmembers(module, inspect.isclass)
            if issubclass(obj, BasePlugin)
            and obj is not BasePlugin
            and obj.__module__ == module.__name__
        ]

    def _load_plugin_file(self, filepath: str):
        stem = os.path.splitext(os.path.basename(filepath))[0]
        try:
            spec = importlib.util.spec_from_file_location(f"vss_plugin_{stem}", filepath)
            if spec is None or spec.loader is None:
                return
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
            classes = self._plugin_classes(module)
            if not classes:
                logger.warning(f"   ⚠️ [Hooks] 文件 {filepath} 中未发现 BasePlugin 子类")
            for plugin_cls in classes:
                self.register(plugin_cls())
        except Exception as e:
            logger.error(f"❌ [Hooks] 加载插件失败 {filepath}: {e}")

    def register(self, plugin: BasePlugin) -> bool:
        """注册插件实例。被 VSS_DISABLED_PLUGINS 禁用的插件返回 False。"""
        if plugin.name.lower() in self.disabled:
            logger.info(f"   ⏭️ [Hooks] 插件已禁用: {plugin.name}")
            return False
        self.plugins.append(plugin)
        # 稳定排序，同优先级保持注册顺序
        self.plugins.sort(key=lambda p: p.priority)
        logger.info(f"   ✅ [Hooks] 已加载插件: {plugin.name}")
        return True

    # --- 调用 ---

    def _call(self, plugin: BasePlugin, event_name: str, *args, **kwargs) -> Any:
        method = getattr(plugin, event_name, None)
        if method is None:
            return None
        try:
            return method(self.context, *args, **kwargs)
        except Exception as e:
            # 插件异常只记录日志，不影响迁移流程
            logger.error(f"❌ [Hooks] 插件 {plugin.name} 执行 {event_name} 失败: {e}")
            return None

    def trigger(self, event_name: str, *args, **kwargs):
        """触发通知型钩子 (on_start / on_finish 等)"""
        for plugin in list(self.plugins):
            self._call(plugin, event_name, *args, **kwargs)

    def filter(self, event_name: str, initial_value: Any, *args, **kwargs) -> Any:
        """
        触发链式处理型钩子 (如 on_commit_message)。
        值依次经过每个插件；返回 None 或类型不符的结果会被忽略。
        """
        value = initial_value
        for plugin in list(self.plugins):
            new_value = self._call(plugin, event_name, value, *args, **kwargs)
            if new_value is None:
                continue
            if initial_value is not None and not isinstance(
                new_value, type(initial_value)
            ):
                logger.warning(
                    f"⚠️ [Hooks] 插件 {plugin.name} 的 {event_name} 返回了 "
                    f"{type(new_value).__name__}，已忽略"
                )
                continue
            value = new_value
        return value
