import base64
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config import GlobalConfig
from models import HistoryEntry
from .memory import MemorySourceRepository

logger = logging.getLogger(__name__)


def _parse_time(value: Any) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)
    try:
        parsed = datetime.fromisoformat(str(value))
    except ValueError:
        logger.warning(f"⚠️ [DataSource] 无法解析时间: {value!r}")
        return None
    # 统一为 UTC 的 naive datetime，便于排序
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _decode_content(value: Any, encoding: str) -> bytes:
    if isinstance(value, dict):
        if "base64" in value:
            return base64.b64decode(value["base64"])
        return str(value.get("text", "")).encode(encoding)
    return str(value).encode(encoding)


class JsonDumpSourceRepository(MemorySourceRepository):
    """
    从 JSON 历史导出文件加载的源仓库。

    文件格式::

        {
          "encoding": "cp1252",
          "items": [
            {"path": "$/Project", "type": "project", "history": [...]},
            {"id": "12", "path": "$/Project/a.txt", "type": "file",
             "history": [{"action": "add", "time": "2009-01-01T10:00:00",
                          "user": "alice", "comment": "", "version": 1}],
             "versions": {"1": {"text": "hello"}}}
          ]
        }
    """

    def __init__(self, dump_path: str, encoding: Optional[str] = None):
        self.dump_path = dump_path
        self._loaded = False
        super().__init__(encoding or GlobalConfig.DEFAULT_ENCODING)
        self._requested_encoding = encoding

    def validate(self) -> bool:
        if not os.path.isfile(self.dump_path):
            logger.error(f"❌ 历史导出文件不存在: {self.dump_path}")
            return False
        try:
            self.load()
        except (OSError, ValueError) as e:
            logger.error(f"❌ 无法加载历史导出文件 {self.dump_path}: {e}")
            return False
        return True

    def load(self):
        """
        加载导出文件。文件结构不符合格式时抛出 ValueError。
        """
        if self._loaded:
            return
        with open(self.dump_path, "r", encoding="utf-8") as f:
            data: Dict[str, Any] = json.load(f)

        try:
            if not self._requested_encoding and data.get("encoding"):
                self.encoding = data["encoding"]
            items = data.get("items", [])
            for raw in items:
                self._load_item(raw)
        except KeyError as e:
            raise ValueError(f"dump item is missing field {e}") from e
        except (TypeError, AttributeError) as e:
            raise ValueError(f"unexpected dump structure: {e}") from e
        self._loaded = True
        logger.info(f"✅ [DataSource] 已加载 {len(items)} 个条目: {self.dump_path}")

    def _load_item(self, raw: Dict[str, Any]):
        path = raw["path"]
        if not isinstance(path, str) or not path.strip():
            raise ValueError(f"invalid item path: {path!r}")
        history = [self._parse_entry(e) for e in raw.get("history", [])]
        if raw.get("type", "file") == "project":
            self.add_project(path, history=history, item_id=raw.get("id"))
            return
        contents = {
            int(version): _decode_content(value, self.encoding)
            for version, value in raw.get("versions", {}).items()
        }
        self.add_file(
            path, history=history, contents=contents, item_id=raw.get("id")
        )

    @staticmethod
    def _parse_entry(raw: Dict[str, Any]) -> HistoryEntry:
        return HistoryEntry(
            action=str(raw.get("action", "")),
            timestamp=_parse_time(raw.get("time")),
            user=raw.get("user"),
            comment=raw.get("comment") or "",
            version=int(raw.get("version", 0) or 0),
            from_path=raw.get("from_path"),
            origin_item_id=raw.get("origin"),
            label=raw.get("label"),
        )
