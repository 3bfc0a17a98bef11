from __future__ import annotations
from pathlib import Path
from datetime import datetime, timezone
import json
import threading
from typing import Any, Dict, Optional

from styletransform.config import settings

_lock = threading.Lock()

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def default_log_file() -> Path:
    return settings.events_dir / "events.jsonl"

class EventLogger:
    """
    Append-only JSONL event log. One line per event:
      {"ts", "event", "level", ...payload}
    """

    def __init__(self, log_path: Optional[Path | str] = None):
        self.path = Path(log_path) if log_path else default_log_file()

    def write(self, event: str, data: Optional[Dict[str, Any]] = None, level: str = "info") -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        record: Dict[str, Any] = {
            "ts": _now_iso(),
            "event": event,
            "level": level,
        }
        if data:
            record.update(data)
        line = json.dumps(record, ensure_ascii=False, default=str)
        with _lock:
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        return self.path

def log_event(event: str, data: Optional[Dict[str, Any]] = None, level: str = "info") -> Path:
    """Module-level shortcut writing to the default events file."""
    return EventLogger().write(event, data, level)
