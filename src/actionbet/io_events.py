# src/actionbet/io_events.py
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Union

logger = logging.getLogger(__name__)


def iter_ndjson(path: Union[str, Path]) -> Iterator[Dict[str, Any]]:
    """逐行讀取 NDJSON，壞行與非物件行只記錄警告"""
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                evt = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(f"NDJSON bad line {lineno}: {line[:120]}... ({e})")
                continue
            if not isinstance(evt, dict):
                logger.warning(f"NDJSON line {lineno} is not an object: {line[:120]}")
                continue
            yield evt


def load_timeline(path: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    載入比賽時間軸

    每個事件需要整數 time（比賽分鐘）；缺少時丟棄。
    同一分鐘的事件保持檔案中的順序。
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Timeline not found: {path}")

    events: List[Dict[str, Any]] = []
    for evt in iter_ndjson(path):
        minute = evt.get("time")
        if isinstance(minute, bool) or not isinstance(minute, int) or minute < 0:
            logger.warning(f"Timeline event without valid time dropped: {evt}")
            continue
        events.append(evt)

    events.sort(key=lambda e: e["time"])
    logger.info(f"📂 載入時間軸: {path.name} ({len(events)} events)")
    return events
