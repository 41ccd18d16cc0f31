"""通用工具：玩家ID校验、ID提取、时间戳、随机选择"""

import random
import time
from collections.abc import Mapping
from typing import Any, Sequence

_last_timestamp: int = 0


def is_valid_player_id(value: Any) -> bool:
    """玩家ID必须是非负整数（bool 不算）"""
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def extract_id(item: Any) -> Any:
    """从玩家对象 / 字典 / 纯ID 中取出玩家ID；字典缺少 id 和 player_id 时抛出 ValueError"""
    if isinstance(item, Mapping):
        if "id" in item:
            return item["id"]
        if "player_id" in item:
            return item["player_id"]
        raise ValueError(f"无法从 {item!r} 中取得玩家ID（缺少 id / player_id）")
    for attr in ("id", "player_id"):
        value = getattr(item, attr, None)
        if value is not None:
            return value
    return item


def extract_ids(items: Sequence[Any]) -> list[Any]:
    """批量提取ID，保持原顺序并去重"""
    seen: set = set()
    result = []
    for item in items:
        pid = extract_id(item)
        if pid in seen:
            continue
        seen.add(pid)
        result.append(pid)
    return result


def now_ms() -> int:
    """毫秒时间戳，进程内严格递增（同一毫秒内多次调用也不会重复）"""
    global _last_timestamp
    ts = time.time_ns() // 1_000_000
    if ts <= _last_timestamp:
        ts = _last_timestamp + 1
    _last_timestamp = ts
    return ts


def random_element(items: Sequence[Any], rng: random.Random | None = None) -> Any:
    """随机取一个元素，空序列返回 None"""
    if not items:
        return None
    return (rng or random).choice(list(items))
