"""同步事件总线 — 投票子系统的通知出口与阶段事件入口"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger(__name__)

# 监听器接收事件字典：{"type": 事件名, "data": 负载}
EventListener = Callable[[dict], None]

# 历史缓冲上限
MAX_HISTORY = 500


@dataclass
class _Subscription:
    listener: EventListener
    priority: int = 0
    once: bool = False


class EventBus:
    """
    发布/订阅事件总线。

    - 事件名支持通配订阅："*" 匹配全部，"vote.*" 匹配 vote. 开头的所有事件
    - 同一事件按 priority 从高到低调用，同优先级按订阅顺序
    - 单个监听器异常只记日志，不影响其它监听器
    """

    def __init__(self, max_history: int = MAX_HISTORY):
        self._subscriptions: dict[str, list[_Subscription]] = {}
        self._history: list[dict] = []
        self._max_history = max_history

    def on(self, event_name: str, listener: EventListener, priority: int = 0) -> None:
        subs = self._subscriptions.setdefault(event_name, [])
        subs.append(_Subscription(listener, priority))
        # sort 稳定，同优先级保持订阅顺序
        subs.sort(key=lambda s: -s.priority)

    def once(self, event_name: str, listener: EventListener, priority: int = 0) -> None:
        subs = self._subscriptions.setdefault(event_name, [])
        subs.append(_Subscription(listener, priority, once=True))
        subs.sort(key=lambda s: -s.priority)

    def off(self, event_name: str, listener: EventListener | None = None) -> None:
        """取消订阅；不指定 listener 时移除该事件的全部订阅"""
        if listener is None:
            self._subscriptions.pop(event_name, None)
            return
        subs = self._subscriptions.get(event_name, [])
        self._subscriptions[event_name] = [s for s in subs if s.listener is not listener]
        if not self._subscriptions[event_name]:
            self._subscriptions.pop(event_name, None)

    def emit(self, event_name: str, data: dict[str, Any] | None = None) -> int:
        """
        发布事件。

        Returns:
            被调用的监听器数量
        """
        event = {"type": event_name, "data": data if data is not None else {}}
        self._history.append(event)
        if len(self._history) > self._max_history:
            del self._history[: len(self._history) - self._max_history]

        matched: list[tuple[str, _Subscription]] = []
        for pattern, subs in list(self._subscriptions.items()):
            if _matches(pattern, event_name):
                matched.extend((pattern, s) for s in subs)
        matched.sort(key=lambda item: -item[1].priority)

        called = 0
        for pattern, sub in matched:
            if sub.once:
                self.off(pattern, sub.listener)
            try:
                sub.listener(event)
            except Exception as e:
                logger.error(f"事件监听器执行失败 ({event_name}): {e}", exc_info=True)
            called += 1
        return called

    def has_listeners(self, event_name: str) -> bool:
        return any(_matches(p, event_name) and subs for p, subs in self._subscriptions.items())

    def listener_count(self, event_name: str) -> int:
        return sum(len(subs) for p, subs in self._subscriptions.items() if _matches(p, event_name))

    def history(self, event_name: str | None = None, limit: int | None = None) -> list[dict]:
        events = [e for e in self._history if event_name is None or e["type"] == event_name]
        if limit is not None:
            events = events[-limit:]
        return events

    def clear_history(self) -> None:
        self._history.clear()


def _matches(pattern: str, event_name: str) -> bool:
    if pattern == "*" or pattern == event_name:
        return True
    if pattern.endswith(".*"):
        return event_name.startswith(pattern[:-1])
    return False
