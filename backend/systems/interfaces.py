"""投票子系统依赖的外部协作者接口"""

from __future__ import annotations

from typing import Any, Optional, Protocol


class Roster(Protocol):
    """玩家名单（存活状态由外部维护，投票子系统只在处刑时写入）"""

    def get_player(self, player_id: int) -> Optional[Any]: ...

    def get_alive_players(self) -> list[Any]: ...

    def kill(self, player_id: int, cause: Any) -> None: ...


class PhaseSource(Protocol):
    def get_current_turn(self) -> int: ...

    def get_current_phase(self) -> str: ...


class VoteConstraintChecker(Protocol):
    """角色投票限制：返回 None 表示无限制，否则 {"valid", "reason", "message"}"""

    def check_vote_constraint(self, voter: Any, target_id: int) -> Optional[dict]: ...


class WeightSource(Protocol):
    def has_double_vote(self, player_id: int) -> bool: ...


def player_is_alive(player: Any) -> bool:
    """兼容玩家对象与字典两种形式"""
    if isinstance(player, dict):
        return bool(player.get("is_alive", False))
    return bool(getattr(player, "is_alive", False))


def player_name(player: Any) -> str:
    if isinstance(player, dict):
        return player.get("name") or f"{player.get('id')}号"
    return getattr(player, "name", "") or f"{getattr(player, 'id', '?')}号"


def player_role_name(player: Any) -> Optional[str]:
    role = player.get("role") if isinstance(player, dict) else getattr(player, "role", None)
    if role is None:
        return None
    return getattr(role, "value", None) or getattr(role, "name", None) or str(role)
