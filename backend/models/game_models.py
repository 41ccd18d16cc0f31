"""游戏相关数据模型（纯数据类）"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Faction(str, Enum):
    GOOD = "好人阵营"
    WOLF = "狼人阵营"


class RoleType(str, Enum):
    VILLAGER = "villager"
    WEREWOLF = "werewolf"
    MAYOR = "mayor"
    IDIOT = "idiot"


class GamePhase(str, Enum):
    GAME_START = "GAME_START"
    NIGHT_PHASE = "NIGHT_PHASE"
    DAY_PHASE = "DAY_PHASE"
    GAME_END = "GAME_END"


class DaySubPhase(str, Enum):
    DISCUSSION = "discussion"
    VOTE = "vote"
    RUNOFF_VOTE = "runoffVote"
    EXECUTION = "execution"


class DeathCause(str, Enum):
    WOLF_KILL = "wolf_kill"
    EXECUTION = "execution"


@dataclass
class DeadPlayer:
    player_id: int
    round: int
    cause: DeathCause


@dataclass
class Player:
    """单个玩家的数据"""
    player_id: int
    role: RoleType
    faction: Faction
    name: str = ""
    is_alive: bool = True
    # 双票权（村长等）
    double_vote: bool = False
    # 白痴翻牌后失去投票权
    idiot_revealed: bool = False
    # 死亡信息
    death_cause: Optional[DeathCause] = None
    death_round: Optional[int] = None

    def __post_init__(self):
        if not self.name:
            self.name = f"{self.player_id}号"

    @property
    def id(self) -> int:
        return self.player_id


ROLE_FACTION_MAP = {
    RoleType.VILLAGER: Faction.GOOD,
    RoleType.WEREWOLF: Faction.WOLF,
    RoleType.MAYOR: Faction.GOOD,
    RoleType.IDIOT: Faction.GOOD,
}
