"""游戏状态管理（玩家名单 + 当前回合/阶段）

投票子系统把 GameState 当作外部协作者使用：
- 名单：get_player / get_alive_players / kill
- 阶段：get_current_turn / get_current_phase
- 权重：has_double_vote
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from models.game_models import (
    Player, DeadPlayer, DeathCause,
    RoleType, GamePhase,
    ROLE_FACTION_MAP,
)
from roles.registry import get_role

if TYPE_CHECKING:
    from game.events import EventBus

logger = logging.getLogger(__name__)


# 标准9人局角色配置
STANDARD_ROLES = (
    [RoleType.MAYOR] +
    [RoleType.IDIOT] +
    [RoleType.VILLAGER] * 4 +
    [RoleType.WEREWOLF] * 3
)


@dataclass
class GameState:
    """游戏状态"""
    game_id: str = ""
    current_round: int = 0
    current_phase: GamePhase = GamePhase.GAME_START
    current_sub_phase: Optional[str] = None

    players: dict[int, Player] = field(default_factory=dict)  # player_id -> Player
    dead_players: list[DeadPlayer] = field(default_factory=list)

    # 可选：玩家死亡时发出 player.death 通知
    event_bus: Optional[EventBus] = None

    @classmethod
    def create(
        cls,
        game_id: str,
        roles: list[RoleType] | None = None,
        shuffle: bool = True,
    ) -> GameState:
        """创建新游戏并分配角色（玩家编号从1开始）"""
        roles = list(roles) if roles is not None else list(STANDARD_ROLES)
        if not roles:
            raise ValueError("至少需要1名玩家")
        if shuffle:
            random.shuffle(roles)

        state = cls(game_id=game_id)
        for i, role in enumerate(roles, start=1):
            state.players[i] = Player(
                player_id=i,
                role=role,
                faction=ROLE_FACTION_MAP[role],
            )
        return state

    # --- 名单 ---

    def get_player(self, player_id: int) -> Optional[Player]:
        return self.players.get(player_id)

    def get_alive_players(self) -> list[Player]:
        return sorted(
            (p for p in self.players.values() if p.is_alive),
            key=lambda p: p.player_id,
        )

    def get_alive_ids(self) -> list[int]:
        """获取存活玩家ID列表"""
        return [p.player_id for p in self.get_alive_players()]

    def kill(self, player_id: int, cause: DeathCause | str) -> None:
        """标记玩家死亡"""
        player = self.players[player_id]
        cause = DeathCause(cause)
        player.is_alive = False
        player.death_cause = cause
        player.death_round = self.current_round
        self.dead_players.append(DeadPlayer(
            player_id=player_id,
            round=self.current_round,
            cause=cause,
        ))
        logger.info(f"{player.name}死亡，死因: {cause.value}")
        if self.event_bus is not None:
            self.event_bus.emit("player.death", {
                "player_id": player_id,
                "cause": cause.value,
                "round": self.current_round,
            })

    def has_double_vote(self, player_id: int) -> bool:
        """玩家是否拥有双票权"""
        player = self.players.get(player_id)
        if not player:
            return False
        return player.double_vote or get_role(player.role).has_double_vote(player)

    # --- 阶段 ---

    def get_current_turn(self) -> int:
        return self.current_round

    def get_current_phase(self) -> str:
        if self.current_sub_phase:
            return self.current_sub_phase
        return self.current_phase.value
