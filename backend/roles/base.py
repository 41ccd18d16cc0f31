"""角色基类"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from models.game_models import Player


class BaseRole:
    """所有角色的基类"""

    name: str = ""
    faction: str = ""
    # 投票权重（村长为2）
    vote_weight: int = 1

    def has_double_vote(self, player: Player) -> bool:
        return self.vote_weight >= 2

    def check_vote_constraint(self, voter: Player, target_id: int) -> dict | None:
        """
        角色特有的投票限制。

        Returns:
            None 表示无限制；否则返回 {"valid": bool, "reason": str, "message": str}
        """
        return None
