"""白痴角色"""

from __future__ import annotations
from typing import TYPE_CHECKING

from roles.base import BaseRole

if TYPE_CHECKING:
    from models.game_models import Player


class Idiot(BaseRole):
    name = "白痴"
    faction = "好人阵营"

    def check_vote_constraint(self, voter: Player, target_id: int) -> dict | None:
        """白痴被放逐翻牌后存活，但失去投票权"""
        if voter.idiot_revealed:
            return {
                "valid": False,
                "reason": "IDIOT_REVEALED",
                "message": f"{voter.name}已翻牌为白痴，失去投票权",
            }
        return None
