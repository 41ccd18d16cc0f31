"""角色注册表与投票限制检查"""

from __future__ import annotations

from typing import TYPE_CHECKING

from models.game_models import RoleType
from roles.base import BaseRole
from roles.idiot import Idiot
from roles.mayor import Mayor

if TYPE_CHECKING:
    from models.game_models import Player

# 没有投票特性的角色（村民、狼人）使用 BaseRole
ROLE_CLASSES: dict[RoleType, type[BaseRole]] = {
    RoleType.MAYOR: Mayor,
    RoleType.IDIOT: Idiot,
}


def get_role(role: RoleType) -> BaseRole:
    return ROLE_CLASSES.get(role, BaseRole)()


class RoleVoteConstraintChecker:
    """按投票者角色分发投票限制检查（注入 BallotBox 使用）"""

    def check_vote_constraint(self, voter: Player, target_id: int) -> dict | None:
        if voter.role is None:
            return None
        return get_role(voter.role).check_vote_constraint(voter, target_id)
