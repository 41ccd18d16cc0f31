"""村长角色"""

from roles.base import BaseRole


class Mayor(BaseRole):
    """村长：放逐投票时一票算两票"""
    name = "村长"
    faction = "好人阵营"
    vote_weight = 2
