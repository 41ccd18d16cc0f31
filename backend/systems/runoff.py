"""决选投票协调 — 平票后的限定候选人投票与平票裁决"""

from __future__ import annotations

import logging
import random
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from models.vote_models import (
    EXECUTE_ALL, ExecutionRule, ExecutionTarget, TallyResult, VoteType,
)
from systems.interfaces import PhaseSource, Roster, player_is_alive
from utils import extract_ids, random_element

if TYPE_CHECKING:
    from game.events import EventBus
    from systems.ballot_box import BallotBox

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

# 平票时直接裁决、不进入决选的规则
_IMMEDIATE_RULES = (
    ExecutionRule.RANDOM.value,
    ExecutionRule.NO_EXECUTION.value,
    ExecutionRule.ALL_EXECUTION.value,
)


class RunoffState(str, Enum):
    IDLE = "idle"
    RUNOFF_OPEN = "runoff_open"
    RUNOFF_TALLIED = "runoff_tallied"
    RESOLVED = "resolved"


class RunoffCoordinator:
    """决选投票状态机：IDLE → RUNOFF_OPEN → RUNOFF_TALLIED → RESOLVED"""

    def __init__(
        self,
        roster: Roster,
        phase_source: PhaseSource,
        event_bus: Optional[EventBus] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rng: Optional[random.Random] = None,
    ):
        self.roster = roster
        self.phase_source = phase_source
        self.event_bus = event_bus
        self.rng = rng
        self.state = RunoffState.IDLE
        self._attempt = 0
        self._max_attempts = DEFAULT_MAX_ATTEMPTS
        self._limit_logged = False
        self.set_max_attempts(max_attempts)

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def _emit(self, name: str, data: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(name, data)

    def start_runoff(self, candidates: list[Any], ballot_box: BallotBox) -> dict[str, Any]:
        """
        开启决选投票：全部存活玩家投票，候选人只保留仍存活的平票者。

        Returns:
            {"type": "runoff", "voters": 投票人数, "candidates": 候选人数}
        """
        self._attempt += 1
        turn = self.phase_source.get_current_turn()

        voters = extract_ids(self.roster.get_alive_players())
        targets = []
        for pid in extract_ids(candidates):
            player = self.roster.get_player(pid)
            if player and player_is_alive(player):
                targets.append(pid)

        ballot_box.start_round(voters, targets, VoteType.RUNOFF, turn)
        self.state = RunoffState.RUNOFF_OPEN
        logger.info(f"第{turn}回合第{self._attempt}次决选投票，候选人 {targets}")

        self._emit("vote.runoff.start", {
            "turn": turn,
            "voters": voters,
            "candidates": targets,
        })
        return {"type": VoteType.RUNOFF.value, "voters": len(voters), "candidates": len(targets)}

    def mark_tallied(self) -> None:
        """决选轮已计票，尚未确定处刑对象"""
        if self.state == RunoffState.RUNOFF_OPEN:
            self.state = RunoffState.RUNOFF_TALLIED

    def finalize(self, tally: TallyResult, tie_rule: str = ExecutionRule.RANDOM.value) -> TallyResult:
        """根据决选计票结果确定处刑对象；仍平票时按 tie_rule 裁决"""
        if tally.is_tie:
            tally.execution_target = self.resolve_tie(tally.max_voted, tie_rule)
        elif tally.max_voted:
            tally.execution_target = tally.max_voted[0]
        else:
            tally.execution_target = None

        self._emit("vote.runoff.result", {
            **tally.to_dict(),
            "execution_target": tally.execution_target,
        })
        self.state = RunoffState.RESOLVED
        return tally

    def resolve_tie(self, tied_players: list[int], rule: str) -> ExecutionTarget:
        """平票裁决：random 随机一人，no_execution 不处刑，all_execution 全员处刑，未知规则按 random"""
        if rule == ExecutionRule.NO_EXECUTION:
            return None
        if rule == ExecutionRule.ALL_EXECUTION:
            return EXECUTE_ALL
        if rule != ExecutionRule.RANDOM:
            logger.warning(f"未知的平票规则 {rule!r}，按随机处理")
        return self.select_random(tied_players)

    def select_random(self, candidates: list[int]) -> Optional[int]:
        return random_element(candidates, self.rng)

    def needs_runoff(self, is_tie: bool, execution_rule: str) -> bool:
        """是否需要（再）进行决选投票；达到最大次数后不再决选，保证终止"""
        if not is_tie:
            return False
        if self._attempt >= self._max_attempts:
            if not self._limit_logged:
                logger.warning(f"决选投票已达上限 {self._max_attempts} 次，不再决选")
                self._limit_logged = True
            return False
        # 未知规则与 runoff 相同，和 ExecutionResolver.decide 的默认分支保持一致
        return execution_rule not in _IMMEDIATE_RULES

    def reset_attempts(self) -> None:
        self._attempt = 0
        self._limit_logged = False
        self.state = RunoffState.IDLE

    def set_max_attempts(self, max_attempts: int) -> None:
        if max_attempts > 0:
            self._max_attempts = max_attempts
            self._limit_logged = False
