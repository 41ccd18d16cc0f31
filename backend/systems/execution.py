"""处刑结算 — 根据计票结果决定并执行处刑"""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Callable, Optional

from models.game_models import DeathCause
from models.vote_models import (
    EXECUTE_ALL, ExecutionDecision, ExecutionOutcome, ExecutionRule,
    ExecutionTarget, TallyResult, VoteType, VotingPolicy,
)
from systems.errors import AlreadyDead, ExecutionTargetInvalid, NoCandidates
from systems.interfaces import (
    PhaseSource, Roster, player_is_alive, player_name, player_role_name,
)

if TYPE_CHECKING:
    from game.events import EventBus

logger = logging.getLogger(__name__)

TieBreaker = Callable[[list[int]], Optional[int]]

# 不处刑的原因（execution.none 的 reason）
NO_VOTES = "no_votes"
NO_EXECUTION_RULE = "no_execution_rule"
FIRST_DAY_NO_EXECUTION = "first_day_no_execution"
VOTING_NOT_STARTED = "voting_not_started"


def no_execution_reason(tally: TallyResult) -> str:
    """无人得票为 no_votes，其余（平票按规则不处刑）为 no_execution_rule"""
    return NO_VOTES if not tally.counts else NO_EXECUTION_RULE


class ExecutionResolver:
    """处刑决定与执行；本子系统中唯一写入玩家存活状态的地方"""

    def __init__(
        self,
        roster: Roster,
        phase_source: PhaseSource,
        policy: VotingPolicy | None = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.roster = roster
        self.phase_source = phase_source
        self.policy = policy or VotingPolicy()
        self.event_bus = event_bus
        self._last_candidates: list[int] = []

    def _emit(self, name: str, data: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(name, data)

    @property
    def last_candidates(self) -> list[int]:
        return list(self._last_candidates)

    def remember_candidates(self, candidates: list[int]) -> None:
        """记录最近一次平票的候选人（全员处刑时使用）"""
        self._last_candidates = list(candidates)

    # --- 决定 ---

    def decide(
        self,
        tally: TallyResult,
        execution_rule: str = ExecutionRule.RUNOFF.value,
        random_tie_breaker: TieBreaker | None = None,
    ) -> ExecutionDecision:
        """
        由计票结果得出处刑决定。

        决选投票的结果已由 RunoffCoordinator 裁决，这里直接沿用其 execution_target。
        非平票：处刑最高票者。平票按 execution_rule：
        - runoff：需要决选
        - random：随机处刑一人
        - no_execution：不处刑
        - all_execution：全员处刑
        - 未知规则：同 runoff
        """
        if tally.vote_type == VoteType.RUNOFF:
            if tally.execution_target is None:
                return ExecutionDecision(reason=no_execution_reason(tally))
            return ExecutionDecision(execution_target=tally.execution_target)

        if not tally.is_tie:
            if not tally.max_voted:
                return ExecutionDecision(reason=NO_VOTES)
            return ExecutionDecision(execution_target=tally.max_voted[0])

        self.remember_candidates(tally.max_voted)

        if execution_rule == ExecutionRule.RANDOM:
            tie_breaker = random_tie_breaker or (lambda ids: random.choice(ids))
            return ExecutionDecision(execution_target=tie_breaker(list(tally.max_voted)))
        if execution_rule == ExecutionRule.NO_EXECUTION:
            return ExecutionDecision(reason=NO_EXECUTION_RULE)
        if execution_rule == ExecutionRule.ALL_EXECUTION:
            return ExecutionDecision(execution_target=EXECUTE_ALL)

        if execution_rule != ExecutionRule.RUNOFF:
            logger.warning(f"未知的处刑规则 {execution_rule!r}，按决选投票处理")
        return ExecutionDecision(needs_runoff=True, candidates=list(tally.max_voted))

    # --- 执行 ---

    def apply(
        self,
        execution_target: ExecutionTarget,
        candidates: list[int] | None = None,
        reason: str | None = None,
    ) -> ExecutionOutcome:
        """
        执行处刑决定。

        Args:
            execution_target: None 不处刑 / "all" 全员处刑 / 玩家ID
            candidates: 全员处刑的候选人，缺省使用最近一次平票的候选人
            reason: 不处刑时的原因，缺省为 no_execution_rule

        Raises:
            ExecutionTargetInvalid: 处刑对象不存在
            AlreadyDead: 处刑对象已死亡
            NoCandidates: 全员处刑但候选人为空
        """
        turn = self.phase_source.get_current_turn()

        if execution_target is None:
            reason = reason or NO_EXECUTION_RULE
            logger.info(f"第{turn}回合无人被处刑（{reason}）")
            self._emit("execution.none", {"turn": turn, "reason": reason})
            return ExecutionOutcome(executed=False, reason=reason)

        if execution_target == EXECUTE_ALL:
            return self._apply_all(candidates if candidates is not None else self._last_candidates)

        target = self.roster.get_player(execution_target)
        if not target:
            raise ExecutionTargetInvalid(
                f"处刑对象 {execution_target} 不存在", target_id=execution_target,
            )
        if not player_is_alive(target):
            raise AlreadyDead(
                f"{execution_target}号已经死亡", target_id=execution_target,
            )

        name = player_name(target)
        self._emit("execution.before", {
            "target_id": execution_target,
            "player_name": name,
            "turn": turn,
        })

        self.roster.kill(execution_target, DeathCause.EXECUTION)

        role = player_role_name(target) if self.policy.reveal_role_on_death else None
        after = {"target_id": execution_target, "player_name": name, "turn": turn}
        if role is not None:
            after["role"] = role
        self._emit("execution.after", after)
        logger.info(f"第{turn}回合 {name} 被处刑")

        return ExecutionOutcome(
            executed=True, target_id=execution_target, player_name=name, role=role,
        )

    def _apply_all(self, candidates: list[int]) -> ExecutionOutcome:
        """全员处刑：逐个处理，已死亡的候选人跳过"""
        if not candidates:
            raise NoCandidates()

        turn = self.phase_source.get_current_turn()
        self._emit("execution.all.before", {"target_ids": list(candidates), "turn": turn})

        executed = []
        for target_id in candidates:
            target = self.roster.get_player(target_id)
            if not target or not player_is_alive(target):
                logger.info(f"全员处刑跳过 {target_id}号（不存在或已死亡）")
                continue
            self.roster.kill(target_id, DeathCause.EXECUTION)
            executed.append({
                "id": target_id,
                "name": player_name(target),
                "role": player_role_name(target) if self.policy.reveal_role_on_death else None,
            })

        self._emit("execution.all.after", {"targets": executed, "turn": turn})
        logger.info(f"第{turn}回合全员处刑，共 {len(executed)} 人")
        return ExecutionOutcome(
            executed=bool(executed),
            reason=None if executed else "no_alive_candidates",
            targets=executed,
        )
