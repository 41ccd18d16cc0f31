"""投票管理 — 投票子系统的统一入口

负责投票轮次的生命周期：
- phase.start.vote       → 开启放逐投票
- phase.end.vote         → 计票并决定处刑 / 进入决选
- phase.start.runoffVote → 开启决选投票
- phase.end.runoffVote   → 决选计票（仍平票且未达上限时再次决选）
- phase.start.execution  → 执行处刑
- player.death           → 记录死亡玩家的当前选票

处刑决定确定（或决选计票）后本轮即结束，之后的登记、改票以 ROUND_CLOSED 拒绝；
登记、改票的校验失败以 success=False 返回，不抛异常；
开启投票、执行处刑的前置条件不满足时抛出 PreconditionError；
在没有投票轮次时计票 / 投票抛出 NoActiveRound。
"""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Any, Callable, Optional

from config import get_settings
from models.vote_models import (
    ExecutionDecision, ExecutionOutcome, ExecutionTarget, TallyResult,
    VoteOperationResult, VoteType, VotingPolicy,
)
from systems.audit import AuditLog
from systems.ballot_box import BallotBox
from systems.errors import ValidationError, VoteError, create_error
from systems.execution import FIRST_DAY_NO_EXECUTION, VOTING_NOT_STARTED, ExecutionResolver
from systems.interfaces import (
    PhaseSource, Roster, VoteConstraintChecker, WeightSource, player_is_alive,
)
from systems.runoff import RunoffCoordinator
from systems.tally import count_for, summarize, voters_of
from systems.visibility import VoteVisibility
from utils import extract_ids

if TYPE_CHECKING:
    from game.events import EventBus

logger = logging.getLogger(__name__)

# 允许投票的阶段（special 投票不受限制）
VOTING_PHASES = ("vote", "runoffVote")

ErrorFactory = Callable[[str, str, Optional[dict]], VoteError]


class VoteManager:
    """投票管理器"""

    def __init__(
        self,
        game_state: Roster,
        event_bus: Optional[EventBus] = None,
        policy: Optional[VotingPolicy] = None,
        constraint_checker: Optional[VoteConstraintChecker] = None,
        phase_source: Optional[PhaseSource] = None,
        weight_source: Optional[WeightSource] = None,
        error_factory: ErrorFactory = create_error,
        rng: Optional[random.Random] = None,
    ):
        self.roster = game_state
        self.phase_source: PhaseSource = phase_source or game_state
        self.weight_source: Optional[WeightSource] = (
            weight_source or (game_state if hasattr(game_state, "has_double_vote") else None)
        )
        self.event_bus = event_bus
        self.policy = policy or get_settings().voting_policy()
        self.create_error = error_factory

        self.ballot_box = BallotBox(game_state, self.policy, constraint_checker)
        self.runoff = RunoffCoordinator(
            game_state, self.phase_source, event_bus,
            max_attempts=self.policy.max_runoff_attempts, rng=rng,
        )
        self.resolver = ExecutionResolver(game_state, self.phase_source, self.policy, event_bus)
        self.audit_log = AuditLog()
        self.visibility = VoteVisibility()

        # 阶段之间传递的结果：runoff_candidates 或 execution_target（及 execution_reason）
        self.phase_context: dict[str, Any] = {}
        self.last_result: Optional[TallyResult] = None

        self._listeners: list[tuple[str, Callable]] = []
        if event_bus is not None:
            self._subscribe()

    # ========== 阶段事件 ==========

    def _subscribe(self) -> None:
        self._listeners = [
            ("phase.start.vote", self._on_vote_start),
            ("phase.end.vote", self._on_vote_end),
            ("phase.start.runoffVote", self._on_runoff_start),
            ("phase.end.runoffVote", self._on_runoff_end),
            ("phase.start.execution", self._on_execution_start),
            ("player.death", self._on_player_death),
        ]
        for name, listener in self._listeners:
            self.event_bus.on(name, listener)

    def detach(self) -> None:
        """取消全部阶段事件订阅"""
        for name, listener in self._listeners:
            self.event_bus.off(name, listener)
        self._listeners = []

    def _on_vote_start(self, event: dict) -> None:
        # 先结束上一轮，开启失败时不会沿用旧选票
        self.ballot_box.close()
        self.phase_context = {}
        info = self.start_voting(VoteType.EXECUTION)
        if info.get("skip_voting"):
            self.phase_context["execution_reason"] = info["reason"]

    def _on_vote_end(self, event: dict) -> None:
        if not self.ballot_box.is_open:
            # 首日不投票、开启投票失败：没有处刑
            reason = self.phase_context.get("execution_reason", VOTING_NOT_STARTED)
            self.phase_context = {"execution_target": None, "execution_reason": reason}
            return
        result = self.count_votes()
        decision = self.determine_execution_target(result)
        self.ballot_box.close()
        if decision.needs_runoff:
            self.phase_context = {"runoff_candidates": decision.candidates}
        else:
            self._set_decision(decision)

    def _on_runoff_start(self, event: dict) -> None:
        candidates = self.phase_context.get("runoff_candidates", [])
        self.start_runoff(candidates)

    def _on_runoff_end(self, event: dict) -> None:
        result = self.finalize_runoff()
        if result.needs_runoff:
            self.phase_context = {"runoff_candidates": list(result.max_voted)}
        else:
            self._set_decision(self.determine_execution_target(result))

    def _set_decision(self, decision: ExecutionDecision) -> None:
        self.phase_context = {"execution_target": decision.execution_target}
        if decision.reason:
            self.phase_context["execution_reason"] = decision.reason

    def _on_execution_start(self, event: dict) -> None:
        if "execution_target" not in self.phase_context:
            return
        target = self.phase_context.pop("execution_target")
        reason = self.phase_context.pop("execution_reason", None)
        self.phase_context["execution_outcome"] = self.execute_target(target, reason)

    def _on_player_death(self, event: dict) -> None:
        """投票进行中死亡的玩家：把其当前选票再记一次历史"""
        player_id = event["data"].get("player_id")
        if not self.ballot_box.is_open:
            return
        ballot = self.ballot_box.get_vote(player_id)
        if ballot is not None:
            self.audit_log.record(ballot)

    def _emit(self, name: str, data: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(name, data)

    # ========== 轮次生命周期 ==========

    def start_voting(
        self,
        vote_type: VoteType | str = VoteType.EXECUTION,
        custom_voters: Optional[list[Any]] = None,
        custom_targets: Optional[list[Any]] = None,
        relaxed_targets: bool = False,
    ) -> dict[str, Any]:
        """
        开启一轮投票。

        Args:
            vote_type: execution / runoff / special
            custom_voters: 自定义投票者（玩家对象或ID），缺省为全部存活玩家
            custom_targets: 自定义候选人（玩家对象或ID），缺省为全部存活玩家
            relaxed_targets: 为 True 时不限制投票对象必须在候选名单内

        Returns:
            {"type", "voters", "targets"}；首日不处刑时返回 {"skip_voting": True, "reason": ...}

        Raises:
            InvalidPhase / NoVoters / NoTargets
        """
        vote_type = VoteType(vote_type)
        turn = self.phase_source.get_current_turn()
        phase = self.phase_source.get_current_phase()

        if turn == 1 and vote_type == VoteType.EXECUTION and not self.policy.first_day_execution:
            logger.info("首日不处刑，跳过投票")
            self.ballot_box.close()
            return {"skip_voting": True, "reason": FIRST_DAY_NO_EXECUTION}

        if phase not in VOTING_PHASES and vote_type != VoteType.SPECIAL:
            raise self.create_error("PRECONDITION", "INVALID_PHASE", {
                "message": f"当前阶段({phase})不能投票",
                "phase": phase,
                "required_phase": list(VOTING_PHASES),
            })

        alive = self.roster.get_alive_players()
        voters = extract_ids(custom_voters) if custom_voters is not None else extract_ids(alive)
        targets = extract_ids(custom_targets) if custom_targets is not None else extract_ids(alive)

        if not voters:
            raise self.create_error("PRECONDITION", "NO_VOTERS", {"turn": turn})
        if not targets:
            raise self.create_error("PRECONDITION", "NO_TARGETS", {"turn": turn})

        if vote_type == VoteType.EXECUTION:
            self.runoff.reset_attempts()

        self.ballot_box.start_round(voters, targets, vote_type, turn, relaxed_targets=relaxed_targets)
        self._emit("vote.start", {
            "type": vote_type.value,
            "turn": turn,
            "voters": voters,
            "targets": targets,
        })
        return {"type": vote_type.value, "voters": len(voters), "targets": len(targets)}

    def register_vote(self, voter_id: int, target_id: int) -> VoteOperationResult:
        """登记投票（已投过则覆盖）"""
        try:
            self.ballot_box.validate(voter_id, target_id)
            ballot = self.ballot_box.build_ballot(voter_id, target_id, self.get_vote_weight(voter_id))
        except ValidationError as e:
            logger.warning(f"{voter_id}号投票被拒绝: {e.reason} {e.message}")
            return VoteOperationResult(success=False, reason=e.reason, message=e.message)

        previous = self.ballot_box.get_vote(voter_id)
        self._emit("vote.register.before", {
            "ballot": ballot.to_record(),
            "is_change": previous is not None,
            "previous_target": previous.target_id if previous else None,
        })

        result = self.ballot_box.add(ballot)

        self._emit("vote.register.after", {
            "ballot": ballot.to_record(),
            "is_change": result.is_change,
            "previous_target": result.previous_target,
        })
        self.audit_log.record(ballot)

        return VoteOperationResult(
            success=True,
            ballot=ballot.to_record(),
            is_change=result.is_change,
            previous_target=result.previous_target,
        )

    def change_vote(self, voter_id: int, new_target_id: int) -> VoteOperationResult:
        """修改投票；新对象与原对象相同时返回 unchanged，不产生事件和历史记录"""
        try:
            current = self.ballot_box.require_vote(voter_id)
            self.ballot_box.validate(voter_id, new_target_id)
        except ValidationError as e:
            logger.warning(f"{voter_id}号改票被拒绝: {e.reason} {e.message}")
            return VoteOperationResult(success=False, reason=e.reason, message=e.message)

        old_target_id = current.target_id
        if old_target_id == new_target_id:
            return VoteOperationResult(
                success=True, unchanged=True,
                ballot=current.to_record(), old_target_id=old_target_id,
            )

        self._emit("vote.change.before", {
            "voter_id": voter_id,
            "old_target_id": old_target_id,
            "new_target_id": new_target_id,
        })

        try:
            change = self.ballot_box.change_vote(voter_id, new_target_id)
        except ValidationError as e:
            # before 监听器可能改变了玩家状态
            logger.warning(f"{voter_id}号改票被拒绝: {e.reason} {e.message}")
            return VoteOperationResult(success=False, reason=e.reason, message=e.message)

        self._emit("vote.change.after", {
            "ballot": change.ballot.to_record(),
            "old_target_id": old_target_id,
        })
        self.audit_log.record(change.ballot)

        return VoteOperationResult(
            success=True,
            ballot=change.ballot.to_record(),
            is_change=True,
            previous_target=old_target_id,
            old_target_id=old_target_id,
        )

    def count_votes(self) -> TallyResult:
        """统计当前轮次；不修改选票，轮次结束前重复调用结果相同"""
        if not self.ballot_box.is_open:
            raise self.create_error("CONSISTENCY", "NO_ACTIVE_ROUND", {
                "message": "当前没有进行中的投票，无法计票",
            })

        ballots = self.ballot_box.current_ballots()
        vote_type = self.ballot_box.vote_type
        turn = self.ballot_box.turn

        self._emit("vote.count.before", {
            "type": vote_type.value,
            "turn": turn,
            "ballots": [b.to_record() for b in ballots],
        })

        result = summarize(ballots, vote_type, turn)
        result.needs_runoff = self.runoff.needs_runoff(result.is_tie, self.policy.execution_rule)

        self._emit("vote.count.after", result.to_dict())
        logger.info(
            f"第{turn}回合 {vote_type.value} 计票: {result.counts}，"
            f"最高票 {result.max_voted}{'（平票）' if result.is_tie else ''}"
        )
        self.last_result = result
        return result

    def determine_execution_target(self, result: TallyResult) -> ExecutionDecision:
        return self.resolver.decide(
            result,
            self.policy.execution_rule,
            self.runoff.select_random,
        )

    def start_runoff(self, candidates: list[Any]) -> dict[str, Any]:
        info = self.runoff.start_runoff(candidates, self.ballot_box)
        if not info["candidates"]:
            logger.warning("决选候选人均已死亡")
        return info

    def finalize_runoff(self) -> TallyResult:
        """
        决选计票并结束本轮决选。

        仍平票且规则为决选、未达上限时返回 needs_runoff=True，由阶段驱动再开一轮；
        否则按 runoff_tie_rule 裁决并确定 execution_target。
        """
        result = self.count_votes()
        self.runoff.mark_tallied()
        self.ballot_box.close()
        if result.needs_runoff:
            logger.info(f"决选仍平票 {result.max_voted}，再次决选")
            return result
        if result.is_tie:
            self.resolver.remember_candidates(result.max_voted)
        return self.runoff.finalize(result, self.policy.runoff_tie_rule)

    def execute_target(self, target: ExecutionTarget, reason: Optional[str] = None) -> ExecutionOutcome:
        """
        执行处刑（None 不处刑，"all" 全员处刑，否则为玩家ID），之后本轮不再接受投票。

        reason 为不处刑时 execution.none 携带的原因。
        """
        outcome = self.resolver.apply(target, reason=reason)
        self.ballot_box.close()
        return outcome

    # ========== 票权 ==========

    def get_vote_weight(self, player_id: int) -> int:
        """双票权玩家为2票，其余（含不存在 / 已死亡）为1票"""
        player = self.roster.get_player(player_id)
        if not player or not player_is_alive(player):
            return 1
        if self.weight_source is not None and self.weight_source.has_double_vote(player_id):
            return 2
        return 1

    # ========== 查询 ==========

    def get_vote_history(self, turn: Optional[int] = None, vote_type: VoteType | str | None = None) -> list[dict]:
        return self.audit_log.history(turn, vote_type)

    def get_player_vote_history(self, player_id: int) -> list[dict]:
        return self.audit_log.query_by_voter(player_id)

    def get_player_target_history(self, player_id: int) -> list[dict]:
        return self.audit_log.query_by_target(player_id)

    def generate_vote_summary(self, turn: int) -> dict[str, Any]:
        return self.audit_log.summarize(turn)

    def save_history(self, game_id: str) -> str:
        return self.audit_log.save(game_id)

    def configure_vote_visibility(self, **options: bool) -> dict[str, bool]:
        return self.visibility.configure(**options)

    def get_visible_votes(self, viewer_id: Optional[int] = None) -> list[dict]:
        return self.visibility.visible_votes(
            self.ballot_box.current_ballots(), viewer_id, self.ballot_box.is_round_complete(),
        )

    def get_visible_vote_counts(self, viewer_id: Optional[int] = None) -> dict[int, int]:
        counts = summarize(self.ballot_box.current_ballots()).counts
        return self.visibility.visible_counts(counts, viewer_id)

    def get_current_vote_status(self, viewer_id: Optional[int] = None) -> dict[str, Any]:
        vote_type = self.ballot_box.vote_type
        status = {
            "type": vote_type.value if vote_type else None,
            "open": self.ballot_box.is_open,
            "turn": self.phase_source.get_current_turn(),
            "complete": self.ballot_box.is_round_complete(),
            "total_voters": self.ballot_box.total_voters(),
            "votes_submitted": self.ballot_box.submitted_count(),
        }
        return self.visibility.visible_status(status, self.ballot_box.current_ballots(), viewer_id)

    def is_voting_complete(self) -> bool:
        return self.ballot_box.is_round_complete()

    def get_current_votes(self) -> list[dict]:
        return [b.to_record() for b in self.ballot_box.current_ballots()]

    def get_vote(self, voter_id: int) -> Optional[dict]:
        ballot = self.ballot_box.get_vote(voter_id)
        return ballot.to_record() if ballot else None

    def get_voters_of(self, target_id: int) -> list[int]:
        return voters_of(self.ballot_box.current_ballots(), target_id)

    def get_votes_for(self, target_id: int) -> int:
        return count_for(self.ballot_box.current_ballots(), target_id)

    def get_voters(self) -> list[int]:
        return self.ballot_box.voters

    def get_targets(self) -> list[int]:
        return self.ballot_box.targets

    def reset_runoff_attempts(self) -> None:
        self.runoff.reset_attempts()

    def set_max_runoff_attempts(self, max_attempts: int) -> None:
        self.runoff.set_max_attempts(max_attempts)
