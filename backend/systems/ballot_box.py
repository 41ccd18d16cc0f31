"""投票箱 — 单轮投票的资格名单与选票收集"""

from __future__ import annotations

import logging
from typing import Any, Optional

from models.vote_models import (
    Ballot, ChangeResult, RegistrationResult, VoteType, VotingPolicy,
)
from systems.errors import (
    DeadVoter, IneligibleTarget, InvalidTarget, InvalidVoter,
    NoActiveRound, NoPreviousVote, RoleConstraintViolation, RoundClosed,
    SelfVoteForbidden,
)
from systems.interfaces import Roster, VoteConstraintChecker, player_is_alive
from utils import extract_ids

logger = logging.getLogger(__name__)


class BallotBox:
    """
    同一时间只有一轮投票。

    每名投票者最多一张有效选票，重复登记会覆盖（后写为准）；
    除非以 relaxed_targets 开启，选票对象必须在本轮候选名单内。
    """

    def __init__(
        self,
        roster: Roster,
        policy: VotingPolicy | None = None,
        constraint_checker: VoteConstraintChecker | None = None,
    ):
        self.roster = roster
        self.policy = policy or VotingPolicy()
        self.constraint_checker = constraint_checker

        self._vote_type: Optional[VoteType] = None
        self._turn: int = 1
        self._voters: list[int] = []
        self._targets: list[int] = []
        self._relaxed_targets = False
        self._ballots: dict[int, Ballot] = {}
        self._closed = False

    # --- 轮次 ---

    def start_round(
        self,
        voters: list[Any],
        targets: list[Any],
        vote_type: VoteType | str,
        turn: int,
        relaxed_targets: bool = False,
    ) -> None:
        """开启新一轮投票，丢弃上一轮的选票（历史记录不受影响）"""
        self._vote_type = VoteType(vote_type)
        self._turn = turn
        self._voters = extract_ids(voters)
        self._targets = extract_ids(targets)
        self._relaxed_targets = relaxed_targets
        self._ballots = {}
        self._closed = False
        logger.info(
            f"第{turn}回合 {self._vote_type.value} 投票开启："
            f"投票者 {self._voters}，候选 {self._targets}"
        )

    def close(self) -> None:
        """结束当前轮次：选票与名单保留可查，之后不再接受登记和改票"""
        if self._vote_type is not None and not self._closed:
            logger.info(f"第{self._turn}回合 {self._vote_type.value} 投票结束")
        self._closed = True

    @property
    def is_open(self) -> bool:
        return self._vote_type is not None and not self._closed

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def vote_type(self) -> Optional[VoteType]:
        return self._vote_type

    @property
    def turn(self) -> int:
        return self._turn

    def _require_round(self) -> None:
        if self._vote_type is None:
            raise NoActiveRound()
        if self._closed:
            raise RoundClosed(
                f"第{self._turn}回合 {self._vote_type.value} 投票已结束", turn=self._turn,
            )

    # --- 校验 ---

    def validate(self, voter_id: int, target_id: int) -> None:
        """校验一张选票，不合法时抛出对应的 ValidationError"""
        self._require_round()

        voter = self.roster.get_player(voter_id)
        if not voter:
            raise InvalidVoter(f"投票者 {voter_id} 不存在", voter_id=voter_id)
        if not player_is_alive(voter):
            raise DeadVoter(f"{voter_id}号已死亡，不能投票", voter_id=voter_id)
        if voter_id not in self._voters:
            raise InvalidVoter(f"{voter_id}号不在本轮投票者名单中", voter_id=voter_id)

        if not self.roster.get_player(target_id):
            raise InvalidTarget(f"投票对象 {target_id} 不存在", target_id=target_id)
        if not self._relaxed_targets and not self.is_valid_target(target_id):
            raise IneligibleTarget(f"本轮不能投给{target_id}号", target_id=target_id)

        if voter_id == target_id and not self.policy.allow_self_vote:
            raise SelfVoteForbidden(voter_id=voter_id)

        if self.constraint_checker is not None:
            constraint = self.constraint_checker.check_vote_constraint(voter, target_id)
            if constraint and not constraint.get("valid", False):
                raise RoleConstraintViolation(
                    constraint.get("message"),
                    reason=constraint.get("reason"),
                    voter_id=voter_id,
                    target_id=target_id,
                )

    # --- 登记 / 改票 ---

    def build_ballot(self, voter_id: int, target_id: int, weight: int = 1) -> Ballot:
        """按本轮类型和回合创建选票（不校验资格、不保存）"""
        self._require_round()
        return Ballot.create(voter_id, target_id, self._vote_type, weight=weight, turn=self._turn)

    def add(self, ballot: Ballot) -> RegistrationResult:
        """保存选票，同一投票者已有选票时覆盖"""
        self._require_round()
        previous = self._ballots.get(ballot.voter_id)
        self._ballots[ballot.voter_id] = ballot
        return RegistrationResult(
            ballot=ballot,
            is_change=previous is not None,
            previous_target=previous.target_id if previous else None,
        )

    def register(self, voter_id: int, target_id: int, weight: int = 1) -> RegistrationResult:
        self.validate(voter_id, target_id)
        return self.add(self.build_ballot(voter_id, target_id, weight))

    def require_vote(self, voter_id: int) -> Ballot:
        self._require_round()
        ballot = self._ballots.get(voter_id)
        if ballot is None:
            raise NoPreviousVote(voter_id=voter_id)
        return ballot

    def change_vote(self, voter_id: int, new_target_id: int) -> ChangeResult:
        """修改已有选票；对象未变时不做任何修改"""
        ballot = self.require_vote(voter_id)
        self.validate(voter_id, new_target_id)

        old_target_id = ballot.target_id
        if old_target_id == new_target_id:
            return ChangeResult(ballot=ballot, old_target_id=old_target_id, unchanged=True)

        ballot.change_target(new_target_id)
        return ChangeResult(ballot=ballot, old_target_id=old_target_id)

    # --- 查询 ---

    def has_voted(self, voter_id: int) -> bool:
        return voter_id in self._ballots

    def get_vote(self, voter_id: int) -> Optional[Ballot]:
        return self._ballots.get(voter_id)

    def is_valid_target(self, target_id: int) -> bool:
        return target_id in self._targets

    def is_round_complete(self) -> bool:
        """全部投票者都已投票"""
        return all(v in self._ballots for v in self._voters)

    def remaining_voters(self) -> list[int]:
        return [v for v in self._voters if v not in self._ballots]

    def total_voters(self) -> int:
        return len(self._voters)

    def submitted_count(self) -> int:
        return len(self._ballots)

    def current_ballots(self) -> list[Ballot]:
        return list(self._ballots.values())

    @property
    def voters(self) -> list[int]:
        return list(self._voters)

    @property
    def targets(self) -> list[int]:
        return list(self._targets)
