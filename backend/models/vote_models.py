"""投票相关数据模型"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, field_validator

from systems.errors import InvalidBallot
from utils import is_valid_player_id, now_ms


class VoteType(str, Enum):
    EXECUTION = "execution"
    RUNOFF = "runoff"
    SPECIAL = "special"


class ExecutionRule(str, Enum):
    RUNOFF = "runoff"
    RANDOM = "random"
    NO_EXECUTION = "no_execution"
    ALL_EXECUTION = "all_execution"


# 全员处刑的特殊目标值
EXECUTE_ALL = "all"

# 投票权重：正整数，创建选票时确定
VoteWeight = int

ExecutionTarget = Union[int, str, None]


class VotingPolicy(BaseModel):
    """一轮投票使用的不可变规则"""

    execution_rule: str = ExecutionRule.RUNOFF.value
    runoff_tie_rule: str = ExecutionRule.RANDOM.value
    allow_self_vote: bool = False
    reveal_role_on_death: bool = True
    first_day_execution: bool = True
    max_runoff_attempts: int = 3

    model_config = {"frozen": True}

    @field_validator("execution_rule", "runoff_tie_rule", mode="before")
    @classmethod
    def normalize_rule(cls, v: Any) -> Any:
        # 未知规则原样保留，由各处的默认分支兜底
        if isinstance(v, Enum):
            return v.value
        return v


class Ballot:
    """
    单张选票。

    投票者、类型、权重、回合在创建后不可变；投票对象只能通过 change_target 修改。
    """

    def __init__(
        self,
        voter_id: int,
        target_id: int,
        vote_type: VoteType | str,
        weight: VoteWeight = 1,
        turn: int = 1,
        timestamp: Optional[int] = None,
    ):
        if voter_id is None:
            raise InvalidBallot("未指定投票者", parameter="voter_id")
        if target_id is None:
            raise InvalidBallot("未指定投票对象", parameter="target_id")
        if not vote_type:
            raise InvalidBallot("未指定投票类型", parameter="vote_type")
        if not is_valid_player_id(voter_id):
            raise InvalidBallot(f"非法玩家ID: {voter_id}", parameter="voter_id", value=voter_id)
        if not is_valid_player_id(target_id):
            raise InvalidBallot(f"非法玩家ID: {target_id}", parameter="target_id", value=target_id)
        try:
            vote_type = VoteType(vote_type)
        except ValueError:
            raise InvalidBallot(f"非法投票类型: {vote_type}", parameter="vote_type", value=vote_type)
        if not isinstance(weight, int) or isinstance(weight, bool) or weight < 1:
            raise InvalidBallot(f"非法投票权重: {weight}", parameter="weight", value=weight)
        if not isinstance(turn, int) or isinstance(turn, bool) or turn < 1:
            raise InvalidBallot(f"非法回合数: {turn}", parameter="turn", value=turn)
        if timestamp is not None and (not isinstance(timestamp, int) or isinstance(timestamp, bool)):
            raise InvalidBallot(f"非法时间戳: {timestamp}", parameter="timestamp", value=timestamp)

        self._voter_id = voter_id
        self._target_id = target_id
        self._vote_type = vote_type
        self._weight = weight
        self._turn = turn
        self._timestamp = timestamp if timestamp is not None else now_ms()

    @classmethod
    def create(cls, voter_id: int, target_id: int, vote_type: VoteType | str,
               weight: VoteWeight = 1, turn: int = 1, timestamp: Optional[int] = None) -> Ballot:
        return cls(voter_id, target_id, vote_type, weight=weight, turn=turn, timestamp=timestamp)

    @property
    def voter_id(self) -> int:
        return self._voter_id

    @property
    def target_id(self) -> int:
        return self._target_id

    @property
    def vote_type(self) -> VoteType:
        return self._vote_type

    @property
    def weight(self) -> VoteWeight:
        return self._weight

    @property
    def turn(self) -> int:
        return self._turn

    @property
    def timestamp(self) -> int:
        return self._timestamp

    def change_target(self, new_target_id: int) -> None:
        """修改投票对象并刷新时间戳（是否与原对象相同由调用方判断）"""
        if not is_valid_player_id(new_target_id):
            raise InvalidBallot(
                f"非法玩家ID: {new_target_id}", parameter="target_id", value=new_target_id,
            )
        self._target_id = new_target_id
        self._timestamp = max(now_ms(), self._timestamp + 1)

    def to_record(self) -> dict[str, Any]:
        return {
            "voter_id": self._voter_id,
            "target_id": self._target_id,
            "vote_type": self._vote_type.value,
            "weight": self._weight,
            "turn": self._turn,
            "timestamp": self._timestamp,
        }

    def __repr__(self) -> str:
        return (
            f"Ballot(voter={self._voter_id}, target={self._target_id}, "
            f"type={self._vote_type.value}, weight={self._weight}, turn={self._turn})"
        )


@dataclass
class TallyResult:
    """计票结果"""
    counts: dict[int, int] = field(default_factory=dict)
    max_count: int = 0
    max_voted: list[int] = field(default_factory=list)  # 按首次出现顺序
    vote_type: Optional[VoteType] = None
    turn: Optional[int] = None
    records: list[dict[str, Any]] = field(default_factory=list)
    needs_runoff: bool = False
    execution_target: ExecutionTarget = None

    @property
    def is_tie(self) -> bool:
        return len(self.max_voted) > 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.vote_type.value if self.vote_type else None,
            "turn": self.turn,
            "ballots": [dict(r) for r in self.records],
            "counts": dict(self.counts),
            "max_count": self.max_count,
            "max_voted": list(self.max_voted),
            "is_tie": self.is_tie,
            "needs_runoff": self.needs_runoff,
        }


@dataclass
class TieCheck:
    is_tie: bool
    tied_players: list[int] = field(default_factory=list)


@dataclass
class ExecutionDecision:
    """处刑决定：处刑一人 / 需要决选 / 不处刑 / 全员处刑"""
    needs_runoff: bool = False
    candidates: list[int] = field(default_factory=list)
    execution_target: ExecutionTarget = None
    # 不处刑的原因：no_votes / no_execution_rule
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        if self.needs_runoff:
            return {"needs_runoff": True, "candidates": list(self.candidates)}
        data = {"needs_runoff": False, "execution_target": self.execution_target}
        if self.reason:
            data["reason"] = self.reason
        return data


@dataclass
class ExecutionOutcome:
    """处刑执行结果"""
    executed: bool
    reason: Optional[str] = None
    target_id: Optional[int] = None
    player_name: Optional[str] = None
    role: Optional[str] = None
    targets: list[dict[str, Any]] = field(default_factory=list)

    @property
    def count(self) -> int:
        if self.targets:
            return len(self.targets)
        return 1 if self.executed and self.target_id is not None else 0


@dataclass
class RegistrationResult:
    ballot: Ballot
    is_change: bool = False
    previous_target: Optional[int] = None


@dataclass
class ChangeResult:
    ballot: Ballot
    old_target_id: int
    unchanged: bool = False


@dataclass
class VoteOperationResult:
    """投票 / 改票对外返回结果（校验失败不抛异常）"""
    success: bool
    reason: Optional[str] = None
    message: Optional[str] = None
    ballot: Optional[dict[str, Any]] = None
    is_change: bool = False
    previous_target: Optional[int] = None
    old_target_id: Optional[int] = None
    unchanged: bool = False
