"""计票系统（按票权加权，平票只报告不裁决）"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from models.vote_models import Ballot, TallyResult, TieCheck, VoteType

logger = logging.getLogger(__name__)


def resolve_weight(ballot: Any) -> int:
    """
    取单张选票的权重。

    选票可能是 Ballot 对象，也可能是从历史记录回放的字典，两种形式计票结果必须一致。
    优先级：
    1. Ballot.weight
    2. 记录字典中的 weight（兼容旧字段 vote_strength）
    3. 任意对象上的 weight 属性
    4. 默认 1
    """
    if isinstance(ballot, Ballot):
        if ballot.weight > 0:
            return ballot.weight
    elif isinstance(ballot, Mapping):
        for key in ("weight", "vote_strength"):
            value = ballot.get(key)
            if _positive_number(value):
                return value
    else:
        value = getattr(ballot, "weight", None)
        if _positive_number(value):
            return value
    return 1


def _positive_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def _target_of(ballot: Any) -> Any:
    if isinstance(ballot, Mapping):
        return ballot.get("target_id")
    return ballot.target_id


def _voter_of(ballot: Any) -> Any:
    if isinstance(ballot, Mapping):
        return ballot.get("voter_id")
    return ballot.voter_id


def _record_of(ballot: Any) -> dict[str, Any]:
    if isinstance(ballot, Mapping):
        return dict(ballot)
    return ballot.to_record()


def count_votes(ballots: Iterable[Any]) -> TallyResult:
    """
    计算加权票数。

    Args:
        ballots: Ballot 或选票记录字典

    Returns:
        TallyResult，max_voted 按首次得票顺序排列；无选票时 counts 为空、不平票
    """
    counts: dict[int, int] = {}

    for ballot in ballots:
        target_id = _target_of(ballot)
        weight = resolve_weight(ballot)
        counts[target_id] = counts.get(target_id, 0) + weight
        logger.debug(f"计票: {_voter_of(ballot)}号 → {target_id}号 (权重 {weight})")

    if not counts:
        return TallyResult()

    max_count = max(counts.values())
    max_voted = [pid for pid, cnt in counts.items() if cnt == max_count]
    return TallyResult(counts=counts, max_count=max_count, max_voted=max_voted)


def check_for_tie(result: TallyResult) -> TieCheck:
    """最高票多于一人即为平票"""
    if result.is_tie:
        return TieCheck(is_tie=True, tied_players=list(result.max_voted))
    return TieCheck(is_tie=False)


def count_for(ballots: Iterable[Any], target_id: int) -> int:
    """某个目标的加权得票（展示用）"""
    return sum(resolve_weight(b) for b in ballots if _target_of(b) == target_id)


def voters_of(ballots: Iterable[Any], target_id: int) -> list[int]:
    """投给某个目标的投票者列表（展示用）"""
    return [_voter_of(b) for b in ballots if _target_of(b) == target_id]


def summarize(
    ballots: Iterable[Any],
    vote_type: Optional[VoteType] = None,
    turn: Optional[int] = None,
) -> TallyResult:
    """计票并附带选票记录，用于事件推送与审计"""
    ballots = list(ballots)
    result = count_votes(ballots)
    result.vote_type = VoteType(vote_type) if vote_type else None
    result.turn = turn
    result.records = [_record_of(b) for b in ballots]
    return result
