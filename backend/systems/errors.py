"""投票子系统异常定义

三类错误：
- 校验错误（VALIDATION）：单张选票不合法，可恢复，不影响本轮其它选票
- 前置条件错误（PRECONDITION）：开启投票 / 执行处刑时条件不满足
- 一致性错误（CONSISTENCY）：在尚未开启投票轮次时调用依赖轮次的操作
"""

from __future__ import annotations

from typing import Any


class VoteError(Exception):
    """投票子系统异常基类"""

    category: str = "VOTE"
    code: str = "VOTE_ERROR"
    default_message: str = "投票处理失败"

    def __init__(self, message: str | None = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    @property
    def reason(self) -> str:
        return self.code

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "code": self.code,
            "message": self.message,
            "details": dict(self.details),
        }


# ========== 校验错误 ==========

class ValidationError(VoteError):
    category = "VALIDATION"


class InvalidBallot(ValidationError):
    code = "INVALID_BALLOT"
    default_message = "选票参数不合法"


class InvalidVoter(ValidationError):
    code = "INVALID_VOTER"
    default_message = "投票者不存在"


class InvalidTarget(ValidationError):
    code = "INVALID_TARGET"
    default_message = "投票对象不存在"


class DeadVoter(ValidationError):
    code = "DEAD_VOTER"
    default_message = "死亡玩家不能投票"


class IneligibleTarget(ValidationError):
    code = "INELIGIBLE_TARGET"
    default_message = "不能投给该对象"


class SelfVoteForbidden(ValidationError):
    code = "SELF_VOTE_FORBIDDEN"
    default_message = "不能投给自己"


class RoleConstraintViolation(ValidationError):
    code = "ROLE_CONSTRAINT_VIOLATION"
    default_message = "角色限制，无法投票"

    @property
    def reason(self) -> str:
        # 角色钩子给出的具体原因优先
        return self.details.get("reason") or self.code


class NoPreviousVote(ValidationError):
    code = "NO_PREVIOUS_VOTE"
    default_message = "没有可以修改的投票"


class RoundClosed(ValidationError):
    code = "ROUND_CLOSED"
    default_message = "本轮投票已结束"


# ========== 前置条件错误 ==========

class PreconditionError(VoteError):
    category = "PRECONDITION"


class InvalidPhase(PreconditionError):
    code = "INVALID_PHASE"
    default_message = "当前阶段不能投票"


class NoVoters(PreconditionError):
    code = "NO_VOTERS"
    default_message = "没有可以投票的玩家"


class NoTargets(PreconditionError):
    code = "NO_TARGETS"
    default_message = "没有可以被投票的玩家"


class AlreadyDead(PreconditionError):
    code = "ALREADY_DEAD"
    default_message = "处刑对象已经死亡"


class NoCandidates(PreconditionError):
    code = "NO_CANDIDATES"
    default_message = "没有可处刑的候选人"


class ExecutionTargetInvalid(PreconditionError):
    """处刑对象不存在（与选票校验的 INVALID_TARGET 同码，但属于前置条件错误）"""
    code = "INVALID_TARGET"
    default_message = "处刑对象不存在"


# ========== 一致性错误 ==========

class ConsistencyError(VoteError):
    category = "CONSISTENCY"


class NoActiveRound(ConsistencyError):
    code = "NO_ACTIVE_ROUND"
    default_message = "当前没有进行中的投票"


_ERROR_CLASSES: dict[tuple[str, str], type[VoteError]] = {
    (cls.category, cls.code): cls
    for cls in (
        InvalidBallot, InvalidVoter, InvalidTarget, DeadVoter, IneligibleTarget,
        SelfVoteForbidden, RoleConstraintViolation, NoPreviousVote, RoundClosed,
        InvalidPhase, NoVoters, NoTargets, AlreadyDead, NoCandidates,
        ExecutionTargetInvalid, NoActiveRound,
    )
}


def create_error(category: str, code: str, details: dict[str, Any] | None = None) -> VoteError:
    """
    按分类和错误码构造结构化异常。

    未登记的组合返回对应分类的基类实例（分类也未知时返回 VoteError），
    并保留传入的 code。

    Args:
        category: VALIDATION / PRECONDITION / CONSISTENCY
        code: 错误码，如 DEAD_VOTER
        details: 附加信息，其中的 message 字段作为异常消息

    Returns:
        VoteError 子类实例（不抛出）
    """
    details = dict(details or {})
    message = details.pop("message", None)
    cls = _ERROR_CLASSES.get((category, code))
    if cls is not None:
        return cls(message, **details)

    base = {
        ValidationError.category: ValidationError,
        PreconditionError.category: PreconditionError,
        ConsistencyError.category: ConsistencyError,
    }.get(category, VoteError)
    error = base(message, **details)
    error.category = category
    error.code = code
    return error
