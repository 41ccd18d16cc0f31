"""白天阶段驱动

子阶段顺序：DISCUSSION → VOTE → (RUNOFF_VOTE)* → EXECUTION
进入、离开子阶段时在事件总线上发出 phase.start.<子阶段> / phase.end.<子阶段>，
投票子系统通过订阅这些事件开启、结算投票。
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable

from models.game_models import DaySubPhase, GamePhase

if TYPE_CHECKING:
    from game.events import EventBus
    from game.state import GameState
    from systems.vote_manager import VoteManager

logger = logging.getLogger(__name__)


DAY_PHASE_ORDER = [
    DaySubPhase.DISCUSSION,
    DaySubPhase.VOTE,
    DaySubPhase.EXECUTION,
]

# 投票阶段内的收票回调：(vote_manager, 子阶段) -> None
VoteCollector = Callable[["VoteManager", DaySubPhase], None]


def get_next_day_sub_phase(
    current: DaySubPhase | None, needs_runoff: bool = False
) -> DaySubPhase | None:
    """获取下一个白天子阶段；投票平票需要决选时进入 RUNOFF_VOTE"""
    if current is None:
        return DAY_PHASE_ORDER[0]
    if current in (DaySubPhase.VOTE, DaySubPhase.RUNOFF_VOTE):
        return DaySubPhase.RUNOFF_VOTE if needs_runoff else DaySubPhase.EXECUTION
    idx = DAY_PHASE_ORDER.index(current)
    if idx + 1 < len(DAY_PHASE_ORDER):
        return DAY_PHASE_ORDER[idx + 1]
    return None  # 白天结束


class PhaseDriver:
    """维护 GameState 的当前阶段并发出阶段事件"""

    def __init__(self, state: GameState, event_bus: EventBus):
        self.state = state
        self.event_bus = event_bus

    def start_day(self) -> int:
        """进入新的一天，返回回合数"""
        self.state.current_round += 1
        self.state.current_phase = GamePhase.DAY_PHASE
        self.state.current_sub_phase = None
        self.event_bus.emit("game.phase_change", {
            "phase": GamePhase.DAY_PHASE.value,
            "round": self.state.current_round,
        })
        return self.state.current_round

    def enter(self, sub_phase: DaySubPhase) -> None:
        self.state.current_sub_phase = sub_phase.value
        self.event_bus.emit(f"phase.start.{sub_phase.value}", {
            "phase": sub_phase.value,
            "round": self.state.current_round,
        })

    def leave(self, sub_phase: DaySubPhase) -> None:
        self.event_bus.emit(f"phase.end.{sub_phase.value}", {
            "phase": sub_phase.value,
            "round": self.state.current_round,
        })

    def run_day(self, vote_manager: VoteManager, collect_votes: VoteCollector) -> dict[str, Any]:
        """
        依次运行白天的全部子阶段。

        Args:
            vote_manager: 已订阅本总线的投票管理器
            collect_votes: 投票 / 决选阶段内调用，负责登记选票

        Returns:
            投票管理器的阶段结果（含 execution_outcome）
        """
        turn = self.start_day()
        sub_phase = get_next_day_sub_phase(None)
        while sub_phase is not None:
            self.enter(sub_phase)
            if sub_phase in (DaySubPhase.VOTE, DaySubPhase.RUNOFF_VOTE) and vote_manager.ballot_box.is_open:
                collect_votes(vote_manager, sub_phase)
            self.leave(sub_phase)

            needs_runoff = "runoff_candidates" in vote_manager.phase_context
            sub_phase = get_next_day_sub_phase(sub_phase, needs_runoff)

        logger.info(f"第{turn}天结束")
        self.state.current_sub_phase = None
        return dict(vote_manager.phase_context)
