"""
投票管理器测试（含阶段事件驱动的完整白天流程）。

测试项：
  - 开启投票的前置条件
  - 登记 / 改票结果与事件
  - 村长双票权
  - 计票幂等、无轮次计票
  - 首日不处刑
  - 平票 → 决选 → 处刑
  - 处刑后本轮只读
  - 决选次数上限
  - 全员处刑
  - 历史与可见性查询
"""

import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from game.events import EventBus
from game.phase import PhaseDriver, get_next_day_sub_phase
from game.state import GameState
from models.game_models import DaySubPhase, RoleType
from models.vote_models import VotingPolicy
from roles.registry import RoleVoteConstraintChecker
from systems.errors import InvalidPhase, NoActiveRound, NoTargets, NoVoters
from systems.runoff import RunoffState
from systems.vote_manager import VoteManager


ROLES = [
    RoleType.VILLAGER, RoleType.VILLAGER, RoleType.MAYOR, RoleType.VILLAGER,
    RoleType.WEREWOLF, RoleType.IDIOT,
]


class EventCollector:
    """收集全部事件"""

    def __init__(self, bus: EventBus):
        self.events: list[dict] = []
        bus.on("*", self.events.append)

    def types(self) -> list[str]:
        return [e["type"] for e in self.events]

    def of(self, event_type: str) -> list[dict]:
        return [e["data"] for e in self.events if e["type"] == event_type]


def make_game(policy: VotingPolicy | None = None, roles=None):
    """3号为村长，6号为白痴；当前处于第1天投票阶段"""
    bus = EventBus()
    state = GameState.create("vote_test", roles or ROLES, shuffle=False)
    state.event_bus = bus
    state.current_round = 1
    state.current_sub_phase = DaySubPhase.VOTE.value
    manager = VoteManager(
        state, bus, policy or VotingPolicy(),
        constraint_checker=RoleVoteConstraintChecker(),
    )
    return state, bus, manager


# ========== 开启投票 ==========

def test_start_voting():
    state, bus, manager = make_game()
    collector = EventCollector(bus)

    info = manager.start_voting()
    assert info == {"type": "execution", "voters": 6, "targets": 6}
    assert manager.get_voters() == [1, 2, 3, 4, 5, 6]
    assert collector.of("vote.start")[0]["turn"] == 1


def test_start_voting_custom_lists():
    state, bus, manager = make_game()
    info = manager.start_voting("special", custom_voters=[1, 2], custom_targets=[state.get_player(5)])
    assert info == {"type": "special", "voters": 2, "targets": 1}
    assert manager.get_targets() == [5]


def test_start_voting_invalid_phase():
    state, bus, manager = make_game()
    state.current_sub_phase = DaySubPhase.DISCUSSION.value

    with pytest.raises(InvalidPhase) as exc_info:
        manager.start_voting()
    assert exc_info.value.details["phase"] == "discussion"

    # special 投票不受阶段限制
    manager.start_voting("special")


def test_start_voting_without_voters_or_targets():
    state, bus, manager = make_game()
    with pytest.raises(NoVoters):
        manager.start_voting(custom_voters=[])
    with pytest.raises(NoTargets):
        manager.start_voting(custom_targets=[])


def test_first_day_without_execution():
    state, bus, manager = make_game(VotingPolicy(first_day_execution=False))
    result = manager.start_voting()
    assert result == {"skip_voting": True, "reason": "first_day_no_execution"}
    assert not manager.ballot_box.is_open

    state.current_round = 2
    assert manager.start_voting()["voters"] == 6


def test_default_policy_from_settings():
    settings = Settings(execution_rule="random", max_runoff_attempts=4)
    with patch("systems.vote_manager.get_settings", lambda: settings):
        manager = VoteManager(GameState.create("settings_test", ROLES, shuffle=False))
    assert manager.policy.execution_rule == "random"
    assert manager.runoff.max_attempts == 4


# ========== 登记 / 改票 ==========

def test_register_vote():
    state, bus, manager = make_game()
    collector = EventCollector(bus)
    manager.start_voting()

    result = manager.register_vote(1, 5)
    assert result.success
    assert not result.is_change
    assert result.ballot["target_id"] == 5
    assert collector.types()[-2:] == ["vote.register.before", "vote.register.after"]


def test_register_vote_rejections_do_not_raise():
    state, bus, manager = make_game()
    manager.start_voting()

    result = manager.register_vote(1, 1)
    assert not result.success
    assert result.reason == "SELF_VOTE_FORBIDDEN"

    result = manager.register_vote(1, 42)
    assert result.reason == "INVALID_TARGET"

    state.get_player(6).idiot_revealed = True
    result = manager.register_vote(6, 5)
    assert result.reason == "IDIOT_REVEALED"

    state.kill(2, "wolf_kill")
    result = manager.register_vote(2, 5)
    assert result.reason == "DEAD_VOTER"

    assert manager.get_current_votes() == []
    assert manager.get_vote_history() == []


def test_register_without_round_raises():
    state, bus, manager = make_game()
    with pytest.raises(NoActiveRound):
        manager.register_vote(1, 5)
    with pytest.raises(NoActiveRound):
        manager.count_votes()


def test_revote_overwrites_and_keeps_history():
    state, bus, manager = make_game()
    manager.start_voting()
    manager.register_vote(1, 5)
    result = manager.register_vote(1, 4)

    assert result.is_change
    assert result.previous_target == 5
    assert manager.get_vote(1)["target_id"] == 4
    assert len(manager.get_current_votes()) == 1
    assert [e["target_id"] for e in manager.get_player_vote_history(1)] == [5, 4]


def test_change_vote():
    state, bus, manager = make_game()
    collector = EventCollector(bus)
    manager.start_voting()
    manager.register_vote(1, 5)

    result = manager.change_vote(1, 4)
    assert result.success
    assert result.old_target_id == 5
    assert manager.get_voters_of(4) == [1]
    assert collector.of("vote.change.after")[0]["old_target_id"] == 5
    assert len(manager.get_player_vote_history(1)) == 2


def test_change_vote_unchanged():
    state, bus, manager = make_game()
    collector = EventCollector(bus)
    manager.start_voting()
    manager.register_vote(1, 5)

    result = manager.change_vote(1, 5)
    assert result.success
    assert result.unchanged
    assert "vote.change.before" not in collector.types()
    assert len(manager.get_player_vote_history(1)) == 1


def test_change_vote_without_previous():
    state, bus, manager = make_game()
    manager.start_voting()
    result = manager.change_vote(1, 5)
    assert not result.success
    assert result.reason == "NO_PREVIOUS_VOTE"


# ========== 票权 ==========

def test_vote_weight():
    state, bus, manager = make_game()
    assert manager.get_vote_weight(3) == 2, "村长双票权"
    assert manager.get_vote_weight(1) == 1
    assert manager.get_vote_weight(42) == 1

    state.get_player(1).double_vote = True
    assert manager.get_vote_weight(1) == 2

    state.kill(3, "wolf_kill")
    assert manager.get_vote_weight(3) == 1


def test_weighted_execution_count():
    """1、2号各1票，3号村长双票，均投给3号"""
    state, bus, manager = make_game(VotingPolicy(allow_self_vote=True))
    manager.start_voting()
    for voter in (1, 2, 3):
        assert manager.register_vote(voter, 3).success

    result = manager.count_votes()
    assert result.counts == {3: 4}
    assert result.max_voted == [3]
    assert not result.is_tie
    assert manager.get_votes_for(3) == 4


# ========== 计票 ==========

def test_count_votes_is_idempotent():
    state, bus, manager = make_game()
    collector = EventCollector(bus)
    manager.start_voting()
    manager.register_vote(1, 5)
    manager.register_vote(2, 4)

    first = manager.count_votes()
    second = manager.count_votes()
    assert first.counts == second.counts
    assert first.max_voted == second.max_voted
    assert first.needs_runoff == second.needs_runoff
    assert len(collector.of("vote.count.after")) == 2


def test_count_votes_without_ballots():
    state, bus, manager = make_game()
    manager.start_voting()
    result = manager.count_votes()
    assert result.counts == {}
    assert not result.is_tie

    decision = manager.determine_execution_target(result)
    assert decision.execution_target is None
    assert decision.reason == "no_votes"

    outcome = manager.execute_target(decision.execution_target, decision.reason)
    assert outcome.reason == "no_votes"
    assert not manager.ballot_box.is_open


def test_tie_needs_runoff():
    state, bus, manager = make_game()
    manager.start_voting()
    manager.register_vote(1, 5)
    manager.register_vote(2, 4)

    result = manager.count_votes()
    assert result.is_tie
    assert result.needs_runoff
    decision = manager.determine_execution_target(result)
    assert decision.needs_runoff
    assert decision.candidates == [5, 4]


# ========== 阶段驱动流程 ==========

def cast(votes: dict[int, int]):
    def collect(manager: VoteManager, sub_phase: DaySubPhase):
        for voter, target in votes.items():
            manager.register_vote(voter, target)
    return collect


def test_day_sub_phase_order():
    assert get_next_day_sub_phase(None) == DaySubPhase.DISCUSSION
    assert get_next_day_sub_phase(DaySubPhase.DISCUSSION) == DaySubPhase.VOTE
    assert get_next_day_sub_phase(DaySubPhase.VOTE) == DaySubPhase.EXECUTION
    assert get_next_day_sub_phase(DaySubPhase.VOTE, needs_runoff=True) == DaySubPhase.RUNOFF_VOTE
    assert get_next_day_sub_phase(DaySubPhase.RUNOFF_VOTE) == DaySubPhase.EXECUTION
    assert get_next_day_sub_phase(DaySubPhase.EXECUTION) is None


def test_day_flow_single_execution():
    state, bus, manager = make_game()
    state.current_round = 0
    collector = EventCollector(bus)
    driver = PhaseDriver(state, bus)

    context = driver.run_day(manager, cast({1: 5, 2: 5, 4: 5, 5: 1}))

    outcome = context["execution_outcome"]
    assert outcome.executed
    assert outcome.target_id == 5
    assert not state.get_player(5).is_alive
    assert "vote.runoff.start" not in collector.types()

    types = collector.types()
    assert types.index("vote.start") < types.index("vote.count.after") < types.index("execution.after")


def test_day_flow_tie_then_runoff():
    state, bus, manager = make_game()
    state.current_round = 0
    collector = EventCollector(bus)
    driver = PhaseDriver(state, bus)

    def collect(manager: VoteManager, sub_phase: DaySubPhase):
        if sub_phase == DaySubPhase.VOTE:
            votes = {1: 5, 2: 4, 4: 5, 5: 4}
        else:
            votes = {1: 5, 2: 5, 4: 5, 5: 4}
        for voter, target in votes.items():
            manager.register_vote(voter, target)

    context = driver.run_day(manager, collect)

    assert len(collector.of("vote.runoff.start")) == 1
    assert collector.of("vote.runoff.start")[0]["candidates"] == [5, 4]
    assert context["execution_outcome"].target_id == 5
    assert not state.get_player(5).is_alive

    summary = manager.generate_vote_summary(1)
    assert summary["types"]["execution"]["is_tie"]
    assert summary["results"]["execution_target"] == 5


def test_late_votes_rejected_after_execution():
    state, bus, manager = make_game()
    state.current_round = 0
    driver = PhaseDriver(state, bus)

    context = driver.run_day(manager, cast({1: 5, 2: 5, 4: 5, 5: 1}))
    assert context["execution_outcome"].target_id == 5
    summary = manager.generate_vote_summary(1)
    history_size = len(manager.get_vote_history(turn=1))

    for voter in (1, 2, 4, 6):
        result = manager.register_vote(voter, 2)
        assert not result.success, "处刑后不应再接受投票"
        assert result.reason == "ROUND_CLOSED"
    result = manager.change_vote(1, 2)
    assert not result.success
    assert result.reason == "ROUND_CLOSED"

    assert manager.generate_vote_summary(1) == summary, "结束后的投票不应改变本回合结果"
    assert len(manager.get_vote_history(turn=1)) == history_size
    assert manager.get_vote(1)["target_id"] == 5, "结束后的选票仍可查询"
    assert not manager.get_current_vote_status()["open"]
    with pytest.raises(NoActiveRound):
        manager.count_votes()


def test_failed_vote_start_does_not_count_previous_round():
    state, bus, manager = make_game()
    state.current_round = 0
    collector = EventCollector(bus)
    driver = PhaseDriver(state, bus)
    driver.run_day(manager, cast({1: 5, 2: 5, 4: 5, 5: 1}))

    # 第2天没有存活玩家，开启投票失败
    for pid in state.get_alive_ids():
        state.kill(pid, "wolf_kill")
    context = driver.run_day(manager, cast({1: 2}))

    outcome = context["execution_outcome"]
    assert not outcome.executed
    assert outcome.reason == "voting_not_started"
    assert len(collector.of("vote.count.after")) == 1, "不应再次统计第1天的选票"
    assert manager.get_vote_history(turn=2) == []


def test_runoff_state_follows_tally():
    policy = VotingPolicy(max_runoff_attempts=2, runoff_tie_rule="no_execution")
    state, bus, manager = make_game(policy)
    tie = cast({1: 5, 2: 4, 4: 5, 5: 4})

    manager.start_voting()
    tie(manager, DaySubPhase.VOTE)
    decision = manager.determine_execution_target(manager.count_votes())
    assert decision.needs_runoff
    assert manager.runoff.state == RunoffState.IDLE

    manager.start_runoff(decision.candidates)
    assert manager.runoff.state == RunoffState.RUNOFF_OPEN
    tie(manager, DaySubPhase.RUNOFF_VOTE)
    result = manager.finalize_runoff()
    assert result.needs_runoff
    assert manager.runoff.state == RunoffState.RUNOFF_TALLIED, "仍平票：已计票但未裁决"
    assert manager.register_vote(1, 4).reason == "ROUND_CLOSED"

    manager.start_runoff(result.max_voted)
    assert manager.runoff.state == RunoffState.RUNOFF_OPEN
    tie(manager, DaySubPhase.RUNOFF_VOTE)
    result = manager.finalize_runoff()
    assert not result.needs_runoff
    assert result.execution_target is None
    assert manager.runoff.state == RunoffState.RESOLVED
    assert manager.determine_execution_target(result).reason == "no_execution_rule"
    assert not manager.ballot_box.is_open


def test_runoff_attempts_are_bounded():
    policy = VotingPolicy(max_runoff_attempts=2, runoff_tie_rule="no_execution")
    state, bus, manager = make_game(policy)
    state.current_round = 0
    collector = EventCollector(bus)
    driver = PhaseDriver(state, bus)

    # 4号与5号每一轮都平票
    context = driver.run_day(manager, cast({1: 5, 2: 4, 4: 5, 5: 4}))

    assert len(collector.of("vote.runoff.start")) == 2, "决选不超过上限次数"
    assert not context["execution_outcome"].executed
    assert len(state.get_alive_players()) == 6
    assert collector.of("execution.none")[0]["reason"] == "no_execution_rule"


def test_runoff_tie_resolved_by_all_execution():
    policy = VotingPolicy(max_runoff_attempts=1, runoff_tie_rule="all_execution")
    state, bus, manager = make_game(policy)
    state.current_round = 0
    driver = PhaseDriver(state, bus)

    context = driver.run_day(manager, cast({1: 5, 2: 4, 4: 5, 5: 4}))

    outcome = context["execution_outcome"]
    assert outcome.count == 2
    assert state.get_alive_ids() == [1, 2, 3, 6]


def test_all_execution_rule_skips_dead_candidate():
    state, bus, manager = make_game(VotingPolicy(execution_rule="all_execution"))
    manager.start_voting()
    manager.register_vote(1, 5)
    manager.register_vote(2, 4)
    manager.register_vote(6, 2)

    decision = manager.determine_execution_target(manager.count_votes())
    assert decision.execution_target == "all"

    state.kill(4, "wolf_kill")
    outcome = manager.execute_target(decision.execution_target)
    assert outcome.count == 2
    assert [t["id"] for t in outcome.targets] == [5, 2]


def test_first_day_skip_through_phases():
    state, bus, manager = make_game(VotingPolicy(first_day_execution=False))
    state.current_round = 0
    collector = EventCollector(bus)
    driver = PhaseDriver(state, bus)
    collected = []

    context = driver.run_day(manager, lambda m, p: collected.append(p))

    assert collected == [], "首日不开启投票"
    assert not context["execution_outcome"].executed
    assert "vote.start" not in collector.types()
    assert context["execution_outcome"].reason == "first_day_no_execution"
    assert collector.of("execution.none")[0]["reason"] == "first_day_no_execution"


def test_random_rule_executes_one_of_tied():
    state, bus, manager = make_game(VotingPolicy(execution_rule="random"))
    state.current_round = 0
    driver = PhaseDriver(state, bus)

    context = driver.run_day(manager, cast({1: 5, 2: 4}))

    assert context["execution_outcome"].target_id in (4, 5)
    assert len(state.get_alive_players()) == 5


# ========== 查询 ==========

def test_vote_status_and_visibility():
    state, bus, manager = make_game()
    manager.start_voting()
    manager.register_vote(1, 5)
    manager.register_vote(3, 5)

    status = manager.get_current_vote_status()
    assert status["type"] == "execution"
    assert status["open"]
    assert status["total_voters"] == 6
    assert status["votes_submitted"] == 2
    assert not status["complete"]
    assert len(status["votes"]) == 2

    player_status = manager.get_current_vote_status(viewer_id=1)
    assert player_status["own_vote"]["target_id"] == 5
    assert "votes" not in player_status

    assert [v["voter_id"] for v in manager.get_visible_votes(viewer_id=1)] == [1]
    assert manager.get_visible_vote_counts() == {5: 3}

    manager.configure_vote_visibility(show_vote_count=False)
    assert manager.get_visible_vote_counts(viewer_id=1) == {}
    assert not manager.is_voting_complete()


def test_vote_history_queries():
    state, bus, manager = make_game()
    manager.start_voting()
    manager.register_vote(1, 5)
    manager.register_vote(2, 5)
    manager.change_vote(2, 4)

    assert len(manager.get_vote_history(turn=1)) == 3
    assert len(manager.get_vote_history(vote_type="runoff")) == 0
    assert [e["voter_id"] for e in manager.get_player_target_history(5)] == [1, 2]


def test_runoff_attempt_configuration():
    state, bus, manager = make_game()
    manager.set_max_runoff_attempts(1)
    assert manager.runoff.max_attempts == 1

    manager.start_runoff([4, 5])
    assert manager.runoff.attempt == 1
    manager.reset_runoff_attempts()
    assert manager.runoff.attempt == 0


def test_detach_stops_phase_handling():
    state, bus, manager = make_game()
    manager.detach()
    bus.emit("phase.start.vote")
    assert not manager.ballot_box.is_open


def test_death_during_round_is_recorded():
    state, bus, manager = make_game()
    manager.start_voting()
    manager.register_vote(1, 5)

    state.kill(1, "wolf_kill")
    entries = manager.get_player_vote_history(1)
    assert len(entries) == 2
    assert entries[0] == entries[1]

    state.kill(2, "wolf_kill")
    assert manager.get_player_vote_history(2) == []
