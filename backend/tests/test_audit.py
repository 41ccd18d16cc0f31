"""
投票历史测试。

测试项：
  - 追加记录与多维索引
  - 改票保留两条记录
  - 回合汇总（每人取最新一张，决选优先）
  - JSON 落盘与加载
"""

import os
import shutil
import sys
import tempfile
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from models.vote_models import Ballot, VoteType
from systems.audit import AuditLog


def record(log: AuditLog, voter_id: int, target_id: int, vote_type="execution", turn=1, timestamp=None, weight=1):
    return log.record(Ballot.create(voter_id, target_id, vote_type, weight=weight, turn=turn, timestamp=timestamp))


# ========== 记录与查询 ==========

def test_record_and_indexes():
    log = AuditLog()
    record(log, 1, 3)
    record(log, 2, 3)
    record(log, 1, 4, vote_type="runoff")
    record(log, 1, 2, turn=2)

    assert len(log) == 4
    assert len(log.query_by_turn(1)) == 3
    assert len(log.query_by_turn(1, VoteType.RUNOFF)) == 1
    assert len(log.query_by_turn(1, "execution")) == 2
    assert [e["target_id"] for e in log.query_by_voter(1)] == [3, 4, 2]
    assert [e["voter_id"] for e in log.query_by_target(3)] == [1, 2]
    assert log.query_by_turn(9) == []


def test_history_filters_preserve_call_order():
    log = AuditLog()
    record(log, 2, 3)
    record(log, 1, 3)
    record(log, 2, 1, vote_type="runoff")

    assert [e["voter_id"] for e in log.history()] == [2, 1, 2]
    assert [e["voter_id"] for e in log.history(turn=1, vote_type="execution")] == [2, 1]


def test_queries_return_copies():
    log = AuditLog()
    record(log, 1, 3)
    log.history()[0]["target_id"] = 99
    log.query_by_voter(1)[0]["target_id"] = 99
    assert log.history()[0]["target_id"] == 3


def test_change_keeps_both_entries():
    log = AuditLog()
    ballot = Ballot.create(1, 3, VoteType.EXECUTION)
    log.record(ballot)
    ballot.change_target(4)
    log.record(ballot)

    entries = log.query_by_voter(1)
    assert [e["target_id"] for e in entries] == [3, 4]
    assert entries[1]["timestamp"] > entries[0]["timestamp"]


# ========== 汇总 ==========

def test_summarize_uses_latest_ballot_per_voter():
    log = AuditLog()
    record(log, 1, 3, timestamp=10)
    record(log, 2, 3, timestamp=11)
    record(log, 1, 4, timestamp=12)
    record(log, 3, 4, timestamp=13, weight=2)

    summary = log.summarize(1)
    execution = summary["types"]["execution"]
    assert execution["votes"] == 3
    assert execution["counts"] == {3: 1, 4: 3}
    assert execution["max_voted"] == [4]
    assert summary["results"]["execution_target"] == 4
    assert not summary["results"]["is_tie"]


def test_summarize_prefers_runoff_results():
    log = AuditLog()
    record(log, 1, 3)
    record(log, 2, 4)
    record(log, 1, 4, vote_type="runoff")
    record(log, 2, 4, vote_type="runoff")

    summary = log.summarize(1)
    assert summary["types"]["execution"]["is_tie"]
    assert summary["results"]["execution_target"] == 4
    assert summary["results"]["counts"] == {4: 2}


def test_summarize_tie_has_no_target():
    log = AuditLog()
    record(log, 1, 3)
    record(log, 2, 4)
    summary = log.summarize(1)
    assert summary["results"]["is_tie"]
    assert summary["results"]["execution_target"] is None


def test_summarize_empty_turn():
    summary = AuditLog().summarize(5)
    assert summary == {"turn": 5, "types": {}, "results": {}}


# ========== 落盘 ==========

def test_save_and_load():
    temp_dir = tempfile.mkdtemp(prefix="werewolf_audit_")
    try:
        settings = Settings(game_data_dir=temp_dir)
        with patch("systems.audit.get_settings", lambda: settings):
            log = AuditLog()
            record(log, 1, 3)
            record(log, 2, 3, weight=2)
            path = log.save("g1")
            assert os.path.exists(path)
            assert path.endswith(os.path.join("game_g1", "vote_history.json"))

            loaded = AuditLog.load("g1")
            assert loaded is not None
            assert loaded.history() == log.history()
            assert loaded.summarize(1)["results"]["counts"] == {3: 3}

            assert AuditLog.load("missing") is None
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def test_from_dict_rebuilds_indexes():
    log = AuditLog()
    record(log, 1, 3)
    record(log, 2, 4, vote_type="runoff")

    copy = AuditLog.from_dict(log.to_dict())
    assert len(copy) == 2
    assert len(copy.query_by_turn(1, "runoff")) == 1
    assert copy.query_by_target(3)[0]["voter_id"] == 1
