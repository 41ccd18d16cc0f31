"""投票历史 — 只追加的审计记录与回合汇总"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from typing import Any, Optional

from config import get_settings
from models.vote_models import Ballot, VoteType
from systems.tally import count_votes

logger = logging.getLogger(__name__)


class AuditLog:
    """
    投票审计日志。

    每次登记或改票都追加一条新记录（改票不覆盖旧记录），
    同时按回合/类型、投票者、被投票者建立索引。记录按调用顺序排列。
    """

    def __init__(self):
        self._log: list[dict[str, Any]] = []
        self._by_turn: dict[int, dict[str, list[dict[str, Any]]]] = {}
        self._by_voter: dict[int, list[dict[str, Any]]] = {}
        self._by_target: dict[int, list[dict[str, Any]]] = {}

    def __len__(self) -> int:
        return len(self._log)

    def record(self, ballot: Ballot | Mapping[str, Any]) -> dict[str, Any]:
        """记录选票当前状态的快照"""
        entry = ballot.to_record() if isinstance(ballot, Ballot) else dict(ballot)
        vote_type = entry["vote_type"]
        if isinstance(vote_type, VoteType):
            entry["vote_type"] = vote_type.value

        self._log.append(entry)
        self._by_turn.setdefault(entry["turn"], {}).setdefault(entry["vote_type"], []).append(entry)
        self._by_voter.setdefault(entry["voter_id"], []).append(entry)
        self._by_target.setdefault(entry["target_id"], []).append(entry)
        return dict(entry)

    # --- 查询（返回副本） ---

    def query_by_turn(self, turn: int, vote_type: VoteType | str | None = None) -> list[dict[str, Any]]:
        buckets = self._by_turn.get(turn, {})
        if vote_type is not None:
            return _copy(buckets.get(VoteType(vote_type).value, []))
        entries = []
        for items in buckets.values():
            entries.extend(items)
        return _copy(entries)

    def query_by_voter(self, voter_id: int) -> list[dict[str, Any]]:
        return _copy(self._by_voter.get(voter_id, []))

    def query_by_target(self, target_id: int) -> list[dict[str, Any]]:
        return _copy(self._by_target.get(target_id, []))

    def history(self, turn: Optional[int] = None, vote_type: VoteType | str | None = None) -> list[dict[str, Any]]:
        """按调用顺序返回全部记录，可按回合、类型筛选"""
        type_value = VoteType(vote_type).value if vote_type is not None else None
        return _copy([
            e for e in self._log
            if (turn is None or e["turn"] == turn)
            and (type_value is None or e["vote_type"] == type_value)
        ])

    # --- 汇总 ---

    def summarize(self, turn: int) -> dict[str, Any]:
        """
        生成回合投票汇总。

        同一类型内每名投票者只取最新一张（时间戳最大）后计票；
        results 以决选结果为准，没有决选时使用普通放逐投票结果。
        """
        summary: dict[str, Any] = {"turn": turn, "types": {}, "results": {}}

        latest_by_type: dict[str, dict[int, dict[str, Any]]] = {}
        for entry in self._log:
            if entry["turn"] != turn:
                continue
            latest = latest_by_type.setdefault(entry["vote_type"], {})
            existing = latest.get(entry["voter_id"])
            # 时间戳相同时后记录的为准
            if existing is None or entry["timestamp"] >= existing["timestamp"]:
                latest[entry["voter_id"]] = entry

        for vote_type, latest in latest_by_type.items():
            tally = count_votes(latest.values())
            summary["types"][vote_type] = {
                "votes": len(latest),
                "counts": tally.counts,
                "max_count": tally.max_count,
                "max_voted": tally.max_voted,
                "is_tie": tally.is_tie,
            }

        final = summary["types"].get(VoteType.RUNOFF.value) or summary["types"].get(VoteType.EXECUTION.value)
        if final:
            summary["results"] = {
                "execution_target": None if final["is_tie"] else final["max_voted"][0],
                "is_tie": final["is_tie"],
                "counts": final["counts"],
            }
        return summary

    # --- 持久化 ---

    def to_dict(self) -> dict[str, Any]:
        return {"entries": _copy(self._log)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> AuditLog:
        log = cls()
        for entry in data.get("entries", []):
            log.record(entry)
        return log

    @staticmethod
    def _get_log_path(game_id: str) -> str:
        settings = get_settings()
        game_dir = os.path.join(settings.game_data_dir, f"game_{game_id}")
        os.makedirs(game_dir, exist_ok=True)
        return os.path.join(game_dir, "vote_history.json")

    def save(self, game_id: str) -> str:
        """保存投票历史到 JSON 文件，返回文件路径"""
        path = self._get_log_path(game_id)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)
        logger.info(f"投票历史已保存: {path} ({len(self._log)} 条)")
        return path

    @classmethod
    def load(cls, game_id: str) -> Optional[AuditLog]:
        """从 JSON 文件加载投票历史，文件不存在时返回 None"""
        settings = get_settings()
        path = os.path.join(settings.game_data_dir, f"game_{game_id}", "vote_history.json")
        if not os.path.exists(path):
            return None
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)


def _copy(entries: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [dict(e) for e in entries]
