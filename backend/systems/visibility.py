"""投票信息可见性 — 按观察者视角过滤当前投票状况"""

from __future__ import annotations

from typing import Any, Optional

from systems.tally import count_votes


DEFAULT_SETTINGS = {
    "show_voter_names": True,     # 显示投票者
    "show_vote_count": True,      # 显示得票数
    "show_real_time_votes": False,  # 投票过程中实时公开
    "anonymous_until_end": False,   # 投票结束前隐藏投票者
}


class VoteVisibility:
    """viewer_id 为 None 表示法官（上帝）视角，可见全部信息"""

    def __init__(self):
        self._settings = dict(DEFAULT_SETTINGS)

    def configure(self, **options: bool) -> dict[str, bool]:
        unknown = set(options) - set(DEFAULT_SETTINGS)
        if unknown:
            raise ValueError(f"未知的可见性设置: {sorted(unknown)}")
        self._settings.update(options)
        return dict(self._settings)

    @property
    def settings(self) -> dict[str, bool]:
        return dict(self._settings)

    def visible_votes(
        self,
        ballots: list[Any],
        viewer_id: Optional[int] = None,
        is_complete: bool = False,
    ) -> list[dict[str, Any]]:
        records = [_to_record(b) for b in ballots]

        if viewer_id is None or self._settings["show_real_time_votes"]:
            hide_voter = (
                (self._settings["anonymous_until_end"] and not is_complete)
                or (viewer_id is not None and not self._settings["show_voter_names"])
            )
            if hide_voter:
                return [{**r, "voter_id": None} for r in records]
            return records

        # 玩家只能看到自己的选票
        return [r for r in records if r["voter_id"] == viewer_id]

    def visible_counts(self, counts: dict[int, int], viewer_id: Optional[int] = None) -> dict[int, int]:
        if viewer_id is not None and not self._settings["show_vote_count"]:
            return {}
        return dict(counts)

    def visible_status(
        self,
        status: dict[str, Any],
        ballots: list[Any],
        viewer_id: Optional[int] = None,
    ) -> dict[str, Any]:
        visible = dict(status)
        records = [_to_record(b) for b in ballots]

        if viewer_id is None:
            visible["votes"] = records
            return visible

        visible.pop("votes", None)
        own = next((r for r in records if r["voter_id"] == viewer_id), None)
        if own:
            visible["own_vote"] = own

        if self._settings["show_real_time_votes"]:
            if self._settings["anonymous_until_end"] and not status.get("complete"):
                # 匿名阶段只公开得票数
                visible["counts"] = self.visible_counts(count_votes(ballots).counts, viewer_id)
            else:
                visible["votes"] = self.visible_votes(ballots, viewer_id, status.get("complete", False))

        return visible


def _to_record(ballot: Any) -> dict[str, Any]:
    if isinstance(ballot, dict):
        return dict(ballot)
    return ballot.to_record()
