"""キーワード単位のレポート（スパイク・URL 別寄与）."""

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from serp_volatility.config import BREAKDOWN_TOP_N_DEFAULT, SPIKES_TOP_N_DEFAULT
from serp_volatility.extraction import extract_organic_results
from serp_volatility.models import Snapshot, Spike, UrlContribution
from serp_volatility.scorer import round_half_up, score_pairs


def volatility_spikes(snapshots: Sequence[Snapshot], top_n: int = SPIKES_TOP_N_DEFAULT) -> list[Spike]:
    """ペアスコアの高い連続ペアを上位 top_n 件返す.

    並び順: pair_volatility_score 降順 → to_captured_at 降順 → to_snapshot_id 降順
    sample_size >= 1 なら必ず 1 件以上返る。
    """
    spikes = [
        Spike(
            from_snapshot_id=p.from_snapshot_id,
            to_snapshot_id=p.to_snapshot_id,
            from_captured_at=p.from_captured_at,
            to_captured_at=p.to_captured_at,
            pair_volatility_score=p.pair_volatility_score,
            pair_rank_shift=p.profile.average_rank_shift,
            pair_max_shift=p.profile.max_rank_shift,
            pair_feature_change_count=p.profile.feature_volatility,
            ai_flipped=p.profile.ai_overview_churn == 1,
        )
        for p in score_pairs(snapshots)
    ]
    spikes.sort(
        key=lambda s: (s.pair_volatility_score, s.to_captured_at, s.to_snapshot_id),
        reverse=True,
    )
    return spikes[:top_n]


class _UrlStats:
    def __init__(self, url: str, first_seen: datetime, last_seen: datetime):
        self.url = url
        self.appearances = 0
        self.total_abs_shift = 0.0
        self.pairs_both_present = 0
        self.first_seen = first_seen
        self.last_seen = last_seen


def volatility_breakdown(
    snapshots: Sequence[Snapshot], top_n: int = BREAKDOWN_TOP_N_DEFAULT
) -> tuple[int, list[UrlContribution]]:
    """順位変動に寄与した URL を集計する.

    appearances は片方にしか順位がないペア（新規・圏外）も数える。
    total_abs_shift は両方に順位があるペアのみ加算する。

    Returns:
        (全 URL 数, total_abs_shift 降順 → url 昇順の上位 top_n 件)
    """
    rank_maps = [
        {r.url: r.rank for r in extract_organic_results(s.raw_payload).results}
        for s in snapshots
    ]
    stats: dict[str, _UrlStats] = {}

    for i in range(len(snapshots) - 1):
        before, after = snapshots[i], snapshots[i + 1]
        from_map, to_map = rank_maps[i], rank_maps[i + 1]

        for url in set(from_map) | set(to_map):
            from_rank = from_map.get(url)
            to_rank = to_map.get(url)
            in_from = from_rank is not None
            in_to = to_rank is not None
            if not in_from and not in_to:
                continue

            s = stats.get(url)
            if s is None:
                s = _UrlStats(
                    url,
                    first_seen=before.captured_at if in_from else after.captured_at,
                    last_seen=after.captured_at if in_to else before.captured_at,
                )
                stats[url] = s

            s.appearances += 1
            for seen, at in ((in_from, before.captured_at), (in_to, after.captured_at)):
                if seen:
                    s.first_seen = min(s.first_seen, at)
                    s.last_seen = max(s.last_seen, at)

            if in_from and in_to:
                s.total_abs_shift += abs(from_rank - to_rank)
                s.pairs_both_present += 1

    contributions = [
        UrlContribution(
            url=s.url,
            appearances=s.appearances,
            total_abs_shift=round_half_up(s.total_abs_shift, 2),
            average_shift=(
                round_half_up(s.total_abs_shift / s.pairs_both_present, 2)
                if s.pairs_both_present
                else 0
            ),
            first_seen=s.first_seen,
            last_seen=s.last_seen,
        )
        for s in stats.values()
    ]
    contributions.sort(key=lambda c: (-c.total_abs_shift, c.url))
    return len(contributions), contributions[:top_n]
