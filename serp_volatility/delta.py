"""スナップショット間の差分計算モジュール.

- compute_pair_delta: スコア計算用の順位変動・SERP 機能変化・AI Overview 反転
- compare_snapshots: URL 単位の上昇/下落/新規/圏外レポート
- feature_transitions: 連続ペアごとの SERP 機能セット遷移の集計
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Sequence

from serp_volatility.extraction import (
    extract_feature_sorted,
    extract_feature_types,
    extract_organic_results,
)
from serp_volatility.models import (
    ExtractedResult,
    FeatureTransition,
    MovedEntry,
    PairwiseDelta,
    RankedEntry,
    SerpDelta,
    Snapshot,
)


@dataclass(frozen=True)
class Observation:
    """スナップショット 1 件から抽出した、差分計算に必要な情報."""

    ranks: dict  # url -> rank | None
    features: frozenset
    ai_overview_status: str


def observe(snapshot: Snapshot) -> Observation:
    extraction = extract_organic_results(snapshot.raw_payload)
    return Observation(
        ranks={r.url: r.rank for r in extraction.results},
        features=extract_feature_types(snapshot.raw_payload),
        ai_overview_status=snapshot.ai_overview_status,
    )


def compute_pair_delta(from_snapshot: Snapshot, to_snapshot: Snapshot) -> PairwiseDelta:
    """時系列順の 2 スナップショットから差分を計算する."""
    return delta_between(observe(from_snapshot), observe(to_snapshot))


def delta_between(before: Observation, after: Observation) -> PairwiseDelta:
    # 両方に存在し、両方で順位が取れている URL のみ
    shifts = [
        abs(rank - after.ranks[url])
        for url, rank in before.ranks.items()
        if url in after.ranks and rank is not None and after.ranks[url] is not None
    ]
    return PairwiseDelta(
        average_rank_shift=sum(shifts) / len(shifts) if shifts else 0,
        max_rank_shift=max(shifts) if shifts else 0,
        feature_change_count=len(before.features ^ after.features),
        ai_overview_flipped=before.ai_overview_status != after.ai_overview_status,
    )


def compare_snapshots(from_snapshot: Snapshot, to_snapshot: Snapshot) -> SerpDelta:
    """2 スナップショット間の URL 単位の差分レポートを作る."""
    from_extraction = extract_organic_results(from_snapshot.raw_payload)
    to_extraction = extract_organic_results(to_snapshot.raw_payload)

    from_map = {r.url: r for r in from_extraction.results}
    to_map = {r.url: r for r in to_extraction.results}

    entered = sorted(
        (_ranked(r) for url, r in to_map.items() if url not in from_map),
        key=_rank_order,
    )
    exited = sorted(
        (_ranked(r) for url, r in from_map.items() if url not in to_map),
        key=_rank_order,
    )

    moved = []
    for url, before in from_map.items():
        after = to_map.get(url)
        if after is None:
            continue
        rank_delta = (
            before.rank - after.rank
            if before.rank is not None and after.rank is not None
            else None
        )
        moved.append(MovedEntry(
            url=url,
            domain=after.domain if after.domain is not None else before.domain,
            rank_from=before.rank,
            rank_to=after.rank,
            rank_delta=rank_delta,
            title_to=after.title,
        ))
    # 上昇幅の大きい順、delta 不明は末尾
    moved.sort(key=lambda m: (m.rank_delta is None, -(m.rank_delta or 0), m.url))

    return SerpDelta(
        from_snapshot_id=from_snapshot.id,
        to_snapshot_id=to_snapshot.id,
        moved=tuple(moved),
        entered=tuple(entered),
        exited=tuple(exited),
        moved_count=len(moved),
        entered_count=len(entered),
        exited_count=len(exited),
        improved_count=sum(1 for m in moved if m.rank_delta is not None and m.rank_delta > 0),
        declined_count=sum(1 for m in moved if m.rank_delta is not None and m.rank_delta < 0),
        unchanged_count=sum(1 for m in moved if m.rank_delta == 0),
        parse_warning=from_extraction.parse_warning or to_extraction.parse_warning,
        same_timestamp=from_snapshot.captured_at == to_snapshot.captured_at,
    )


def feature_transitions(snapshots: Sequence[Snapshot]) -> list[FeatureTransition]:
    """連続ペアごとの SERP 機能セット遷移を集計する.

    count の合計は常にペア数と一致する。
    並び順: count 降順 → 遷移元キー昇順 → 遷移先キー昇順
    """
    feature_sets = [tuple(extract_feature_sorted(s.raw_payload)) for s in snapshots]
    counts: Counter = Counter()
    for before, after in zip(feature_sets, feature_sets[1:]):
        counts[(before, after)] += 1

    ordered = sorted(
        counts.items(),
        key=lambda kv: (-kv[1], ",".join(kv[0][0]), ",".join(kv[0][1])),
    )
    return [
        FeatureTransition(from_feature_set=before, to_feature_set=after, count=count)
        for (before, after), count in ordered
    ]


def _ranked(r: ExtractedResult) -> RankedEntry:
    return RankedEntry(url=r.url, domain=r.domain, rank=r.rank, title=r.title)


def _rank_order(entry: RankedEntry) -> tuple[bool, float, str]:
    rank: float | None = entry.rank
    return (rank is None, rank if rank is not None else 0, entry.url)
