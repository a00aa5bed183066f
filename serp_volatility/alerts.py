"""アラートイベント生成モジュール（T1〜T3）.

  T1 レジーム遷移: 直近ペアのレジームが 1 つ前のペアと異なる（3 スナップショット以上）
  T2 スパイク:     ペアスコアが spike_threshold を超えた全ペア
  T3 リスク集中:   集中率が concentration_threshold を超えた（リクエストごとに最大 1 件）

並び順:
  1. 重大度 降順
  2. 最新時刻 降順（T3 は期間内の最新 captured_at）
  3. trigger_type 昇順
  4. keyword_target_id 昇順（None は末尾）
  5. to_snapshot_id 降順（None は末尾）

重大度などのソート用の値はアラート本体に持たせず、出力には含めない。
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import NamedTuple, Sequence

from serp_volatility.aggregator import (
    KeywordScore,
    concentration_ratio,
    group_snapshots,
    rank_risk_records,
)
from serp_volatility.config import (
    ALERTS_LIMIT_DEFAULT,
    CONCENTRATION_THRESHOLD_DEFAULT,
    SEVERITY_CONCENTRATION,
    SEVERITY_RECOVERY,
    SEVERITY_SPIKE,
    SPIKE_THRESHOLD_DEFAULT,
    TOP_RISK_KEYWORDS,
)
from serp_volatility.models import (
    Alert,
    AlertReport,
    ConcentrationAlert,
    ConcentrationRiskKeyword,
    KeywordTarget,
    RegimeTransitionAlert,
    Snapshot,
    SpikeAlert,
)
from serp_volatility.scorer import (
    classify_regime,
    compute_volatility,
    regime_rank,
    round_half_up,
    score_pairs,
)

logger = logging.getLogger(__name__)


class RankedAlert(NamedTuple):
    """ソート専用の値とアラート本体の組."""

    alert: Alert
    severity_rank: int
    latest_at: datetime | None
    keyword_target_id: str | None
    to_snapshot_id: str | None


def transition_severity(from_regime: str, to_regime: str) -> int:
    """T1 の重大度. 回復（悪化しない遷移）は一律で最低ランク."""
    source = regime_rank(from_regime)
    dest = regime_rank(to_regime)
    if source >= dest:
        return SEVERITY_RECOVERY

    jump = dest - source
    if to_regime == "chaotic":
        # calm/shifting → chaotic = 5, unstable → chaotic = 4
        return 5 if jump >= 2 else 4
    if to_regime == "unstable":
        # calm → unstable = 4, shifting → unstable = 3
        return 4 if jump == 2 else 3
    return 2


def compare_alerts(a: RankedAlert, b: RankedAlert) -> int:
    if a.severity_rank != b.severity_rank:
        return b.severity_rank - a.severity_rank

    if a.latest_at != b.latest_at:
        if a.latest_at is None:
            return 1
        if b.latest_at is None:
            return -1
        return -1 if a.latest_at > b.latest_at else 1

    if a.alert.trigger_type != b.alert.trigger_type:
        return -1 if a.alert.trigger_type < b.alert.trigger_type else 1

    if a.keyword_target_id != b.keyword_target_id:
        if a.keyword_target_id is None:
            return 1
        if b.keyword_target_id is None:
            return -1
        return -1 if a.keyword_target_id < b.keyword_target_id else 1

    if a.to_snapshot_id != b.to_snapshot_id:
        if a.to_snapshot_id is None:
            return 1
        if b.to_snapshot_id is None:
            return -1
        return -1 if a.to_snapshot_id > b.to_snapshot_id else 1
    return 0


def build_alerts(
    project_id: str,
    targets: Sequence[KeywordTarget],
    snapshots: Sequence[Snapshot],
    computed_at: datetime,
    window_days: int,
    spike_threshold: float = SPIKE_THRESHOLD_DEFAULT,
    concentration_threshold: float = CONCENTRATION_THRESHOLD_DEFAULT,
    limit: int = ALERTS_LIMIT_DEFAULT,
) -> AlertReport:
    """読み込んだスナップショットからアラートを導出し、並べて limit 件返す."""
    groups = group_snapshots(snapshots)
    latest_at = max((s.captured_at for s in snapshots), default=None)

    ranked: list[RankedAlert] = []
    spike_keys: set[tuple[str, str, float]] = set()
    active: list[KeywordScore] = []
    seen_targets: set[str] = set()

    for target in targets:
        if target.id in seen_targets:
            continue
        seen_targets.add(target.id)
        snaps = groups.get(target.natural_key, [])
        if len(snaps) < 2:
            continue

        pairs = score_pairs(snaps)
        profile = compute_volatility(snaps)
        if profile.sample_size >= 1:
            active.append(KeywordScore(target=target, profile=profile))

        # T1: 直近ペアと 1 つ前のペアのレジーム比較
        if len(pairs) >= 2:
            prev, last = pairs[-2], pairs[-1]
            if prev.regime != last.regime:
                ranked.append(RankedAlert(
                    alert=RegimeTransitionAlert(
                        keyword_target_id=target.id,
                        query=target.query,
                        from_regime=prev.regime,
                        to_regime=last.regime,
                        from_snapshot_id=last.from_snapshot_id,
                        to_snapshot_id=last.to_snapshot_id,
                        from_captured_at=last.from_captured_at,
                        to_captured_at=last.to_captured_at,
                        pair_volatility_score=last.pair_volatility_score,
                    ),
                    severity_rank=transition_severity(prev.regime, last.regime),
                    latest_at=last.to_captured_at,
                    keyword_target_id=target.id,
                    to_snapshot_id=last.to_snapshot_id,
                ))

        # T2: 閾値超えペア. (keyword, to_snapshot, threshold) で重複排除
        for pair in pairs:
            if pair.pair_volatility_score <= spike_threshold:
                continue
            key = (target.id, pair.to_snapshot_id, spike_threshold)
            if key in spike_keys:
                continue
            spike_keys.add(key)
            ranked.append(RankedAlert(
                alert=SpikeAlert(
                    keyword_target_id=target.id,
                    query=target.query,
                    from_snapshot_id=pair.from_snapshot_id,
                    to_snapshot_id=pair.to_snapshot_id,
                    from_captured_at=pair.from_captured_at,
                    to_captured_at=pair.to_captured_at,
                    pair_volatility_score=pair.pair_volatility_score,
                    threshold=spike_threshold,
                    exceedance_margin=round_half_up(pair.pair_volatility_score - spike_threshold, 2),
                ),
                severity_rank=SEVERITY_SPIKE,
                latest_at=pair.to_captured_at,
                keyword_target_id=target.id,
                to_snapshot_id=pair.to_snapshot_id,
            ))

    # T3: リスク集中（比率が None のときは出さない）
    ratio = concentration_ratio(active)
    if ratio is not None and ratio > concentration_threshold:
        top = rank_risk_records(active)[:TOP_RISK_KEYWORDS]
        ranked.append(RankedAlert(
            alert=ConcentrationAlert(
                project_id=project_id,
                volatility_concentration_ratio=ratio,
                threshold=concentration_threshold,
                top3_risk_keywords=tuple(
                    ConcentrationRiskKeyword(
                        keyword_target_id=r.target.id,
                        query=r.target.query,
                        volatility_score=r.profile.volatility_score,
                        volatility_regime=classify_regime(r.profile.volatility_score),
                    )
                    for r in top
                ),
                active_keyword_count=len(active),
            ),
            severity_rank=SEVERITY_CONCENTRATION,
            latest_at=latest_at,
            keyword_target_id=None,
            to_snapshot_id=None,
        ))

    ranked.sort(key=functools.cmp_to_key(compare_alerts))
    page = tuple(r.alert for r in ranked[:limit])

    logger.info(
        "アラート生成: 合計 %d 件 (T1=%d, T2=%d, T3=%d), 返却 %d 件",
        len(ranked),
        sum(1 for r in ranked if r.alert.trigger_type == "T1"),
        sum(1 for r in ranked if r.alert.trigger_type == "T2"),
        sum(1 for r in ranked if r.alert.trigger_type == "T3"),
        len(page),
    )
    return AlertReport(
        alerts=page,
        alert_count=len(page),
        total_alerts=len(ranked),
        window_days=window_days,
        spike_threshold=spike_threshold,
        concentration_threshold=concentration_threshold,
        limit=limit,
        computed_at=computed_at,
    )
