"""プロジェクト単位のボラティリティ集計モジュール.

バケット定義:
  stable:  score < 1  （スナップショット不足のキーワードも含む）
  low:     1 <= score < 30
  medium:  30 <= score < 60
  high:    score >= 60

average_volatility は score 0 のキーワードも含めた全キーワードの平均。
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Sequence

from serp_volatility.config import (
    ALERT_THRESHOLD_DEFAULT,
    HIGH_VOLATILITY_THRESHOLD,
    LOW_VOLATILITY_THRESHOLD,
    MEDIUM_VOLATILITY_THRESHOLD,
    TOP_RISK_KEYWORDS,
)
from serp_volatility.models import (
    KeywordTarget,
    ProjectSummary,
    RiskKeyword,
    Snapshot,
    VolatilityProfile,
)
from serp_volatility.scorer import (
    classify_maturity,
    classify_regime,
    compute_volatility,
    round_half_up,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeywordScore:
    """キーワード 1 件の計算結果."""

    target: KeywordTarget
    profile: VolatilityProfile

    @property
    def is_active(self) -> bool:
        return self.profile.sample_size >= 1


def group_snapshots(snapshots: Iterable[Snapshot]) -> dict[tuple[str, str, str], list[Snapshot]]:
    """スナップショットを (query, locale, device) ごとにまとめる（1 パス）."""
    groups: dict[tuple[str, str, str], list[Snapshot]] = defaultdict(list)
    for snap in snapshots:
        groups[snap.natural_key].append(snap)
    for key in groups:
        groups[key].sort(key=lambda s: s.sort_key)
    return dict(groups)


def score_keywords(
    targets: Sequence[KeywordTarget], snapshots: Iterable[Snapshot]
) -> list[KeywordScore]:
    """全キーワードのプロファイルを計算する."""
    groups = group_snapshots(snapshots)
    return [
        KeywordScore(target=t, profile=compute_volatility(groups.get(t.natural_key, [])))
        for t in targets
    ]


def rank_risk_records(records: Iterable[KeywordScore]) -> list[KeywordScore]:
    """score 降順 → query 昇順 → id 昇順で並べる."""
    return sorted(
        records,
        key=lambda r: (-r.profile.volatility_score, r.target.query, r.target.id),
    )


def concentration_ratio(active: Sequence[KeywordScore]) -> float | None:
    """上位 3 件のスコア合計 ÷ アクティブ全件のスコア合計.

    分母が 0 の場合は None。
    """
    total = sum(r.profile.volatility_score for r in active)
    if total <= 0:
        return None
    top = rank_risk_records(active)[:TOP_RISK_KEYWORDS]
    top_sum = sum(r.profile.volatility_score for r in top)
    return round_half_up(top_sum / total, 4)


def summarize_project(
    targets: Sequence[KeywordTarget],
    snapshots: Iterable[Snapshot],
    alert_threshold: int = ALERT_THRESHOLD_DEFAULT,
) -> ProjectSummary:
    """プロジェクト全体のボラティリティ集計を作る."""
    scores = score_keywords(targets, snapshots)
    keyword_count = len(scores)

    buckets = {"high": 0, "medium": 0, "low": 0, "stable": 0}
    maturities = {"preliminary": 0, "developing": 0, "stable": 0}
    for r in scores:
        buckets[_volatility_bucket(r.profile.volatility_score)] += 1
        maturities[classify_maturity(r.profile.sample_size)] += 1

    if sum(buckets.values()) != keyword_count or sum(maturities.values()) != keyword_count:
        raise AssertionError(
            f"バケット合計が keyword_count と一致しません: {buckets}, {maturities}, {keyword_count}"
        )

    active = [r for r in scores if r.is_active]
    score_sum = sum(r.profile.volatility_score for r in scores)
    sample_sum = sum(r.profile.sample_size for r in active)
    weighted = (
        round_half_up(
            sum(r.profile.volatility_score * r.profile.sample_size for r in active) / sample_sum, 2
        )
        if sample_sum > 0
        else 0
    )

    top = rank_risk_records(active)[:TOP_RISK_KEYWORDS]
    summary = ProjectSummary(
        keyword_count=keyword_count,
        active_keyword_count=len(active),
        average_volatility=round_half_up(score_sum / keyword_count, 2) if keyword_count else 0,
        max_volatility=max((r.profile.volatility_score for r in scores), default=0),
        high_volatility_count=buckets["high"],
        medium_volatility_count=buckets["medium"],
        low_volatility_count=buckets["low"],
        stable_count=buckets["stable"],
        preliminary_count=maturities["preliminary"],
        developing_count=maturities["developing"],
        mature_count=maturities["stable"],
        weighted_project_volatility_score=weighted,
        volatility_concentration_ratio=concentration_ratio(active),
        top3_risk_keywords=tuple(_risk_keyword(r, alert_threshold) for r in top),
        alert_threshold=alert_threshold,
    )
    logger.info(
        "集計完了: keywords=%d, active=%d, average=%.2f, weighted=%.2f",
        summary.keyword_count, summary.active_keyword_count,
        summary.average_volatility, summary.weighted_project_volatility_score,
    )
    return summary


def exceeds_alert_threshold(profile: VolatilityProfile, alert_threshold: float) -> bool:
    # サンプルなしは閾値に関係なく False
    return profile.sample_size > 0 and profile.volatility_score >= alert_threshold


def _volatility_bucket(score: float) -> str:
    if score >= HIGH_VOLATILITY_THRESHOLD:
        return "high"
    if score >= MEDIUM_VOLATILITY_THRESHOLD:
        return "medium"
    if score >= LOW_VOLATILITY_THRESHOLD:
        return "low"
    return "stable"


def _risk_keyword(record: KeywordScore, alert_threshold: int) -> RiskKeyword:
    profile = record.profile
    return RiskKeyword(
        keyword_target_id=record.target.id,
        query=record.target.query,
        locale=record.target.locale,
        device=record.target.device,
        volatility_score=profile.volatility_score,
        sample_size=profile.sample_size,
        volatility_regime=classify_regime(profile.volatility_score),
        maturity=classify_maturity(profile.sample_size),
        exceeds_alert_threshold=exceeds_alert_threshold(profile, alert_threshold),
    )
