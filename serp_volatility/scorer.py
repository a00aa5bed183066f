"""キーワード単位のボラティリティスコア計算モジュール.

DB アクセスなし・副作用なしの純粋関数のみ。
入力スナップショットは captured_at 昇順 → id 昇順に並んでいること。

スコア（0〜100）は 4 つの正規化シグナルの加重和:

  0.40 × 平均順位変動     （20 位でキャップ）
  0.25 × 最大順位変動     （50 位でキャップ）
  0.20 × AI Overview 反転率（反転ペア数 / ペア数）
  0.15 × SERP 機能変化    （1 ペアあたり平均、5 でキャップ）
"""

from __future__ import annotations

import math
from typing import Sequence

from serp_volatility.config import (
    FEATURE_CHANGE_CAP,
    HIGH_VOLATILITY_THRESHOLD,
    LOW_VOLATILITY_THRESHOLD,
    MATURITIES,
    MATURITY_DEVELOPING_MIN_SAMPLES,
    MATURITY_STABLE_MIN_SAMPLES,
    MAX_SHIFT_CAP,
    MEDIUM_VOLATILITY_THRESHOLD,
    RANK_SHIFT_CAP,
    REGIMES,
    WEIGHT_AI_CHURN,
    WEIGHT_FEATURE_VOLATILITY,
    WEIGHT_MAX_SHIFT,
    WEIGHT_RANK_SHIFT,
)
from serp_volatility.delta import Observation, delta_between, observe
from serp_volatility.models import PairScore, PairwiseDelta, Snapshot, VolatilityProfile


def round_half_up(value: float, decimals: int) -> float:
    """小数点以下 decimals 桁で四捨五入する（.5 は切り上げ）."""
    factor = 10 ** decimals
    return math.floor(value * factor + 0.5) / factor


def normalize(value: float, cap: float) -> float:
    """value を [0, cap] に収めて 0〜1 の比率にする."""
    if cap == 0:
        return 0.0
    return min(value, cap) / cap


def compute_volatility(snapshots: Sequence[Snapshot]) -> VolatilityProfile:
    """スナップショット列からボラティリティプロファイルを計算する.

    2 件未満の場合は全項目 0 のプロファイルを返す。
    """
    if len(snapshots) < 2:
        return VolatilityProfile.zero()
    observations = [observe(s) for s in snapshots]
    return _profile_from_observations(observations)


def score_pairs(snapshots: Sequence[Snapshot]) -> list[PairScore]:
    """連続ペアごとのスコア（ペア単体の compute_volatility）を返す."""
    observations = [observe(s) for s in snapshots]
    pairs = []
    for i in range(len(snapshots) - 1):
        profile = _profile_from_observations(observations[i:i + 2])
        pairs.append(PairScore(
            from_snapshot_id=snapshots[i].id,
            to_snapshot_id=snapshots[i + 1].id,
            from_captured_at=snapshots[i].captured_at,
            to_captured_at=snapshots[i + 1].captured_at,
            profile=profile,
            regime=classify_regime(profile.volatility_score),
        ))
    return pairs


def _profile_from_observations(observations: Sequence[Observation]) -> VolatilityProfile:
    # 隣接ペアのみ（非隣接の組み合わせは比較しない）
    deltas: list[PairwiseDelta] = [
        delta_between(before, after)
        for before, after in zip(observations, observations[1:])
    ]
    sample_size = len(deltas)

    average_rank_shift = round_half_up(
        sum(d.average_rank_shift for d in deltas) / sample_size, 4
    )
    max_rank_shift = max(d.max_rank_shift for d in deltas)
    feature_volatility = sum(d.feature_change_count for d in deltas)
    ai_overview_churn = sum(1 for d in deltas if d.ai_overview_flipped)

    rank_shift_score = normalize(average_rank_shift, RANK_SHIFT_CAP)
    max_shift_score = normalize(max_rank_shift, MAX_SHIFT_CAP)
    ai_churn_score = normalize(ai_overview_churn, sample_size)
    feature_volatility_score = normalize(feature_volatility / sample_size, FEATURE_CHANGE_CAP)

    raw_score = (
        WEIGHT_RANK_SHIFT * rank_shift_score
        + WEIGHT_MAX_SHIFT * max_shift_score
        + WEIGHT_AI_CHURN * ai_churn_score
        + WEIGHT_FEATURE_VOLATILITY * feature_volatility_score
    )

    return VolatilityProfile(
        sample_size=sample_size,
        average_rank_shift=average_rank_shift,
        max_rank_shift=max_rank_shift,
        feature_volatility=feature_volatility,
        ai_overview_churn=ai_overview_churn,
        volatility_score=round_half_up(raw_score * 100, 2),
        rank_shift_score=round_half_up(rank_shift_score, 4),
        max_shift_score=round_half_up(max_shift_score, 4),
        ai_churn_score=round_half_up(ai_churn_score, 4),
        feature_volatility_score=round_half_up(feature_volatility_score, 4),
        rank_volatility_component=round_half_up(
            100 * (WEIGHT_RANK_SHIFT * rank_shift_score + WEIGHT_MAX_SHIFT * max_shift_score), 2
        ),
        ai_overview_component=round_half_up(100 * WEIGHT_AI_CHURN * ai_churn_score, 2),
        feature_volatility_component=round_half_up(
            100 * WEIGHT_FEATURE_VOLATILITY * feature_volatility_score, 2
        ),
    )


def classify_regime(score: float) -> str:
    """スコアからレジームを判定する（集計バケットと同じ境界）."""
    if score >= HIGH_VOLATILITY_THRESHOLD:
        return "chaotic"
    if score >= MEDIUM_VOLATILITY_THRESHOLD:
        return "unstable"
    if score >= LOW_VOLATILITY_THRESHOLD:
        return "shifting"
    return "calm"


def classify_maturity(sample_size: int) -> str:
    """サンプル数（ペア数）から成熟度を判定する."""
    if sample_size >= MATURITY_STABLE_MIN_SAMPLES:
        return "stable"
    if sample_size >= MATURITY_DEVELOPING_MIN_SAMPLES:
        return "developing"
    return "preliminary"


def regime_rank(regime: str) -> int:
    return REGIMES.index(regime)


def maturity_rank(maturity: str) -> int:
    return MATURITIES.index(maturity)
