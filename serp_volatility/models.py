"""データモデル定義."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Union


@dataclass(frozen=True)
class KeywordTarget:
    """追跡対象キーワード（query × locale × device）."""

    id: str  # uuid
    query: str
    locale: str
    device: str  # "desktop" / "mobile" など

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (self.query, self.locale, self.device)


@dataclass(frozen=True)
class Snapshot:
    """1 回分の SERP 観測. 取得後は変更されない."""

    id: str  # uuid
    captured_at: datetime
    query: str
    locale: str
    device: str
    ai_overview_status: str = "unknown"  # "absent" / "present" / "unknown"
    raw_payload: Any = field(default=None, compare=False, repr=False)

    @property
    def natural_key(self) -> tuple[str, str, str]:
        return (self.query, self.locale, self.device)

    @property
    def sort_key(self) -> tuple[datetime, str]:
        """全計算で使う順序: captured_at 昇順 → id 昇順."""
        return (self.captured_at, self.id)


@dataclass(frozen=True)
class ExtractedResult:
    """payload から抽出したオーガニック結果 1 件."""

    url: str
    domain: str | None
    rank: int | None  # None = 順位不明
    title: str | None


@dataclass(frozen=True)
class ExtractionResult:
    results: tuple[ExtractedResult, ...]
    parse_warning: bool


@dataclass(frozen=True)
class PairwiseDelta:
    """連続する 2 スナップショット間の差分."""

    average_rank_shift: float  # 両方に存在する URL の平均絶対順位変動
    max_rank_shift: float
    feature_change_count: int  # SERP 機能セットの対称差の要素数
    ai_overview_flipped: bool


@dataclass(frozen=True)
class VolatilityProfile:
    """キーワード 1 件分のボラティリティ指標."""

    sample_size: int  # 評価した連続ペア数
    average_rank_shift: float
    max_rank_shift: float
    feature_volatility: int
    ai_overview_churn: int
    volatility_score: float  # 0〜100
    rank_shift_score: float = 0.0  # 以下 0〜1 の正規化サブスコア
    max_shift_score: float = 0.0
    ai_churn_score: float = 0.0
    feature_volatility_score: float = 0.0
    rank_volatility_component: float = 0.0  # 以下スコアへの寄与（0〜100 スケール）
    ai_overview_component: float = 0.0
    feature_volatility_component: float = 0.0

    @classmethod
    def zero(cls) -> "VolatilityProfile":
        return cls(
            sample_size=0,
            average_rank_shift=0,
            max_rank_shift=0,
            feature_volatility=0,
            ai_overview_churn=0,
            volatility_score=0,
        )


@dataclass(frozen=True)
class PairScore:
    """連続ペア 1 組のスコア（ペア単体で computeVolatility したもの）."""

    from_snapshot_id: str
    to_snapshot_id: str
    from_captured_at: datetime
    to_captured_at: datetime
    profile: VolatilityProfile
    regime: str

    @property
    def pair_volatility_score(self) -> float:
        return self.profile.volatility_score


# --- プロジェクト集計 ---


@dataclass(frozen=True)
class RiskKeyword:
    keyword_target_id: str
    query: str
    locale: str
    device: str
    volatility_score: float
    sample_size: int
    volatility_regime: str
    maturity: str
    exceeds_alert_threshold: bool


@dataclass(frozen=True)
class ProjectSummary:
    keyword_count: int
    active_keyword_count: int
    average_volatility: float
    max_volatility: float
    high_volatility_count: int
    medium_volatility_count: int
    low_volatility_count: int
    stable_count: int
    preliminary_count: int
    developing_count: int
    mature_count: int
    weighted_project_volatility_score: float
    volatility_concentration_ratio: float | None
    top3_risk_keywords: tuple[RiskKeyword, ...]
    alert_threshold: int


# --- キーワードアラートフィード ---


@dataclass(frozen=True)
class AlertFeedItem:
    keyword_target_id: str
    query: str
    locale: str
    device: str
    volatility_score: float
    rank_volatility_component: float
    ai_overview_component: float
    feature_volatility_component: float
    maturity: str
    volatility_regime: str
    sample_size: int
    alert_threshold: int
    exceeds_threshold: bool = True  # 閾値未満は除外されるので常に True


@dataclass(frozen=True)
class AlertFeedPage:
    items: tuple[AlertFeedItem, ...]
    next_cursor: str | None


# --- アラートイベント ---


@dataclass(frozen=True)
class RegimeTransitionAlert:
    """T1: 直近ペアのレジームが 1 つ前のペアから変化した."""

    keyword_target_id: str
    query: str
    from_regime: str
    to_regime: str
    from_snapshot_id: str
    to_snapshot_id: str
    from_captured_at: datetime
    to_captured_at: datetime
    pair_volatility_score: float
    trigger_type: str = "T1"


@dataclass(frozen=True)
class SpikeAlert:
    """T2: ペアスコアがスパイク閾値を超えた."""

    keyword_target_id: str
    query: str
    from_snapshot_id: str
    to_snapshot_id: str
    from_captured_at: datetime
    to_captured_at: datetime
    pair_volatility_score: float
    threshold: float
    exceedance_margin: float
    trigger_type: str = "T2"


@dataclass(frozen=True)
class ConcentrationRiskKeyword:
    keyword_target_id: str
    query: str
    volatility_score: float
    volatility_regime: str


@dataclass(frozen=True)
class ConcentrationAlert:
    """T3: 上位 3 キーワードへのリスク集中."""

    project_id: str
    volatility_concentration_ratio: float
    threshold: float
    top3_risk_keywords: tuple[ConcentrationRiskKeyword, ...]
    active_keyword_count: int
    trigger_type: str = "T3"


Alert = Union[RegimeTransitionAlert, SpikeAlert, ConcentrationAlert]


@dataclass(frozen=True)
class AlertReport:
    alerts: tuple[Alert, ...]
    alert_count: int
    total_alerts: int
    window_days: int
    spike_threshold: float
    concentration_threshold: float
    limit: int
    computed_at: datetime


# --- キーワード単位レポート ---


@dataclass(frozen=True)
class RankedEntry:
    url: str
    domain: str | None
    rank: int | None
    title: str | None


@dataclass(frozen=True)
class MovedEntry:
    url: str
    domain: str | None
    rank_from: int | None
    rank_to: int | None
    rank_delta: int | None  # 正 = 上昇, 負 = 下落
    title_to: str | None


@dataclass(frozen=True)
class SerpDelta:
    from_snapshot_id: str
    to_snapshot_id: str
    moved: tuple[MovedEntry, ...]
    entered: tuple[RankedEntry, ...]
    exited: tuple[RankedEntry, ...]
    moved_count: int
    entered_count: int
    exited_count: int
    improved_count: int
    declined_count: int
    unchanged_count: int
    parse_warning: bool
    same_timestamp: bool


@dataclass(frozen=True)
class FeatureTransition:
    from_feature_set: tuple[str, ...]
    to_feature_set: tuple[str, ...]
    count: int


@dataclass(frozen=True)
class Spike:
    from_snapshot_id: str
    to_snapshot_id: str
    from_captured_at: datetime
    to_captured_at: datetime
    pair_volatility_score: float
    pair_rank_shift: float
    pair_max_shift: float
    pair_feature_change_count: int
    ai_flipped: bool


@dataclass(frozen=True)
class UrlContribution:
    url: str
    appearances: int
    total_abs_shift: float
    average_shift: float
    first_seen: datetime
    last_seen: datetime


@dataclass(frozen=True)
class HistoryResult:
    rank: int | None
    url: str


@dataclass(frozen=True)
class SerpHistoryItem:
    snapshot_id: str
    captured_at: datetime
    ai_overview_status: str
    parse_warning: bool
    top_results: tuple[HistoryResult, ...]
    raw_payload: Any = field(default=None, repr=False)  # include_payload 指定時のみ


@dataclass(frozen=True)
class SerpHistoryPage:
    items: tuple[SerpHistoryItem, ...]
    next_cursor: str | None


def to_dict(obj) -> dict:
    """dataclass を JSON 化できる dict に変換する（datetime は ISO 8601）."""
    return _jsonable(asdict(obj))


def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
