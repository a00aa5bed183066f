"""キーワードアラートフィード（カーソルページング付き）.

volatility_score >= alert_threshold かつ maturity >= min_maturity かつ
sample_size >= 1 のキーワードだけを返す。

並び順: volatility_score 降順 → query 昇順 → keyword_target_id 昇順

カーソルは "{score 5 桁小数・9 文字ゼロ埋め}:{query}:{id}" を
base64url（パディングなし）にしたもの。不正なカーソルは「カーソルなし」扱い。
"""

from __future__ import annotations

import base64
import binascii
import logging
import math
from dataclasses import dataclass
from typing import Iterable, Sequence

from serp_volatility.aggregator import rank_risk_records, score_keywords
from serp_volatility.config import (
    ALERT_THRESHOLD_DEFAULT,
    FEED_LIMIT_DEFAULT,
    MIN_MATURITY_DEFAULT,
)
from serp_volatility.models import AlertFeedItem, AlertFeedPage, KeywordTarget, Snapshot
from serp_volatility.scorer import classify_maturity, classify_regime, maturity_rank

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CursorPosition:
    score: float
    query: str
    id: str


def encode_cursor(position: CursorPosition) -> str:
    raw = f"{position.score:09.5f}:{position.query}:{position.id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_cursor(cursor: str) -> CursorPosition | None:
    """カーソルを復号する. 不正な場合は None."""
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return None

    # score は先頭のコロン、id は末尾のコロンで切り出す（query はコロンを含みうる）
    score_part, sep, rest = raw.partition(":")
    query, sep2, id_ = rest.rpartition(":")
    if not sep or not sep2:
        return None
    try:
        score = float(score_part)
    except ValueError:
        return None
    if not math.isfinite(score) or not id_:
        return None
    return CursorPosition(score=score, query=query, id=id_)


def is_after(item: AlertFeedItem, position: CursorPosition) -> bool:
    """item がソート順でカーソル位置より厳密に後ろにあるか."""
    if item.volatility_score != position.score:
        return item.volatility_score < position.score
    if item.query != position.query:
        return item.query > position.query
    return item.keyword_target_id > position.id


def build_alert_feed(
    targets: Sequence[KeywordTarget],
    snapshots: Iterable[Snapshot],
    alert_threshold: int = ALERT_THRESHOLD_DEFAULT,
    min_maturity: str = MIN_MATURITY_DEFAULT,
    limit: int = FEED_LIMIT_DEFAULT,
    cursor: str | None = None,
) -> AlertFeedPage:
    """閾値超えキーワードのフィードを 1 ページ分作る."""
    min_rank = maturity_rank(min_maturity)
    candidates = []
    for record in score_keywords(targets, snapshots):
        profile = record.profile
        # サンプルなし = 根拠なし → アラートにしない
        if profile.sample_size < 1:
            continue
        if maturity_rank(classify_maturity(profile.sample_size)) < min_rank:
            continue
        if profile.volatility_score < alert_threshold:
            continue
        candidates.append(record)

    items = [
        AlertFeedItem(
            keyword_target_id=r.target.id,
            query=r.target.query,
            locale=r.target.locale,
            device=r.target.device,
            volatility_score=r.profile.volatility_score,
            rank_volatility_component=r.profile.rank_volatility_component,
            ai_overview_component=r.profile.ai_overview_component,
            feature_volatility_component=r.profile.feature_volatility_component,
            maturity=classify_maturity(r.profile.sample_size),
            volatility_regime=classify_regime(r.profile.volatility_score),
            sample_size=r.profile.sample_size,
            alert_threshold=alert_threshold,
        )
        for r in rank_risk_records(candidates)
    ]

    start = 0
    position = decode_cursor(cursor) if cursor is not None else None
    if cursor is not None and position is None:
        logger.warning("不正なカーソルを無視します: %s", cursor)
    if position is not None:
        start = next((i for i, item in enumerate(items) if is_after(item, position)), len(items))

    page = items[start:start + limit]
    next_cursor = None
    if start + limit < len(items):
        last = page[-1]
        next_cursor = encode_cursor(CursorPosition(
            score=last.volatility_score, query=last.query, id=last.keyword_target_id,
        ))

    logger.info("アラートフィード: 該当 %d 件, ページ %d 件", len(items), len(page))
    return AlertFeedPage(items=tuple(page), next_cursor=next_cursor)
