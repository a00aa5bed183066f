"""キーワード単位の SERP 履歴（スナップショット時系列）.

並び順: captured_at 降順 → id 降順（新しい順）

カーソルは最終行の "{captured_at ISO 8601}|{id}" を base64url（パディングなし）に
したもの。次ページはその位置より厳密に古い行から始まる。
不正なカーソルは「カーソルなし」扱い。
"""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence

from serp_volatility.config import HISTORY_LIMIT_DEFAULT, HISTORY_TOP_N_DEFAULT
from serp_volatility.extraction import extract_organic_results
from serp_volatility.models import HistoryResult, SerpHistoryItem, SerpHistoryPage, Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryCursor:
    captured_at: datetime
    id: str


def encode_history_cursor(position: HistoryCursor) -> str:
    raw = f"{position.captured_at.isoformat()}|{position.id}"
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii").rstrip("=")


def decode_history_cursor(cursor: str) -> HistoryCursor | None:
    """カーソルを復号する. 不正な場合は None."""
    try:
        padded = cursor + "=" * (-len(cursor) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError):
        return None

    captured_part, sep, id_ = raw.rpartition("|")
    if not sep or not id_:
        return None
    try:
        captured_at = datetime.fromisoformat(captured_part)
    except ValueError:
        return None
    # タイムゾーンなしは保存済みの timestamptz と比較できない
    if captured_at.tzinfo is None:
        return None
    return HistoryCursor(captured_at=captured_at, id=id_)


def build_serp_history(
    snapshots: Sequence[Snapshot],
    limit: int = HISTORY_LIMIT_DEFAULT,
    top_n: int = HISTORY_TOP_N_DEFAULT,
    include_payload: bool = False,
    cursor: str | None = None,
) -> SerpHistoryPage:
    """スナップショット列を新しい順に 1 ページ分並べ、各行に上位 top_n 件の結果を付ける."""
    ordered = sorted(snapshots, key=lambda s: s.sort_key, reverse=True)

    position = decode_history_cursor(cursor) if cursor is not None else None
    if cursor is not None and position is None:
        logger.warning("不正な履歴カーソルを無視します: %s", cursor)
    if position is not None:
        boundary = (position.captured_at, position.id)
        ordered = [s for s in ordered if s.sort_key < boundary]

    page = ordered[:limit]
    items = []
    for snap in page:
        extraction = extract_organic_results(snap.raw_payload)
        items.append(SerpHistoryItem(
            snapshot_id=snap.id,
            captured_at=snap.captured_at,
            ai_overview_status=snap.ai_overview_status,
            parse_warning=extraction.parse_warning,
            top_results=tuple(
                HistoryResult(rank=r.rank, url=r.url) for r in extraction.results[:top_n]
            ),
            raw_payload=snap.raw_payload if include_payload else None,
        ))

    next_cursor = None
    if len(ordered) > limit:
        last = page[-1]
        next_cursor = encode_history_cursor(HistoryCursor(captured_at=last.captured_at, id=last.id))
    return SerpHistoryPage(items=tuple(items), next_cursor=next_cursor)
