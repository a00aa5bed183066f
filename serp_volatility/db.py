"""Supabase データベース読み込みモジュール.

全テーブルは rank_tracker スキーマ（SUPABASE_SCHEMA）に配置。
Supabase client のスキーマ指定は .schema() で行う。
このモジュールは読み込みのみで、書き込みは行わない。
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from supabase import Client, create_client

from serp_volatility import config
from serp_volatility.models import KeywordTarget, Snapshot

logger = logging.getLogger(__name__)

_client: Client | None = None

_SNAPSHOT_COLUMNS = "id, query, locale, device, captured_at, ai_overview_status, raw_payload"


def _get_client() -> Client:
    """Supabase クライアントを初回利用時に生成する."""
    global _client
    if _client is None:
        if not config.SUPABASE_URL or not config.SUPABASE_SECRET_KEY:
            raise RuntimeError("SUPABASE_URL / SUPABASE_SECRET_KEY が設定されていません")
        _client = create_client(config.SUPABASE_URL, config.SUPABASE_SECRET_KEY)
    return _client


def _table(name: str):
    """rank_tracker スキーマのテーブルを参照する."""
    return _get_client().schema(config.SUPABASE_SCHEMA).table(name)


def _fetch_all(build_query: Callable[[], object]) -> list[dict]:
    """PostgREST の行数上限で切れないよう DB_PAGE_SIZE 件ずつ全件取得する."""
    rows: list[dict] = []
    start = 0
    while True:
        resp = build_query().range(start, start + config.DB_PAGE_SIZE - 1).execute()
        rows.extend(resp.data)
        if len(resp.data) < config.DB_PAGE_SIZE:
            return rows
        start += config.DB_PAGE_SIZE


def parse_timestamp(value) -> datetime:
    """timestamptz の ISO 8601 文字列を datetime に変換する."""
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


def normalize_ai_overview_status(value) -> str:
    # 欠損・想定外の値は unknown として扱う
    return value if value in config.AI_OVERVIEW_STATUSES else "unknown"


def _to_keyword_target(row: dict) -> KeywordTarget:
    return KeywordTarget(
        id=row["id"],
        query=row["query"],
        locale=row["locale"],
        device=row["device"],
    )


def _to_snapshot(row: dict) -> Snapshot:
    return Snapshot(
        id=row["id"],
        captured_at=parse_timestamp(row["captured_at"]),
        query=row["query"],
        locale=row["locale"],
        device=row["device"],
        ai_overview_status=normalize_ai_overview_status(row.get("ai_overview_status")),
        raw_payload=row.get("raw_payload"),
    )


def list_keyword_targets(project_id: str) -> list[KeywordTarget]:
    """プロジェクトの全キーワードを取得する（query 昇順 → id 昇順）."""
    rows = _fetch_all(
        lambda: _table(config.KEYWORD_TARGETS_TABLE)
        .select("id, query, locale, device")
        .eq("project_id", project_id)
        .order("query")
        .order("id")
    )
    logger.info("keyword_targets を %d 件取得: project_id=%s", len(rows), project_id)
    return [_to_keyword_target(row) for row in rows]


def get_keyword_target(project_id: str, keyword_target_id: str) -> KeywordTarget | None:
    """キーワードを 1 件取得する. 存在しない・別プロジェクトの場合は None."""
    resp = (
        _table(config.KEYWORD_TARGETS_TABLE)
        .select("id, project_id, query, locale, device")
        .eq("id", keyword_target_id)
        .limit(1)
        .execute()
    )
    if not resp.data or resp.data[0].get("project_id") != project_id:
        return None
    return _to_keyword_target(resp.data[0])


def list_snapshots(project_id: str, captured_at_from: datetime | None = None) -> list[Snapshot]:
    """プロジェクトの全スナップショットを取得する（captured_at 昇順 → id 昇順）.

    Args:
        captured_at_from: 指定時はこの時刻以降のみ
    """
    def build():
        query = (
            _table(config.SNAPSHOTS_TABLE)
            .select(_SNAPSHOT_COLUMNS)
            .eq("project_id", project_id)
        )
        if captured_at_from is not None:
            query = query.gte("captured_at", captured_at_from.isoformat())
        return query.order("captured_at").order("id")

    rows = _fetch_all(build)
    logger.info("serp_snapshots を %d 件取得: project_id=%s", len(rows), project_id)
    return [_to_snapshot(row) for row in rows]


def list_keyword_snapshots(
    project_id: str,
    query: str,
    locale: str,
    device: str,
    captured_at_from: datetime | None = None,
) -> list[Snapshot]:
    """キーワード 1 件分のスナップショットを取得する（captured_at 昇順 → id 昇順）."""
    def build():
        q = (
            _table(config.SNAPSHOTS_TABLE)
            .select(_SNAPSHOT_COLUMNS)
            .eq("project_id", project_id)
            .eq("query", query)
            .eq("locale", locale)
            .eq("device", device)
        )
        if captured_at_from is not None:
            q = q.gte("captured_at", captured_at_from.isoformat())
        return q.order("captured_at").order("id")

    rows = _fetch_all(build)
    logger.info("serp_snapshots を %d 件取得: query=%s, locale=%s, device=%s", len(rows), query, locale, device)
    return [_to_snapshot(row) for row in rows]
