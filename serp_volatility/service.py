"""リクエスト単位の処理.

処理フロー:
  1. パラメータ検証（不正なら読み込み前に InvalidParameterError）
  2. リクエスト時刻を 1 回だけ確定し、期間の開始時刻を算出
  3. ストアから一括読み込み（最大 2 回）
  4. メモリ上で計算

store は list_keyword_targets / list_snapshots / get_keyword_target /
list_keyword_snapshots を持つオブジェクト（既定は db モジュール）。
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from serp_volatility import db, params
from serp_volatility.aggregator import exceeds_alert_threshold, summarize_project
from serp_volatility.alerts import build_alerts
from serp_volatility.config import (
    ALERTS_LIMIT_DEFAULT,
    ALERTS_LIMIT_MAX,
    ALERTS_WINDOW_DAYS_MAX,
    BREAKDOWN_TOP_N_DEFAULT,
    BREAKDOWN_TOP_N_MAX,
    FEED_LIMIT_DEFAULT,
    FEED_LIMIT_MAX,
    HISTORY_LIMIT_DEFAULT,
    HISTORY_LIMIT_MAX,
    HISTORY_TOP_N_DEFAULT,
    HISTORY_TOP_N_MAX,
    LIMIT_MIN,
    SPIKES_TOP_N_DEFAULT,
    SPIKES_TOP_N_MAX,
    TOP_N_MIN,
)
from serp_volatility.delta import compare_snapshots, feature_transitions
from serp_volatility.feed import build_alert_feed
from serp_volatility.history import build_serp_history
from serp_volatility.models import KeywordTarget, Snapshot, to_dict
from serp_volatility.reports import volatility_breakdown, volatility_spikes
from serp_volatility.scorer import classify_maturity, compute_volatility

logger = logging.getLogger(__name__)


class KeywordTargetNotFound(LookupError):
    pass


class SnapshotNotFound(LookupError):
    pass


def _request_time(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def _window_start(request_time: datetime, window_days: int | None) -> datetime | None:
    if window_days is None:
        return None
    return request_time - timedelta(days=window_days)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def volatility_summary(
    project_id: str,
    window_days=None,
    alert_threshold=None,
    store=None,
    now: datetime | None = None,
) -> dict:
    """プロジェクト全体のボラティリティ集計."""
    window_days = params.parse_window_days(window_days)
    alert_threshold = params.parse_alert_threshold(alert_threshold)
    store = store or db

    request_time = _request_time(now)
    window_start = _window_start(request_time, window_days)

    targets = store.list_keyword_targets(project_id)
    snapshots = store.list_snapshots(project_id, window_start) if targets else []

    summary = summarize_project(targets, snapshots, alert_threshold)
    result = to_dict(summary)
    result.update({
        "window_days": window_days,
        "window_start_at": _iso(window_start),
        "computed_at": request_time.isoformat(),
    })
    return result


def volatility_alert_feed(
    project_id: str,
    window_days=None,
    alert_threshold=None,
    min_maturity: str | None = None,
    limit=None,
    cursor: str | None = None,
    store=None,
    now: datetime | None = None,
) -> dict:
    """閾値を超えたキーワードのフィード（カーソルページング）."""
    window_days = params.parse_window_days(window_days)
    alert_threshold = params.parse_alert_threshold(alert_threshold)
    min_maturity = params.parse_min_maturity(min_maturity)
    limit = params.parse_limit(limit, LIMIT_MIN, FEED_LIMIT_MAX, FEED_LIMIT_DEFAULT)
    store = store or db

    request_time = _request_time(now)
    window_start = _window_start(request_time, window_days)

    targets = store.list_keyword_targets(project_id)
    if not targets:
        return {"items": [], "next_cursor": None}
    snapshots = store.list_snapshots(project_id, window_start)

    page = build_alert_feed(targets, snapshots, alert_threshold, min_maturity, limit, cursor)
    return to_dict(page)


def alert_events(
    project_id: str,
    window_days,
    spike_threshold=None,
    concentration_threshold=None,
    limit=None,
    store=None,
    now: datetime | None = None,
) -> dict:
    """T1〜T3 のアラートイベント."""
    window_days = params.parse_window_days(window_days, maximum=ALERTS_WINDOW_DAYS_MAX, required=True)
    spike_threshold = params.parse_spike_threshold(spike_threshold)
    concentration_threshold = params.parse_concentration_threshold(concentration_threshold)
    limit = params.parse_limit(limit, LIMIT_MIN, ALERTS_LIMIT_MAX, ALERTS_LIMIT_DEFAULT)
    store = store or db

    request_time = _request_time(now)
    window_start = _window_start(request_time, window_days)

    targets = store.list_keyword_targets(project_id)
    snapshots = store.list_snapshots(project_id, window_start)

    report = build_alerts(
        project_id,
        targets,
        snapshots,
        computed_at=request_time,
        window_days=window_days,
        spike_threshold=spike_threshold,
        concentration_threshold=concentration_threshold,
        limit=limit,
    )
    return to_dict(report)


def _load_keyword(
    store, project_id: str, keyword_target_id: str, window_start: datetime | None
) -> tuple[KeywordTarget, list[Snapshot]]:
    target = store.get_keyword_target(project_id, keyword_target_id)
    if target is None:
        logger.warning("キーワードが見つかりません: project_id=%s, id=%s", project_id, keyword_target_id)
        raise KeywordTargetNotFound(keyword_target_id)
    snapshots = store.list_keyword_snapshots(
        project_id, target.query, target.locale, target.device, window_start
    )
    return target, snapshots


def _keyword_header(target: KeywordTarget, window_days: int | None) -> dict:
    return {
        "keyword_target_id": target.id,
        "query": target.query,
        "locale": target.locale,
        "device": target.device,
        "window_days": window_days,
    }


def keyword_volatility(
    project_id: str,
    keyword_target_id: str,
    window_days=None,
    alert_threshold=None,
    store=None,
    now: datetime | None = None,
) -> dict:
    """キーワード 1 件のボラティリティプロファイル."""
    window_days = params.parse_window_days(window_days)
    alert_threshold = params.parse_alert_threshold(alert_threshold)
    store = store or db

    request_time = _request_time(now)
    window_start = _window_start(request_time, window_days)
    target, snapshots = _load_keyword(store, project_id, keyword_target_id, window_start)

    profile = compute_volatility(snapshots)
    result = _keyword_header(target, window_days)
    result.update(to_dict(profile))
    result.update({
        "window_start_at": _iso(window_start),
        "alert_threshold": alert_threshold,
        "exceeds_threshold": exceeds_alert_threshold(profile, alert_threshold),
        "snapshot_count": len(snapshots),
        "maturity": classify_maturity(profile.sample_size),
        "computed_at": request_time.isoformat(),
    })
    return result


def keyword_volatility_spikes(
    project_id: str,
    keyword_target_id: str,
    window_days=None,
    top_n=None,
    store=None,
    now: datetime | None = None,
) -> dict:
    """キーワード 1 件のスパイク（ペアスコア上位）."""
    window_days = params.parse_window_days(window_days)
    top_n = params.parse_top_n(top_n, TOP_N_MIN, SPIKES_TOP_N_MAX, SPIKES_TOP_N_DEFAULT)
    store = store or db

    request_time = _request_time(now)
    target, snapshots = _load_keyword(
        store, project_id, keyword_target_id, _window_start(request_time, window_days)
    )

    sample_size = max(0, len(snapshots) - 1)
    result = _keyword_header(target, window_days)
    result.update({
        "sample_size": sample_size,
        "total_pairs": sample_size,
        "top_n": top_n,
        "spikes": [to_dict(s) for s in volatility_spikes(snapshots, top_n)],
        "computed_at": request_time.isoformat(),
    })
    return result


def keyword_volatility_breakdown(
    project_id: str,
    keyword_target_id: str,
    window_days=None,
    top_n=None,
    store=None,
    now: datetime | None = None,
) -> dict:
    """キーワード 1 件の URL 別変動寄与."""
    window_days = params.parse_window_days(window_days)
    top_n = params.parse_top_n(top_n, TOP_N_MIN, BREAKDOWN_TOP_N_MAX, BREAKDOWN_TOP_N_DEFAULT)
    store = store or db

    request_time = _request_time(now)
    target, snapshots = _load_keyword(
        store, project_id, keyword_target_id, _window_start(request_time, window_days)
    )

    url_count, urls = volatility_breakdown(snapshots, top_n)
    result = _keyword_header(target, window_days)
    result.update({
        "sample_size": max(0, len(snapshots) - 1),
        "url_count": url_count,
        "urls": [to_dict(u) for u in urls],
        "computed_at": request_time.isoformat(),
    })
    return result


def keyword_feature_transitions(
    project_id: str,
    keyword_target_id: str,
    window_days=None,
    store=None,
    now: datetime | None = None,
) -> dict:
    """キーワード 1 件の SERP 機能セット遷移."""
    window_days = params.parse_window_days(window_days)
    store = store or db

    request_time = _request_time(now)
    target, snapshots = _load_keyword(
        store, project_id, keyword_target_id, _window_start(request_time, window_days)
    )

    transitions = feature_transitions(snapshots)
    sample_size = max(0, len(snapshots) - 1)
    if sum(t.count for t in transitions) != sample_size:
        raise AssertionError("遷移数の合計がペア数と一致しません")

    result = _keyword_header(target, window_days)
    result.update({
        "sample_size": sample_size,
        "total_transitions": sample_size,
        "distinct_transition_count": len(transitions),
        "transitions": [to_dict(t) for t in transitions],
        "computed_at": request_time.isoformat(),
    })
    return result


def keyword_serp_history(
    project_id: str,
    keyword_target_id: str,
    window_days=None,
    limit=None,
    top_n=None,
    include_payload=None,
    cursor: str | None = None,
    store=None,
    now: datetime | None = None,
) -> dict:
    """キーワード 1 件の SERP 履歴（新しい順・カーソルページング）."""
    window_days = params.parse_window_days(window_days)
    limit = params.parse_limit(limit, LIMIT_MIN, HISTORY_LIMIT_MAX, HISTORY_LIMIT_DEFAULT)
    top_n = params.parse_top_n(top_n, TOP_N_MIN, HISTORY_TOP_N_MAX, HISTORY_TOP_N_DEFAULT)
    include_payload = params.parse_include_payload(include_payload)
    store = store or db

    request_time = _request_time(now)
    target, snapshots = _load_keyword(
        store, project_id, keyword_target_id, _window_start(request_time, window_days)
    )

    page = build_serp_history(snapshots, limit, top_n, include_payload, cursor)
    items = [to_dict(item) for item in page.items]
    if not include_payload:
        for item in items:
            del item["raw_payload"]

    result = _keyword_header(target, window_days)
    result.update({"items": items, "next_cursor": page.next_cursor})
    return result


def serp_delta(
    project_id: str,
    keyword_target_id: str,
    from_snapshot_id: str | None = None,
    to_snapshot_id: str | None = None,
    store=None,
) -> dict:
    """2 スナップショット間の URL 差分.

    スナップショット ID 未指定時は最新 2 件を比較する。
    """
    if (from_snapshot_id is None) != (to_snapshot_id is None):
        field = "to_snapshot_id" if to_snapshot_id is None else "from_snapshot_id"
        raise params.InvalidParameterError(field, "is required when the other snapshot id is given")
    store = store or db

    target, snapshots = _load_keyword(store, project_id, keyword_target_id, None)
    result = _keyword_header(target, None)
    del result["window_days"]

    if from_snapshot_id is not None:
        by_id = {s.id: s for s in snapshots}
        for snapshot_id in (from_snapshot_id, to_snapshot_id):
            if snapshot_id not in by_id:
                raise SnapshotNotFound(snapshot_id)
        pair = sorted((by_id[from_snapshot_id], by_id[to_snapshot_id]), key=lambda s: s.sort_key)
    elif len(snapshots) >= 2:
        pair = snapshots[-2:]
    else:
        result.update({"delta": None, "insufficient_snapshots": True})
        return result

    result.update({
        "delta": to_dict(compare_snapshots(pair[0], pair[1])),
        "insufficient_snapshots": False,
    })
    return result
