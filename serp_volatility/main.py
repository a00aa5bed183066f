"""SERP ボラティリティ分析 — メインエントリーポイント.

使い方:
  python -m serp_volatility.main summary --project-id <uuid> [--window-days 30]
  python -m serp_volatility.main feed --project-id <uuid> [--min-maturity stable] [--cursor ...]
  python -m serp_volatility.main alerts --project-id <uuid> --window-days 7
  python -m serp_volatility.main keyword --project-id <uuid> --keyword-target-id <uuid>
  python -m serp_volatility.main spikes / breakdown / transitions / delta / history ...

結果は JSON で標準出力に書き出す。
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime

from serp_volatility import service
from serp_volatility.config import LOG_DIR
from serp_volatility.params import InvalidParameterError


def setup_logging() -> None:
    """ロギングの初期設定. ログは標準エラーとファイルに出す（標準出力は JSON 用）."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    log_file = LOG_DIR / f"serp_volatility_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="serp_volatility", description="SERP ボラティリティ分析")
    sub = parser.add_subparsers(dest="command", required=True)

    def add(name: str, help_text: str, keyword: bool = False) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--project-id", required=True)
        if keyword:
            p.add_argument("--keyword-target-id", required=True)
        return p

    p = add("summary", "プロジェクト全体の集計")
    p.add_argument("--window-days")
    p.add_argument("--alert-threshold")

    p = add("feed", "閾値超えキーワードのフィード")
    p.add_argument("--window-days")
    p.add_argument("--alert-threshold")
    p.add_argument("--min-maturity")
    p.add_argument("--limit")
    p.add_argument("--cursor")

    p = add("alerts", "T1〜T3 アラート")
    p.add_argument("--window-days", required=True)
    p.add_argument("--spike-threshold")
    p.add_argument("--concentration-threshold")
    p.add_argument("--limit")

    p = add("keyword", "キーワード 1 件のプロファイル", keyword=True)
    p.add_argument("--window-days")
    p.add_argument("--alert-threshold")

    for name, help_text in (("spikes", "ペアスコア上位"), ("breakdown", "URL 別変動寄与")):
        p = add(name, help_text, keyword=True)
        p.add_argument("--window-days")
        p.add_argument("--top-n")

    p = add("transitions", "SERP 機能セット遷移", keyword=True)
    p.add_argument("--window-days")

    p = add("history", "SERP 履歴（新しい順）", keyword=True)
    p.add_argument("--window-days")
    p.add_argument("--limit")
    p.add_argument("--top-n")
    p.add_argument("--include-payload", action="store_true")
    p.add_argument("--cursor")

    p = add("delta", "2 スナップショット間の URL 差分", keyword=True)
    p.add_argument("--from-snapshot-id")
    p.add_argument("--to-snapshot-id")

    return parser


def dispatch(args: argparse.Namespace) -> dict:
    """サブコマンドに対応するサービス関数を呼ぶ."""
    if args.command == "summary":
        return service.volatility_summary(args.project_id, args.window_days, args.alert_threshold)
    if args.command == "feed":
        return service.volatility_alert_feed(
            args.project_id, args.window_days, args.alert_threshold,
            args.min_maturity, args.limit, args.cursor,
        )
    if args.command == "alerts":
        return service.alert_events(
            args.project_id, args.window_days, args.spike_threshold,
            args.concentration_threshold, args.limit,
        )
    if args.command == "keyword":
        return service.keyword_volatility(
            args.project_id, args.keyword_target_id, args.window_days, args.alert_threshold,
        )
    if args.command == "spikes":
        return service.keyword_volatility_spikes(
            args.project_id, args.keyword_target_id, args.window_days, args.top_n,
        )
    if args.command == "breakdown":
        return service.keyword_volatility_breakdown(
            args.project_id, args.keyword_target_id, args.window_days, args.top_n,
        )
    if args.command == "transitions":
        return service.keyword_feature_transitions(
            args.project_id, args.keyword_target_id, args.window_days,
        )
    if args.command == "history":
        return service.keyword_serp_history(
            args.project_id, args.keyword_target_id, args.window_days, args.limit,
            args.top_n, args.include_payload, args.cursor,
        )
    return service.serp_delta(
        args.project_id, args.keyword_target_id, args.from_snapshot_id, args.to_snapshot_id,
    )


def run(argv: list[str] | None = None) -> int:
    """メイン処理. 終了コードを返す."""
    args = build_parser().parse_args(argv)
    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("=== %s 開始: project_id=%s ===", args.command, args.project_id)
    start_time = time.time()

    try:
        result = dispatch(args)
    except InvalidParameterError as e:
        logger.error("パラメータ不正: %s", e)
        return 2
    except LookupError as e:
        logger.error("対象が見つかりません: %s", e)
        return 1

    print(json.dumps(result, ensure_ascii=False, indent=2))
    logger.info("=== %s 完了: 所要時間 %.2f 秒 ===", args.command, time.time() - start_time)
    return 0


if __name__ == "__main__":
    sys.exit(run())
