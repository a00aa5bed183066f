"""SERP スナップショット payload の抽出モジュール.

対応する payload 形式:
  1. プロバイダ形式: items[] のうち type == "organic" のみ採用
     （順位は rank_absolute、なければ position）
  2. シンプル形式: results[] のうち url が文字列のもの全て
     （順位は rank、なければ position）／ SERP 機能は features[]

どちらにも当てはまらない payload は UnrecognizedPayload として扱う.
抽出は例外を投げず、解析に失敗した場合は parse_warning を立てる.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Union
from urllib.parse import urlparse

from serp_volatility.models import ExtractedResult, ExtractionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderPayload:
    items: list


@dataclass(frozen=True)
class SimplePayload:
    results: list | None  # None = results 配列なし（features のみ）
    features: list


@dataclass(frozen=True)
class UnrecognizedPayload:
    reason: str


Payload = Union[ProviderPayload, SimplePayload, UnrecognizedPayload]


def classify_payload(raw: Any) -> Payload:
    """生 payload を既知の形式のいずれかに振り分ける."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (ValueError, RecursionError) as e:
            return UnrecognizedPayload(f"JSON デコード失敗: {e}")

    if not isinstance(raw, dict):
        return UnrecognizedPayload(f"トップレベルが object ではない: {type(raw).__name__}")

    if isinstance(raw.get("items"), list):
        return ProviderPayload(items=raw["items"])

    results = raw.get("results")
    features = raw.get("features")
    if isinstance(results, list) or isinstance(features, list):
        return SimplePayload(
            results=results if isinstance(results, list) else None,
            features=features if isinstance(features, list) else [],
        )

    return UnrecognizedPayload("items / results / features のいずれもない")


def extract_organic_results(raw: Any) -> ExtractionResult:
    """payload からオーガニック結果を抽出する.

    結果は rank 昇順（None は末尾）、同順位は URL 昇順。
    同一 URL は先頭（最上位）のみ残す。
    """
    payload = classify_payload(raw)

    if isinstance(payload, ProviderPayload):
        entries = [
            _to_result(item, "rank_absolute")
            for item in payload.items
            if isinstance(item, dict)
            and item.get("type") == "organic"
            and isinstance(item.get("url"), str)
        ]
        warning = not entries and len(payload.items) > 0
        if warning:
            logger.warning("items にオーガニック結果がありません: %d 件中 0 件", len(payload.items))
        return ExtractionResult(results=_sort_and_dedupe(entries), parse_warning=warning)

    if isinstance(payload, SimplePayload):
        if payload.results is None:
            logger.warning("results 配列がありません（features のみ）")
            return ExtractionResult(results=(), parse_warning=True)
        entries = [
            _to_result(item, "rank")
            for item in payload.results
            if isinstance(item, dict) and isinstance(item.get("url"), str)
        ]
        warning = not entries and len(payload.results) > 0
        if warning:
            logger.warning("results に url を持つ結果がありません: %d 件中 0 件", len(payload.results))
        return ExtractionResult(results=_sort_and_dedupe(entries), parse_warning=warning)

    logger.warning("payload 形式を認識できません: %s", payload.reason)
    return ExtractionResult(results=(), parse_warning=True)


def extract_feature_types(raw: Any) -> frozenset[str]:
    """payload から SERP 機能（featured_snippet, people_also_ask 等）の種別を抽出する."""
    payload = classify_payload(raw)

    if isinstance(payload, ProviderPayload):
        return frozenset(
            item["type"]
            for item in payload.items
            if isinstance(item, dict)
            and isinstance(item.get("type"), str)
            and item["type"] != "organic"
            and item["type"]
        )

    if isinstance(payload, SimplePayload):
        types: set[str] = set()
        for f in payload.features:
            if isinstance(f, str) and f:
                types.add(f)
            elif isinstance(f, dict) and isinstance(f.get("type"), str) and f["type"]:
                types.add(f["type"])
        return frozenset(types)

    return frozenset()


def extract_feature_sorted(raw: Any) -> list[str]:
    """extract_feature_types の結果を辞書順に並べたもの."""
    return sorted(extract_feature_types(raw))


def _to_result(item: dict, rank_field: str) -> ExtractedResult:
    url = item["url"]
    domain = item.get("domain")
    title = item.get("title")
    return ExtractedResult(
        url=url,
        domain=domain if isinstance(domain, str) else _extract_domain(url),
        rank=_first_number(item, rank_field, "position"),
        title=title if isinstance(title, str) else None,
    )


def _first_number(item: dict, *keys: str):
    """指定キーを順に見て最初の数値を返す（bool は数値とみなさない）."""
    for key in keys:
        value = item.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    return None


def _extract_domain(url: str) -> str | None:
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


def _sort_and_dedupe(entries: list[ExtractedResult]) -> tuple[ExtractedResult, ...]:
    ordered = sorted(
        entries,
        key=lambda r: (r.rank is None, r.rank if r.rank is not None else 0, r.url),
    )
    seen: set[str] = set()
    results = []
    for r in ordered:
        if r.url in seen:
            continue
        seen.add(r.url)
        results.append(r)
    return tuple(results)
