"""aggregator モジュールのユニットテスト."""

from factories import make_target, rank_series

from serp_volatility.aggregator import (
    concentration_ratio,
    exceeds_alert_threshold,
    group_snapshots,
    score_keywords,
    summarize_project,
)
from serp_volatility.models import VolatilityProfile


def _keyword(id_: str, query: str, ranks: list[int]):
    target = make_target(id_, query=query)
    return target, rank_series(target, id_, ranks)


def _project():
    """スコア 65 / 50 / 15 / 10 / 0 / スナップショットなし の 6 キーワード."""
    specs = [
        ("kt-1", "alpha", [1, 51]),   # 65.0
        ("kt-2", "bravo", [1, 21]),   # 50.0
        ("kt-3", "charlie", [1, 7]),  # 15.0
        ("kt-4", "delta", [1, 5]),    # 10.0
        ("kt-5", "echo", [3, 3]),     # 0
        ("kt-6", "foxtrot", []),
    ]
    targets, snapshots = [], []
    for id_, query, ranks in specs:
        target, snaps = _keyword(id_, query, ranks)
        targets.append(target)
        snapshots.extend(snaps)
    return targets, snapshots


class TestGroupSnapshots:
    """group_snapshots のテスト."""

    def test_groups_and_sorts(self):
        target = make_target("kt-1", query="alpha")
        snaps = rank_series(target, "s", [1, 2, 3])

        groups = group_snapshots(reversed(snaps))

        assert list(groups) == [target.natural_key]
        assert [s.id for s in groups[target.natural_key]] == ["s-00", "s-01", "s-02"]


class TestSummarizeProject:
    """summarize_project のテスト."""

    def test_counts_and_averages(self):
        targets, snapshots = _project()

        summary = summarize_project(targets, snapshots)

        assert summary.keyword_count == 6
        assert summary.active_keyword_count == 5
        assert summary.average_volatility == 23.33
        assert summary.max_volatility == 65.0
        assert summary.weighted_project_volatility_score == 28.0
        assert summary.volatility_concentration_ratio == 0.9286

    def test_buckets_sum_to_keyword_count(self):
        targets, snapshots = _project()

        summary = summarize_project(targets, snapshots)

        assert summary.high_volatility_count == 1
        assert summary.medium_volatility_count == 1
        assert summary.low_volatility_count == 2
        assert summary.stable_count == 2
        assert (
            summary.high_volatility_count + summary.medium_volatility_count
            + summary.low_volatility_count + summary.stable_count
        ) == summary.keyword_count
        assert summary.preliminary_count == 6
        assert summary.developing_count == 0
        assert summary.mature_count == 0

    def test_top3(self):
        targets, snapshots = _project()

        summary = summarize_project(targets, snapshots, alert_threshold=50)

        top = summary.top3_risk_keywords
        assert [k.keyword_target_id for k in top] == ["kt-1", "kt-2", "kt-3"]
        assert [k.volatility_regime for k in top] == ["chaotic", "unstable", "shifting"]
        assert [k.exceeds_alert_threshold for k in top] == [True, True, False]
        assert summary.alert_threshold == 50

    def test_top3_tie_break(self):
        targets, snapshots = [], []
        for id_, query in (("kt-b", "same"), ("kt-a", "same"), ("kt-c", "aaa")):
            target, snaps = _keyword(id_, query, [1, 7])
            targets.append(target)
            snapshots.extend(snaps)

        # 同一 natural key のため kt-a / kt-b は同じスナップショットを共有する
        summary = summarize_project(targets, snapshots)

        assert [k.keyword_target_id for k in summary.top3_risk_keywords] == ["kt-c", "kt-a", "kt-b"]

    def test_all_inactive(self):
        targets = [make_target(f"kt-{i}", query=f"q{i}") for i in range(5)]

        summary = summarize_project(targets, [])

        assert summary.keyword_count == 5
        assert summary.active_keyword_count == 0
        assert summary.average_volatility == 0
        assert summary.max_volatility == 0
        assert summary.weighted_project_volatility_score == 0
        assert summary.volatility_concentration_ratio is None
        assert summary.stable_count == 5
        assert summary.preliminary_count == 5
        assert summary.top3_risk_keywords == ()

    def test_no_keywords(self):
        summary = summarize_project([], [])
        assert summary.keyword_count == 0
        assert summary.average_volatility == 0

    def test_weighted_by_sample_size(self):
        t1, s1 = _keyword("kt-1", "alpha", [1, 1, 1])  # 0, sample 2
        t2, s2 = _keyword("kt-2", "bravo", [1, 21])    # 50, sample 1

        summary = summarize_project([t1, t2], s1 + s2)

        assert summary.weighted_project_volatility_score == 16.67
        assert summary.average_volatility == 25.0

    def test_input_order_independent(self):
        targets, snapshots = _project()
        assert summarize_project(targets, snapshots) == summarize_project(targets, snapshots[::-1])


class TestConcentrationRatio:
    """concentration_ratio のテスト."""

    def test_three_or_fewer_is_one(self):
        targets, snapshots = _project()
        active = [r for r in score_keywords(targets[:2], snapshots) if r.is_active]
        assert concentration_ratio(active) == 1.0

    def test_zero_total(self):
        t, s = _keyword("kt-1", "alpha", [2, 2])
        assert concentration_ratio(score_keywords([t], s)) is None

    def test_empty(self):
        assert concentration_ratio([]) is None


class TestExceedsAlertThreshold:
    """exceeds_alert_threshold のテスト."""

    def test_no_samples_never_exceeds(self):
        assert exceeds_alert_threshold(VolatilityProfile.zero(), 0) is False

    def test_inclusive(self):
        profile = VolatilityProfile(
            sample_size=1, average_rank_shift=0, max_rank_shift=0,
            feature_volatility=0, ai_overview_churn=0, volatility_score=60.0,
        )
        assert exceeds_alert_threshold(profile, 60) is True
        assert exceeds_alert_threshold(profile, 61) is False
