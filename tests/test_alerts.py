"""alerts モジュールのユニットテスト."""

import pytest
from factories import at, make_snapshot, make_target, rank_series

from serp_volatility.alerts import build_alerts, transition_severity
from serp_volatility.models import to_dict

COMPUTED_AT = at(30)
URL = "https://example.com/a"


def _build(targets, snapshots, **kwargs):
    return build_alerts("proj-1", targets, snapshots, computed_at=COMPUTED_AT, window_days=7, **kwargs)


def _fixture():
    """alpha: 0 → 65（calm → chaotic）、beta: 65 の 1 ペアのみ."""
    alpha = make_target("kt-a", query="alpha")
    beta = make_target("kt-b", query="beta")
    snapshots = rank_series(alpha, "a", [1, 1, 51], start_day=1)  # 1〜3 日目
    snapshots += [
        make_snapshot("b-00", 1, {URL: 1}, target=beta),
        make_snapshot("b-01", 4, {URL: 51}, target=beta),
    ]
    return [alpha, beta], snapshots


class TestTransitionSeverity:
    """transition_severity のテスト."""

    @pytest.mark.parametrize("from_regime, to_regime, expected", [
        ("calm", "chaotic", 5),
        ("shifting", "chaotic", 5),
        ("unstable", "chaotic", 4),
        ("calm", "unstable", 4),
        ("shifting", "unstable", 3),
        ("calm", "shifting", 2),
        ("chaotic", "calm", 1),
        ("unstable", "shifting", 1),
    ])
    def test_severity_map(self, from_regime, to_regime, expected):
        assert transition_severity(from_regime, to_regime) == expected


class TestBuildAlerts:
    """build_alerts のテスト."""

    def test_all_triggers_in_order(self):
        targets, snapshots = _fixture()

        report = _build(targets, snapshots, spike_threshold=60)

        assert [a.trigger_type for a in report.alerts] == ["T3", "T2", "T2", "T1"]
        t3, beta_spike, alpha_spike, t1 = report.alerts
        assert t3.volatility_concentration_ratio == 1.0
        assert t3.active_keyword_count == 2
        assert beta_spike.keyword_target_id == "kt-b"
        assert alpha_spike.keyword_target_id == "kt-a"
        assert alpha_spike.exceedance_margin == 5.0
        assert (t1.from_regime, t1.to_regime) == ("calm", "chaotic")
        assert t1.to_snapshot_id == "a-02"
        assert report.total_alerts == 4
        assert report.alert_count == 4

    def test_t2_requires_strictly_greater(self):
        targets, snapshots = _fixture()

        report = _build(targets, snapshots, spike_threshold=65)

        assert "T2" not in [a.trigger_type for a in report.alerts]

    def test_t3_requires_strictly_greater(self):
        targets, snapshots = _fixture()

        report = _build(targets, snapshots, concentration_threshold=1.0)

        assert "T3" not in [a.trigger_type for a in report.alerts]

    def test_t3_absent_when_no_active_score(self):
        target = make_target("kt-a", query="alpha")
        snapshots = rank_series(target, "a", [2, 2, 2])

        report = _build([target], snapshots)

        assert report.alerts == ()

    def test_t3_not_fired_when_spread(self):
        targets, snapshots = [], []
        for i in range(4):
            target = make_target(f"kt-{i}", query=f"q{i}")
            targets.append(target)
            snapshots += rank_series(target, f"s{i}", [1, 21])

        report = _build(targets, snapshots, spike_threshold=100)

        # 4 件均等なので集中率は 0.75
        assert report.alerts == ()

    def test_t1_needs_two_pairs(self):
        target = make_target("kt-b", query="beta")
        snapshots = rank_series(target, "b", [1, 51])

        report = _build([target], snapshots, spike_threshold=100, concentration_threshold=1.0)

        assert report.alerts == ()

    def test_no_t1_when_regime_unchanged(self):
        target = make_target("kt-a", query="alpha")
        snapshots = rank_series(target, "a", [1, 51, 1])

        report = _build([target], snapshots, spike_threshold=100, concentration_threshold=1.0)

        assert report.alerts == ()

    def test_spike_tie_break_by_to_snapshot_desc(self):
        target = make_target("kt-a", query="alpha")
        snapshots = [
            make_snapshot("s-1", 1, {URL: 1}, target=target),
            make_snapshot("s-2", 2, {URL: 51}, target=target),
            make_snapshot("s-3", 2, {URL: 1}, target=target),
        ]

        report = _build([target], snapshots, spike_threshold=60, concentration_threshold=1.0)

        spikes = [a for a in report.alerts if a.trigger_type == "T2"]
        assert [a.to_snapshot_id for a in spikes] == ["s-3", "s-2"]

    def test_spike_tie_break_by_keyword(self):
        targets, snapshots = [], []
        for id_ in ("kt-z", "kt-m"):
            target = make_target(id_, query=id_)
            targets.append(target)
            snapshots += rank_series(target, id_, [1, 51])

        report = _build(targets, snapshots, spike_threshold=60, concentration_threshold=1.0)

        assert [a.keyword_target_id for a in report.alerts] == ["kt-m", "kt-z"]

    def test_spike_dedup(self):
        targets, snapshots = _fixture()

        report = _build(targets + targets, snapshots, spike_threshold=60)

        keys = [
            (a.keyword_target_id, a.to_snapshot_id, a.threshold)
            for a in report.alerts if a.trigger_type == "T2"
        ]
        assert len(keys) == len(set(keys)) == 2

    def test_input_order_independent(self):
        targets, snapshots = _fixture()

        forward = _build(targets, snapshots, spike_threshold=60)
        backward = _build(targets, snapshots[::-1], spike_threshold=60)

        assert forward == backward

    def test_limit(self):
        targets, snapshots = _fixture()

        report = _build(targets, snapshots, spike_threshold=60, limit=2)

        assert [a.trigger_type for a in report.alerts] == ["T3", "T2"]
        assert report.alert_count == 2
        assert report.total_alerts == 4
        assert report.limit == 2

    def test_serialization_has_no_sort_fields(self):
        targets, snapshots = _fixture()

        data = to_dict(_build(targets, snapshots, spike_threshold=60))

        assert data["computed_at"] == COMPUTED_AT.isoformat()
        for alert in data["alerts"]:
            assert "severity_rank" not in alert
            assert "latest_at" not in alert
        assert data["alerts"][0]["trigger_type"] == "T3"
        assert data["alerts"][0]["project_id"] == "proj-1"
