"""scorer モジュールのユニットテスト."""

import pytest
from factories import make_snapshot, make_target, rank_series

from serp_volatility.scorer import (
    classify_maturity,
    classify_regime,
    compute_volatility,
    normalize,
    round_half_up,
    score_pairs,
)

A = "https://a.example.com/"
B = "https://b.example.com/"
C = "https://c.example.com/"


class TestRoundHalfUp:
    """round_half_up のテスト."""

    def test_half_rounds_up(self):
        assert round_half_up(2.5, 0) == 3.0
        assert round_half_up(0.125, 2) == 0.13

    def test_below_half(self):
        assert round_half_up(1 / 3, 4) == 0.3333


class TestNormalize:
    """normalize のテスト."""

    def test_capped(self):
        assert normalize(30, 20) == 1.0
        assert normalize(10, 20) == 0.5

    def test_zero_cap(self):
        assert normalize(3, 0) == 0.0


class TestComputeVolatility:
    """compute_volatility のテスト."""

    def test_fewer_than_two_snapshots(self):
        assert compute_volatility([]).volatility_score == 0
        profile = compute_volatility([make_snapshot("s1", 0, {A: 1})])
        assert profile.sample_size == 0
        assert profile.volatility_score == 0
        assert profile.average_rank_shift == 0
        assert profile.max_rank_shift == 0

    def test_sample_size_is_pair_count(self):
        snaps = rank_series(make_target("kt-1"), "s", [1, 2, 3, 4])
        assert compute_volatility(snaps).sample_size == 3

    def test_single_move(self):
        """3 位 → 9 位の 1 ペア: 0.40×6/20 + 0.25×6/50 = 0.15."""
        snaps = [make_snapshot("s1", 0, {A: 3}), make_snapshot("s2", 1, {A: 9})]

        profile = compute_volatility(snaps)

        assert profile.sample_size == 1
        assert profile.average_rank_shift == 6
        assert profile.max_rank_shift == 6
        assert profile.volatility_score == 15.0
        assert profile.rank_shift_score == 0.3
        assert profile.max_shift_score == 0.12
        assert profile.rank_volatility_component == 15.0
        assert profile.ai_overview_component == 0
        assert profile.feature_volatility_component == 0

    def test_maximum_score(self):
        before = make_snapshot("s1", 0, {A: 1}, ai="absent")
        after = make_snapshot(
            "s2", 1, {A: 61}, ai="present",
            features=["a", "b", "c", "d", "e", "f"],
        )

        profile = compute_volatility([before, after])

        assert profile.volatility_score == 100.0
        assert profile.feature_volatility == 6
        assert profile.ai_overview_churn == 1

    def test_no_change_is_zero(self):
        snaps = rank_series(make_target("kt-1"), "s", [4, 4, 4])
        profile = compute_volatility(snaps)
        assert profile.sample_size == 2
        assert profile.volatility_score == 0

    def test_average_shift_rounded(self):
        snaps = [
            make_snapshot("s1", 0, {A: 1, B: 2, C: 3}),
            make_snapshot("s2", 1, {A: 2, B: 2, C: 3}),
        ]
        assert compute_volatility(snaps).average_rank_shift == 0.3333

    def test_ai_churn_ratio(self):
        snaps = [
            make_snapshot("s1", 0, {A: 1}, ai="absent"),
            make_snapshot("s2", 1, {A: 1}, ai="present"),
            make_snapshot("s3", 2, {A: 1}, ai="present"),
        ]

        profile = compute_volatility(snaps)

        assert profile.ai_churn_score == 0.5
        assert profile.ai_overview_component == 10.0
        assert profile.volatility_score == 10.0

    def test_deterministic(self):
        snaps = [
            make_snapshot("s1", 0, {A: 1, B: 5}, features=["video"], ai="absent"),
            make_snapshot("s2", 1, {A: 7, B: 2}, features=["local_pack"], ai="present"),
            make_snapshot("s3", 2, {A: 3, C: 1}, ai="unknown"),
        ]
        assert compute_volatility(snaps) == compute_volatility(list(snaps))

    def test_score_bounds(self):
        snaps = [
            make_snapshot("s1", 0, {A: 1, B: 100}, ai="present"),
            make_snapshot("s2", 1, {A: 100, B: 1}, ai="absent", features=list("abcdefghij")),
            make_snapshot("s3", 2, {A: 1, B: 100}, ai="present"),
        ]
        score = compute_volatility(snaps).volatility_score
        assert 0 <= score <= 100


class TestScorePairs:
    """score_pairs のテスト."""

    def test_pairs_and_regimes(self):
        snaps = rank_series(make_target("kt-1"), "s", [1, 1, 51])

        pairs = score_pairs(snaps)

        assert [(p.from_snapshot_id, p.to_snapshot_id) for p in pairs] == [
            ("s-00", "s-01"),
            ("s-01", "s-02"),
        ]
        assert [p.pair_volatility_score for p in pairs] == [0, 65.0]
        assert [p.regime for p in pairs] == ["calm", "chaotic"]

    def test_single_snapshot(self):
        assert score_pairs([make_snapshot("s1", 0, {A: 1})]) == []


class TestClassifyRegime:
    """classify_regime のテスト."""

    @pytest.mark.parametrize("score, expected", [
        (0, "calm"),
        (0.99, "calm"),
        (1, "shifting"),
        (29.99, "shifting"),
        (30, "unstable"),
        (59.99, "unstable"),
        (60, "chaotic"),
        (100, "chaotic"),
    ])
    def test_boundaries(self, score, expected):
        assert classify_regime(score) == expected


class TestClassifyMaturity:
    """classify_maturity のテスト."""

    @pytest.mark.parametrize("sample_size, expected", [
        (0, "preliminary"),
        (4, "preliminary"),
        (5, "developing"),
        (19, "developing"),
        (20, "stable"),
    ])
    def test_boundaries(self, sample_size, expected):
        assert classify_maturity(sample_size) == expected
