"""Unit tests for the list helpers shared by every strategy."""

from __future__ import annotations

import random

import pytest

from src.models.recommendation import Recommendation, RecommendationRequest
from src.services.strategies.base import BaseRecommendationStrategy
from tests.conftest import make_recs


class _StubStrategy(BaseRecommendationStrategy):
    async def recommend(self, request: RecommendationRequest) -> list[Recommendation]:
        return []

    def get_strategy_name(self) -> str:
        return "Stub"


@pytest.fixture
def strategy(mock_repository) -> _StubStrategy:
    return _StubStrategy(mock_repository, rng=random.Random(7))


class TestFilterExcluded:
    def test_removes_excluded_ids(self) -> None:
        recs = make_recs({1: 0.9, 2: 0.8, 3: 0.7})
        result = BaseRecommendationStrategy.filter_excluded_songs(recs, {2})
        assert [r.song_id for r in result] == [1, 3]

    def test_empty_exclusion_keeps_everything(self) -> None:
        recs = make_recs({1: 0.9, 2: 0.8})
        assert BaseRecommendationStrategy.filter_excluded_songs(recs, []) == recs


class TestNormalizeScores:
    def test_rescales_to_unit_interval(self) -> None:
        recs = make_recs({1: 2.0, 2: 4.0, 3: 6.0})
        result = BaseRecommendationStrategy.normalize_scores(recs)
        assert [r.score for r in result] == pytest.approx([0.0, 0.5, 1.0])

    def test_idempotent_on_normalized_list(self) -> None:
        recs = make_recs({1: 0.0, 2: 0.25, 3: 1.0})
        once = BaseRecommendationStrategy.normalize_scores(recs)
        twice = BaseRecommendationStrategy.normalize_scores(once)
        assert [r.score for r in twice] == pytest.approx([r.score for r in once])

    def test_equal_scores_are_unchanged(self) -> None:
        recs = make_recs({1: 0.4, 2: 0.4})
        result = BaseRecommendationStrategy.normalize_scores(recs)
        assert [r.score for r in result] == [0.4, 0.4]

    def test_single_candidate_keeps_raw_score(self) -> None:
        recs = make_recs({1: 3.5})
        assert BaseRecommendationStrategy.normalize_scores(recs)[0].score == 3.5

    def test_empty_list(self) -> None:
        assert BaseRecommendationStrategy.normalize_scores([]) == []


class TestApplyDiversityFactor:
    def test_zero_factor_is_noop(self, strategy: _StubStrategy) -> None:
        recs = make_recs({i: 1.0 - i / 100 for i in range(20)})
        assert strategy.apply_diversity_factor(recs, 0.0) == recs

    def test_short_lists_are_untouched(self, strategy: _StubStrategy) -> None:
        recs = make_recs({i: 1.0 - i / 100 for i in range(10)})
        assert strategy.apply_diversity_factor(recs, 0.9) == recs

    def test_keeps_head_and_samples_tail(self, strategy: _StubStrategy) -> None:
        # n=20, f=0.5: head of 10, sample int(0.5 * 20 * 0.3) = 3 from the tail.
        recs = make_recs({i: 1.0 - i / 100 for i in range(20)})
        result = strategy.apply_diversity_factor(recs, 0.5)

        assert len(result) == 13
        assert [r.song_id for r in result[:10]] == list(range(10))
        assert all(r.song_id >= 10 for r in result[10:])
        scores = [r.score for r in result]
        assert scores == sorted(scores, reverse=True)

    def test_seeded_rng_is_deterministic(self, mock_repository) -> None:
        recs = make_recs({i: 1.0 - i / 100 for i in range(30)})
        first = _StubStrategy(mock_repository, rng=random.Random(3))
        second = _StubStrategy(mock_repository, rng=random.Random(3))
        assert first.apply_diversity_factor(recs, 0.6) == second.apply_diversity_factor(recs, 0.6)


class TestRankAndDedupe:
    def test_rank_sorts_descending_and_truncates(self) -> None:
        recs = make_recs({1: 0.2, 2: 0.9, 3: 0.5})
        result = BaseRecommendationStrategy.rank(recs, limit=2)
        assert [r.song_id for r in result] == [2, 3]

    def test_rank_is_stable_for_ties(self) -> None:
        recs = make_recs({5: 0.5, 3: 0.5, 9: 0.5})
        assert [r.song_id for r in BaseRecommendationStrategy.rank(recs)] == [5, 3, 9]

    def test_keep_highest_score(self) -> None:
        recs = make_recs({1: 0.3, 2: 0.4}) + make_recs({1: 0.8})
        result = BaseRecommendationStrategy.keep_highest_score(recs)
        assert {r.song_id: r.score for r in result} == {1: 0.8, 2: 0.4}
        assert [r.song_id for r in result] == [1, 2]
