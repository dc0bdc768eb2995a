"""
Unit tests for score normalization and summaries.
"""
import pytest

from shared.errors import ValidationError
from scorekeeper.rating_engine import Outcome
from scorekeeper.scoring import MAX_GAMES, normalize_score, summarize


class TestNormalizeScore:

    def test_mapping_games(self):
        score = normalize_score({'games': [{'a': 11, 'b': 7}, {'a': 9, 'b': 11}]})
        assert score == {'games': [{'a': 11, 'b': 7}, {'a': 9, 'b': 11}]}

    def test_pairs_are_normalized(self):
        assert normalize_score({'games': [[11, 3]]}) == {'games': [{'a': 11, 'b': 3}]}

    @pytest.mark.parametrize('raw', [
        None,
        [],
        {'games': []},
        {'games': 'x'},
        {'games': [{'a': 11}]},
        {'games': [{'a': -1, 'b': 11}]},
        {'games': [{'a': 11.5, 'b': 3}]},
        {'games': [{'a': True, 'b': 3}]},
        {'games': [[1, 2, 3]]},
    ])
    def test_rejects_malformed(self, raw):
        with pytest.raises(ValidationError):
            normalize_score(raw)

    def test_rejects_too_many_games(self):
        with pytest.raises(ValidationError):
            normalize_score({'games': [[11, 0]] * (MAX_GAMES + 1)})


class TestSummarize:

    def test_best_of_three(self):
        summary = summarize(normalize_score({'games': [[11, 7], [9, 11], [11, 4]]}))
        assert summary.games_a == 2
        assert summary.games_b == 1
        assert summary.outcome is Outcome.WIN
        assert summary.margin == pytest.approx((31 - 22) / 3)

    def test_loss(self):
        summary = summarize(normalize_score({'games': [[5, 11]]}))
        assert summary.outcome is Outcome.LOSS
        assert summary.margin == 6

    def test_draw_on_games(self):
        summary = summarize(normalize_score({'games': [[11, 5], [5, 11]]}))
        assert summary.outcome is Outcome.DRAW
