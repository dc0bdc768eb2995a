"""
Unit tests for RatingStore.
"""
import pytest

from shared.errors import Conflict
from scorekeeper.models import RatingHistory
from scorekeeper.rating_engine import Rating


@pytest.fixture
def store(ctx):
    return ctx.ratings


class TestGet:

    def test_unseen_player_gets_prior(self, store):
        view = store.get(77)
        assert view.rated is False
        assert view.rating == store.engine.default_rating()
        assert view.to_dict()['mu'] == pytest.approx(25.0)

    def test_seeded_player(self, store, make_rating):
        make_rating(5, 31.5, 4.0)
        view = store.get(5)
        assert view.rated is True
        assert view.rating == Rating(31.5, 4.0)

    def test_current_ratings_mixes_prior_and_stored(self, store, make_rating):
        make_rating(5, 31.5, 4.0)
        ratings = store.current_ratings([5, 6], lock=True)
        assert ratings[5] == Rating(31.5, 4.0)
        assert ratings[6] == store.engine.default_rating()


class TestApplyMatchUpdate:

    def test_upserts_and_appends_history(self, store, make_tournament, make_match, make_rating):
        mid = make_match(make_tournament(name='Autumn Cup'), side_a=(1,), side_b=(2,))
        make_rating(1, 25.0, 8.0)

        entries = store.apply_match_update(mid, {
            1: (Rating(25.0, 8.0), Rating(26.0, 7.5)),
            2: (Rating(25.0, 25.0 / 3), Rating(24.0, 7.8)),
        })

        assert [e.player_id for e in entries] == [1, 2]
        assert store.get(1).rating == Rating(26.0, 7.5)
        assert store.get(2).rated is True
        assert RatingHistory.query.filter_by(match_id=mid).count() == 2
        assert store.has_history_for_match(mid)

    def test_second_update_for_same_match_conflicts(self, store, make_tournament, make_match):
        mid = make_match(make_tournament())
        change = {1: (Rating(25, 8), Rating(26, 7))}
        store.apply_match_update(mid, change)

        with pytest.raises(Conflict):
            store.apply_match_update(mid, change)


class TestHistory:

    def test_history_joined_with_match_and_tournament(self, store, make_tournament, make_match):
        tid = make_tournament(name='Autumn Cup')
        first = make_match(tid, round='QF')
        second = make_match(tid, round='SF')
        store.apply_match_update(first, {1: (Rating(25, 8), Rating(26, 7))})
        store.apply_match_update(second, {1: (Rating(26, 7), Rating(27, 6))})

        history = store.history(1)

        assert [h.match_id for h in history] == [second, first]
        latest = history[0].to_dict()
        assert latest['match']['round'] == 'SF'
        assert latest['match']['tournament']['name'] == 'Autumn Cup'
        assert latest['old_rating'] == {'mu': 26, 'sigma': 7}
        assert latest['new_rating'] == {'mu': 27, 'sigma': 6}

    def test_history_limit(self, store, make_tournament, make_match):
        tid = make_tournament()
        for i in range(3):
            mid = make_match(tid)
            store.apply_match_update(mid, {1: (Rating(25 + i, 8), Rating(26 + i, 8))})
        assert len(store.history(1, limit=2)) == 2

    def test_empty_history(self, store):
        assert store.history(404) == []


class TestLeaderboard:

    def test_ordered_by_mu_with_ranks(self, store, make_rating):
        make_rating(1, 20.0, 3.0)
        make_rating(2, 30.0, 3.0)
        make_rating(3, 25.0, 3.0)

        board = store.leaderboard(limit=2)

        assert [p.player_id for p in board] == [2, 3]
        assert [p.rank for p in board] == [1, 2]
        assert board[0].to_dict()['rank'] == 1
