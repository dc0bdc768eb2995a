"""
Concurrency tests.

Each worker thread runs in its own application context, so it gets its own
session and database connection, like concurrent requests would.
"""
import threading

from shared.errors import TournamentFull, VersionConflict
from scorekeeper.auth import Actor
from scorekeeper.models import db, Match, PlayerRating, RatingHistory, Registration, Tournament

REFEREE = Actor(user_id=2, player_id=901)


def run_concurrently(app, calls):
    """Start every call at the same time; collect results and domain errors."""
    barrier = threading.Barrier(len(calls))
    outcomes = [None] * len(calls)

    def worker(i, fn):
        with app.app_context():
            barrier.wait()
            try:
                outcomes[i] = ('ok', fn())
            except (TournamentFull, VersionConflict) as e:
                outcomes[i] = ('error', e)

    threads = [threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


class TestConcurrentRegistration:

    def test_capacity_is_never_exceeded(self, app, clean_db, make_tournament):
        tid = make_tournament(capacity=3)
        players = range(1, 9)

        outcomes = run_concurrently(
            app,
            [lambda pid=pid: app.ledger.register(tid, pid) for pid in players]
        )

        succeeded = [o for o in outcomes if o[0] == 'ok']
        rejected = [o for o in outcomes if o[0] == 'error']
        assert len(succeeded) == 3
        assert len(rejected) == 5
        assert all(isinstance(e, TournamentFull) for _, e in rejected)

        with app.app_context():
            rows = Registration.query.filter_by(tournament_id=tid).all()
            assert len(rows) == 3
            assert len({r.player_id for r in rows}) == 3
            assert db.session.get(Tournament, tid).registration_count == 3


class TestConcurrentScoreSubmission:

    def test_one_winner_per_version(self, app, clean_db, make_tournament, make_match):
        mid = make_match(make_tournament())
        with app.app_context():
            version = app.coordinator.begin_report(mid, REFEREE)['version']

        outcomes = run_concurrently(app, [
            lambda: app.coordinator.submit_score(mid, {'games': [[11, 5]]}, REFEREE, version),
            lambda: app.coordinator.submit_score(mid, {'games': [[5, 11]]}, REFEREE, version),
        ])

        kinds = sorted(o[0] for o in outcomes)
        assert kinds == ['error', 'ok']
        error = next(e for kind, e in outcomes if kind == 'error')
        assert isinstance(error, VersionConflict)

        winner = next(m for kind, m in outcomes if kind == 'ok')
        with app.app_context():
            match = db.session.get(Match, mid)
            assert match.version == version + 1
            assert match.score == winner['score']

    def test_concurrent_reports_apply_ratings_once(self, app, clean_db, make_tournament, make_match):
        mid = make_match(make_tournament())
        reports = 4
        score = {'games': [[11, 7], [11, 9]]}

        outcomes = run_concurrently(
            app,
            [lambda: app.coordinator.report_and_finalize(mid, score, REFEREE) for _ in range(reports)]
        )

        results = [r for kind, r in outcomes if kind == 'ok']
        assert len(results) == reports
        assert sum(1 for r in results if r.applied) == 1

        with app.app_context():
            assert RatingHistory.query.filter_by(match_id=mid).count() == 2


class TestConcurrentSharedPlayer:

    def test_no_lost_update_for_shared_player(self, app, clean_db, make_tournament, make_match):
        tid = make_tournament()
        first = make_match(tid, side_a=(1,), side_b=(2,))
        second = make_match(tid, side_a=(1,), side_b=(3,))
        score = {'games': [[11, 4], [11, 6]]}

        outcomes = run_concurrently(app, [
            lambda: app.coordinator.report_and_finalize(first, score, REFEREE),
            lambda: app.coordinator.report_and_finalize(second, score, REFEREE),
        ])

        assert [kind for kind, _ in outcomes] == ['ok', 'ok']
        assert all(result.applied for _, result in outcomes)

        with app.app_context():
            history = (
                RatingHistory.query
                .filter_by(player_id=1)
                .order_by(RatingHistory.id)
                .all()
            )
            assert len(history) == 2
            assert {h.match_id for h in history} == {first, second}
            assert history[1].old_mu == history[0].new_mu
            assert history[1].old_sigma == history[0].new_sigma

            rating = PlayerRating.query.filter_by(player_id=1).one()
            assert rating.mu == history[1].new_mu
            assert rating.sigma == history[1].new_sigma
