"""
Unit tests for RegistrationLedger.
"""
import pytest

from shared.errors import AlreadyRegistered, NotAuthorized, NotFound, TournamentFull
from shared.events import EventType
from scorekeeper.auth import Actor
from scorekeeper.models import db, Registration, Tournament


@pytest.fixture
def ledger(ctx):
    return ctx.ledger


def player(player_id):
    return Actor(user_id=player_id + 100, player_id=player_id)


class TestRegister:

    def test_register(self, ledger, make_tournament):
        tid = make_tournament(capacity=4)
        registration = ledger.register(tid, 1, txn_id='txn-1')

        assert registration['player_id'] == 1
        assert registration['txn_id'] == 'txn-1'
        assert db.session.get(Tournament, tid).registration_count == 1

    def test_duplicate_registration(self, ledger, make_tournament):
        tid = make_tournament(capacity=4)
        ledger.register(tid, 1)
        with pytest.raises(AlreadyRegistered):
            ledger.register(tid, 1)
        assert Registration.query.filter_by(tournament_id=tid).count() == 1

    def test_capacity_then_unregister_frees_slot(self, ledger, make_tournament):
        tid = make_tournament(capacity=4)
        registrations = [ledger.register(tid, pid) for pid in (1, 2, 3, 4)]

        with pytest.raises(TournamentFull):
            ledger.register(tid, 5)

        ledger.unregister(registrations[0]['id'], player(1))
        ledger.register(tid, 5)

        assert Registration.query.filter_by(tournament_id=tid).count() == 4
        assert db.session.get(Tournament, tid).registration_count == 4

    def test_unknown_tournament(self, ledger):
        with pytest.raises(NotFound):
            ledger.register(4242, 1)

    def test_registration_is_broadcast(self, ctx, ledger, make_tournament):
        tid = make_tournament()
        sub = ctx.hub.subscribe(tid)
        try:
            ledger.register(tid, 1)
            event = sub.get(timeout=0.5)
        finally:
            ctx.hub.unsubscribe(sub)

        assert event.type is EventType.PLAYER_REGISTERED
        assert event.data['registration']['player_id'] == 1


class TestUnregister:

    def test_only_owner_can_unregister(self, ledger, make_tournament):
        tid = make_tournament()
        registration = ledger.register(tid, 1)
        with pytest.raises(NotAuthorized):
            ledger.unregister(registration['id'], player(2))

    def test_unregister_missing(self, ledger):
        with pytest.raises(NotFound):
            ledger.unregister(4242, player(1))

    def test_unregister_decrements_count(self, ledger, make_tournament):
        tid = make_tournament()
        registration = ledger.register(tid, 1)
        ledger.unregister(registration['id'], player(1))
        assert db.session.get(Tournament, tid).registration_count == 0
        assert ledger.registrations_for_player(1) == []


class TestListings:

    def test_registrations_for_player(self, ledger, make_tournament):
        first = make_tournament(name='Spring Open')
        second = make_tournament(name='Summer Slam')
        ledger.register(first, 1)
        ledger.register(second, 1)
        ledger.register(second, 2)

        mine = ledger.registrations_for_player(1)
        assert {r['tournament']['name'] for r in mine} == {'Spring Open', 'Summer Slam'}

    def test_host_lists_tournament_registrations(self, ledger, make_tournament, host):
        tid = make_tournament()
        ledger.register(tid, 1)
        ledger.register(tid, 2)
        assert [r['player_id'] for r in ledger.registrations_for_tournament(tid, host)] == [1, 2]

    def test_non_host_cannot_list(self, ledger, make_tournament, outsider):
        tid = make_tournament()
        with pytest.raises(NotAuthorized):
            ledger.registrations_for_tournament(tid, outsider)
