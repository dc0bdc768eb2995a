"""
Pytest configuration and fixtures for scorekeeper tests.
"""
import os
import sys
from contextlib import contextmanager

import pytest
from flask import has_app_context

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Set testing environment before importing app
os.environ['FLASK_ENV'] = 'testing'

from scorekeeper.app import create_app
from scorekeeper.auth import Actor
from scorekeeper.models import db, Tournament, TournamentReferee, Match, MatchParticipant, PlayerRating

HOST_ID = 900
REFEREE_ID = 901
OUTSIDER_ID = 999


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing.

    A file database gives every thread its own connection, which the
    concurrency tests rely on.
    """
    db_path = tmp_path_factory.mktemp('db') / 'scorekeeper.db'
    app = create_app('testing', {
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLITE_BUSY_TIMEOUT': 10,
    })
    yield app
    app.hub.shutdown()


@pytest.fixture(scope='function')
def clean_db(app):
    """Clear all tables before each test."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
    yield


@pytest.fixture(scope='function')
def client(app, clean_db):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def ctx(app, clean_db):
    """Application context for calling services directly."""
    with app.app_context():
        yield app
        db.session.rollback()


@contextmanager
def _session(app):
    if has_app_context():
        yield db.session
    else:
        with app.app_context():
            yield db.session


@pytest.fixture
def make_tournament(app):
    """Factory: create a tournament and return its id."""
    def _make(capacity=16, host_id=HOST_ID, name='Spring Open', referees=()):
        with _session(app) as session:
            tournament = Tournament(name=name, host_id=host_id, capacity=capacity, registration_count=0)
            session.add(tournament)
            session.flush()
            tournament_id = tournament.id
            for player_id in referees:
                session.add(TournamentReferee(tournament_id=tournament_id, player_id=player_id))
            session.commit()
            return tournament_id
    return _make


@pytest.fixture
def make_match(app):
    """Factory: create a match with the given sides and return its id."""
    def _make(tournament_id, side_a=(1,), side_b=(2,), referee_id=REFEREE_ID,
              state='scheduled', score=None, round='1'):
        with _session(app) as session:
            match = Match(
                tournament_id=tournament_id,
                round=round,
                state=state,
                score=score,
                referee_id=referee_id
            )
            for side, players in (('a', side_a), ('b', side_b)):
                for position, player_id in enumerate(players):
                    match.participants.append(
                        MatchParticipant(player_id=player_id, side=side, position=position)
                    )
            session.add(match)
            session.flush()
            match_id = match.id
            session.commit()
            return match_id
    return _make


@pytest.fixture
def make_rating(app):
    """Factory: seed a player's rating."""
    def _make(player_id, mu, sigma):
        with _session(app) as session:
            session.add(PlayerRating(player_id=player_id, mu=mu, sigma=sigma))
            session.commit()
    return _make


@pytest.fixture
def host():
    return Actor(user_id=1, player_id=HOST_ID)


@pytest.fixture
def referee():
    return Actor(user_id=2, player_id=REFEREE_ID)


@pytest.fixture
def outsider():
    return Actor(user_id=3, player_id=OUTSIDER_ID)


@pytest.fixture
def auth_headers():
    """Factory: identity headers the gateway would forward."""
    def _headers(player_id, user_id=None):
        return {
            'X-User-Id': str(user_id or player_id + 10000),
            'X-Player-Id': str(player_id),
        }
    return _headers


@pytest.fixture
def mock_relay(mocker):
    """Mock redis relay."""
    relay = mocker.MagicMock()
    relay.publish_event = mocker.MagicMock()
    return relay
