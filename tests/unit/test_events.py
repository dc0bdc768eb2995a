"""
Unit tests for live event payloads.
"""
import json

from shared.events import (
    Event,
    EventType,
    match_finalized_event,
    registration_event,
    score_update_event,
)

MATCH = {'id': 12, 'tournament_id': 7, 'state': 'finalized', 'version': 4}


class TestEvent:

    def test_payload_shape(self):
        event = match_finalized_event(MATCH, [{'player_id': 1, 'mu': 26.1, 'sigma': 7.8}])
        data = event.to_dict()
        assert set(data) == {'type', 'tournament_id', 'match_id', 'timestamp', 'data'}
        assert data['type'] == 'match.finalized'
        assert data['tournament_id'] == 7
        assert data['match_id'] == 12
        assert data['data']['ratings'][0]['player_id'] == 1

    def test_timestamp_defaults_to_utc_iso(self):
        event = Event(type=EventType.MATCH_STARTED, tournament_id=1)
        assert event.timestamp.endswith('Z')

    def test_json_round_trip(self):
        event = score_update_event(7, 12, 2, 8, 6, 0.71)
        restored = Event.from_json(event.to_json())
        assert restored.type is EventType.MATCH_SCORE_UPDATE
        assert restored.match_id == 12
        assert restored.data['win_probability_a'] == 0.71

    def test_to_json_is_valid_json(self):
        event = score_update_event(7, 12, 1, 3, 2, 0.5)
        assert json.loads(event.to_json())['data']['points_a'] == 3


class TestScope:

    def test_match_event_scope(self):
        assert match_finalized_event(MATCH, []).scope == (7, 12)

    def test_registration_event_is_tournament_scoped(self):
        event = registration_event(
            EventType.PLAYER_REGISTERED,
            {'id': 1, 'tournament_id': 7, 'player_id': 3}
        )
        assert event.match_id is None
        assert event.scope == (7,)
