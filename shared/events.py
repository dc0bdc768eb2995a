from enum import Enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List
import json


class EventType(str, Enum):
    # Match lifecycle
    MATCH_STARTED = "match.started"
    MATCH_SCORE_REPORTED = "match.score_reported"
    MATCH_DISPUTED = "match.disputed"
    MATCH_FINALIZED = "match.finalized"

    # Live scoring
    MATCH_SCORE_UPDATE = "match.score_update"

    # Registration
    PLAYER_REGISTERED = "player.registered"
    PLAYER_UNREGISTERED = "player.unregistered"


@dataclass
class Event:
    type: EventType
    tournament_id: int
    match_id: Optional[int] = None
    timestamp: str = None
    data: dict = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow().isoformat() + "Z"
        if self.data is None:
            self.data = {}

    @property
    def scope(self) -> tuple:
        """Most specific subscription key this event belongs to."""
        if self.match_id is None:
            return (self.tournament_id,)
        return (self.tournament_id, self.match_id)

    def to_dict(self) -> dict:
        return {
            "type": self.type.value if isinstance(self.type, EventType) else self.type,
            "tournament_id": self.tournament_id,
            "match_id": self.match_id,
            "timestamp": self.timestamp,
            "data": self.data
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "Event":
        return cls(
            type=EventType(data["type"]) if data["type"] in [e.value for e in EventType] else data["type"],
            tournament_id=data["tournament_id"],
            match_id=data.get("match_id"),
            timestamp=data.get("timestamp"),
            data=data.get("data", {})
        )

    @classmethod
    def from_json(cls, json_str: str) -> "Event":
        return cls.from_dict(json.loads(json_str))


def match_started_event(match: dict) -> Event:
    return Event(
        type=EventType.MATCH_STARTED,
        tournament_id=match["tournament_id"],
        match_id=match["id"],
        data={"match": match}
    )


def score_reported_event(match: dict, reporter_id: int) -> Event:
    return Event(
        type=EventType.MATCH_SCORE_REPORTED,
        tournament_id=match["tournament_id"],
        match_id=match["id"],
        data={
            "match": match,
            "reported_by": reporter_id
        }
    )


def match_disputed_event(match: dict, disputer_id: int, reason: str) -> Event:
    return Event(
        type=EventType.MATCH_DISPUTED,
        tournament_id=match["tournament_id"],
        match_id=match["id"],
        data={
            "match": match,
            "disputed_by": disputer_id,
            "reason": reason
        }
    )


def match_finalized_event(match: dict, ratings: List[dict]) -> Event:
    return Event(
        type=EventType.MATCH_FINALIZED,
        tournament_id=match["tournament_id"],
        match_id=match["id"],
        data={
            "match": match,
            "ratings": ratings
        }
    )


def score_update_event(
    tournament_id: int,
    match_id: int,
    game: int,
    points_a: int,
    points_b: int,
    win_probability_a: float
) -> Event:
    return Event(
        type=EventType.MATCH_SCORE_UPDATE,
        tournament_id=tournament_id,
        match_id=match_id,
        data={
            "game": game,
            "points_a": points_a,
            "points_b": points_b,
            "win_probability_a": win_probability_a
        }
    )


def registration_event(event_type: EventType, registration: dict) -> Event:
    return Event(
        type=event_type,
        tournament_id=registration["tournament_id"],
        data={"registration": registration}
    )
