import logging
from dataclasses import dataclass, field
from typing import Dict, List

from shared.errors import NotAuthorized
from shared.events import (
    Event,
    match_disputed_event,
    match_finalized_event,
    match_started_event,
    score_reported_event,
    score_update_event,
)
from shared.state_machine import MatchState
from .broadcast_hub import BroadcastHub
from .match_engine import MatchEngine
from .models import Match
from .rating_engine import Rating, RatingEngine
from .rating_store import RatingStore
from .scoring import normalize_score, summarize
from .storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class MatchRatingContext:
    """Both sides of a match with the ratings they carried into it."""
    match_id: int
    tournament_id: int
    side_a: List[int]
    side_b: List[int]
    ratings: Dict[int, Rating]

    @property
    def team_a(self) -> List[Rating]:
        return [self.ratings[pid] for pid in self.side_a]

    @property
    def team_b(self) -> List[Rating]:
        return [self.ratings[pid] for pid in self.side_b]


@dataclass
class ReportResult:
    match: dict
    ratings: List[dict] = field(default_factory=list)
    applied: bool = False

    def to_dict(self) -> dict:
        return {
            'match': self.match,
            'ratings': self.ratings,
            'applied': self.applied,
        }


class Coordinator:
    """
    Drives score reports through the match state machine and the rating
    engine, one transaction per operation.

    Events are published only after the transaction commits. A failing
    publish is logged and never undoes a committed result.
    """

    def __init__(
        self,
        storage: Storage,
        matches: MatchEngine,
        engine: RatingEngine,
        store: RatingStore,
        hub: BroadcastHub = None
    ):
        self.storage = storage
        self.matches = matches
        self.engine = engine
        self.store = store
        self.hub = hub

    # Authorization

    def _is_official(self, match: Match, actor) -> bool:
        if actor.player_id == match.tournament.host_id:
            return True
        return match.referee_id is not None and actor.player_id == match.referee_id

    def _authorize_official(self, match: Match, actor):
        if not self._is_official(match, actor):
            raise NotAuthorized(
                f"Only the tournament host or the match referee can update match {match.id}"
            )

    def _authorize_dispute(self, match: Match, actor):
        if actor.player_id in match.player_ids:
            return
        if not self._is_official(match, actor):
            raise NotAuthorized(f"Only officials or participants can dispute match {match.id}")

    # Ratings

    def _rating_context(self, match: Match, lock: bool = False) -> MatchRatingContext:
        sides = match.sides
        ratings = self.store.current_ratings(sides['a'] + sides['b'], lock=lock)
        return MatchRatingContext(
            match_id=match.id,
            tournament_id=match.tournament_id,
            side_a=sides['a'],
            side_b=sides['b'],
            ratings=ratings
        )

    def _apply_ratings(self, match: Match) -> List[dict]:
        if self.store.has_history_for_match(match.id):
            logger.warning(f"Ratings for match {match.id} already applied, skipping")
            return []

        context = self._rating_context(match, lock=True)
        summary = summarize(match.score)
        new_a, new_b = self.engine.compute_team_update(
            summary.outcome,
            context.team_a,
            context.team_b,
            summary.margin
        )

        changes = {}
        sides = {}
        for side, ids, updated in (('a', context.side_a, new_a), ('b', context.side_b, new_b)):
            for pid, new in zip(ids, updated):
                changes[pid] = (context.ratings[pid], new)
                sides[pid] = side

        self.store.apply_match_update(match.id, changes)
        logger.info(
            f"Match {match.id} ({summary.outcome.value} for side a, margin {summary.margin:.2f}) "
            f"updated {len(changes)} rating(s)"
        )

        return [
            {
                'player_id': pid,
                'side': sides[pid],
                'old_mu': old.mu,
                'old_sigma': old.sigma,
                'mu': new.mu,
                'sigma': new.sigma,
            }
            for pid, (old, new) in sorted(changes.items())
        ]

    def _current_ratings_payload(self, match: Match) -> List[dict]:
        context = self._rating_context(match)
        return [
            {
                'player_id': pid,
                'side': 'a' if pid in context.side_a else 'b',
                'mu': rating.mu,
                'sigma': rating.sigma,
            }
            for pid, rating in sorted(context.ratings.items())
        ]

    def _publish(self, event: Event):
        if self.hub is None:
            return
        try:
            self.hub.publish(event)
        except Exception:
            logger.exception(f"Failed to publish {event.type} for match {event.match_id}")

    # Operations

    def report_and_finalize(self, match_id: int, score, actor, expected_version: int = None) -> ReportResult:
        """
        Report a score and finalize the match in one transaction.

        Re-reporting a finalized match with the same score succeeds without
        touching any rating (``applied`` is False).
        """
        score = normalize_score(score)

        with self.storage.transaction():
            match = self.matches.get_match(match_id, lock=True)
            self._authorize_official(match, actor)

            if match.state == MatchState.FINALIZED.value:
                match, _ = self.matches.finalize(match_id, score=score)
                return ReportResult(match.to_dict(), self._current_ratings_payload(match), applied=False)

            version = expected_version
            if match.state == MatchState.SCHEDULED.value:
                match = self.matches.begin_report(match_id, actor.player_id, version)
                version = match.version
            if match.state != MatchState.REPORTED.value:
                match = self.matches.submit_score(match_id, score, actor.player_id, version)
                version = match.version

            match, _ = self.matches.finalize(match_id, version, score)
            ratings = self._apply_ratings(match)
            result = ReportResult(match.to_dict(), ratings, applied=bool(ratings))

        self._publish(match_finalized_event(result.match, result.ratings))
        return result

    def begin_report(self, match_id: int, actor, expected_version: int = None) -> dict:
        with self.storage.transaction():
            match = self.matches.get_match(match_id, lock=True)
            self._authorize_official(match, actor)
            was_started = match.state == MatchState.IN_PROGRESS.value
            match = self.matches.begin_report(match_id, actor.player_id, expected_version)
            snapshot = match.to_dict()

        if not was_started:
            self._publish(match_started_event(snapshot))
        return snapshot

    def submit_score(self, match_id: int, score, actor, expected_version: int) -> dict:
        score = normalize_score(score)

        with self.storage.transaction():
            match = self.matches.get_match(match_id, lock=True)
            self._authorize_official(match, actor)
            match = self.matches.submit_score(match_id, score, actor.player_id, expected_version)
            snapshot = match.to_dict()

        self._publish(score_reported_event(snapshot, actor.player_id))
        return snapshot

    def finalize(self, match_id: int, actor, expected_version: int = None, score=None) -> ReportResult:
        if score is not None:
            score = normalize_score(score)

        with self.storage.transaction():
            match = self.matches.get_match(match_id, lock=True)
            self._authorize_official(match, actor)
            match, changed = self.matches.finalize(match_id, expected_version, score)
            if changed:
                ratings = self._apply_ratings(match)
            else:
                ratings = self._current_ratings_payload(match)
            result = ReportResult(match.to_dict(), ratings, applied=changed and bool(ratings))

        if changed:
            self._publish(match_finalized_event(result.match, result.ratings))
        return result

    def dispute(self, match_id: int, actor, expected_version: int, reason: str = None) -> dict:
        with self.storage.transaction():
            match = self.matches.get_match(match_id, lock=True)
            self._authorize_dispute(match, actor)
            match = self.matches.dispute(match_id, actor.player_id, expected_version, reason)
            snapshot = match.to_dict()

        self._publish(match_disputed_event(snapshot, actor.player_id, reason))
        return snapshot

    def post_live_score(self, match_id: int, actor, game: int, points_a: int, points_b: int) -> dict:
        """Record an in-progress tally and broadcast it with a live win probability."""
        with self.storage.transaction():
            match = self.matches.get_match(match_id)
            self._authorize_official(match, actor)
            match, entry = self.matches.record_live_score(
                match_id, game, points_a, points_b, actor.player_id
            )
            context = self._rating_context(match)
            probability = self.engine.live_win_probability(
                context.team_a, context.team_b, points_a, points_b
            )
            payload = dict(entry.to_dict(), win_probability_a=probability)
            tournament_id = match.tournament_id

        self._publish(score_update_event(
            tournament_id, match_id, game, points_a, points_b, probability
        ))
        return payload
