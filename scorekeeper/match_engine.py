import logging
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy.orm.exc import StaleDataError

from shared.errors import InvalidTransition, ValidationError, VersionConflict
from shared.state_machine import MatchState, MatchStateMachine
from .models import LiveScore, Match
from .validation import MAX_INT
from .storage import Storage

logger = logging.getLogger(__name__)


class MatchEngine:
    """
    Versioned, persisted transitions for a single match.

    Every mutation checks the caller's ``expected_version`` against the
    stored one, asks ``MatchStateMachine`` for the next state and flushes.
    The ORM's version column turns the flush into a compare-and-swap, so a
    writer that slipped in between load and flush is also reported as a
    ``VersionConflict``. Nothing here commits.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def get_match(self, match_id: int, lock: bool = False) -> Match:
        return self.storage.get_or_404(Match, match_id, lock=lock)

    def _machine(self, match: Match, action: str) -> MatchStateMachine:
        sm = MatchStateMachine.from_state_string(match.state)
        if sm.is_terminal:
            raise InvalidTransition(match.state, action, f"Match {match.id} is finalized")
        return sm

    def _check_version(self, match: Match, expected_version: Optional[int]):
        if expected_version is not None and expected_version != match.version:
            raise VersionConflict(expected_version, match.version)

    def _flush(self, match: Match, expected_version: Optional[int]):
        try:
            self.storage.flush()
        except StaleDataError as e:
            raise VersionConflict(
                expected_version if expected_version is not None else match.version,
                None,
                f"Match {match.id} was modified concurrently"
            ) from e

    def begin_report(self, match_id: int, reporter_id: int, expected_version: int = None) -> Match:
        match = self.get_match(match_id, lock=True)
        sm = self._machine(match, 'begin')
        self._check_version(match, expected_version)

        sm.transition('begin', {'participants': match.sides})
        match.state = sm.state.value
        if match.started_at is None:
            match.started_at = datetime.utcnow()

        self._flush(match, expected_version)
        logger.info(f"Match {match_id} in progress (reporter {reporter_id})")
        return match

    def submit_score(self, match_id: int, score: dict, reporter_id: int, expected_version: int) -> Match:
        match = self.get_match(match_id, lock=True)
        sm = self._machine(match, 'submit_score')
        self._check_version(match, expected_version)

        sm.transition('submit_score', {'participants': match.sides})
        match.state = sm.state.value
        match.score = score
        match.reported_by = reporter_id
        match.reported_at = datetime.utcnow()
        match.dispute_reason = None

        self._flush(match, expected_version)
        logger.info(f"Score reported for match {match_id} by {reporter_id}: {score}")
        return match

    def dispute(self, match_id: int, disputer_id: int, expected_version: int, reason: str = None) -> Match:
        match = self.get_match(match_id, lock=True)
        sm = self._machine(match, 'dispute')
        self._check_version(match, expected_version)

        sm.transition('dispute')
        match.state = sm.state.value
        match.dispute_reason = reason

        self._flush(match, expected_version)
        logger.info(f"Match {match_id} disputed by {disputer_id}")
        return match

    def finalize(self, match_id: int, expected_version: int = None, score: dict = None) -> Tuple[Match, bool]:
        """
        Lock in the reported score.

        Returns:
            (match, changed) - ``changed`` is False when the match was
            already finalized with the same score
        """
        match = self.get_match(match_id, lock=True)

        if match.state == MatchState.FINALIZED.value:
            if score is not None and score != match.score:
                raise InvalidTransition(
                    match.state,
                    'finalize',
                    f"Match {match_id} is already finalized with a different score"
                )
            return match, False

        sm = self._machine(match, 'finalize')
        self._check_version(match, expected_version)
        if score is not None and score != match.score:
            raise VersionConflict(
                expected_version if expected_version is not None else match.version,
                match.version,
                f"Reported score of match {match_id} differs from the one being finalized"
            )

        sm.transition('finalize')
        match.state = sm.state.value
        match.finalized_at = datetime.utcnow()

        self._flush(match, expected_version)
        logger.info(f"Match {match_id} finalized")
        return match, True

    def record_live_score(
        self,
        match_id: int,
        game: int,
        points_a: int,
        points_b: int,
        reporter_id: int
    ) -> Tuple[Match, LiveScore]:
        """Append an in-progress tally; the match row and version are untouched."""
        match = self.get_match(match_id)
        sm = MatchStateMachine.from_state_string(match.state)
        if not sm.can_perform('live_score'):
            raise InvalidTransition(match.state, 'live_score', f"Match {match_id} is not in progress")

        for label, value in (('game', game), ('points_a', points_a), ('points_b', points_b)):
            if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= MAX_INT:
                raise ValidationError(f"{label} must be a non-negative integer")
        if game < 1:
            raise ValidationError("game must be at least 1")

        entry = LiveScore(
            match_id=match_id,
            game=game,
            side_a_points=points_a,
            side_b_points=points_b,
            reported_by=reporter_id
        )
        self.storage.add(entry)
        self.storage.flush()
        return match, entry

    def latest_live_score(self, match_id: int) -> Optional[LiveScore]:
        return (
            LiveScore.query
            .filter_by(match_id=match_id)
            .order_by(LiveScore.id.desc())
            .first()
        )
