import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from shared.errors import Conflict
from .models import Match, PlayerRating, RatingHistory
from .rating_engine import Rating, RatingEngine
from .storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class TournamentSummary:
    id: int
    name: str


@dataclass
class MatchSummary:
    id: int
    round: Optional[str]
    tournament: Optional[TournamentSummary]


@dataclass
class RatingHistoryView:
    """One history row joined with the match and tournament it came from."""
    id: int
    match_id: int
    match: Optional[MatchSummary]
    old_rating: Rating
    new_rating: Rating
    created_at: Optional[datetime]

    def to_dict(self) -> dict:
        match = None
        if self.match:
            tournament = None
            if self.match.tournament:
                tournament = {'id': self.match.tournament.id, 'name': self.match.tournament.name}
            match = {'id': self.match.id, 'round': self.match.round, 'tournament': tournament}
        return {
            'id': self.id,
            'match_id': self.match_id,
            'match': match,
            'old_rating': {'mu': self.old_rating.mu, 'sigma': self.old_rating.sigma},
            'new_rating': {'mu': self.new_rating.mu, 'sigma': self.new_rating.sigma},
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class PlayerRatingView:
    player_id: int
    rating: Rating
    last_updated: Optional[datetime] = None
    rated: bool = True
    rank: Optional[int] = field(default=None)

    def to_dict(self) -> dict:
        data = {
            'player_id': self.player_id,
            'mu': self.rating.mu,
            'sigma': self.rating.sigma,
            'last_updated': self.last_updated.isoformat() if self.last_updated else None,
            'rated': self.rated,
        }
        if self.rank is not None:
            data['rank'] = self.rank
        return data


class RatingStore:
    """
    Persistent per-player ``(mu, sigma)`` plus the append-only history log.

    Rating rows are only ever upserted; history rows are only ever inserted.
    Neither method commits: callers run them inside ``Storage.transaction()``
    together with the match transition that caused them.
    """

    def __init__(self, storage: Storage, engine: RatingEngine):
        self.storage = storage
        self.engine = engine

    def get(self, player_id: int) -> PlayerRatingView:
        row = PlayerRating.query.filter_by(player_id=player_id).first()
        if row is None:
            return PlayerRatingView(player_id, self.engine.default_rating(), rated=False)
        return PlayerRatingView(player_id, Rating(row.mu, row.sigma), row.last_updated)

    def lock_rows(self, player_ids: Iterable[int]) -> Dict[int, PlayerRating]:
        """Load and row-lock existing rating rows, in player id order."""
        ids = sorted(set(player_ids))
        if not ids:
            return {}
        rows = (
            PlayerRating.query
            .filter(PlayerRating.player_id.in_(ids))
            .order_by(PlayerRating.player_id)
            .with_for_update()
            .populate_existing()
            .all()
        )
        return {row.player_id: row for row in rows}

    def current_ratings(self, player_ids: Iterable[int], lock: bool = False) -> Dict[int, Rating]:
        """Current rating for every player, the prior for unseen players."""
        ids = list(player_ids)
        if lock:
            rows = self.lock_rows(ids)
        else:
            rows = {
                row.player_id: row
                for row in PlayerRating.query.filter(PlayerRating.player_id.in_(ids)).all()
            }
        default = self.engine.default_rating()
        return {
            pid: Rating(rows[pid].mu, rows[pid].sigma) if pid in rows else default
            for pid in ids
        }

    def has_history_for_match(self, match_id: int) -> bool:
        return RatingHistory.query.filter_by(match_id=match_id).first() is not None

    def apply_match_update(
        self,
        match_id: int,
        changes: Dict[int, Tuple[Rating, Rating]]
    ) -> List[RatingHistory]:
        """
        Upsert new ratings and append one history row per player.

        Args:
            match_id: Match that caused the change
            changes: player_id -> (old_rating, new_rating)

        Returns:
            The history rows written, in player id order
        """
        session = self.storage.session
        rows = self.lock_rows(changes.keys())
        now = datetime.utcnow()
        entries = []

        for player_id in sorted(changes):
            old, new = changes[player_id]
            row = rows.get(player_id)
            if row is None:
                row = PlayerRating(player_id=player_id)
                session.add(row)
            row.mu = new.mu
            row.sigma = new.sigma
            row.last_updated = now

            entry = RatingHistory(
                player_id=player_id,
                match_id=match_id,
                old_mu=old.mu,
                old_sigma=old.sigma,
                new_mu=new.mu,
                new_sigma=new.sigma,
                created_at=now
            )
            session.add(entry)
            entries.append(entry)

        try:
            session.flush()
        except IntegrityError as e:
            raise Conflict(f"Ratings for match {match_id} were changed concurrently") from e

        logger.info(f"Applied rating changes for match {match_id} to {len(entries)} player(s)")
        return entries

    def history(self, player_id: int, limit: int = None) -> List[RatingHistoryView]:
        query = (
            RatingHistory.query
            .options(joinedload(RatingHistory.match).joinedload(Match.tournament))
            .filter_by(player_id=player_id)
            .order_by(RatingHistory.created_at.desc(), RatingHistory.id.desc())
        )
        if limit:
            query = query.limit(limit)

        views = []
        for h in query.all():
            match = None
            if h.match is not None:
                tournament = None
                if h.match.tournament is not None:
                    tournament = TournamentSummary(h.match.tournament.id, h.match.tournament.name)
                match = MatchSummary(h.match.id, h.match.round, tournament)
            views.append(RatingHistoryView(
                id=h.id,
                match_id=h.match_id,
                match=match,
                old_rating=Rating(h.old_mu, h.old_sigma),
                new_rating=Rating(h.new_mu, h.new_sigma),
                created_at=h.created_at
            ))
        return views

    def leaderboard(self, limit: int = 100) -> List[PlayerRatingView]:
        rows = (
            PlayerRating.query
            .order_by(PlayerRating.mu.desc(), PlayerRating.player_id)
            .limit(limit)
            .all()
        )
        return [
            PlayerRatingView(row.player_id, Rating(row.mu, row.sigma), row.last_updated, rank=i + 1)
            for i, row in enumerate(rows)
        ]
