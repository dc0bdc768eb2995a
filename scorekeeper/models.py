from datetime import datetime
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


def _iso(value):
    return value.isoformat() if value else None


class Tournament(db.Model):
    """Tournament record owned by the external tournament service.

    The core only reads ``capacity``/``host_id`` and maintains
    ``registration_count``, which the registration ledger uses for atomic
    capacity arbitration.
    """
    __tablename__ = 'tournaments'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    host_id = db.Column(db.Integer, nullable=False, index=True)
    capacity = db.Column(db.Integer, nullable=False)
    registration_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    registrations = db.relationship('Registration', back_populates='tournament')
    matches = db.relationship('Match', back_populates='tournament')
    referees = db.relationship('TournamentReferee', back_populates='tournament')

    __table_args__ = (
        db.CheckConstraint('capacity > 0', name='tournament_capacity_positive'),
        db.CheckConstraint(
            'registration_count >= 0 AND registration_count <= capacity',
            name='tournament_registration_count_in_capacity'
        ),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'host_id': self.host_id,
            'capacity': self.capacity,
            'registration_count': self.registration_count,
        }


class TournamentReferee(db.Model):
    __tablename__ = 'tournament_referees'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False)
    player_id = db.Column(db.Integer, nullable=False)

    tournament = db.relationship('Tournament', back_populates='referees')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'player_id', name='unique_referee_per_tournament'),
    )


class Match(db.Model):
    __tablename__ = 'matches'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    round = db.Column(db.String(50), nullable=True)
    state = db.Column(db.String(20), nullable=False, default='scheduled')
    score = db.Column(db.JSON, nullable=True)
    court_id = db.Column(db.Integer, nullable=True)
    referee_id = db.Column(db.Integer, nullable=True)
    reported_by = db.Column(db.Integer, nullable=True)
    dispute_reason = db.Column(db.Text, nullable=True)
    version = db.Column(db.Integer, nullable=False)

    started_at = db.Column(db.DateTime, nullable=True)
    reported_at = db.Column(db.DateTime, nullable=True)
    finalized_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='matches')
    participants = db.relationship(
        'MatchParticipant',
        back_populates='match',
        order_by=lambda: [MatchParticipant.side, MatchParticipant.position],
        cascade='all, delete-orphan'
    )
    live_scores = db.relationship('LiveScore', back_populates='match', order_by='LiveScore.id')

    # Every UPDATE is issued as ``... WHERE id = ? AND version = ?``.
    __mapper_args__ = {'version_id_col': version}

    @property
    def sides(self) -> dict:
        sides = {'a': [], 'b': []}
        for p in self.participants:
            sides.setdefault(p.side, []).append(p.player_id)
        return sides

    @property
    def player_ids(self) -> list:
        sides = self.sides
        return sides['a'] + sides['b']

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'round': self.round,
            'participants': self.sides,
            'state': self.state,
            'score': self.score,
            'court_id': self.court_id,
            'referee_id': self.referee_id,
            'reported_by': self.reported_by,
            'dispute_reason': self.dispute_reason,
            'version': self.version,
            'started_at': _iso(self.started_at),
            'reported_at': _iso(self.reported_at),
            'finalized_at': _iso(self.finalized_at),
        }


class MatchParticipant(db.Model):
    __tablename__ = 'match_participants'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, nullable=False)
    side = db.Column(db.String(1), nullable=False)  # 'a' or 'b'
    position = db.Column(db.Integer, nullable=False, default=0)

    match = db.relationship('Match', back_populates='participants')

    __table_args__ = (
        db.UniqueConstraint('match_id', 'player_id', name='unique_player_per_match'),
        db.CheckConstraint("side IN ('a', 'b')", name='participant_side_valid'),
    )


class LiveScore(db.Model):
    __tablename__ = 'live_scores'

    id = db.Column(db.Integer, primary_key=True)
    match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), nullable=False, index=True)
    game = db.Column(db.Integer, nullable=False, default=1)
    side_a_points = db.Column(db.Integer, nullable=False, default=0)
    side_b_points = db.Column(db.Integer, nullable=False, default=0)
    reported_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    match = db.relationship('Match', back_populates='live_scores')

    def to_dict(self):
        return {
            'match_id': self.match_id,
            'game': self.game,
            'points_a': self.side_a_points,
            'points_b': self.side_b_points,
            'reported_by': self.reported_by,
            'created_at': _iso(self.created_at),
        }


class PlayerRating(db.Model):
    __tablename__ = 'player_ratings'

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, unique=True, nullable=False, index=True)
    mu = db.Column(db.Float, nullable=False)
    sigma = db.Column(db.Float, nullable=False)
    last_updated = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('sigma > 0', name='rating_sigma_positive'),
    )

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'mu': self.mu,
            'sigma': self.sigma,
            'last_updated': _iso(self.last_updated),
        }


class RatingHistory(db.Model):
    __tablename__ = 'rating_history'

    id = db.Column(db.Integer, primary_key=True)
    player_id = db.Column(db.Integer, nullable=False, index=True)
    match_id = db.Column(db.Integer, db.ForeignKey('matches.id'), nullable=False, index=True)
    old_mu = db.Column(db.Float, nullable=False)
    old_sigma = db.Column(db.Float, nullable=False)
    new_mu = db.Column(db.Float, nullable=False)
    new_sigma = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    match = db.relationship('Match')

    __table_args__ = (
        db.UniqueConstraint('player_id', 'match_id', name='unique_rating_change_per_match'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'player_id': self.player_id,
            'match_id': self.match_id,
            'old_mu': self.old_mu,
            'old_sigma': self.old_sigma,
            'new_mu': self.new_mu,
            'new_sigma': self.new_sigma,
            'created_at': _iso(self.created_at),
        }


class Registration(db.Model):
    __tablename__ = 'registrations'

    id = db.Column(db.Integer, primary_key=True)
    tournament_id = db.Column(db.Integer, db.ForeignKey('tournaments.id'), nullable=False, index=True)
    player_id = db.Column(db.Integer, nullable=False, index=True)
    txn_id = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    tournament = db.relationship('Tournament', back_populates='registrations')

    __table_args__ = (
        db.UniqueConstraint('tournament_id', 'player_id', name='unique_registration'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'player_id': self.player_id,
            'txn_id': self.txn_id,
            'created_at': _iso(self.created_at),
        }
