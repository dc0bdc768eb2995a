"""
Score payloads.

A reported score is a list of per-game tallies for side A and side B::

    {"games": [{"a": 11, "b": 7}, {"a": 9, "b": 11}, {"a": 11, "b": 4}]}

Pairs (``[11, 7]``) are accepted on input and normalized to the mapping form,
which is what gets stored and compared for idempotent finalization.
"""
from dataclasses import dataclass

from shared.errors import ValidationError
from .rating_engine import Outcome

MAX_GAMES = 9


@dataclass(frozen=True)
class ScoreSummary:
    games_a: int
    games_b: int
    points_a: int
    points_b: int
    game_count: int

    @property
    def outcome(self) -> Outcome:
        if self.games_a > self.games_b:
            return Outcome.WIN
        if self.games_a < self.games_b:
            return Outcome.LOSS
        return Outcome.DRAW

    @property
    def margin(self) -> float:
        """Average point differential per game."""
        return abs(self.points_a - self.points_b) / self.game_count


def _points(value, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{label} must be an integer")
    if value < 0:
        raise ValidationError(f"{label} must not be negative")
    return value


def normalize_score(raw) -> dict:
    if not isinstance(raw, dict) or 'games' not in raw:
        raise ValidationError("score must be an object with a 'games' list")

    games = raw['games']
    if not isinstance(games, list) or not games:
        raise ValidationError("score.games must be a non-empty list")
    if len(games) > MAX_GAMES:
        raise ValidationError(f"score.games may contain at most {MAX_GAMES} games")

    normalized = []
    for i, game in enumerate(games, start=1):
        if isinstance(game, dict):
            a, b = game.get('a'), game.get('b')
        elif isinstance(game, (list, tuple)) and len(game) == 2:
            a, b = game
        else:
            raise ValidationError(f"game {i} must be {{'a': int, 'b': int}} or [a, b]")
        normalized.append({
            'a': _points(a, f"game {i} side a"),
            'b': _points(b, f"game {i} side b"),
        })

    return {'games': normalized}


def summarize(score: dict) -> ScoreSummary:
    games = score['games']
    return ScoreSummary(
        games_a=sum(1 for g in games if g['a'] > g['b']),
        games_b=sum(1 for g in games if g['b'] > g['a']),
        points_a=sum(g['a'] for g in games),
        points_b=sum(g['b'] for g in games),
        game_count=len(games),
    )
