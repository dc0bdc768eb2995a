import math
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import List, Sequence, Tuple


class Outcome(str, Enum):
    """Result of a match from side A's point of view."""
    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"

    @property
    def score(self) -> float:
        if self is Outcome.WIN:
            return 1.0
        if self is Outcome.LOSS:
            return 0.0
        return 0.5

    @property
    def is_decisive(self) -> bool:
        return self is not Outcome.DRAW


@dataclass(frozen=True)
class Rating:
    mu: float
    sigma: float


def normal_cdf(x: float) -> float:
    # erfc keeps precision in the tails, where 1 - erf would round to 0.
    return 0.5 * math.erfc(-x / math.sqrt(2.0))


@lru_cache(maxsize=8192)
def game_win_probability(p: float, a: int, b: int, target: int = 11, win_by: int = 2) -> float:
    """Probability that side A wins a game from score ``a``-``b``.

    ``p`` is the probability that A wins any single rally. Deuce (both
    sides within one point of ``target``) is solved in closed form.
    """
    if a >= target and a - b >= win_by:
        return 1.0
    if b >= target and b - a >= win_by:
        return 0.0
    if win_by == 2 and a >= target - 1 and b >= target - 1:
        deuce = (p * p) / (p * p + (1 - p) * (1 - p))
        diff = a - b
        if diff == 0:
            return deuce
        if diff > 0:
            return p + (1 - p) * deuce
        return p * deuce
    return (
        p * game_win_probability(p, a + 1, b, target, win_by)
        + (1 - p) * game_win_probability(p, a, b + 1, target, win_by)
    )


class RatingEngine:
    """
    Bayesian pairwise skill update (TrueSkill-family, Gaussian CDF link).

    Each player carries ``(mu, sigma)``. The probability that side A beats
    side B is ``Phi((mu_a - mu_b) / c)`` with
    ``c = sqrt(2 * beta^2 + sigma_a^2 + sigma_b^2)``. Means move by
    ``k_factor * margin_multiplier * (actual - expected)``; uncertainties
    shrink towards ``sigma_floor`` in proportion to how surprising the result
    was, and never grow.

    The engine is a pure function of its inputs: no I/O, no hidden state.
    """

    def __init__(
        self,
        mu0: float = 25.0,
        sigma0: float = 25.0 / 3.0,
        beta: float = 25.0 / 6.0,
        k_factor: float = 2.5,
        tau: float = 0.05,
        sigma_floor: float = 1.0,
        min_shrink: float = 0.80,
        points_to_win: int = 11,
        win_by: int = 2,
        uncertainty_weight: float = 0.6,
        softmax_temperature: float = 5.0,
        max_margin_multiplier: float = 2.0,
    ):
        if sigma0 <= 0 or sigma_floor <= 0:
            raise ValueError("sigma0 and sigma_floor must be positive")
        if not 0 < min_shrink <= 1:
            raise ValueError("min_shrink must be in (0, 1]")
        if win_by not in (1, 2):
            raise ValueError("win_by must be 1 or 2")
        self.mu0 = mu0
        self.sigma0 = sigma0
        self.beta = beta
        self.k_factor = k_factor
        self.tau = tau
        self.sigma_floor = sigma_floor
        self.min_shrink = min_shrink
        self.points_to_win = points_to_win
        self.win_by = win_by
        self.uncertainty_weight = uncertainty_weight
        self.softmax_temperature = softmax_temperature
        self.max_margin_multiplier = max_margin_multiplier

    @classmethod
    def from_config(cls, config) -> "RatingEngine":
        return cls(
            mu0=config['RATING_MU0'],
            sigma0=config['RATING_SIGMA0'],
            beta=config['RATING_BETA'],
            k_factor=config['RATING_K'],
            tau=config['RATING_TAU'],
            sigma_floor=config['RATING_SIGMA_FLOOR'],
            points_to_win=config['POINTS_TO_WIN'],
            win_by=config['WIN_BY'],
        )

    def default_rating(self) -> Rating:
        """Prior for a player who has never been rated."""
        return Rating(self.mu0, self.sigma0)

    def team_rating(self, team: Sequence[Rating]) -> Rating:
        """Aggregate a team: mean of means, root-mean-square of sigmas."""
        n = len(team)
        mu = sum(r.mu for r in team) / n
        sigma = math.sqrt(sum(r.sigma ** 2 for r in team) / n)
        return Rating(mu, sigma)

    def win_probability(self, rating_a: Rating, rating_b: Rating) -> Tuple[float, float]:
        """
        Calculate win probabilities for two sides.

        Returns:
            (prob_a_wins, prob_b_wins) as floats between 0 and 1
        """
        c = math.sqrt(2 * self.beta ** 2 + rating_a.sigma ** 2 + rating_b.sigma ** 2)
        prob_a = normal_cdf((rating_a.mu - rating_b.mu) / c)
        return (prob_a, 1.0 - prob_a)

    def margin_multiplier(self, margin: float) -> float:
        return min(self.max_margin_multiplier, 1.0 + abs(margin) / self.points_to_win)

    def split_weights(self, team: Sequence[Rating]) -> List[float]:
        """
        Share of a team delta each member receives.

        Blends an uncertainty share (high variance moves more) with a skill
        share (softmax over means). Weights sum to 1.
        """
        if len(team) == 1:
            return [1.0]

        variances = [r.sigma ** 2 for r in team]
        total_var = sum(variances)
        u = [v / total_var for v in variances]

        scaled = [r.mu / max(1e-6, self.softmax_temperature) for r in team]
        top = max(scaled)
        exps = [math.exp(x - top) for x in scaled]
        total_exp = sum(exps)
        s = [e / total_exp for e in exps]

        lam = self.uncertainty_weight
        raw = [lam * u[i] + (1 - lam) * s[i] for i in range(len(team))]
        total = sum(raw)
        return [w / total for w in raw]

    def _shift_mean(self, mu: float, delta: float, direction: int) -> float:
        new_mu = mu + delta
        # A decisive result always moves the mean, even when the expected
        # score rounds to certainty.
        if direction > 0 and new_mu <= mu:
            return math.nextafter(mu, math.inf)
        if direction < 0 and new_mu >= mu:
            return math.nextafter(mu, -math.inf)
        return new_mu

    def _shrink_sigma(self, sigma: float, shrink: float) -> float:
        return min(sigma, max(self.sigma_floor, sigma * shrink))

    def compute_team_update(
        self,
        outcome: Outcome,
        team_a: Sequence[Rating],
        team_b: Sequence[Rating],
        margin: float = 0.0
    ) -> Tuple[List[Rating], List[Rating]]:
        """
        Calculate new ratings for every member of both sides.

        Args:
            outcome: Result from side A's point of view
            team_a: Current ratings of side A's members
            team_b: Current ratings of side B's members
            margin: Average point differential per game (0 when unknown)

        Returns:
            (new_team_a, new_team_b), in the same member order
        """
        agg_a = self.team_rating(team_a)
        agg_b = self.team_rating(team_b)
        prob_a, _ = self.win_probability(agg_a, agg_b)

        actual_a = outcome.score
        delta_a = self.k_factor * self.margin_multiplier(margin) * (actual_a - prob_a)
        delta_b = -delta_a

        surprise = abs(actual_a - prob_a)
        shrink = max(self.min_shrink, 1.0 - self.tau * (1.0 + 0.5 * surprise))

        if outcome is Outcome.WIN:
            dir_a, dir_b = 1, -1
        elif outcome is Outcome.LOSS:
            dir_a, dir_b = -1, 1
        else:
            dir_a = dir_b = 0

        new_a = [
            Rating(
                self._shift_mean(r.mu, delta_a * w, dir_a),
                self._shrink_sigma(r.sigma, shrink)
            )
            for r, w in zip(team_a, self.split_weights(team_a))
        ]
        new_b = [
            Rating(
                self._shift_mean(r.mu, delta_b * w, dir_b),
                self._shrink_sigma(r.sigma, shrink)
            )
            for r, w in zip(team_b, self.split_weights(team_b))
        ]
        return (new_a, new_b)

    def compute_update(
        self,
        outcome: Outcome,
        rating_a: Rating,
        rating_b: Rating,
        margin: float = 0.0
    ) -> Tuple[Rating, Rating]:
        """
        Calculate new ratings after a one-on-one match.

        Returns:
            (new_rating_a, new_rating_b)
        """
        new_a, new_b = self.compute_team_update(outcome, [rating_a], [rating_b], margin)
        return (new_a[0], new_b[0])

    def live_win_probability(
        self,
        team_a: Sequence[Rating],
        team_b: Sequence[Rating],
        points_a: int,
        points_b: int,
        prior_weight: float = 0.2
    ) -> float:
        """
        Probability that side A wins the game in progress.

        The per-rally probability blends the rating prior with the current
        score, then the remaining points are played out exactly.
        """
        agg_a = self.team_rating(team_a)
        agg_b = self.team_rating(team_b)
        combined = math.sqrt(agg_a.sigma ** 2 + agg_b.sigma ** 2)
        base = normal_cdf((agg_a.mu - agg_b.mu) / (math.sqrt(2.0) * combined))

        remaining = max(1, max(0, self.points_to_win - points_a) + max(0, self.points_to_win - points_b))
        momentum = 0.5 + 0.25 * math.tanh((points_a - points_b) / (remaining * 0.6))

        p = prior_weight * base + (1 - prior_weight) * momentum
        return game_win_probability(round(p, 4), points_a, points_b, self.points_to_win, self.win_by)
