from enum import Enum
from typing import Optional, Callable, List
from dataclasses import dataclass

from .errors import InvalidTransition


class MatchState(str, Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    REPORTED = "reported"
    FINALIZED = "finalized"
    DISPUTED = "disputed"


@dataclass
class Transition:
    from_state: MatchState
    to_state: MatchState
    action: str
    guard: Optional[Callable] = None


def sides_decided_guard(context: dict) -> bool:
    """Both sides of the match must be known before it can be played."""
    sides = context.get("participants", {})
    return bool(sides.get("a")) and bool(sides.get("b"))


class MatchStateMachine:
    """Lifecycle of a single match.

    Pure transition table: it knows nothing about storage, versions or
    ratings. Callers load the persisted state, ask the machine for the next
    state and write it back.
    """
    TRANSITIONS = [
        Transition(MatchState.SCHEDULED, MatchState.IN_PROGRESS, "begin", sides_decided_guard),
        Transition(MatchState.IN_PROGRESS, MatchState.IN_PROGRESS, "begin", sides_decided_guard),
        Transition(MatchState.IN_PROGRESS, MatchState.REPORTED, "submit_score", sides_decided_guard),
        Transition(MatchState.DISPUTED, MatchState.REPORTED, "submit_score", sides_decided_guard),
        Transition(MatchState.REPORTED, MatchState.DISPUTED, "dispute"),
        Transition(MatchState.REPORTED, MatchState.FINALIZED, "finalize"),
    ]

    ALLOWED_ACTIONS = {
        MatchState.SCHEDULED: ["begin"],
        MatchState.IN_PROGRESS: ["begin", "submit_score", "live_score"],
        MatchState.REPORTED: ["dispute", "finalize"],
        MatchState.DISPUTED: ["submit_score"],
        MatchState.FINALIZED: [],
    }

    def __init__(self, initial_state: MatchState = MatchState.SCHEDULED):
        self._state = initial_state
        self._history: List[tuple] = []

    @property
    def state(self) -> MatchState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state == MatchState.FINALIZED

    @property
    def allowed_actions(self) -> List[str]:
        return self.ALLOWED_ACTIONS.get(self._state, [])

    def can_transition(self, action: str) -> bool:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                return True
        return False

    def can_perform(self, action: str) -> bool:
        return action in self.allowed_actions

    def transition(self, action: str, guard_context: dict = None) -> MatchState:
        for t in self.TRANSITIONS:
            if t.from_state == self._state and t.action == action:
                if t.guard and not t.guard(guard_context or {}):
                    raise InvalidTransition(
                        self._state.value,
                        action,
                        f"Guard condition failed for action '{action}'"
                    )

                old_state = self._state
                self._state = t.to_state
                self._history.append((old_state, action, self._state))
                return self._state

        raise InvalidTransition(self._state.value, action)

    def get_history(self) -> List[tuple]:
        return self._history.copy()

    @classmethod
    def from_state_string(cls, state_str: str) -> "MatchStateMachine":
        try:
            state = MatchState(state_str)
        except ValueError:
            raise InvalidTransition(str(state_str), "load", f"Unknown match state '{state_str}'")
        return cls(initial_state=state)
