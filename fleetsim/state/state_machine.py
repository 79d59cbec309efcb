"""Finite state machines over closed enumerations.

Every transition is checked against an explicit graph of allowed actions. Drones use one for
their flight mode (idle → takeoff → flying → ...) and orders use one for the emergency
workflow (normal → emergency_pending → emergency_assigned → ...).
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from fleetsim.errors import IllegalTransition

State = TypeVar("State", bound=Enum)
"""Any Enum used as a machine state."""

ActionFn = Callable[..., Any]
"""Type alias for action effect functions."""

StateGraph = Mapping[Enum, frozenset["Action"]]
"""Mapping from each state to the actions allowed out of it."""


@dataclass(frozen=True)
class Action:
    """A transition to ``state`` with an optional effect run after the state changes.

    Attributes:
        state: Where the machine ends up after this action.
        effect: Called with the request arguments once the state has moved.
    """

    state: Enum
    effect: ActionFn | None = None

    def __call__(self, *args, **kwargs) -> Any:
        if self.effect:
            return self.effect(*args, **kwargs)
        return None


def graph(edges: Mapping[Enum, tuple[Enum, ...]]) -> dict[Enum, frozenset[Action]]:
    """Build a StateGraph of effect-free actions from a plain adjacency mapping.

    Example:
        >>> class Light(Enum):
        ...     OFF = 0
        ...     ON = 1
        >>> g = graph({Light.OFF: (Light.ON,), Light.ON: (Light.OFF,)})
        >>> StateMachine(Light.OFF, g).request_transition(Light.ON) is None
        True
    """
    return {frm: frozenset(Action(to) for to in targets) for frm, targets in edges.items()}


class StateMachine:
    """A finite state machine that validates every transition against its graph.

    Attributes:
        _state: Where the machine currently is.
        _allowed: Outgoing actions per state.
    """

    _allowed: StateGraph
    _state: Enum

    def __init__(self, initial_state: Enum, nodes_graph: StateGraph):
        """Create a machine sitting in ``initial_state``.

        Args:
            initial_state: State the machine starts in.
            nodes_graph: Outgoing actions for every state.
        """
        self._state = initial_state
        self._allowed = nodes_graph

    @property
    def current(self) -> Enum:
        """The current state."""
        return self._state

    def can_transition(self, to: Enum) -> bool:
        return any(action.state == to for action in self._allowed.get(self._state, ()))

    def request_transition(self, next_state: Enum, *args, **kwargs) -> Any:
        """Request a state transition to ``next_state``.

        Validates the transition, updates the current state, then runs the action's effect.

        Returns:
            The result of the action's effect, or None if it has none.

        Raises:
            IllegalTransition: If the graph has no edge from the current state to next_state.
        """
        next_action = self._validate_transition(self._state, next_state)
        self._state = next_action.state
        return next_action(*args, **kwargs)

    def _validate_transition(self, frm: Enum, to: Enum) -> Action:
        allowed_actions = self._allowed.get(frm, frozenset())
        for action in allowed_actions:
            if action.state == to:
                return action
        raise IllegalTransition(frm, to)

    def __repr__(self) -> str:
        return f"StateMachine(current={self._state.name})"
