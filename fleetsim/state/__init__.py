"""State management for the drone simulation.

Exports:
    StateMachine: Finite state machine with transition validation
    Action: State transition action with optional effects
    StateGraph: Type alias for state transition graph definitions
    graph: Helper building a StateGraph from an adjacency mapping
    KeyedLocks: Per-drone and per-order reentrant locks shared across components
    order_key: Lock key of an order in a KeyedLocks table
"""

from .locks import KeyedLocks, order_key
from .state_machine import Action, ActionFn, State, StateGraph, StateMachine, graph

__all__ = ["StateMachine", "State", "Action", "StateGraph", "ActionFn", "KeyedLocks", "order_key", "graph"]
