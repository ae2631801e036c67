"""Simple finite state machine utility for enforcing allowed status transitions.

Usage:
    from prflow.utils.fsm import TransitionValidator
    REQUEST_FSM = TransitionValidator({
        'pending': {'approved', 'rejected', 'cancelled'},
        'approved': {'ordered'},
        'rejected': set(),
    })
    REQUEST_FSM.assert_can_transition(current_status, target_status)

Raises InvalidTransitionError (unmet='transition') if the edge does not exist.
"""
from __future__ import annotations
from typing import Dict, Set, Iterable
from prflow.errors import InvalidTransitionError

class TransitionValidator:
    def __init__(self, graph: Dict[str, Set[str]], field_name: str = 'status'):
        self.graph = graph
        self.field_name = field_name

    @classmethod
    def from_edges(cls, edges: Iterable[tuple], states: Iterable[str], field_name: str = 'status'):
        graph: Dict[str, Set[str]] = {s: set() for s in states}
        for src, dst in edges:
            graph.setdefault(src, set()).add(dst)
        return cls(graph, field_name)

    def targets(self, current: str) -> Set[str]:
        return set(self.graph.get(current, set()))

    def is_terminal(self, state: str) -> bool:
        return not self.graph.get(state)

    def assert_can_transition(self, current: str, target: str):
        allowed = self.graph.get(current, set())
        if target not in allowed:
            raise InvalidTransitionError(
                current, target, 'transition',
                detail=f"Invalid {self.field_name} transition {current} -> {target}",
            )
        return True

__all__ = ['TransitionValidator']
