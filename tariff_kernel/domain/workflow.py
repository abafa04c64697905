"""
Canonical workflow types (``tariff_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects describing a document state machine.  The carrier
invoice lifecycle is declared with these types in
``tariff_services.invoice_workflow``; the controller looks transitions up
here rather than hard-coding status checks.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Descriptive only: the controller owns the evaluation.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    ``from_state`` of ``"*"`` marks an escape hatch callable from any
    non-terminal state.  ``next_action`` is the hint handed to the
    surrounding workflow once the transition has fired.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None
    next_action: str | None = None


ANY_STATE = "*"


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle."""
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} not in states"
            )
        for state in self.terminal_states:
            if state not in self.states:
                raise ValueError(f"Workflow {self.name}: unknown terminal state {state!r}")
        for t in self.transitions:
            if t.from_state != ANY_STATE and t.from_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} from unknown state {t.from_state!r}"
                )
            if t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action} to unknown state {t.to_state!r}"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} has outgoing transition {t.action}"
                )

    @property
    def actions(self) -> frozenset[str]:
        return frozenset(t.action for t in self.transitions)

    def transitions_for(self, action: str) -> tuple[Transition, ...]:
        """All transitions declared for ``action``."""
        return tuple(t for t in self.transitions if t.action == action)

    def find(self, action: str, from_state: str) -> Transition | None:
        """The transition ``action`` takes from ``from_state``, if any.

        An explicit edge wins over an ``ANY_STATE`` escape hatch; escape
        hatches never fire from a terminal state.
        """
        wildcard = None
        for t in self.transitions_for(action):
            if t.from_state == from_state:
                return t
            if t.from_state == ANY_STATE:
                wildcard = t
        if wildcard is not None and from_state not in self.terminal_states:
            return wildcard
        return None

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states
