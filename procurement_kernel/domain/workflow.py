"""
Canonical workflow types (``procurement_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for document state machines.  Guard, Transition and
Workflow are defined once here and instantiated by each module (the
material request lifecycle being the first).  A handful of pure lookup
helpers answer "which transitions leave this state via this action".

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* Terminal states have no outgoing transitions.

All three are checked by ``validate_workflow`` when a module registers
its workflow.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Guard:
    """A condition that must be satisfied before a transition fires.

    Contract: frozen, descriptive only.
    Non-goals: does not evaluate the condition -- the module's guard
    executor does, keyed by ``name``.
    """
    name: str
    description: str


@dataclass(frozen=True)
class Transition:
    """A valid state transition in a workflow.

    Several transitions may share ``from_state`` and ``action``; they are
    then told apart by their guards and tried in declaration order.
    """
    from_state: str
    to_state: str
    action: str
    guard: Guard | None = None


@dataclass(frozen=True)
class Workflow:
    """A state machine definition for a document lifecycle.

    Contract: frozen; ``transitions`` reference only states in ``states``.
    ``terminal_states`` are states with no outgoing transitions.
    """
    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def is_terminal(self, state: str) -> bool:
        return state in self.terminal_states


def transitions_from(
    workflow: Workflow,
    state: str,
    action: str,
) -> tuple[Transition, ...]:
    """Candidate transitions leaving ``state`` via ``action``, in order."""
    return tuple(
        t for t in workflow.transitions
        if t.from_state == state and t.action == action
    )


def actions_from(workflow: Workflow, state: str) -> frozenset[str]:
    """Every action that has at least one transition out of ``state``."""
    return frozenset(
        t.action for t in workflow.transitions if t.from_state == state
    )


def validate_workflow(workflow: Workflow) -> list[str]:
    """Return structural problems with ``workflow`` (empty when sound)."""
    errors: list[str] = []
    states = set(workflow.states)

    if workflow.initial_state not in states:
        errors.append(f"initial state '{workflow.initial_state}' is not declared")

    for state in workflow.terminal_states:
        if state not in states:
            errors.append(f"terminal state '{state}' is not declared")

    for t in workflow.transitions:
        if t.from_state not in states:
            errors.append(f"{t.action}: unknown from_state '{t.from_state}'")
        if t.to_state not in states:
            errors.append(f"{t.action}: unknown to_state '{t.to_state}'")
        if t.from_state in workflow.terminal_states:
            errors.append(f"{t.action}: leaves terminal state '{t.from_state}'")

    return errors
