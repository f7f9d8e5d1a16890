"""
adrealm State Machine Base

Small state machine base used to track each bind attempt:

    CONNECTING -> SECURING -> AUTHENTICATING -> {BOUND | REJECTED | FAILED}

Design Principles:
1. All state changes go through explicit transitions
2. Invariants are checked before a transition is committed
3. The transition history is kept for diagnostics
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Tuple, TypeVar

import attrs
import structlog
from returns.result import Failure, Result, Success

from adrealm.core.exceptions import InvariantViolation

logger = structlog.get_logger()


S = TypeVar("S", bound=Enum)  # State type


@attrs.define(frozen=True, slots=True)
class Transition(Generic[S]):
    """Immutable record of a state transition."""

    from_state: S
    event: str
    to_state: S
    timestamp: datetime
    data: Dict[str, Any] = attrs.Factory(dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.from_state.name,
            "event": self.event,
            "to_state": self.to_state.name,
            "timestamp": self.timestamp.isoformat(),
            "data": self.data,
        }


# (state, data) -> bool
InvariantFn = Callable[[Any, Dict[str, Any]], bool]


@attrs.define
class StateMachineBase(ABC, Generic[S]):
    """
    Base state machine with invariant checks and a transition history.

    Subclasses declare the allowed transitions as a mapping of
    (current_state, event_name) -> next_state.

    Usage:
        class Door(StateMachineBase[DoorState]):
            def initial_state(self) -> DoorState:
                return DoorState.CLOSED

            def transition_table(self):
                return {(DoorState.CLOSED, "open"): DoorState.OPEN}
    """

    _state: S = attrs.field(init=False)
    _history: List[Transition[S]] = attrs.field(factory=list, init=False)
    _invariants: List[Tuple[str, InvariantFn]] = attrs.field(factory=list, init=False)
    _logger: Any = attrs.field(factory=lambda: structlog.get_logger(), init=False)

    def __attrs_post_init__(self) -> None:
        self._state = self.initial_state()

    @abstractmethod
    def initial_state(self) -> S:
        """Return the initial state."""
        ...

    @abstractmethod
    def transition_table(self) -> Dict[Tuple[S, str], S]:
        """Return the allowed (state, event) -> next_state transitions."""
        ...

    @property
    def state(self) -> S:
        """Current state (read-only)."""
        return self._state

    def fire(self, event: str, **data: Any) -> Result[S, str]:
        """
        Deliver an event.

        Returns:
            Success(new_state) if the transition is allowed
            Failure(error_message) otherwise

        Raises:
            InvariantViolation: If an invariant fails for the new state
        """
        key = (self._state, event)
        table = self.transition_table()
        if key not in table:
            self._logger.warning(
                "invalid_transition",
                current_state=self._state.name,
                event_name=event,
            )
            return Failure(f"No transition for state {self._state.name} with event {event}")

        next_state = table[key]

        for name, invariant in self._invariants:
            if not invariant(next_state, data):
                self._logger.error(
                    "invariant_violated",
                    invariant=name,
                    from_state=self._state.name,
                    to_state=next_state.name,
                )
                raise InvariantViolation(f"Invariant '{name}' violated")

        self._history.append(
            Transition(
                from_state=self._state,
                event=event,
                to_state=next_state,
                timestamp=datetime.now(timezone.utc),
                data=data,
            )
        )
        self._logger.debug(
            "state_transition",
            from_state=self._state.name,
            to_state=next_state.name,
            event_name=event,
        )
        self._state = next_state
        return Success(next_state)

    def add_invariant(self, name: str, invariant: InvariantFn) -> None:
        """Register an invariant checked on every transition."""
        self._invariants.append((name, invariant))

    def get_trace(self) -> List[Transition[S]]:
        """Return a copy of the transition history."""
        return list(self._history)

    def state_names(self) -> List[str]:
        """States visited, in order, including the current one."""
        names = [t.from_state.name for t in self._history]
        names.append(self._state.name)
        return names
