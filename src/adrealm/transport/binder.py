"""
adrealm Failover Binder

Binds to the first usable server of a candidate list.

Each attempt runs through a small state machine:

    CONNECTING -> SECURING -> AUTHENTICATING -> {BOUND | REJECTED | FAILED}

Retry policy:
- Transient failure (connect, timeout, TLS, protocol): try the next server
- Rejected credentials: stop. Trying the same password against every
  domain controller would multiply failed logons and can lock the
  account out.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Any, Dict, List, Optional, Sequence, Tuple

import attrs
import structlog
from returns.pipeline import is_successful
from returns.result import Failure, Result, Success

from adrealm.core.exceptions import DirectoryError, StateError
from adrealm.core.state_machine import StateMachineBase
from adrealm.core.types import (
    AttemptFailure,
    BindFailure,
    BindStatus,
    BoundConnection,
    ConnectionSecurityPolicy,
    Rejected,
    ServerCandidate,
    Transient,
    Unreachable,
)
from adrealm.transport.directory import DirectoryConnection
from adrealm.transport.tls import TlsNegotiator

logger = structlog.get_logger()


def is_anonymous(principal: Optional[str], secret: Optional[str]) -> bool:
    """
    Whether a bind is anonymous.

    LDAP treats an empty password as a request for an anonymous bind
    (RFC 4513 5.1.2), so it can never be an actual user password.
    """
    return not principal or not secret


def should_try_next(failure: AttemptFailure) -> bool:
    """Retry policy: only transient failures move on to the next server."""
    return isinstance(failure, Transient)


# =============================================================================
# ATTEMPT STATE MACHINE
# =============================================================================


class AttemptState(Enum):
    """State of a single bind attempt."""

    CONNECTING = auto()
    SECURING = auto()
    AUTHENTICATING = auto()
    BOUND = auto()
    REJECTED = auto()
    FAILED = auto()


TERMINAL_STATES = frozenset({AttemptState.BOUND, AttemptState.REJECTED, AttemptState.FAILED})


@attrs.define
class BindAttempt(StateMachineBase[AttemptState]):
    """One bind attempt against one server."""

    server: ServerCandidate

    def initial_state(self) -> AttemptState:
        return AttemptState.CONNECTING

    def transition_table(self) -> Dict[Tuple[AttemptState, str], AttemptState]:
        return {
            (AttemptState.CONNECTING, "connected"): AttemptState.SECURING,
            (AttemptState.CONNECTING, "error"): AttemptState.FAILED,
            (AttemptState.SECURING, "secured"): AttemptState.AUTHENTICATING,
            (AttemptState.SECURING, "error"): AttemptState.FAILED,
            (AttemptState.AUTHENTICATING, "accepted"): AttemptState.BOUND,
            (AttemptState.AUTHENTICATING, "rejected"): AttemptState.REJECTED,
            (AttemptState.AUTHENTICATING, "error"): AttemptState.FAILED,
        }

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, event: str, **data: Any) -> AttemptState:
        """Fire an event the binder expects to be valid; raises StateError otherwise."""
        result = self.fire(event, **data)
        if not is_successful(result):
            raise StateError(result.failure())
        return result.unwrap()


# =============================================================================
# FAILOVER BINDER
# =============================================================================


@attrs.define
class FailoverBinder:
    """
    Iterates candidate servers until one accepts a bind.

    Example:
        binder = FailoverBinder(negotiator=TlsNegotiator(Ldap3Connector()))
        result = binder.bind("jdoe@corp.example.com", "secret", servers, policy)
        if isinstance(result, Success):
            bound = result.unwrap()
    """

    negotiator: TlsNegotiator

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def bind(
        self,
        principal: Optional[str],
        secret: Optional[str],
        candidates: Sequence[ServerCandidate],
        policy: ConnectionSecurityPolicy,
    ) -> Result[BoundConnection, BindFailure]:
        """
        Bind to the first server that accepts.

        Args:
            principal: Bind name (UPN); None for anonymous
            secret: Password; empty or None for anonymous
            candidates: Servers, already in the order to try
            policy: Connection security policy

        Returns:
            Success(BoundConnection) from the first server that accepted
            Failure(Rejected) as soon as a server rejects the credentials
            Failure(Unreachable) when every server failed transiently
        """
        failures: List[Transient] = []

        for server in candidates:
            outcome = self.attempt(principal, secret, server, policy)
            if isinstance(outcome, Success):
                self._logger.debug("bound", server=str(server), principal=principal)
                return outcome

            failure = outcome.failure()
            if not should_try_next(failure):
                self._logger.warning(
                    "bind_rejected",
                    server=str(server),
                    principal=principal,
                    reason=failure.reason,
                )
                return Failure(failure)

            failures.append(failure)

        self._logger.warning(
            "all_servers_failed",
            principal=principal,
            attempts=len(failures),
            error=str(failures[-1].cause) if failures else None,
        )
        return Failure(Unreachable(attempts=tuple(failures)))

    def attempt(
        self,
        principal: Optional[str],
        secret: Optional[str],
        server: ServerCandidate,
        policy: ConnectionSecurityPolicy,
    ) -> Result[BoundConnection, AttemptFailure]:
        """Run a single bind attempt against ``server``."""
        state = BindAttempt(server=server)
        anonymous = is_anonymous(principal, secret)
        connection: Optional[DirectoryConnection] = None

        try:
            connection = self.negotiator.secure(server, policy)
            state.advance("connected")
            state.advance("secured")

            if anonymous:
                self._logger.debug("binding_anonymously", server=str(server))
                status = connection.bind(None, None)
            else:
                self._logger.debug("binding", server=str(server), principal=principal)
                status = connection.bind(principal, secret)

        except DirectoryError as e:
            state.advance("error", error=str(e))
            self._logger.warning("bind_failed", server=str(server), error=str(e))
            if connection is not None:
                connection.close()
            return Failure(Transient(server=server, cause=e))

        if status is BindStatus.REJECTED:
            state.advance("rejected")
            connection.close()
            return Failure(
                Rejected(
                    server=server,
                    reason=f"Either no such user '{principal}' or incorrect password",
                )
            )

        state.advance("accepted")
        return Success(
            BoundConnection(
                connection=connection,
                server=server,
                principal=None if anonymous else principal,
                anonymous=anonymous,
            )
        )
