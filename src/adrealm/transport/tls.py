"""
adrealm TLS Negotiation

Decides and performs the security upgrade for a single server.

- REQUIRE_TLS: open over TLS directly, failure is fatal for the server
- START_TLS: open plaintext, try an in-band upgrade; a failed upgrade is
  not fatal, but the session is re-dialed because some servers leave it
  unusable after a refused StartTLS
- PLAINTEXT: open plaintext only
"""

from __future__ import annotations

from typing import Any

import attrs
import structlog

from adrealm.core.exceptions import DirectoryError, TlsNegotiationFailed
from adrealm.core.types import ConnectionSecurityPolicy, ServerCandidate, TlsMode
from adrealm.transport.directory import DirectoryConnection, DirectoryConnector

logger = structlog.get_logger()


@attrs.define
class TlsNegotiator:
    """Opens a secured (or deliberately plaintext) session to one server."""

    connector: DirectoryConnector

    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    def secure(
        self,
        server: ServerCandidate,
        policy: ConnectionSecurityPolicy,
    ) -> DirectoryConnection:
        """
        Open a session to ``server`` following ``policy``.

        Returns:
            An open connection, TLS-protected unless the policy allows
            plaintext or a StartTLS upgrade was refused

        Raises:
            TlsNegotiationFailed: TLS is required and could not be set up
            DirectoryError: The server could not be reached
        """
        if policy.tls_mode is TlsMode.REQUIRE_TLS:
            try:
                return self.connector.open(server, True, policy.trust_mode)
            except TlsNegotiationFailed:
                raise
            except DirectoryError as e:
                raise TlsNegotiationFailed(f"TLS connection to {server} failed: {e}") from e

        connection = self.connector.open(server, False, policy.trust_mode)
        if policy.tls_mode is TlsMode.PLAINTEXT:
            return connection

        try:
            connection.upgrade_tls()
        except DirectoryError as e:
            self._logger.debug(
                "start_tls_failed",
                server=str(server),
                error=str(e),
                message="Authentication will be done via plain-text LDAP",
            )
            connection.close()
            return self.connector.open(server, False, policy.trust_mode)

        self._logger.debug("start_tls_upgraded", server=str(server))
        return connection
