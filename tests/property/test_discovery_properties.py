"""
Property-based tests for discovery and bind invariants.

Tests that ranking, server list parsing and the failover binder keep
their guarantees across many random inputs.
"""

from hypothesis import given, settings, strategies as st
from returns.pipeline import is_successful

from adrealm.core.types import (
    ConnectionSecurityPolicy,
    Rejected,
    ServerCandidate,
    TlsMode,
    Unreachable,
)
from adrealm.discovery.dns import SrvRecord
from adrealm.discovery.servers import parse_server_list, rank_records
from adrealm.transport.binder import FailoverBinder
from adrealm.transport.tls import TlsNegotiator

from tests.conftest import FakeConnector, FakeDirectory


# =============================================================================
# STRATEGIES
# =============================================================================

hostname_strategy = st.from_regex(r"[a-z][a-z0-9\-]{0,15}(\.[a-z][a-z0-9]{0,10}){0,3}", fullmatch=True)

port_strategy = st.integers(min_value=1, max_value=65535)

srv_strategy = st.builds(
    SrvRecord,
    priority=st.integers(min_value=0, max_value=100),
    weight=st.integers(min_value=0, max_value=100),
    port=st.sampled_from([389, 636, 3268, 3269, 10389]),
    target=hostname_strategy.map(lambda h: h + "."),
)

policy_strategy = st.sampled_from(
    [ConnectionSecurityPolicy(tls_mode=mode) for mode in TlsMode]
)

# per server: "ok", "down" or "reject"
outcome_strategy = st.lists(st.sampled_from(["ok", "down", "reject"]), min_size=1, max_size=6)


# =============================================================================
# RANKING PROPERTIES
# =============================================================================


class TestRankingProperties:
    """Property-based tests for SRV ranking."""

    @given(st.lists(srv_strategy, max_size=20), policy_strategy)
    def test_priorities_non_increasing(self, records, policy):
        """Property: ranked candidates never go up in priority."""
        ranked = rank_records(records, policy)
        priorities = [c.priority for c in ranked]
        assert priorities == sorted(priorities, reverse=True)

    @given(st.lists(srv_strategy, max_size=20), policy_strategy)
    def test_ranking_is_a_permutation(self, records, policy):
        """Property: ranking neither drops nor invents servers."""
        ranked = rank_records(records, policy)
        assert sorted(c.host for c in ranked) == sorted(r.target[:-1] for r in records)

    @given(st.lists(srv_strategy, max_size=20))
    def test_tls_never_yields_plaintext_well_known_ports(self, records):
        """Property: with TLS required, 389 and 3268 never survive ranking."""
        ranked = rank_records(records, ConnectionSecurityPolicy(tls_mode=TlsMode.REQUIRE_TLS))
        assert not {389, 3268} & {c.port for c in ranked}

    @given(st.lists(srv_strategy, max_size=20))
    def test_equal_priorities_keep_answer_order(self, records):
        """Property: ties are resolved by DNS answer order."""
        ranked = rank_records(records, ConnectionSecurityPolicy(tls_mode=TlsMode.PLAINTEXT))
        for priority in {r.priority for r in records}:
            expected = [r.target[:-1] for r in records if r.priority == priority]
            assert [c.host for c in ranked if c.priority == priority] == expected


class TestServerListProperties:
    """Property-based tests for explicit server lists."""

    @given(st.lists(st.tuples(hostname_strategy, st.one_of(st.none(), port_strategy)), min_size=1, max_size=8))
    def test_parse_preserves_order_and_ports(self, entries):
        """Property: every host:port comes back in order, missing ports defaulted."""
        text = ",".join(host if port is None else f"{host}:{port}" for host, port in entries)
        parsed = parse_server_list(text, 636)
        assert parsed == [ServerCandidate(host, 636 if port is None else port) for host, port in entries]


# =============================================================================
# FAILOVER PROPERTIES
# =============================================================================


class TestFailoverProperties:
    """Property-based tests for the failover binder."""

    @settings(max_examples=200)
    @given(outcome_strategy)
    def test_rejection_is_never_retried(self, outcomes):
        """Property: no bind is attempted after the first rejection."""
        directory = FakeDirectory()
        servers = []
        for index, outcome in enumerate(outcomes):
            server = ServerCandidate(f"dc{index}.corp", 636)
            servers.append(server)
            if outcome == "down":
                directory.down.add(server.host)
        directory.passwords["jdoe@corp"] = "pw"
        secret_for = {"ok": "pw", "reject": "wrong"}

        binder = FailoverBinder(TlsNegotiator(FakeConnector(directory)))
        # the outcome of the first reachable server picks the password sent
        first_reachable = next((o for o in outcomes if o != "down"), None)
        secret = secret_for.get(first_reachable, "pw")
        result = binder.bind("jdoe@corp", secret, servers, ConnectionSecurityPolicy())

        binds = directory.calls_of("bind")
        if first_reachable is None:
            assert isinstance(result.failure(), Unreachable)
            assert binds == []
        else:
            # exactly one bind: the first reachable server decides
            assert len(binds) == 1
            index = outcomes.index(first_reachable)
            assert binds[0][1] == servers[index].host
            if first_reachable == "reject":
                assert isinstance(result.failure(), Rejected)
            else:
                assert result.unwrap().server == servers[index]

    @given(outcome_strategy)
    def test_every_connection_closed_on_failure(self, outcomes):
        """Property: failed attempts leave no open connection behind."""
        directory = FakeDirectory()
        servers = [ServerCandidate(f"dc{i}.corp", 636) for i in range(len(outcomes))]
        for server, outcome in zip(servers, outcomes):
            if outcome == "down":
                directory.down.add(server.host)

        connector = FakeConnector(directory)
        result = FailoverBinder(TlsNegotiator(connector)).bind("jdoe@corp", "wrong", servers, ConnectionSecurityPolicy())

        assert not is_successful(result)
        assert all(c.closed for c in connector.connections)
