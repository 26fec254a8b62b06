from __future__ import annotations

from typing import List, Optional, Sequence, Tuple

from diagnostics.models import Context, Observation, ProbeCall, Status

DNS_PORT = 53
DHCP_PORT = 67
QUERY_TIMEOUT = 2.0


def system_info(call: ProbeCall) -> Observation:
    facts = call.env.system.facts()
    detail = [f"{k}: {v}" for k, v in facts.items()]
    return Observation.info(f"Host {facts.get('hostname', 'unknown')} ({facts.get('os', 'unknown')})", detail)


def grade_latency(ms: float, bands: Sequence[Tuple[float, Status, str]], slowest: Tuple[Status, str]) -> Tuple[Status, str]:
    """
    Map a response time onto the first band whose upper bound it is under.

    bands: ((upper_ms, status, label), ...) in ascending order.
    """
    for upper, status, label in bands:
        if ms < upper:
            return status, label
    return slowest


def fmt_ms(ms: Optional[float]) -> str:
    return "n/a" if ms is None else f"{ms:.0f}ms"


def query_failure(res) -> str:
    return res.error or (f"{res.rcode}, no answers" if res.rcode == "NOERROR" else res.rcode)


# ----------------------------
# Fan-out target selectors
# ----------------------------

def context_targets(context: Context) -> List[str]:
    return list(context.targets)


def upstream_servers(context: Context) -> List[str]:
    return list(context.upstreams)


def dns_servers(context: Context) -> List[str]:
    """Client role: explicit targets, otherwise the single override server if any."""
    if context.targets:
        return list(context.targets)
    return [context.dns_server] if context.dns_server else []


def primary_server(context: Context) -> Optional[str]:
    """First server under test; None lets the system resolver pick."""
    servers = dns_servers(context)
    return servers[0] if servers else None


def resolution_targets(context: Context) -> List[str]:
    """Every (domain, server) pair as "domain@server"; bare domains when no server is known."""
    servers = dns_servers(context)
    if not servers:
        return list(context.domains)
    return [f"{d}@{s}" for s in servers for d in context.domains]


def split_resolution_target(target: str) -> Tuple[str, Optional[str]]:
    domain, _, server = target.partition("@")
    return domain, server or None
