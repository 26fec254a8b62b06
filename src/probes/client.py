"""
Probes for a host that consumes DNS: resolver configuration, reachability of
its nameservers, answer quality and tampering.
"""

from __future__ import annotations

import uuid
from typing import List

from diagnostics.errors import CollaboratorUnavailable, ConfigNotFound
from diagnostics.models import Category, Observation, Probe, ProbeCall, Status
from diagnostics.registry import ProbeRegistry

from .common import (
    DNS_PORT,
    QUERY_TIMEOUT,
    dns_servers,
    fmt_ms,
    grade_latency,
    primary_server,
    query_failure,
    resolution_targets,
    split_resolution_target,
    system_info,
)

DNS_TOOLS = ("dig", "nslookup", "host", "drill", "resolvectl")
RESOLV_CONF = "/etc/resolv.conf"
HOSTS_FILE = "/etc/hosts"
NM_CONF = "/etc/NetworkManager/NetworkManager.conf"
STANDARD_MTU = 1500
SAMPLES = 5

# known answer: this name has resolved to 8.8.8.8 for over a decade
KNOWN_NAME = "google-public-dns-a.google.com"
KNOWN_ADDRESS = "8.8.8.8"
SIGNED_DOMAIN = "cloudflare.com"
BROKEN_SIGNED_DOMAIN = "dnssec-failed.org"


# ----------------------------
# Local environment
# ----------------------------

def check_privileges(call: ProbeCall) -> Observation:
    if call.context.privileged:
        return Observation.ok("Running with root privileges")
    return Observation.warning("Running without root privileges; some checks may be limited")


def check_dns_tools(call: ProbeCall) -> Observation:
    found = [t for t in DNS_TOOLS if call.env.system.which(t)]
    missing = [t for t in DNS_TOOLS if t not in found]
    detail = [f"missing: {', '.join(missing)}"] if missing else []
    if not found:
        return Observation.warning("No DNS query tools installed (dig, nslookup, host, drill)", detail)
    return Observation.ok(f"Available: {', '.join(found)}", detail)


def check_default_gateway(call: ProbeCall) -> Observation:
    gw = call.env.network.default_gateway(cancel=call.cancel)
    if gw is None:
        return Observation.error("No default gateway configured")
    return Observation.ok(f"Default gateway: {gw}")


def check_gateway_reachable(call: ProbeCall) -> Observation:
    gw = call.env.network.default_gateway(cancel=call.cancel)
    if gw is None:
        return Observation.skipped("No default gateway to ping")
    if call.env.network.ping(gw, timeout=QUERY_TIMEOUT, cancel=call.cancel):
        return Observation.ok(f"Gateway {gw} is reachable")
    return Observation.error(f"Gateway {gw} does not answer ping")


def check_mtu(call: ProbeCall) -> Observation:
    ifaces = [i for i in call.env.network.list_interfaces(cancel=call.cancel) if i.name != "lo"]
    detail = [f"{i.name}: mtu {i.mtu if i.mtu is not None else '?'} ({i.state})" for i in ifaces]
    reduced = [i.name for i in ifaces if i.state == "UP" and i.mtu is not None and i.mtu < STANDARD_MTU]
    if reduced:
        return Observation.warning(f"Reduced MTU on {', '.join(reduced)}; large DNS responses may fragment", detail)
    return Observation.info(f"{len(ifaces)} interface(s) checked", detail)


# ----------------------------
# Resolver configuration
# ----------------------------

def check_resolv_conf(call: ProbeCall) -> Observation:
    try:
        rc = call.env.config.load_resolv_conf(RESOLV_CONF)
    except ConfigNotFound:
        return Observation.error(f"{RESOLV_CONF} not found")

    detail: List[str] = []
    if rc.symlink_target:
        detail.append(f"symlink to {rc.symlink_target}")
    detail += [f"nameserver {ns}" for ns in rc.nameservers]
    if rc.search:
        detail.append(f"search {' '.join(rc.search)}")
    if not rc.nameservers:
        return Observation.error(f"No nameservers configured in {RESOLV_CONF}", detail)
    return Observation.ok(f"{len(rc.nameservers)} nameserver(s) configured", detail)


def check_resolver_services(call: ProbeCall) -> Observation:
    env = call.env
    detail: List[str] = []
    for unit in ("systemd-resolved", "NetworkManager"):
        state = "active" if env.services.is_active(unit, cancel=call.cancel) else "inactive"
        detail.append(f"{unit}: {state}")
    try:
        backend = env.config.load_service_config(NM_CONF).values("dns")
    except ConfigNotFound:
        backend = []
    if backend:
        detail.append(f"NetworkManager dns={backend[-1]}")
    return Observation.info("Resolver management services", detail)


# ----------------------------
# Per-server checks
# ----------------------------

def check_server_connectivity(call: ProbeCall) -> Observation:
    env, server = call.env, call.target
    tcp = env.network.tcp_connect(server, DNS_PORT, timeout=QUERY_TIMEOUT, cancel=call.cancel)
    udp = env.dns.query(server, call.context.test_domain, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel)
    try:
        icmp = "ok" if env.network.ping(server, timeout=QUERY_TIMEOUT, cancel=call.cancel) else "no reply"
    except CollaboratorUnavailable:
        icmp = "not tested"
    detail = [
        f"tcp/{DNS_PORT}: {'open' if tcp else 'closed'}",
        f"udp query: {'ok' if udp.ok else query_failure(udp)} ({fmt_ms(udp.elapsed_ms)})",
        f"icmp: {icmp}",
    ]
    if not udp.ok:
        return Observation.error(f"DNS server {server} is not answering queries", detail)
    if not tcp:
        return Observation.warning(f"DNS server {server} answers over UDP but TCP port {DNS_PORT} is closed", detail)
    return Observation.ok(f"DNS server {server} is reachable", detail)


_RESPONSE_BANDS = ((50, Status.OK, "excellent"), (100, Status.OK, "good"), (500, Status.WARNING, "slow"))


def check_response_time(call: ProbeCall) -> Observation:
    server = call.target
    times: List[float] = []
    for _ in range(SAMPLES):
        call.cancel.raise_if_cancelled()
        res = call.env.dns.query(server, call.context.test_domain, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel)
        if res.ok and res.elapsed_ms is not None:
            times.append(res.elapsed_ms)
    if not times:
        return Observation.error(f"All {SAMPLES} queries to {server} failed")
    avg = sum(times) / len(times)
    detail = [f"samples: {len(times)}/{SAMPLES}", f"min {fmt_ms(min(times))}", f"max {fmt_ms(max(times))}"]
    status, label = grade_latency(avg, _RESPONSE_BANDS, (Status.ERROR, "very slow"))
    return Observation(status, f"Average response time {fmt_ms(avg)} via {server} ({label})", tuple(detail))


# ----------------------------
# Resolution quality
# ----------------------------

def check_domain_resolution(call: ProbeCall) -> Observation:
    domain, server = split_resolution_target(call.target)
    via = f" via {server}" if server else ""
    res = call.env.dns.query(server, domain, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel)
    if res.ok:
        return Observation.ok(f"Resolved {domain}{via} in {fmt_ms(res.elapsed_ms)}", res.answers)
    return Observation.error(f"Failed to resolve {domain}{via}: {query_failure(res)}")


def check_reverse_dns(call: ProbeCall) -> Observation:
    ip = call.env.network.primary_address(cancel=call.cancel)
    if ip is None:
        return Observation.info("Could not determine the primary IP address")
    res = call.env.dns.reverse(ip, server=primary_server(call.context), timeout=QUERY_TIMEOUT, cancel=call.cancel)
    if res.ok:
        return Observation.ok(f"Reverse DNS for {ip}: {res.answers[0]}", res.answers)
    return Observation.info(f"No reverse DNS record for {ip}")


def check_hijacking(call: ProbeCall) -> Observation:
    dns, server = call.env.dns, primary_server(call.context)
    bogus = f"nonexistent-{uuid.uuid4().hex[:12]}-test.com"
    nx = dns.query(server, bogus, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel)
    known = dns.query(server, KNOWN_NAME, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel)

    problems: List[str] = []
    if nx.answers:
        problems.append(f"non-existent {bogus} resolved to {', '.join(nx.answers)}")
    if known.ok and KNOWN_ADDRESS not in known.answers:
        problems.append(f"{KNOWN_NAME} resolved to {', '.join(known.answers)}, expected {KNOWN_ADDRESS}")
    if problems:
        return Observation.warning("Possible DNS hijacking detected", problems)
    detail = [f"{bogus}: {nx.rcode}", f"{KNOWN_NAME}: {', '.join(known.answers) or query_failure(known)}"]
    return Observation.ok("No DNS hijacking detected", detail)


def check_dnssec(call: ProbeCall) -> Observation:
    dns, server = call.env.dns, primary_server(call.context)
    signed = dns.query(server, SIGNED_DOMAIN, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel, want_dnssec=True)
    broken = dns.query(server, BROKEN_SIGNED_DOMAIN, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel, want_dnssec=True)
    detail = [
        f"{SIGNED_DOMAIN}: {signed.rcode}, AD={'yes' if signed.authenticated else 'no'}",
        f"{BROKEN_SIGNED_DOMAIN}: {broken.rcode}",
    ]
    if signed.authenticated and broken.rcode == "SERVFAIL":
        return Observation.ok("DNSSEC validation is enabled", detail)
    if broken.ok:
        return Observation.warning("Resolver accepts invalid DNSSEC signatures", detail)
    return Observation.info("DNSSEC validation not confirmed", detail)


def check_hosts_file(call: ProbeCall) -> Observation:
    try:
        hosts = call.env.config.load_hosts(HOSTS_FILE)
    except ConfigNotFound:
        return Observation.error(f"{HOSTS_FILE} not found")
    custom = [f"{ip} {' '.join(names)}" for ip, names in hosts.custom_entries()]
    if not hosts.has_localhost():
        return Observation.warning("localhost entry missing from hosts file", custom)
    return Observation.ok(f"localhost entry present, {len(custom)} custom entr{'y' if len(custom) == 1 else 'ies'}", custom)


# ----------------------------
# Registry
# ----------------------------

def client_registry() -> ProbeRegistry:
    reg = ProbeRegistry("client")
    sys_, net, res, perf, sec = (
        Category.SYSTEM, Category.NETWORK, Category.RESOLUTION, Category.PERFORMANCE, Category.SECURITY,
    )

    for p in (
        Probe("privileges", "Privileges", sys_, check_privileges),
        Probe("system-info", "System information", sys_, system_info),
        Probe("dns-tools", "DNS tools", sys_, check_dns_tools),
        Probe("default-gateway", "Default gateway", net, check_default_gateway),
        Probe("gateway-reachable", "Gateway reachability", net, check_gateway_reachable,
              depends_on=("default-gateway",)),
        Probe("mtu", "Interface MTU", net, check_mtu),
        Probe("resolv-conf", "Resolver configuration", Category.CONFIG, check_resolv_conf),
        Probe("resolver-services", "Resolver services", Category.SERVICE, check_resolver_services),
        Probe("server-connectivity", "Server connectivity", net, check_server_connectivity, fan_out=dns_servers),
        Probe("domain-resolution", "Domain resolution", res, check_domain_resolution, fan_out=resolution_targets),
        Probe("reverse-dns", "Reverse DNS", res, check_reverse_dns),
        Probe("response-time", "Response time", perf, check_response_time,
              fan_out=dns_servers, timeout=20.0),
        Probe("hijack-detection", "Hijack detection", sec, check_hijacking),
        Probe("dnssec", "DNSSEC support", sec, check_dnssec),
        Probe("hosts-file", "Hosts file", Category.CONFIG, check_hosts_file),
    ):
        reg.register(p)
    return reg
