"""
Probes for a host running the name-resolution service itself.

Each handler asks the collaborator bundle on call.env for structured facts and
turns them into one Observation. Handlers never parse tool output.
"""

from __future__ import annotations

import re
from datetime import timedelta
from typing import List

from diagnostics.errors import ConfigNotFound
from diagnostics.models import Category, Context, Observation, Probe, ProbeCall, Status
from diagnostics.registry import ProbeRegistry

from .common import (
    DHCP_PORT,
    DNS_PORT,
    QUERY_TIMEOUT,
    context_targets,
    fmt_ms,
    grade_latency,
    query_failure,
    system_info,
    upstream_servers,
)

LOCALHOST = "127.0.0.1"
ACTIVITY_WINDOW = timedelta(hours=1)
ACTIVITY_TAIL = 10

_LOG_PROBLEM_RE = re.compile(r"error|fail|warn", re.IGNORECASE)
_CACHE_RE = re.compile(r"\bcache\b|queries forwarded|queries answered locally", re.IGNORECASE)


# ----------------------------
# Installation and service state
# ----------------------------

def check_installation(call: ProbeCall) -> Observation:
    svc = call.context.service
    path = call.env.system.which(svc)
    if path is None:
        return Observation.error(f"{svc} is not installed")
    version = call.env.system.tool_version(svc, cancel=call.cancel)
    return Observation.ok(f"{svc} is installed", [f"binary: {path}", f"version: {version or 'unknown'}"])


def check_service_active(call: ProbeCall) -> Observation:
    svc = call.context.service
    if call.env.services.is_active(svc, cancel=call.cancel):
        return Observation.ok(f"{svc} service is running")
    # systemctl status carries the last log lines explaining why it stopped
    status = call.env.services.status_lines(svc, cancel=call.cancel)
    return Observation.error(f"{svc} service is not running", status[-ACTIVITY_TAIL:])


def check_service_enabled(call: ProbeCall) -> Observation:
    svc = call.context.service
    if call.env.services.is_enabled(svc, cancel=call.cancel):
        return Observation.ok(f"{svc} service is enabled at boot")
    return Observation.warning(f"{svc} service is not enabled at boot")


def check_service_activity(call: ProbeCall) -> Observation:
    svc = call.context.service
    lines = call.env.services.recent_activity(svc, since=ACTIVITY_WINDOW, cancel=call.cancel)
    if not lines:
        return Observation.info("No service activity in the last hour")
    return Observation.info(f"{len(lines)} journal entries in the last hour", lines[-ACTIVITY_TAIL:])


# ----------------------------
# Configuration
# ----------------------------

def _load_config(call: ProbeCall):
    return call.env.config.load_service_config(call.context.config_file)


def check_config_file(call: ProbeCall) -> Observation:
    path = call.context.config_file
    try:
        cfg = _load_config(call)
    except ConfigNotFound:
        return Observation.error(f"Configuration file not found: {path}")
    n = sum(len(v) for v in cfg.options.values()) + len(cfg.flags)
    return Observation.ok(f"Configuration file found: {path}", [f"{n} active directives"])


def check_config_syntax(call: ProbeCall) -> Observation:
    res = call.env.system.config_test(call.context.service, cancel=call.cancel)
    if res.ok and "syntax check OK" in res.output:
        return Observation.ok("Configuration syntax is valid")
    return Observation.error("Configuration syntax check failed", res.output.splitlines())


def check_config_listen(call: ProbeCall) -> Observation:
    cfg = _load_config(call)
    detail = [f"listen-address: {a}" for a in cfg.listen_addresses]
    detail += [f"interface: {i}" for i in cfg.interfaces]
    if cfg.listen_addresses:
        return Observation.ok(f"Listening on {', '.join(cfg.listen_addresses)}", detail)
    if cfg.interfaces:
        return Observation.info(f"Bound to interfaces {', '.join(cfg.interfaces)}", detail)
    return Observation.warning("No listen-address configured (listening on all interfaces)")


def check_config_upstream(call: ProbeCall) -> Observation:
    servers = _load_config(call).servers
    if not servers:
        return Observation.warning("No upstream DNS servers configured (using resolv.conf)")
    return Observation.ok(f"{len(servers)} upstream DNS server(s) configured", servers)


def check_config_cache(call: ProbeCall) -> Observation:
    size = _load_config(call).cache_size
    if size is None:
        return Observation.info("cache-size not set (default: 150)")
    if size == 0:
        return Observation.warning("DNS caching is disabled (cache-size=0)")
    return Observation.ok(f"Cache size: {size}")


def check_config_dhcp(call: ProbeCall) -> Observation:
    ranges = _load_config(call).dhcp_ranges
    if ranges:
        return Observation.info("DHCP server enabled", ranges)
    return Observation.info("DHCP is not configured")


def check_config_dir(call: ProbeCall) -> Observation:
    path = call.context.config_dir
    try:
        files = call.env.config.list_dir(path, "*.conf")
    except ConfigNotFound:
        return Observation.info(f"No additional configuration directory ({path})")
    return Observation.info(f"{len(files)} additional configuration file(s) in {path}", files)


# ----------------------------
# Network exposure
# ----------------------------

def check_listening_port(call: ProbeCall) -> Observation:
    sockets = call.env.network.list_listening_sockets(cancel=call.cancel)
    protos = sorted({s.protocol for s in sockets if s.port == DNS_PORT})
    detail = [f"{s.protocol} {s.address}:{s.port}" for s in sockets if s.port in (DNS_PORT, DHCP_PORT)]
    if protos == ["tcp", "udp"]:
        return Observation.ok(f"Listening on port {DNS_PORT} (TCP and UDP)", detail)
    if protos:
        return Observation.warning(f"Listening on port {DNS_PORT} ({protos[0].upper()} only)", detail)
    return Observation.error(f"Nothing is listening on port {DNS_PORT}", detail)


def check_firewall(call: ProbeCall) -> Observation:
    fw = call.env.firewall
    if fw is None or not fw.available():
        return Observation.info("No firewall tools found")
    active = fw.active_frontends(cancel=call.cancel)
    dns_rules = fw.rules_matching(DNS_PORT, cancel=call.cancel)
    dhcp_rules = fw.rules_matching(DHCP_PORT, cancel=call.cancel)
    detail = [f"active: {', '.join(active) or 'none'}"] + dns_rules + dhcp_rules
    if active and not dns_rules:
        return Observation.warning(f"Firewall active ({', '.join(active)}) with no rule for port {DNS_PORT}", detail)
    if dns_rules:
        return Observation.ok(f"{len(dns_rules)} firewall rule(s) mention port {DNS_PORT}", detail)
    return Observation.info("No firewall rules mention DNS or DHCP", detail)


# ----------------------------
# Resolution
# ----------------------------

def check_local_resolution(call: ProbeCall) -> Observation:
    domain = call.context.test_domain
    res = call.env.dns.query(LOCALHOST, domain, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel)
    if res.ok:
        return Observation.ok(f"Resolved {domain} via {LOCALHOST} in {fmt_ms(res.elapsed_ms)}", res.answers)
    return Observation.error(f"Local resolution of {domain} failed: {query_failure(res)}")


_INTERFACE_BANDS = ((50, Status.OK, "excellent"), (200, Status.OK, "good"))


def check_interface_resolution(call: ProbeCall) -> Observation:
    name = call.target
    ifaces = {i.name: i for i in call.env.network.list_interfaces(cancel=call.cancel)}
    iface = ifaces.get(name)
    if iface is None:
        return Observation.error(f"Interface {name} does not exist")
    if not iface.ipv4:
        return Observation.info(f"Interface {name} has no IPv4 address, not tested")

    ip = iface.ipv4[0]
    domain = call.context.test_domain
    res = call.env.dns.query(ip, domain, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel)
    if not res.ok:
        return Observation.warning(f"Not responding on {name} ({ip}): {query_failure(res)}")
    status, label = grade_latency(res.elapsed_ms or 0.0, _INTERFACE_BANDS, (Status.WARNING, "slow"))
    return Observation(status, f"Responding on {name} ({ip}) in {fmt_ms(res.elapsed_ms)}, {label}", tuple(res.answers))


def check_upstream(call: ProbeCall) -> Observation:
    server = call.target
    domain = call.context.test_domain
    res = call.env.dns.query(server, domain, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel)
    if res.ok:
        return Observation.ok(f"Upstream {server} reachable ({fmt_ms(res.elapsed_ms)})")
    return Observation.error(f"Upstream {server} not reachable: {query_failure(res)}")


# ----------------------------
# Runtime behaviour
# ----------------------------

def check_cache_stats(call: ProbeCall) -> Observation:
    lines = call.env.services.recent_activity(call.context.service, since=ACTIVITY_WINDOW, cancel=call.cancel)
    stats = [ln for ln in lines if _CACHE_RE.search(ln)]
    if not stats:
        return Observation.info("No cache statistics in the service log for the last hour")
    return Observation.info(f"{len(stats)} cache statistic line(s) logged", stats[-ACTIVITY_TAIL:])


_PERF_BANDS = ((50, Status.OK, "good"), (200, Status.WARNING, "degraded"))


def check_performance(call: ProbeCall) -> Observation:
    env = call.env
    detail: List[str] = []
    pid = env.services.main_pid(call.context.service, cancel=call.cancel)
    if pid:
        detail += env.system.process_stats(pid, cancel=call.cancel)
    detail.append(f"active connections on port {DNS_PORT}: {env.network.connection_count(DNS_PORT, cancel=call.cancel)}")

    res = env.dns.query(LOCALHOST, call.context.test_domain, "A", timeout=QUERY_TIMEOUT, cancel=call.cancel)
    if not res.ok:
        return Observation.error(f"Local query failed: {query_failure(res)}", detail)
    status, label = grade_latency(res.elapsed_ms or 0.0, _PERF_BANDS, (Status.ERROR, "poor"))
    return Observation(status, f"Local query time {fmt_ms(res.elapsed_ms)} ({label})", tuple(detail))


def check_log_errors(call: ProbeCall) -> Observation:
    lines = call.env.services.recent_activity(call.context.service, since=ACTIVITY_WINDOW, cancel=call.cancel)
    problems = [ln for ln in lines if _LOG_PROBLEM_RE.search(ln)]
    if problems:
        return Observation.warning(f"{len(problems)} error/warning line(s) logged in the last hour", problems[-5:])
    return Observation.ok("No errors logged in the last hour")


def _privileged(context: Context) -> bool:
    return context.privileged


# ----------------------------
# Registry
# ----------------------------

def server_registry() -> ProbeRegistry:
    reg = ProbeRegistry("server")
    sys_, svc, cfg, net, res, perf = (
        Category.SYSTEM, Category.SERVICE, Category.CONFIG,
        Category.NETWORK, Category.RESOLUTION, Category.PERFORMANCE,
    )
    installed = ("installation",)
    running = ("service-active",)
    config = ("config-file",)

    for p in (
        Probe("system-info", "System information", sys_, system_info),
        Probe("installation", "Installation", svc, check_installation),
        Probe("service-active", "Service state", svc, check_service_active, depends_on=installed),
        Probe("service-enabled", "Service enabled at boot", svc, check_service_enabled, depends_on=installed),
        Probe("service-activity", "Recent service activity", svc, check_service_activity, depends_on=installed),
        Probe("config-file", "Configuration file", cfg, check_config_file),
        Probe("config-syntax", "Configuration syntax", cfg, check_config_syntax, depends_on=installed + config),
        Probe("config-listen", "Listen addresses", cfg, check_config_listen, depends_on=config),
        Probe("config-upstream", "Upstream servers", cfg, check_config_upstream, depends_on=config),
        Probe("config-cache", "Cache size", cfg, check_config_cache, depends_on=config),
        Probe("config-dhcp", "DHCP configuration", cfg, check_config_dhcp, depends_on=config),
        Probe("config-dir", "Additional configuration", cfg, check_config_dir),
        Probe("listening-port", "Listening ports", net, check_listening_port),
        Probe("firewall", "Firewall rules", net, check_firewall, applicability=_privileged, timeout=15.0),
        Probe("local-resolution", "Local resolution", res, check_local_resolution, depends_on=running),
        Probe("interface-resolution", "Interface resolution", res, check_interface_resolution,
              depends_on=running, fan_out=context_targets),
        Probe("upstream-reachability", "Upstream reachability", res, check_upstream, fan_out=upstream_servers),
        Probe("cache-stats", "Cache statistics", perf, check_cache_stats, depends_on=running),
        Probe("performance", "Performance", perf, check_performance, depends_on=running, timeout=15.0),
        Probe("log-errors", "Log errors", svc, check_log_errors, depends_on=installed),
    ):
        reg.register(p)
    return reg
