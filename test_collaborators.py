# test_collaborators.py
from __future__ import annotations

import os
import sys
import time
from typing import List, Optional, Tuple

import pytest

from collaborators.configfile import ConfigReader, parse_hosts, parse_resolv_conf, parse_service_config
from collaborators.dnsquery import DnsQuerier, DNSQueryResult
from collaborators.firewall import LinuxFirewallInspector
from collaborators.network import (
    LinuxNetworkInspector,
    count_connections,
    parse_ip_addr,
    parse_ip_link,
    parse_ss_listening,
)
from collaborators.runner import CommandResult, CommandRunner
from collaborators.services import SystemdServiceManager
from collaborators.system import SystemInspector, format_uptime
from diagnostics.cancellation import CancelToken
from diagnostics.errors import ConfigNotFound, ProbeCancelled, ServiceManagerUnavailable, ToolMissing


# ----------------------------
# Flexible FakeRunner
# ----------------------------
class FlexibleFakeRunner:
    """
    Fake runner that matches run() calls by required tokens rather than exact arg lists.

    rules = [
        (["ip", "link"], "...output..."),
        (["systemctl", "is-active"], ("", 3)),   # (stdout, returncode)
    ]
    The first rule whose required tokens all appear in the command wins.
    """
    def __init__(self, rules: List[Tuple[List[str], object]], tools: Optional[List[str]] = None):
        self.rules = rules
        self.tools = set(tools) if tools is not None else {r[0][0] for r in rules}
        self.calls: List[List[str]] = []

    def which(self, tool: str) -> Optional[str]:
        return f"/usr/bin/{tool}" if tool in self.tools else None

    def run(self, cmd, timeout_seconds=None, cancel=None) -> CommandResult:
        cmd = [str(c) for c in cmd]
        self.calls.append(cmd)
        if cmd[0] not in self.tools:
            raise ToolMissing(cmd[0])
        for required, out in self.rules:
            if all(tok in cmd for tok in required):
                stdout, rc = out if isinstance(out, tuple) else (out, 0)
                return CommandResult(cmd=cmd, stdout=stdout, returncode=rc)
        raise AssertionError(
            "Unexpected command:\n"
            f"  cmd={cmd}\n"
            "No rules matched. Add a rule with required tokens that appear in cmd."
        )


IP_LINK = """\
1: lo: <LOOPBACK,UP,LOWER_UP> mtu 65536 qdisc noqueue state UNKNOWN mode DEFAULT group default qlen 1000\\    link/loopback 00:00:00:00:00:00 brd 00:00:00:00:00:00
2: eth0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500 qdisc fq_codel state UP mode DEFAULT group default qlen 1000\\    link/ether 52:54:00:12:34:56 brd ff:ff:ff:ff:ff:ff
3: veth1@if2: <BROADCAST,MULTICAST> mtu 1450 qdisc noop state DOWN mode DEFAULT group default qlen 1000\\    link/ether 9a:10:00:00:00:01 brd ff:ff:ff:ff:ff:ff
"""

IP_ADDR = """\
1: lo    inet 127.0.0.1/8 scope host lo\\       valid_lft forever preferred_lft forever
2: eth0    inet 10.0.0.1/24 brd 10.0.0.255 scope global eth0\\       valid_lft forever preferred_lft forever
2: eth0    inet 10.0.0.2/24 scope global secondary eth0\\       valid_lft forever preferred_lft forever
"""

SS_TULN = """\
Netid State  Recv-Q Send-Q Local Address:Port Peer Address:Port Process
udp   UNCONN 0      0            0.0.0.0:53        0.0.0.0:*
udp   UNCONN 0      0            0.0.0.0:67        0.0.0.0:*
tcp   LISTEN 0      32           0.0.0.0:53        0.0.0.0:*
tcp   LISTEN 0      128             [::]:22           [::]:*
"""

SS_TAN = """\
State  Recv-Q Send-Q Local Address:Port  Peer Address:Port Process
ESTAB  0      0         10.0.0.1:53       10.0.0.7:51514
ESTAB  0      0         10.0.0.1:22       10.0.0.9:40000
TIME-WAIT 0   0         10.0.0.1:53       10.0.0.8:51515
"""


# ----------------------------
# Network parsing
# ----------------------------
def test_parse_ip_link_reads_mtu_and_state():
    links = parse_ip_link(IP_LINK)
    assert links["lo"] == (65536, "UNKNOWN")
    assert links["eth0"] == (1500, "UP")
    assert links["veth1"] == (1450, "DOWN")


def test_parse_ip_addr_groups_addresses_per_interface():
    addrs = parse_ip_addr(IP_ADDR)
    assert addrs == {"lo": ["127.0.0.1"], "eth0": ["10.0.0.1", "10.0.0.2"]}


def test_parse_ss_listening_skips_header_and_reads_ipv6():
    socks = parse_ss_listening(SS_TULN)
    assert [(s.protocol, s.port) for s in socks] == [("udp", 53), ("udp", 67), ("tcp", 53), ("tcp", 22)]
    assert socks[-1].address == "[::]"


def test_count_connections_matches_port_exactly():
    assert count_connections(SS_TAN, 53) == 2
    assert count_connections(SS_TAN, 5) == 0


def test_network_inspector_combines_link_and_addr():
    runner = FlexibleFakeRunner([
        (["ip", "link"], IP_LINK),
        (["ip", "addr"], IP_ADDR),
        (["ip", "route", "default"], "default via 10.0.0.254 dev eth0 proto dhcp metric 100\n"),
        (["ip", "route", "get"], "1.1.1.1 via 10.0.0.254 dev eth0 src 10.0.0.1 uid 0\n    cache\n"),
        (["ss", "-tuln"], SS_TULN),
    ])
    net = LinuxNetworkInspector(runner)

    ifaces = {i.name: i for i in net.list_interfaces()}
    assert ifaces["eth0"].ipv4 == ("10.0.0.1", "10.0.0.2")
    assert ifaces["veth1"].ipv4 == ()
    assert net.default_gateway() == "10.0.0.254"
    assert net.primary_address() == "10.0.0.1"
    assert len(net.list_listening_sockets()) == 4


def test_ping_uses_exit_status():
    runner = FlexibleFakeRunner([(["ping", "10.0.0.254"], ""), (["ping", "10.9.9.9"], ("", 1))])
    net = LinuxNetworkInspector(runner)
    assert net.ping("10.0.0.254") is True
    assert net.ping("10.9.9.9") is False


def test_tcp_connect_respects_cancelled_token():
    token = CancelToken()
    token.cancel("deadline")
    with pytest.raises(ProbeCancelled):
        LinuxNetworkInspector(FlexibleFakeRunner([])).tcp_connect("192.0.2.1", 53, cancel=token)


# ----------------------------
# Service manager
# ----------------------------
def test_service_manager_reads_state_from_exit_codes():
    runner = FlexibleFakeRunner([
        (["is-active", "dnsmasq"], ""),
        (["is-enabled", "dnsmasq"], ("", 1)),
        (["show", "MainPID", "dnsmasq"], "1234\n"),
        (["journalctl", "dnsmasq"], "Jan 01 dnsmasq[1234]: started\n\nJan 01 dnsmasq[1234]: read /etc/hosts\n"),
    ], tools=["systemctl", "journalctl"])
    svc = SystemdServiceManager(runner)

    assert svc.is_active("dnsmasq") is True
    assert svc.is_enabled("dnsmasq") is False
    assert svc.main_pid("dnsmasq") == 1234
    assert svc.recent_activity("dnsmasq") == ["Jan 01 dnsmasq[1234]: started", "Jan 01 dnsmasq[1234]: read /etc/hosts"]
    assert "--since" in runner.calls[-1]


def test_service_manager_without_systemctl_is_unavailable():
    svc = SystemdServiceManager(FlexibleFakeRunner([], tools=[]))
    with pytest.raises(ServiceManagerUnavailable):
        svc.is_active("dnsmasq")


def test_main_pid_zero_means_not_running():
    runner = FlexibleFakeRunner([(["show", "MainPID"], "0\n")], tools=["systemctl"])
    assert SystemdServiceManager(runner).main_pid("dnsmasq") is None


# ----------------------------
# Firewall
# ----------------------------
IPTABLES = """\
Chain INPUT (policy DROP)
target     prot opt source               destination
ACCEPT     udp  --  0.0.0.0/0            0.0.0.0/0            udp dpt:53
ACCEPT     tcp  --  0.0.0.0/0            0.0.0.0/0            tcp dpt:530
ACCEPT     udp  --  0.0.0.0/0            0.0.0.0/0            udp dpt:67
"""

UFW_NUMBERED = """\
Status: active

     To                         Action      From
     --                         ------      ----
[ 1] 53                         ALLOW IN    Anywhere
[ 2] 5353/udp                   ALLOW IN    Anywhere
[ 3] 22/tcp                     ALLOW IN    Anywhere
"""


def test_firewall_rules_matching_port():
    runner = FlexibleFakeRunner([
        (["iptables"], IPTABLES),
        (["ufw", "numbered"], UFW_NUMBERED),
        (["ufw", "status"], "Status: active\n"),
    ])
    fw = LinuxFirewallInspector(runner)

    assert fw.available() == ["iptables", "ufw"]
    assert fw.active_frontends() == ["ufw"]
    rules = fw.rules_matching(53)
    assert len(rules) == 2
    assert rules[0].startswith("iptables:") and "dpt:53" in rules[0]
    assert rules[1].startswith("ufw: [ 1] 53")
    dhcp = fw.rules_matching(67)
    assert len(dhcp) == 1 and dhcp[0].endswith("udp dpt:67")


def test_firewalld_services_and_ports():
    runner = FlexibleFakeRunner([
        (["--state"], "running\n"),
        (["--list-services"], "ssh dns dhcpv6-client\n"),
        (["--list-ports"], "5353/udp 53/tcp\n"),
    ], tools=["firewall-cmd"])
    fw = LinuxFirewallInspector(runner)
    assert fw.active_frontends() == ["firewalld"]
    assert fw.rules_matching(53) == ["firewalld: service dns", "firewalld: port 53/tcp"]


def test_no_firewall_tools_means_no_rules():
    assert LinuxFirewallInspector(FlexibleFakeRunner([], tools=[])).rules_matching(53) == []


# ----------------------------
# Configuration files
# ----------------------------
def test_parse_service_config():
    cfg = parse_service_config(
        "# main config\n"
        "listen-address=127.0.0.1\n"
        "listen-address=10.0.0.1  # lan\n"
        "server=1.1.1.1\n"
        "domain-needed\n"
        "cache-size=oops\n"
    )
    assert cfg.listen_addresses == ["127.0.0.1", "10.0.0.1"]
    assert cfg.servers == ["1.1.1.1"]
    assert cfg.flags == ["domain-needed"]
    assert cfg.cache_size is None
    assert parse_service_config("cache-size=0").cache_size == 0


def test_parse_resolv_conf_handles_both_comment_styles():
    rc = parse_resolv_conf("# generated\nnameserver 127.0.0.53\nnameserver 1.1.1.1 ; backup\n"
                           "search lan example.com\noptions edns0 trust-ad\n")
    assert rc.nameservers == ["127.0.0.53", "1.1.1.1"]
    assert rc.search == ["lan", "example.com"]
    assert rc.options == ["edns0", "trust-ad"]


def test_parse_hosts():
    hosts = parse_hosts("127.0.0.1\tlocalhost\n::1 ip6-localhost ip6-loopback\n10.0.0.5 nas.lan nas # storage\n")
    assert hosts.has_localhost()
    assert hosts.custom_entries() == [("10.0.0.5", ("nas.lan", "nas"))]
    assert not parse_hosts("10.0.0.5 nas\n").has_localhost()


def test_config_reader_on_disk(tmp_path):
    conf = tmp_path / "dnsmasq.conf"
    conf.write_text("server=9.9.9.9\n", encoding="utf-8")
    (tmp_path / "conf.d").mkdir()
    (tmp_path / "conf.d" / "b.conf").write_text("", encoding="utf-8")
    (tmp_path / "conf.d" / "a.conf").write_text("", encoding="utf-8")
    (tmp_path / "conf.d" / "notes.txt").write_text("", encoding="utf-8")
    link = tmp_path / "resolv.conf"
    os.symlink(conf, link)

    reader = ConfigReader()
    assert reader.load_service_config(str(conf)).servers == ["9.9.9.9"]
    assert [os.path.basename(p) for p in reader.list_dir(str(tmp_path / "conf.d"))] == ["a.conf", "b.conf"]
    assert reader.symlink_target(str(link)) == os.path.realpath(conf)
    assert reader.symlink_target(str(conf)) is None

    with pytest.raises(ConfigNotFound) as exc:
        reader.read(str(tmp_path / "missing.conf"))
    assert exc.value.path.endswith("missing.conf")
    with pytest.raises(ConfigNotFound):
        reader.list_dir(str(tmp_path / "nope"))


# ----------------------------
# System inspector
# ----------------------------
def test_format_uptime():
    assert format_uptime(3 * 86400 + 2 * 3600 + 5 * 60 + 12) == "up 3 days, 2 hours, 5 minutes"
    assert format_uptime(61) == "up 1 minute"
    assert format_uptime(59) == "up 0 minutes"


def test_system_inspector_reads_proc_uptime(tmp_path):
    (tmp_path / "uptime").write_text("3725.50 7000.00\n", encoding="ascii")
    facts = SystemInspector(FlexibleFakeRunner([]), proc_root=str(tmp_path)).facts()
    assert facts["uptime"] == "up 1 hour, 2 minutes"
    assert facts["hostname"]


def test_tool_version_is_first_output_line():
    runner = FlexibleFakeRunner([(["dnsmasq", "--version"], "Dnsmasq version 2.89  Copyright\nCompile time options: IPv6\n")])
    assert SystemInspector(runner).tool_version("dnsmasq") == "Dnsmasq version 2.89  Copyright"


# ----------------------------
# Command runner and cancellation
# ----------------------------
def test_runner_missing_tool_raises():
    with pytest.raises(ToolMissing) as exc:
        CommandRunner().run(["definitely-not-installed-tool-xyz", "--help"])
    assert exc.value.tool == "definitely-not-installed-tool-xyz"


def test_runner_times_out_and_kills_child():
    started = time.monotonic()
    res = CommandRunner(timeout_seconds=0.2).run([sys.executable, "-c", "import time; time.sleep(5)"])
    assert res.timed_out
    assert not res.ok
    assert "timeout after" in res.stderr
    assert time.monotonic() - started < 4


def test_runner_refuses_to_start_when_cancelled():
    token = CancelToken()
    token.cancel("timeout")
    with pytest.raises(ProbeCancelled):
        CommandRunner().run([sys.executable, "-c", "pass"], cancel=token)


def test_runner_kills_child_on_cancel():
    token = CancelToken(deadline=time.monotonic() + 0.2)
    started = time.monotonic()
    with pytest.raises(ProbeCancelled):
        CommandRunner(timeout_seconds=10).run([sys.executable, "-c", "import time; time.sleep(5)"], cancel=token)
    assert time.monotonic() - started < 4


def test_cancel_token_parent_child_propagation():
    parent = CancelToken()
    child = parent.child()
    grandchild = child.child()
    sibling = parent.child()

    child.cancel("timeout")
    assert child.cancelled and grandchild.cancelled
    assert not parent.cancelled and not sibling.cancelled

    parent.cancel("deadline")
    assert sibling.cancelled
    assert sibling.reason == "deadline"
    assert parent.child().cancelled


def test_cancel_token_detached_children_are_released():
    parent = CancelToken()
    done = [parent.child() for _ in range(3)]
    running = parent.child()
    for t in done:
        t.detach()
    assert parent._children == {running}

    parent.cancel("deadline")
    assert running.cancelled
    assert not any(t.cancelled for t in done)


def test_cancel_token_deadline_and_remaining():
    token = CancelToken(deadline=time.monotonic() + 60)
    assert 0 < token.remaining(5.0) <= 5.0
    child = token.child(deadline=time.monotonic() - 1)
    assert child.cancelled
    assert child.reason == "deadline"
    assert child.remaining(5.0) == 0.0
    assert not token.cancelled


# ----------------------------
# DNS collaborator
# ----------------------------
def test_dns_query_result_ok_needs_answers():
    assert DNSQueryResult("s", "a.", "A", "NOERROR", answers=["1.2.3.4"]).ok
    assert not DNSQueryResult("s", "a.", "A", "NOERROR").ok
    assert not DNSQueryResult("s", "a.", "A", "TIMEOUT", error="TIMEOUT").ok
    assert DNSQueryResult("s", "a.", "A", "NOERROR", flags={"ad": True}).authenticated


def test_dns_query_stops_when_cancelled():
    token = CancelToken()
    token.cancel("deadline")
    with pytest.raises(ProbeCancelled):
        DnsQuerier().query("192.0.2.1", "example.com", cancel=token)
