from __future__ import annotations

import math
import re
import socket
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from diagnostics.cancellation import CancelToken
from diagnostics.errors import ProbeCancelled

from .runner import CommandRunner


@dataclass(frozen=True)
class Interface:
    name: str
    ipv4: Tuple[str, ...] = ()
    mtu: Optional[int] = None
    state: str = "UNKNOWN"


@dataclass(frozen=True)
class ListeningSocket:
    protocol: str  # tcp | udp
    address: str
    port: int


_LINK_RE = re.compile(r"^\d+:\s+(?P<name>[^:@\s]+)(?:@\S+)?:\s+<[^>]*>(?P<rest>.*)$")
_MTU_RE = re.compile(r"\bmtu\s+(\d+)")
_STATE_RE = re.compile(r"\bstate\s+(\S+)")
_INET_RE = re.compile(r"^\d+:\s+(?P<name>\S+)\s+inet\s+(?P<addr>\d+(?:\.\d+){3})")


def parse_ip_link(text: str) -> Dict[str, Tuple[Optional[int], str]]:
    """`ip -o link show` -> {name: (mtu, state)}"""
    out: Dict[str, Tuple[Optional[int], str]] = {}
    for ln in (text or "").splitlines():
        m = _LINK_RE.match(ln.strip())
        if not m:
            continue
        rest = m.group("rest")
        mtu = _MTU_RE.search(rest)
        state = _STATE_RE.search(rest)
        out[m.group("name")] = (int(mtu.group(1)) if mtu else None, state.group(1) if state else "UNKNOWN")
    return out


def parse_ip_addr(text: str) -> Dict[str, List[str]]:
    """`ip -o -4 addr show` -> {name: [ipv4, ...]}"""
    out: Dict[str, List[str]] = {}
    for ln in (text or "").splitlines():
        m = _INET_RE.match(ln.strip())
        if m:
            out.setdefault(m.group("name"), []).append(m.group("addr"))
    return out


def _split_port(local: str) -> Tuple[str, Optional[int]]:
    host, _, port = local.rpartition(":")
    try:
        return host, int(port)
    except ValueError:
        return local, None


def parse_ss_listening(text: str) -> List[ListeningSocket]:
    """`ss -tuln` -> sockets. Header line and unparsable rows are ignored."""
    out: List[ListeningSocket] = []
    for ln in (text or "").splitlines():
        parts = ln.split()
        if len(parts) < 5 or parts[0].lower() == "netid":
            continue
        proto = parts[0].lower()
        if proto not in ("tcp", "udp"):
            continue
        host, port = _split_port(parts[4])
        if port is None:
            continue
        out.append(ListeningSocket(protocol=proto, address=host, port=port))
    return out


def count_connections(text: str, port: int) -> int:
    """Count `ss -tan` rows whose local or peer address uses the port."""
    n = 0
    for ln in (text or "").splitlines():
        parts = ln.split()
        if len(parts) < 5 or parts[0].lower() == "state":
            continue
        if any(_split_port(addr)[1] == port for addr in parts[3:5]):
            n += 1
    return n


class LinuxNetworkInspector:
    """Interfaces, sockets and routes via iproute2 / ss / ping; TCP reachability via sockets."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def list_interfaces(self, cancel: Optional[CancelToken] = None) -> List[Interface]:
        links = parse_ip_link(self.runner.run(["ip", "-o", "link", "show"], cancel=cancel).stdout)
        addrs = parse_ip_addr(self.runner.run(["ip", "-o", "-4", "addr", "show"], cancel=cancel).stdout)
        out: List[Interface] = []
        for name, (mtu, state) in links.items():
            out.append(Interface(name=name, ipv4=tuple(addrs.get(name, [])), mtu=mtu, state=state))
        return out

    def list_listening_sockets(self, cancel: Optional[CancelToken] = None) -> List[ListeningSocket]:
        return parse_ss_listening(self.runner.run(["ss", "-tuln"], cancel=cancel).stdout)

    def connection_count(self, port: int, cancel: Optional[CancelToken] = None) -> int:
        return count_connections(self.runner.run(["ss", "-tan"], cancel=cancel).stdout, port)

    def default_gateway(self, cancel: Optional[CancelToken] = None) -> Optional[str]:
        out = self.runner.run(["ip", "route", "show", "default"], cancel=cancel).stdout
        m = re.search(r"\bvia\s+(\S+)", out or "")
        return m.group(1) if m else None

    def primary_address(self, cancel: Optional[CancelToken] = None) -> Optional[str]:
        out = self.runner.run(["ip", "route", "get", "1.1.1.1"], cancel=cancel).stdout
        m = re.search(r"\bsrc\s+(\S+)", out or "")
        return m.group(1) if m else None

    def ping(self, host: str, timeout: float = 2.0, cancel: Optional[CancelToken] = None) -> bool:
        wait_s = max(1, int(math.ceil(timeout)))
        res = self.runner.run(["ping", "-c", "1", "-W", str(wait_s), host], timeout_seconds=timeout + 1, cancel=cancel)
        return res.ok

    def tcp_connect(self, host: str, port: int, timeout: float = 2.0, cancel: Optional[CancelToken] = None) -> bool:
        if cancel is not None:
            cancel.raise_if_cancelled()
            timeout = cancel.remaining(timeout)
            if timeout <= 0:
                raise ProbeCancelled(cancel.reason or "cancelled")
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False
