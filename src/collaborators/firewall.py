from __future__ import annotations

import re
from typing import List, Optional

from diagnostics.cancellation import CancelToken

from .runner import CommandRunner

_FRONTENDS = ("iptables", "ufw", "firewall-cmd")


class LinuxFirewallInspector:
    """
    Read-only view over iptables, ufw and firewalld.

    Every tool is optional: a missing tool contributes nothing, and a host
    with none of them simply has no rules to report.
    """

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def available(self) -> List[str]:
        return [t for t in _FRONTENDS if self.runner.which(t) is not None]

    def active_frontends(self, cancel: Optional[CancelToken] = None) -> List[str]:
        tools = self.available()
        active: List[str] = []
        if "ufw" in tools:
            if "Status: active" in self.runner.run(["ufw", "status"], cancel=cancel).stdout:
                active.append("ufw")
        if "firewall-cmd" in tools:
            if "running" in self.runner.run(["firewall-cmd", "--state"], cancel=cancel).output:
                active.append("firewalld")
        return active

    def rules_matching(self, port: int, cancel: Optional[CancelToken] = None) -> List[str]:
        tools = self.available()
        rules: List[str] = []
        if "iptables" in tools:
            for ln in self.runner.run(["iptables", "-L", "-n"], cancel=cancel).lines():
                if re.search(rf"\bdpt:{port}\b", ln):
                    rules.append(f"iptables: {ln.strip()}")
        if "ufw" in tools:
            for ln in self.runner.run(["ufw", "status", "numbered"], cancel=cancel).lines():
                if re.search(rf"(^|[\s\]]){port}(/|\s|$)", ln):
                    rules.append(f"ufw: {ln.strip()}")
        if "firewall-cmd" in tools:
            services = self.runner.run(["firewall-cmd", "--list-services"], cancel=cancel).stdout.split()
            ports = self.runner.run(["firewall-cmd", "--list-ports"], cancel=cancel).stdout.split()
            if port == 53 and "dns" in services:
                rules.append("firewalld: service dns")
            if port == 67 and "dhcp" in services:
                rules.append("firewalld: service dhcp")
            for p in ports:
                if p.split("/")[0] == str(port):
                    rules.append(f"firewalld: port {p}")
        return rules
