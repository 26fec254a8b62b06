"""
Adapters over the operating system that probes query.

Every adapter is narrow and read-only; text parsing of tool output happens here,
never inside a probe. Public entrypoint: Collaborators.local()
"""

from dataclasses import dataclass
from typing import Optional

from .configfile import ConfigReader
from .dnsquery import DnsQuerier, DNSQueryResult
from .firewall import LinuxFirewallInspector
from .network import Interface, LinuxNetworkInspector, ListeningSocket
from .runner import CommandResult, CommandRunner
from .services import SystemdServiceManager
from .system import SystemInspector


@dataclass(frozen=True)
class Collaborators:
    services: SystemdServiceManager
    network: LinuxNetworkInspector
    dns: DnsQuerier
    config: ConfigReader
    system: SystemInspector
    firewall: Optional[LinuxFirewallInspector] = None

    @classmethod
    def local(cls, runner: Optional[CommandRunner] = None, dns_timeout: float = 2.0) -> "Collaborators":
        runner = runner or CommandRunner()
        return cls(
            services=SystemdServiceManager(runner),
            network=LinuxNetworkInspector(runner),
            dns=DnsQuerier(timeout=dns_timeout),
            config=ConfigReader(),
            system=SystemInspector(runner),
            firewall=LinuxFirewallInspector(runner),
        )


__all__ = [
    "Collaborators",
    "CommandResult",
    "CommandRunner",
    "ConfigReader",
    "DNSQueryResult",
    "DnsQuerier",
    "Interface",
    "LinuxFirewallInspector",
    "LinuxNetworkInspector",
    "ListeningSocket",
    "SystemInspector",
    "SystemdServiceManager",
]
