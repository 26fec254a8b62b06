from __future__ import annotations

import re
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Pattern, Sequence, Tuple

from diagnostics.models import Category, ProbeOutcome, Recommendation, Report, Status, worst_status

_PROBLEMS = frozenset({Status.ERROR, Status.WARNING})


@dataclass(frozen=True)
class Rule:
    """
    (category, statuses, optional message pattern, optional probe id prefix) -> text.

    text may reference {service}, {config_file} and {ids}; it is formatted against
    the report context when the rule fires.
    """
    category: Category
    text: str
    statuses: FrozenSet[Status] = _PROBLEMS
    pattern: Optional[Pattern[str]] = None
    probe_prefix: Optional[str] = None

    def matches(self, outcome: ProbeOutcome) -> bool:
        if outcome.category is not self.category or outcome.status not in self.statuses:
            return False
        if self.probe_prefix and not (
            outcome.probe_id == self.probe_prefix or outcome.probe_id.startswith(self.probe_prefix + ":")
        ):
            return False
        if self.pattern is not None and not self.pattern.search(outcome.message):
            return False
        return True


def _rule(category: Category, text: str, status=None, pattern: Optional[str] = None, probe: Optional[str] = None) -> Rule:
    if status is None:
        statuses = _PROBLEMS
    elif isinstance(status, Status):
        statuses = frozenset({status})
    else:
        statuses = frozenset(status)
    return Rule(
        category=category,
        text=text,
        statuses=statuses,
        pattern=re.compile(pattern, re.IGNORECASE) if pattern else None,
        probe_prefix=probe,
    )


class Recommendations:
    """
    Turns a frozen Report into "what to do next" advice.

    Stateless: derive() reads only the report, so repeated or concurrent calls on
    the same report return equal sequences.
    """

    _RULES: Tuple[Rule, ...] = (
        # Service lifecycle
        _rule(Category.SERVICE, "Install {service}: sudo apt install {service} (or your distribution's package).",
              Status.ERROR, probe="installation"),
        _rule(Category.SERVICE, "Start the {service} service: sudo systemctl start {service}",
              Status.ERROR, probe="service-active"),
        _rule(Category.SERVICE, "Enable {service} at boot: sudo systemctl enable {service}",
              Status.WARNING, probe="service-enabled"),
        _rule(Category.SERVICE, "Review recent service log errors: journalctl -u {service} --since '1 hour ago'",
              Status.WARNING, probe="log-errors"),

        # Configuration
        _rule(Category.CONFIG, "Fix configuration syntax errors: sudo {service} --test",
              Status.ERROR, probe="config-syntax"),
        _rule(Category.CONFIG, "Create or restore the configuration file {config_file}.",
              Status.ERROR, probe="config-file"),
        _rule(Category.CONFIG, "Set listen-address in {config_file} to the addresses clients should use.",
              Status.WARNING, probe="config-listen"),
        _rule(Category.CONFIG, "Add server= lines to {config_file} to pin upstream resolvers (e.g. server=1.1.1.1).",
              Status.WARNING, probe="config-upstream"),
        _rule(Category.CONFIG, "Enable caching with cache-size=1000 in {config_file}.",
              Status.WARNING, probe="config-cache"),
        _rule(Category.CONFIG,
              "Configure DNS servers in /etc/resolv.conf or network settings. "
              "Example: echo 'nameserver 8.8.8.8' | sudo tee -a /etc/resolv.conf",
              Status.ERROR, probe="resolv-conf"),
        _rule(Category.CONFIG, "Restore /etc/hosts with at least a '127.0.0.1 localhost' line.",
              Status.ERROR, probe="hosts-file"),
        _rule(Category.CONFIG, "Add '127.0.0.1 localhost' to /etc/hosts.", Status.WARNING, probe="hosts-file"),

        # Network exposure
        _rule(Category.NETWORK, "Check that {service} binds port 53: ss -tulnp | grep :53",
              probe="listening-port"),
        _rule(Category.NETWORK, "Open the DNS port in the firewall: sudo ufw allow 53",
              Status.WARNING, probe="firewall"),
        _rule(Category.NETWORK, "Configure a default route; DNS servers outside the local network are unreachable without one.",
              Status.ERROR, probe="default-gateway"),
        _rule(Category.NETWORK, "The default gateway does not answer; check the local link and the router.",
              Status.ERROR, probe="gateway-reachable"),
        _rule(Category.NETWORK,
              "DNS server unreachable: check routing and firewalls for UDP/TCP 53 towards {ids}.",
              probe="server-connectivity"),
        _rule(Category.NETWORK, "Reduced MTU can drop large DNS responses; verify path MTU or enable TCP fallback.",
              Status.WARNING, probe="mtu"),

        # Resolution and performance
        _rule(Category.RESOLUTION, "Local queries fail: check {service} logs and upstream server= settings.",
              Status.ERROR, probe="local-resolution"),
        _rule(Category.RESOLUTION, "Make sure {service} listens on every interface that clients use ({ids}).",
              probe="interface-resolution"),
        _rule(Category.RESOLUTION, "Upstream resolver unreachable ({ids}); check outbound UDP/53 or choose another upstream.",
              probe="upstream-reachability"),
        _rule(Category.RESOLUTION, "Name resolution is failing; verify nameservers and test with: dig example.com",
              Status.ERROR, probe="domain-resolution"),
        _rule(Category.PERFORMANCE,
              "If experiencing slow DNS: try public DNS servers (8.8.8.8, 1.1.1.1), "
              "consider running a local DNS cache (dnsmasq, unbound), and check network latency to DNS servers.",
              pattern=r"slow|degraded|poor|failed"),

        # Security
        _rule(Category.SECURITY,
              "Answers look tampered with; switch to a trusted resolver or use DNS-over-HTTPS (DoH) or DNS-over-TLS (DoT).",
              Status.WARNING, probe="hijack-detection"),
        _rule(Category.SECURITY, "Enable DNSSEC validation if not already enabled (dnssec in {config_file}).",
              (Status.WARNING, Status.INFO), probe="dnssec"),
    )

    @classmethod
    def rules(cls) -> Tuple[Rule, ...]:
        return cls._RULES

    @classmethod
    def derive(cls, report: Report, rules: Optional[Sequence[Rule]] = None) -> List[Recommendation]:
        """
        Fire each rule at most once, listing every outcome it matched.

        Order: Error-severity recommendations first, then Warning, then the rest;
        ties keep rule declaration order.
        """
        ctx = report.context
        fired: List[Tuple[int, int, Recommendation]] = []
        for idx, rule in enumerate(rules if rules is not None else cls._RULES):
            hits = [o for o in report.outcomes if rule.matches(o)]
            if not hits:
                continue
            ids = tuple(o.probe_id for o in hits)
            severity = worst_status(o.status for o in hits)
            text = rule.text.format(service=ctx.service, config_file=ctx.config_file, ids=", ".join(ids))
            fired.append((-severity.rank, idx, Recommendation(triggers=ids, text=text, severity=severity)))
        fired.sort(key=lambda t: (t[0], t[1]))
        return [r for _, _, r in fired]


def derive(report: Report) -> List[Recommendation]:
    return Recommendations.derive(report)
