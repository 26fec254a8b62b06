from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import dns.exception
import dns.flags
import dns.message
import dns.query
import dns.rcode
import dns.rdatatype
import dns.resolver
import dns.reversename

from diagnostics.cancellation import CancelToken
from diagnostics.errors import ProbeCancelled


@dataclass
class DNSQueryResult:
    server: str
    qname: str
    qtype: str
    rcode: str
    answers: List[str] = field(default_factory=list)
    flags: Dict[str, bool] = field(default_factory=dict)
    elapsed_ms: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        """NOERROR with at least one answer of the requested type."""
        return self.error is None and self.rcode == "NOERROR" and bool(self.answers)

    @property
    def authenticated(self) -> bool:
        return bool(self.flags.get("ad"))


class DnsQuerier:
    """
    Query a specific DNS server (or the system's first nameserver) and report:
      - rcode
      - answers of the requested type
      - AD/TC/RA flags
      - elapsed wall time in ms

    The timeout is spent in short UDP retransmission slices; the cancel token is
    checked before every slice, so an in-flight query stops within slice_seconds.
    Failures are returned in DNSQueryResult.error rather than raised.
    """

    def __init__(self, timeout: float = 2.0, slice_seconds: float = 0.5, port: int = 53):
        self.timeout = float(timeout)
        self.slice_seconds = float(slice_seconds)
        self.port = int(port)

    def system_servers(self) -> List[str]:
        try:
            return list(dns.resolver.Resolver(configure=True).nameservers)
        except (dns.resolver.NoResolverConfiguration, OSError):
            return []

    def query(
        self,
        server: Optional[str],
        domain: str,
        record_type: str = "A",
        timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
        want_dnssec: bool = False,
    ) -> DNSQueryResult:
        qname = domain.rstrip(".") + "."
        qtype = str(record_type).upper()

        if not server:
            servers = self.system_servers()
            if not servers:
                return DNSQueryResult(server="", qname=qname, qtype=qtype, rcode="ERROR",
                                      error="No nameservers configured")
            server = servers[0]

        msg = dns.message.make_query(qname, qtype, want_dnssec=want_dnssec)
        msg.flags |= dns.flags.RD

        budget = self.timeout if timeout is None else float(timeout)
        if cancel is not None:
            budget = cancel.remaining(budget)

        started = time.perf_counter()
        end = started + budget
        resp = None
        while resp is None:
            if cancel is not None and cancel.cancelled:
                raise ProbeCancelled(f"{cancel.reason or 'cancelled'} while querying {server}")
            left = end - time.perf_counter()
            if left <= 0:
                return DNSQueryResult(server=server, qname=qname, qtype=qtype, rcode="TIMEOUT",
                                      elapsed_ms=(time.perf_counter() - started) * 1000,
                                      error="TIMEOUT")
            try:
                resp = dns.query.udp(msg, server, port=self.port, timeout=min(self.slice_seconds, left))
            except dns.exception.Timeout:
                continue
            except Exception as e:
                return DNSQueryResult(server=server, qname=qname, qtype=qtype, rcode="ERROR",
                                      elapsed_ms=(time.perf_counter() - started) * 1000,
                                      error=f"{type(e).__name__}: {e}")

        # TC=1: the full answer needs TCP
        if resp.flags & dns.flags.TC:
            left = max(0.1, end - time.perf_counter())
            try:
                resp = dns.query.tcp(msg, server, port=self.port, timeout=left)
            except Exception as e:
                return DNSQueryResult(server=server, qname=qname, qtype=qtype, rcode="ERROR",
                                      elapsed_ms=(time.perf_counter() - started) * 1000,
                                      error=f"TCP fallback failed: {type(e).__name__}: {e}")

        elapsed_ms = (time.perf_counter() - started) * 1000
        wanted = dns.rdatatype.from_text(qtype)
        answers: List[str] = []
        for rrset in resp.answer:
            if rrset.rdtype != wanted:
                continue
            for rdata in rrset:
                answers.append(rdata.to_text())

        return DNSQueryResult(
            server=server,
            qname=qname,
            qtype=qtype,
            rcode=dns.rcode.to_text(resp.rcode()),
            answers=answers,
            flags={
                "ad": bool(resp.flags & dns.flags.AD),
                "tc": bool(resp.flags & dns.flags.TC),
                "ra": bool(resp.flags & dns.flags.RA),
            },
            elapsed_ms=elapsed_ms,
        )

    def reverse(
        self,
        address: str,
        server: Optional[str] = None,
        timeout: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
    ) -> DNSQueryResult:
        rname = dns.reversename.from_address(address).to_text()
        return self.query(server, rname, "PTR", timeout=timeout, cancel=cancel)
