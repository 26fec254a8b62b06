import ipaddress
import re
from typing import Iterable, List

from diagnostics.models import Role

# Invalid user input base error
class InvalidTarget(ValueError):
    """Base error for invalid user input targets."""

# Invalid domain name
class InvalidDomain(InvalidTarget):
    """Raised when a target is not a valid domain name."""

# Invalid interface name
class InvalidInterface(InvalidTarget):
    """Raised when a server target is not a plausible network interface name."""

# Invalid DNS server address
class InvalidAddress(InvalidTarget):
    """Raised when a client target is not an IPv4/IPv6 address."""

# Trim white space, drop trailing dots and lower-case.
def normalize_target(raw: str) -> str:
    return (raw or "").strip().rstrip(".").lower()

# Checks only format, not existence
_LABEL = re.compile(r"^_?[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
def is_domain(s: str) -> bool:
    if not s or len(s) > 253 or any(c.isspace() for c in s):
        return False

    labels = s.split(".")
    if any(label == "" or len(label) > 63 for label in labels):
        return False

    return all(_LABEL.match(label) for label in labels)

def require_domain(raw: str) -> str:
    s = normalize_target(raw)
    if not is_domain(s):
        raise InvalidDomain(f"Invalid domain format: {raw!r}")
    return s

# Linux interface names: at most 15 bytes, no slash, no whitespace
_IFNAME = re.compile(r"^[A-Za-z0-9_.:@-]{1,15}$")
def is_interface(s: str) -> bool:
    return bool(s) and s not in (".", "..") and bool(_IFNAME.match(s))

def require_interface(raw: str) -> str:
    s = (raw or "").strip()
    if not is_interface(s):
        raise InvalidInterface(f"Invalid interface name: {raw!r}")
    return s

def require_address(raw: str) -> str:
    s = (raw or "").strip()
    try:
        return str(ipaddress.ip_address(s))
    except ValueError:
        raise InvalidAddress(f"Invalid DNS server address: {raw!r}")

# server role probes interfaces, client role probes DNS servers
def require_targets(role, raw: Iterable[str]) -> List[str]:
    check = require_interface if Role(role) is Role.SERVER else require_address
    return [check(t) for t in raw]

# domains to resolve; duplicates collapse keeping first order
def require_domains(raw: Iterable[str]) -> List[str]:
    out: List[str] = []
    for d in map(require_domain, raw):
        if d not in out:
            out.append(d)
    return out
