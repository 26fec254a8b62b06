from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from diagnostics.errors import ConfigNotFound

DEFAULT_CACHE_SIZE = 150


@dataclass
class ServiceConfig:
    """Parsed dnsmasq-style `key=value` configuration."""
    path: str
    options: Dict[str, List[str]] = field(default_factory=dict)
    flags: List[str] = field(default_factory=list)

    def values(self, key: str) -> List[str]:
        return list(self.options.get(key, []))

    @property
    def listen_addresses(self) -> List[str]:
        return self.values("listen-address")

    @property
    def interfaces(self) -> List[str]:
        return self.values("interface")

    @property
    def servers(self) -> List[str]:
        return self.values("server")

    @property
    def dhcp_ranges(self) -> List[str]:
        return self.values("dhcp-range")

    @property
    def cache_size(self) -> Optional[int]:
        raw = self.values("cache-size")
        if not raw:
            return None
        try:
            return int(raw[-1])
        except ValueError:
            return None


@dataclass
class ResolvConf:
    path: str
    nameservers: List[str] = field(default_factory=list)
    search: List[str] = field(default_factory=list)
    options: List[str] = field(default_factory=list)
    symlink_target: Optional[str] = None


@dataclass
class HostsFile:
    path: str
    entries: List[Tuple[str, Tuple[str, ...]]] = field(default_factory=list)

    def has_localhost(self) -> bool:
        return any(ip == "127.0.0.1" and any("localhost" in n for n in names) for ip, names in self.entries)

    def custom_entries(self) -> List[Tuple[str, Tuple[str, ...]]]:
        return [(ip, names) for ip, names in self.entries if not any("localhost" in n for n in names)]


def _strip_comment(line: str) -> str:
    return line.split("#", 1)[0].strip()


def parse_service_config(text: str, path: str = "") -> ServiceConfig:
    cfg = ServiceConfig(path=path)
    for raw in (text or "").splitlines():
        ln = _strip_comment(raw)
        if not ln:
            continue
        if "=" in ln:
            key, value = ln.split("=", 1)
            cfg.options.setdefault(key.strip(), []).append(value.strip())
        else:
            cfg.flags.append(ln)
    return cfg


def parse_resolv_conf(text: str, path: str = "") -> ResolvConf:
    rc = ResolvConf(path=path)
    for raw in (text or "").splitlines():
        parts = _strip_comment(raw).split(";", 1)[0].split()
        if not parts:
            continue
        key, args = parts[0], parts[1:]
        if key == "nameserver" and args:
            rc.nameservers.append(args[0])
        elif key in ("search", "domain"):
            rc.search.extend(args)
        elif key == "options":
            rc.options.extend(args)
    return rc


def parse_hosts(text: str, path: str = "") -> HostsFile:
    hf = HostsFile(path=path)
    for raw in (text or "").splitlines():
        parts = _strip_comment(raw).split()
        if len(parts) >= 2:
            hf.entries.append((parts[0], tuple(parts[1:])))
    return hf


class ConfigReader:
    """Read configuration files; parsing of known formats stays in this module."""

    def read(self, path: str) -> str:
        try:
            return Path(path).read_text(encoding="utf-8", errors="replace")
        except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
            raise ConfigNotFound(path)

    def exists(self, path: str) -> bool:
        return Path(path).exists()

    def symlink_target(self, path: str) -> Optional[str]:
        p = Path(path)
        if not p.is_symlink():
            return None
        return os.path.realpath(path)

    def list_dir(self, path: str, pattern: str = "*.conf") -> List[str]:
        p = Path(path)
        if not p.is_dir():
            raise ConfigNotFound(path)
        return sorted(str(x) for x in p.glob(pattern))

    def load_service_config(self, path: str) -> ServiceConfig:
        return parse_service_config(self.read(path), path=path)

    def load_resolv_conf(self, path: str = "/etc/resolv.conf") -> ResolvConf:
        rc = parse_resolv_conf(self.read(path), path=path)
        rc.symlink_target = self.symlink_target(path)
        return rc

    def load_hosts(self, path: str = "/etc/hosts") -> HostsFile:
        return parse_hosts(self.read(path), path=path)
