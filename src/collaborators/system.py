from __future__ import annotations

import os
import platform
import socket
from typing import Dict, List, Optional

from diagnostics.cancellation import CancelToken

from .runner import CommandResult, CommandRunner


def format_uptime(seconds: float) -> str:
    minutes = int(seconds // 60)
    days, minutes = divmod(minutes, 24 * 60)
    hours, minutes = divmod(minutes, 60)
    parts: List[str] = []
    if days:
        parts.append(f"{days} day{'s' if days != 1 else ''}")
    if hours:
        parts.append(f"{hours} hour{'s' if hours != 1 else ''}")
    parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    return "up " + ", ".join(parts)


class SystemInspector:
    """Host facts, installed tools and the service binary's own self-checks."""

    def __init__(self, runner: Optional[CommandRunner] = None, proc_root: str = "/proc"):
        self.runner = runner or CommandRunner()
        self.proc_root = proc_root

    def is_privileged(self) -> bool:
        geteuid = getattr(os, "geteuid", None)
        return bool(geteuid and geteuid() == 0)

    def which(self, tool: str) -> Optional[str]:
        return self.runner.which(tool)

    def facts(self) -> Dict[str, str]:
        out = {
            "hostname": socket.getfqdn(),
            "kernel": platform.release(),
        }
        try:
            out["os"] = platform.freedesktop_os_release().get("PRETTY_NAME", platform.system())
        except OSError:
            out["os"] = platform.system()
        try:
            with open(os.path.join(self.proc_root, "uptime"), encoding="ascii") as fh:
                out["uptime"] = format_uptime(float(fh.read().split()[0]))
        except (OSError, ValueError, IndexError):
            out["uptime"] = "unknown"
        return out

    def tool_version(self, tool: str, cancel: Optional[CancelToken] = None) -> str:
        res = self.runner.run([tool, "--version"], cancel=cancel)
        lines = res.output.splitlines()
        return lines[0].strip() if lines else ""

    def config_test(self, binary: str, cancel: Optional[CancelToken] = None) -> CommandResult:
        return self.runner.run([binary, "--test"], cancel=cancel)

    def process_stats(self, pid: int, cancel: Optional[CancelToken] = None) -> List[str]:
        res = self.runner.run(["ps", "-p", str(pid), "-o", "pid,ppid,%cpu,%mem,rss,vsz,comm"], cancel=cancel)
        return res.lines()
