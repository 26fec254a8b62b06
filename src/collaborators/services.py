from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from diagnostics.cancellation import CancelToken
from diagnostics.errors import ServiceManagerUnavailable

from .runner import CommandRunner


class SystemdServiceManager:
    """Service state via systemctl, recent activity via journalctl."""

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    def _require(self, tool: str) -> None:
        if self.runner.which(tool) is None:
            raise ServiceManagerUnavailable(f"No supported service manager: {tool} not found")

    def is_active(self, name: str, cancel: Optional[CancelToken] = None) -> bool:
        self._require("systemctl")
        return self.runner.run(["systemctl", "is-active", "--quiet", name], cancel=cancel).ok

    def is_enabled(self, name: str, cancel: Optional[CancelToken] = None) -> bool:
        self._require("systemctl")
        return self.runner.run(["systemctl", "is-enabled", "--quiet", name], cancel=cancel).ok

    def status_lines(self, name: str, cancel: Optional[CancelToken] = None) -> List[str]:
        self._require("systemctl")
        return self.runner.run(["systemctl", "status", name, "--no-pager"], cancel=cancel).lines()

    def main_pid(self, name: str, cancel: Optional[CancelToken] = None) -> Optional[int]:
        self._require("systemctl")
        res = self.runner.run(["systemctl", "show", "-p", "MainPID", "--value", name], cancel=cancel)
        try:
            pid = int(res.stdout.strip() or "0")
        except ValueError:
            return None
        return pid or None

    def recent_activity(
        self,
        name: str,
        since: timedelta = timedelta(hours=1),
        cancel: Optional[CancelToken] = None,
    ) -> List[str]:
        self._require("journalctl")
        start = (datetime.now() - since).strftime("%Y-%m-%d %H:%M:%S")
        res = self.runner.run(["journalctl", "-u", name, "--since", start, "--no-pager", "-q"], cancel=cancel)
        return res.lines()
