import logging
import shutil
import subprocess
import time
from dataclasses import dataclass
from typing import List, Optional, Sequence

from diagnostics.cancellation import CancelToken
from diagnostics.errors import ProbeCancelled, ToolMissing

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    cmd: List[str]
    stdout: str = ""
    stderr: str = ""
    returncode: Optional[int] = None
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out

    @property
    def output(self) -> str:
        return ((self.stdout or "") + "\n" + (self.stderr or "")).strip()

    def lines(self) -> List[str]:
        return [ln.rstrip() for ln in (self.stdout or "").splitlines() if ln.strip()]


class CommandRunner:
    """
    Small wrapper around subprocess with timeouts, cancellation and consistent output.

    The child is polled every poll_interval seconds; a cancelled token kills it and
    raises ProbeCancelled, an expired timeout kills it and returns timed_out=True.
    """

    def __init__(self, timeout_seconds: float = 10.0, poll_interval: float = 0.05):
        self.timeout_seconds = float(timeout_seconds)
        self.poll_interval = float(poll_interval)

    def which(self, tool: str) -> Optional[str]:
        return shutil.which(tool)

    def run(
        self,
        cmd: Sequence[str],
        timeout_seconds: Optional[float] = None,
        cancel: Optional[CancelToken] = None,
    ) -> CommandResult:
        cmd_list = [str(c) for c in cmd]
        if self.which(cmd_list[0]) is None:
            raise ToolMissing(cmd_list[0])

        t = self.timeout_seconds if timeout_seconds is None else float(timeout_seconds)
        if cancel is not None:
            cancel.raise_if_cancelled()
            t = cancel.remaining(t)

        logger.debug("exec %s (timeout %.1fs)", " ".join(cmd_list), t)
        p = subprocess.Popen(cmd_list, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        deadline = time.monotonic() + t
        while True:
            try:
                out, err = p.communicate(timeout=self.poll_interval)
                return CommandResult(cmd=cmd_list, stdout=out or "", stderr=err or "", returncode=p.returncode)
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.cancelled:
                    p.kill()
                    p.communicate()
                    raise ProbeCancelled(f"{cancel.reason or 'cancelled'} while running {cmd_list[0]}")
                if time.monotonic() >= deadline:
                    p.kill()
                    out, err = p.communicate()
                    return CommandResult(
                        cmd=cmd_list,
                        stdout=out or "",
                        stderr=f"[timeout after {t:g}s] {' '.join(cmd_list)}",
                        returncode=None,
                        timed_out=True,
                    )
