from __future__ import annotations

import os
import sys
from datetime import datetime
from typing import IO, Optional

from rich.console import Console
from rich.text import Text

TEXT = "text"
JSON = "json"

# marker prefix -> rich style
_STYLES = (
    ("[✓]", "green"),
    ("[✗]", "bold red"),
    ("[!]", "yellow"),
    ("[i]", "cyan"),
    ("[-]", "dim"),
    ("===", "bold blue"),
    ("---", "bold"),
)


def _check_format(fmt: str) -> str:
    if fmt not in (TEXT, JSON):
        raise ValueError(f"Unknown sink format: {fmt!r}")
    return fmt


class ConsoleSink:
    """Colorized terminal output; the style is picked from the line's status marker."""

    def __init__(self, console: Optional[Console] = None, format: str = TEXT):
        self.console = console or Console(highlight=False)
        self.format = _check_format(format)
        self.name = "console"

    def write_line(self, line: str) -> None:
        if self.format == JSON:
            self.console.print(Text(line), soft_wrap=True)
            return
        stripped = line.lstrip()
        style = next((s for prefix, s in _STYLES if stripped.startswith(prefix)), "")
        self.console.print(Text(line, style=style), soft_wrap=True)

    def close(self) -> None:
        pass


class StreamSink:
    """Plain lines to any text stream (stdout by default)."""

    def __init__(self, stream: Optional[IO[str]] = None, format: str = JSON):
        self.stream = stream if stream is not None else sys.stdout
        self.format = _check_format(format)
        self.name = getattr(self.stream, "name", "stream")

    def write_line(self, line: str) -> None:
        self.stream.write(line + "\n")
        self.stream.flush()

    def close(self) -> None:
        pass


def log_file_name(role: str, when: Optional[datetime] = None) -> str:
    stamp = (when or datetime.now()).strftime("%Y%m%d_%H%M%S")
    return f"dnsmasq_{role}_troubleshoot_{stamp}.log"


class FileSink:
    """
    Timestamped report file under a directory.

    The file is created on first write, so a sink that is never written to
    leaves nothing behind.
    """

    def __init__(self, directory: str, role: str, format: str = TEXT, when: Optional[datetime] = None):
        self.directory = directory
        self.format = _check_format(format)
        self.path = os.path.join(directory, log_file_name(role, when))
        self.name = self.path
        self._fh: Optional[IO[str]] = None

    def write_line(self, line: str) -> None:
        if self._fh is None:
            os.makedirs(self.directory, exist_ok=True)
            self._fh = open(self.path, "a", encoding="utf-8")
        self._fh.write(line + "\n")

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
