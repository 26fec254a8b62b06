import logging
import sys
from typing import IO, Optional

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "WARNING", stream: Optional[IO[str]] = None) -> logging.Handler:
    """
    Install one stderr handler on the root logger; stdout stays reserved for the report.
    Calling it again replaces the handler instead of stacking another one.
    """
    root = logging.getLogger()
    for h in list(root.handlers):
        if getattr(h, "_dnsmasq_doctor", False):
            root.removeHandler(h)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler._dnsmasq_doctor = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.WARNING))
    return handler
