import os
import tempfile
from dataclasses import dataclass
from typing import Mapping, Optional


class SettingsError(ValueError):
    """Raised when an environment value cannot be used."""


def _int(env: Mapping[str, str], key: str, default: int, minimum: int = 1) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise SettingsError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise SettingsError(f"{key} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise SettingsError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise SettingsError(f"{key} must be positive, got {value}")
    return value


def _flag(env: Mapping[str, str], key: str) -> bool:
    return (env.get(key) or "0").strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    log_dir: str
    log_level: str = "WARNING"
    timeout: float = 30.0
    concurrency: int = 8
    service: str = "dnsmasq"
    config_file: str = "/etc/dnsmasq.conf"
    config_dir: str = "/etc/dnsmasq.d"
    skipped_is_failure: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        level = (env.get("DIAG_LOG_LEVEL") or "WARNING").strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise SettingsError(f"DIAG_LOG_LEVEL is not a logging level: {level!r}")
        return cls(
            log_dir=env.get("DIAG_LOG_DIR") or tempfile.gettempdir(),
            log_level=level,
            timeout=_float(env, "DIAG_TIMEOUT", 30.0),
            concurrency=_int(env, "DIAG_CONCURRENCY", 8),
            service=env.get("DIAG_SERVICE") or "dnsmasq",
            config_file=env.get("DIAG_CONFIG_FILE") or "/etc/dnsmasq.conf",
            config_dir=env.get("DIAG_CONFIG_DIR") or "/etc/dnsmasq.d",
            skipped_is_failure=_flag(env, "DIAG_SKIPPED_IS_FAILURE"),
        )
