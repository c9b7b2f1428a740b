from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional

DEFAULT_DATABASE_URL = "sqlite:///prosit.db"
DEFAULT_SHELL = "/bin/sh"
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_KILL_GRACE_SECONDS = 5.0


class ConfigError(RuntimeError):
    pass


def _as_float(value: Any, *, key: str) -> float:
    try:
        f = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid float for {key}: {value!r}") from e
    if f < 0:
        raise ConfigError(f"Invalid {key}: must not be negative, got {value!r}")
    return f


def _as_log_level(value: Any, *, key: str) -> str:
    level = str(value).strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"Invalid log level for {key}: {value!r}")
    return level


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    shell: str = DEFAULT_SHELL
    log_level: str = DEFAULT_LOG_LEVEL
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Settings:
        env = os.environ if environ is None else environ
        shell = env.get("PROSIT_SHELL", DEFAULT_SHELL).strip()
        if not shell:
            raise ConfigError("Invalid PROSIT_SHELL: empty string")
        return cls(
            database_url=env.get("PROSIT_DATABASE_URL", DEFAULT_DATABASE_URL),
            shell=shell,
            log_level=_as_log_level(env.get("PROSIT_LOG_LEVEL", DEFAULT_LOG_LEVEL), key="PROSIT_LOG_LEVEL"),
            kill_grace_seconds=_as_float(
                env.get("PROSIT_KILL_GRACE_SECONDS", DEFAULT_KILL_GRACE_SECONDS),
                key="PROSIT_KILL_GRACE_SECONDS",
            ),
        )
