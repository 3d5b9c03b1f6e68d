from __future__ import annotations
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .types import Mode

_TRUTHY = {"1", "true", "yes", "on"}

DEFAULT_MAX_ATTEMPTS = 10
DEFAULT_MODE = Mode.CHECKED


def env_flag(name: str, env: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if env is None else env
    return env.get(name, "").strip().lower() in _TRUTHY


def validate_max_attempts(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"max_attempts must be an int, got {type(value).__name__}")
    if value < 1:
        raise ValueError(f"max_attempts must be >= 1, got {value}")
    return value


@dataclass(frozen=True)
class ConnectorSettings:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    mode: Mode = DEFAULT_MODE
    retry_debug: bool = False

    def __post_init__(self) -> None:
        validate_max_attempts(self.max_attempts)
        object.__setattr__(self, "mode", Mode.parse(self.mode))

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "ConnectorSettings":
        """
        Read settings from the environment:

          DBOP_MAX_ATTEMPTS  ceiling on failed attempts per call (default 10)
          DBOP_MODE          unchecked | checked | fixup (default checked)
          DBOP_RETRY_DEBUG   log every retry at WARNING level
        """
        env = os.environ if env is None else env
        raw_attempts = env.get("DBOP_MAX_ATTEMPTS", "").strip()
        try:
            max_attempts = int(raw_attempts) if raw_attempts else DEFAULT_MAX_ATTEMPTS
        except ValueError:
            raise ValueError(f"DBOP_MAX_ATTEMPTS must be an integer, got {raw_attempts!r}") from None
        return cls(
            max_attempts=max_attempts,
            mode=Mode.parse(env.get("DBOP_MODE", "").strip() or DEFAULT_MODE),
            retry_debug=env_flag("DBOP_RETRY_DEBUG", env),
        )
