"""
Service configuration for PinRoute.

Settings are read from ``PINROUTE_*`` environment variables. A ``.env``
file in the working directory is loaded first with python-dotenv, so
local development does not need exported variables:

    PINROUTE_STRATEGY=local_search
    PINROUTE_TIME_LIMIT=2.5

Invalid values raise ``ValueError`` when the settings are loaded.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from pinroute.geometry import DEFAULT_SCALE
from pinroute.optimisation import (
    DEFAULT_EXACT_THRESHOLD,
    DEFAULT_MAX_ITERATIONS,
    MAX_EXHAUSTIVE_NODES,
    ORTOOLS_AVAILABLE,
    STRATEGY_NAMES,
    SearchLimits,
)

PREFIX = "PINROUTE_"


@dataclass(frozen=True)
class Settings:
    scale: int = DEFAULT_SCALE
    depot_index: int = 0
    vehicle_count: int = 1
    min_points: int = 0
    max_points: Optional[int] = 500
    strategy: str = "auto"
    exact_threshold: int = DEFAULT_EXACT_THRESHOLD
    max_iterations: Optional[int] = DEFAULT_MAX_ITERATIONS
    time_limit: Optional[float] = 5.0
    max_time_limit: float = 30.0
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 5000

    def __post_init__(self) -> None:
        if self.scale <= 0:
            raise ValueError("scale must be positive")
        if self.depot_index < 0:
            raise ValueError("depot_index must be non-negative")
        if self.vehicle_count != 1:
            raise ValueError("only a single vehicle is supported")
        if self.min_points < 0:
            raise ValueError("min_points must be non-negative")
        if self.max_points is not None and self.max_points < max(self.min_points, 1):
            raise ValueError("max_points must be at least min_points and at least 1")
        if self.strategy not in STRATEGY_NAMES:
            raise ValueError(f"strategy must be one of {', '.join(STRATEGY_NAMES)}")
        if self.strategy == "ortools" and not ORTOOLS_AVAILABLE:
            raise ValueError("the ortools strategy needs the ortools extra: pip install ortools")
        if not 0 <= self.exact_threshold <= MAX_EXHAUSTIVE_NODES:
            raise ValueError(f"exact_threshold must be between 0 and {MAX_EXHAUSTIVE_NODES}")
        if self.max_iterations is not None and self.max_iterations < 0:
            raise ValueError("max_iterations must be non-negative")
        if self.max_time_limit <= 0:
            raise ValueError("max_time_limit must be positive")
        if self.time_limit is not None and not 0 < self.time_limit <= self.max_time_limit:
            raise ValueError("time_limit must be positive and no larger than max_time_limit")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ValueError(f"unknown log level: {self.log_level}")

    def search_limits(self, time_limit: Optional[float] = None) -> SearchLimits:
        """Limits for one solve, honouring a caller-supplied ``time_limit``.

        The caller's budget is capped at ``max_time_limit``.
        """
        if time_limit is None:
            time_limit = self.time_limit
        else:
            time_limit = min(time_limit, self.max_time_limit)
        return SearchLimits(max_iterations=self.max_iterations, time_limit=time_limit)


def _optional(value: str) -> Optional[str]:
    value = value.strip()
    if value.lower() in ("", "none", "off"):
        return None
    return value


def _number(env: Mapping[str, str], name: str, default, convert, optional: bool = False):
    raw = env.get(PREFIX + name)
    if raw is None:
        return default
    value = _optional(raw)
    if value is None:
        if optional:
            return None
        raise ValueError(f"{PREFIX}{name} cannot be empty")
    try:
        return convert(value)
    except ValueError:
        raise ValueError(f"{PREFIX}{name} must be a {convert.__name__}, got {raw!r}") from None


def _int(env: Mapping[str, str], name: str, default, optional: bool = False):
    return _number(env, name, default, int, optional)


def _float(env: Mapping[str, str], name: str, default, optional: bool = False):
    return _number(env, name, default, float, optional)


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings`` from the environment.

    Args:
        env: Mapping to read instead of ``os.environ``. When omitted, a
            ``.env`` file is loaded into the process environment first.
    """
    if env is None:
        load_dotenv()
        env = os.environ
    defaults = Settings()
    return Settings(
        scale=_int(env, "SCALE", defaults.scale),
        depot_index=_int(env, "DEPOT_INDEX", defaults.depot_index),
        vehicle_count=_int(env, "VEHICLE_COUNT", defaults.vehicle_count),
        min_points=_int(env, "MIN_POINTS", defaults.min_points),
        max_points=_int(env, "MAX_POINTS", defaults.max_points, optional=True),
        strategy=env.get(PREFIX + "STRATEGY", defaults.strategy).strip().lower(),
        exact_threshold=_int(env, "EXACT_THRESHOLD", defaults.exact_threshold),
        max_iterations=_int(env, "MAX_ITERATIONS", defaults.max_iterations, optional=True),
        time_limit=_float(env, "TIME_LIMIT", defaults.time_limit, optional=True),
        max_time_limit=_float(env, "MAX_TIME_LIMIT", defaults.max_time_limit),
        log_level=env.get(PREFIX + "LOG_LEVEL", defaults.log_level).strip().upper(),
        host=env.get(PREFIX + "HOST", defaults.host),
        port=_int(env, "PORT", defaults.port),
    )
