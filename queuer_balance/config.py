"""config.py — Run settings — defaults, environment overrides, default Insights query.

Every component takes a ``Settings`` value at construction instead of reading
process-wide constants.
"""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass, replace
from typing import Mapping, Optional

__all__ = [
    "DEFAULT_CACHE_DIR",
    "DEFAULT_LOG_GROUP",
    "DEFAULT_MAX_ITERATIONS",
    "DEFAULT_POLL_SECONDS",
    "DEFAULT_PROFILE",
    "DEFAULT_QUERY",
    "DEFAULT_QUERY_LIMIT",
    "DEFAULT_REGION",
    "DEFAULT_TOLERANCE",
    "DEFAULT_WINDOW_HOURS",
    "HITS_FIELD",
    "SERVICE_FIELD",
    "Settings",
    "WORKER_FIELD",
]

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_LOG_GROUP = "/na3/queuer_19.0"
DEFAULT_REGION = "us-east-1"
DEFAULT_PROFILE = "na3_techsupport"
DEFAULT_WINDOW_HOURS = 8.0
DEFAULT_QUERY_LIMIT = 10000
DEFAULT_POLL_SECONDS = 2.0
DEFAULT_TOLERANCE = 0.05
DEFAULT_MAX_ITERATIONS = 100
DEFAULT_CACHE_DIR = ".aws_cache"

# Result fields produced by DEFAULT_QUERY's final stats clause.
WORKER_FIELD = "qProfile"
SERVICE_FIELD = "service"
HITS_FIELD = "hits"

DEFAULT_QUERY = """fields @timestamp, @message, @logStream, @log, requestURL, statusCode
| filter @message like "Launch SUCCESS" and logger="CallLauncher" and qProfile like '-auto'
| parse logMessage "* * * * * * *" a,b,c,d,e,service,g
| display logTimestamp,qProfile,traceId,@logStream,logMessage, service
| limit 10000
| stats count() as hits by service, qProfile
| sort hits DESC"""


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = str(environ.get(name) or "").strip()
    return float(raw) if raw else default


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = str(environ.get(name) or "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class Settings:
    log_group: str = DEFAULT_LOG_GROUP
    region: str = DEFAULT_REGION
    profile: str = DEFAULT_PROFILE
    window_hours: float = DEFAULT_WINDOW_HOURS
    query: str = DEFAULT_QUERY
    query_limit: int = DEFAULT_QUERY_LIMIT
    poll_seconds: float = DEFAULT_POLL_SECONDS
    max_wait_seconds: Optional[float] = None
    tolerance: float = DEFAULT_TOLERANCE
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    cache_dir: str = DEFAULT_CACHE_DIR
    use_cache: bool = True
    worker_field: str = WORKER_FIELD
    service_field: str = SERVICE_FIELD
    hits_field: str = HITS_FIELD

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from QUEUER_* environment variables over the defaults."""
        env = os.environ if environ is None else environ
        max_wait_raw = str(env.get("QUEUER_MAX_WAIT_SECONDS") or "").strip()
        return cls(
            log_group=env.get("QUEUER_LOG_GROUP", DEFAULT_LOG_GROUP),
            region=env.get("QUEUER_AWS_REGION", DEFAULT_REGION),
            profile=env.get("QUEUER_AWS_PROFILE", DEFAULT_PROFILE),
            window_hours=_env_float(env, "QUEUER_WINDOW_HOURS", DEFAULT_WINDOW_HOURS),
            query_limit=_env_int(env, "QUEUER_QUERY_LIMIT", DEFAULT_QUERY_LIMIT),
            poll_seconds=_env_float(env, "QUEUER_POLL_SECONDS", DEFAULT_POLL_SECONDS),
            max_wait_seconds=float(max_wait_raw) if max_wait_raw else None,
            tolerance=_env_float(env, "QUEUER_BALANCE_TOLERANCE", DEFAULT_TOLERANCE),
            max_iterations=_env_int(env, "QUEUER_MAX_ITERATIONS", DEFAULT_MAX_ITERATIONS),
            cache_dir=env.get("QUEUER_CACHE_DIR", DEFAULT_CACHE_DIR),
        )

    def with_overrides(self, **overrides) -> "Settings":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @property
    def cache_path(self) -> pathlib.Path:
        return pathlib.Path(self.cache_dir).expanduser() / f"{self.profile}_temp_credentials.json"
