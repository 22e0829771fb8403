"""query.py — CloudWatch Logs Insights query execution.

An Insights query is submitted with ``start_query`` and then polled with
``get_query_results`` until it leaves the Scheduled/Running states::

    SUBMITTED -> {Scheduled, Running} -> {Complete, Failed, Cancelled, Timeout, Unknown}

Polling uses a fixed delay with no backoff. Transport errors raised while
polling are not retried here and propagate to the caller.
"""

from __future__ import annotations

import datetime as dt
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from queuer_balance.errors import QueryFailure, SubmissionError

logger = logging.getLogger(__name__)

# One result row: ordered [{"field": ..., "value": ...}, ...] pairs.
Row = List[Dict[str, str]]


class QueryStatus(str, enum.Enum):
    SCHEDULED = "Scheduled"
    RUNNING = "Running"
    COMPLETE = "Complete"
    FAILED = "Failed"
    CANCELLED = "Cancelled"
    TIMEOUT = "Timeout"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: Any) -> "QueryStatus":
        try:
            return cls(str(value))
        except ValueError:
            return cls.UNKNOWN

    @property
    def terminal(self) -> bool:
        return self not in (QueryStatus.SCHEDULED, QueryStatus.RUNNING)


@dataclass(frozen=True)
class QueryWindow:
    """Half-open time window [start, end)."""

    start: dt.datetime
    end: dt.datetime

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError("query window end must be after start")

    @classmethod
    def last_hours(cls, hours: float, now: Optional[dt.datetime] = None) -> "QueryWindow":
        end = now or dt.datetime.now(dt.timezone.utc)
        return cls(start=end - dt.timedelta(hours=hours), end=end)

    @property
    def start_seconds(self) -> int:
        return int(self.start.timestamp())

    @property
    def end_seconds(self) -> int:
        return int(self.end.timestamp())


@dataclass(frozen=True)
class QueryHandle:
    query_id: str
    log_group: str
    window: QueryWindow


@dataclass
class QueryPoll:
    status: QueryStatus
    rows: List[Row] = field(default_factory=list)
    statistics: Dict[str, Any] = field(default_factory=dict)


class InsightsQueryRunner:
    """Drive one Insights query from submission to a terminal status.

    ``sleep`` and ``clock`` are injectable so the poll loop can be exercised
    without waiting. ``max_wait_seconds`` is off by default; when set, a query
    still running after that long is stopped and reported as Timeout.
    """

    def __init__(
        self,
        logs: Any,
        log_group: str,
        *,
        poll_seconds: float = 2.0,
        max_wait_seconds: Optional[float] = None,
        limit: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.logs = logs
        self.log_group = log_group
        self.poll_seconds = poll_seconds
        self.max_wait_seconds = max_wait_seconds
        self.limit = limit
        self._sleep = sleep
        self._clock = clock

    def submit(self, query: str, window: QueryWindow) -> QueryHandle:
        params: Dict[str, Any] = {
            "logGroupName": self.log_group,
            "startTime": window.start_seconds,
            "endTime": window.end_seconds,
            "queryString": query,
        }
        if self.limit:
            params["limit"] = self.limit
        try:
            response = self.logs.start_query(**params)
        except (ClientError, BotoCoreError) as exc:
            raise SubmissionError(f"Failed to start Insights query on {self.log_group}: {exc}") from exc

        query_id = str((response or {}).get("queryId") or "")
        if not query_id:
            raise SubmissionError("Failed to start Insights query: no query id returned")
        logger.info("Started CloudWatch Logs Insights query: %s", query_id)
        return QueryHandle(query_id=query_id, log_group=self.log_group, window=window)

    def poll(self, handle: QueryHandle) -> QueryPoll:
        response = self.logs.get_query_results(queryId=handle.query_id)
        status = QueryStatus.parse(response.get("status"))
        logger.info("Query status: %s", status.value)
        return QueryPoll(
            status=status,
            rows=list(response.get("results") or []),
            statistics=dict(response.get("statistics") or {}),
        )

    def wait(self, handle: QueryHandle) -> List[Row]:
        """Poll until terminal; return the Complete rows or raise QueryFailure."""
        started = self._clock()
        while True:
            self._sleep(self.poll_seconds)
            result = self.poll(handle)
            if result.status.terminal:
                break
            if self.max_wait_seconds is not None and self._clock() - started >= self.max_wait_seconds:
                self._stop(handle)
                raise QueryFailure(
                    handle.query_id,
                    QueryStatus.TIMEOUT.value,
                    f"Query {handle.query_id} still {result.status.value} after {self.max_wait_seconds:g}s",
                )

        if result.status is not QueryStatus.COMPLETE:
            raise QueryFailure(handle.query_id, result.status.value)
        if result.statistics:
            logger.debug("Query statistics: %s", result.statistics)
        return result.rows

    def run(self, query: str, window: QueryWindow) -> List[Row]:
        return self.wait(self.submit(query, window))

    def _stop(self, handle: QueryHandle) -> None:
        try:
            self.logs.stop_query(queryId=handle.query_id)
        except (ClientError, BotoCoreError) as exc:
            logger.warning("stop_query failed for %s: %s", handle.query_id, exc)
