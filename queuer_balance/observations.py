"""observations.py — (service, queuer, hits) records parsed from Insights rows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from queuer_balance.config import HITS_FIELD, SERVICE_FIELD, WORKER_FIELD
from queuer_balance.errors import ParseWarning
from queuer_balance.query import Row

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    worker: str
    service: str
    hits: int


def row_to_dict(row: Row) -> Dict[str, str]:
    """Flatten [{field, value}] pairs; later duplicates win."""
    out: Dict[str, str] = {}
    for pair in row:
        name = pair.get("field")
        if name:
            out[str(name)] = pair.get("value")
    return out


def _parse_hits(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    text = str(raw).strip()
    try:
        return int(text)
    except ValueError:
        pass
    # Insights occasionally renders counts as "12.0".
    try:
        as_float = float(text)
    except ValueError:
        return None
    if as_float.is_integer():
        return int(as_float)
    return None


def parse_rows(
    rows: Iterable[Row],
    *,
    worker_field: str = WORKER_FIELD,
    service_field: str = SERVICE_FIELD,
    hits_field: str = HITS_FIELD,
) -> Tuple[List[Observation], List[ParseWarning]]:
    """Convert result rows into observations.

    Rows without a worker or service are dropped. A hit count that is missing,
    non-numeric or negative is counted as zero. Each case yields a
    ParseWarning; none of them abort parsing.
    """
    observations: List[Observation] = []
    problems: List[ParseWarning] = []

    for index, row in enumerate(rows):
        data = row_to_dict(row)
        worker = str(data.get(worker_field) or "").strip()
        service = str(data.get(service_field) or "").strip()

        if not worker or not service:
            missing = worker_field if not worker else service_field
            problems.append(ParseWarning(index, missing, data.get(missing), "is missing; row dropped"))
            continue

        raw_hits = data.get(hits_field)
        hits = _parse_hits(raw_hits)
        if hits is None or hits < 0:
            problems.append(ParseWarning(index, hits_field, raw_hits, "is not a non-negative integer; counted as 0"))
            hits = 0

        observations.append(Observation(worker=worker, service=service, hits=hits))

    for problem in problems:
        logger.warning("Skipping bad value in query results: %s", problem)
    return observations, problems
