"""aggregate.py — Per-queuer load totals and the balance target."""

from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from queuer_balance.errors import NoWorkersError
from queuer_balance.observations import Observation

# queuer -> total hits
WorkerLoad = Dict[str, int]


def aggregate(observations: Iterable[Observation]) -> WorkerLoad:
    load: WorkerLoad = {}
    for obs in observations:
        load[obs.worker] = load.get(obs.worker, 0) + obs.hits
    return load


def mean_load(load: WorkerLoad) -> float:
    """Total hits divided by the number of distinct queuers."""
    if not load:
        raise NoWorkersError("cannot compute mean load over zero queuers")
    return sum(load.values()) / len(load)


def sorted_by_load(load: WorkerLoad, descending: bool = True) -> List[Tuple[str, int]]:
    return sorted(load.items(), key=lambda item: item[1], reverse=descending)
