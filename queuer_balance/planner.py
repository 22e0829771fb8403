"""planner.py — Greedy service reassignment across queuers.

Given per-queuer load and the services behind it, propose whole-service
moves from queuers above the tolerance band to queuers below it. This is a
bounded local heuristic, not a bin-packing solver: a service is never split,
a placement is never undone, and queuers may remain outside the band when no
single service fits the remaining headroom.

Each outer iteration:

1. Rank overloaded queuers (load > upper) most loaded first and underloaded
   queuers (load < lower) least loaded first. Stop if either list is empty.
2. For every overloaded queuer, walk its unmoved services largest first and
   place each on the first underloaded queuer that stays <= upper after
   receiving it. Stop walking once the source is back <= upper.

Iterations repeat until one makes no move or ``max_iterations`` is reached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Set

from queuer_balance.aggregate import WorkerLoad, aggregate, mean_load
from queuer_balance.config import DEFAULT_MAX_ITERATIONS, DEFAULT_TOLERANCE
from queuer_balance.observations import Observation

logger = logging.getLogger(__name__)

MAX_ITERATIONS = DEFAULT_MAX_ITERATIONS


@dataclass(frozen=True)
class ProposedMove:
    service: str
    source: str
    destination: str
    hits: int

    def to_dict(self) -> Dict[str, object]:
        return {"service": self.service, "from": self.source, "to": self.destination, "hits": self.hits}


@dataclass
class RebalancePlan:
    moves: List[ProposedMove]
    initial_load: WorkerLoad
    final_load: WorkerLoad
    mean: float
    upper_threshold: float
    lower_threshold: float
    iterations: int

    @property
    def overloaded(self) -> List[str]:
        return [q for q, hits in self.final_load.items() if hits > self.upper_threshold]

    @property
    def underloaded(self) -> List[str]:
        return [q for q, hits in self.final_load.items() if hits < self.lower_threshold]


@dataclass
class _Candidate:
    """Working copy of an observation; hits drop to 0 once the service moves."""

    service: str
    worker: str
    hits: int


def plan_rebalance(
    load: WorkerLoad,
    observations: Iterable[Observation],
    mean: float,
    tolerance: float = DEFAULT_TOLERANCE,
    max_iterations: int = MAX_ITERATIONS,
) -> RebalancePlan:
    """Simulate greedy moves on a copy of ``load``.

    Neither ``load`` nor ``observations`` is modified.
    """
    if tolerance < 0:
        raise ValueError("tolerance must be >= 0")
    if max_iterations < 1:
        raise ValueError("max_iterations must be >= 1")

    upper = mean * (1 + tolerance)
    lower = mean * (1 - tolerance)
    simulated: WorkerLoad = dict(load)

    # sorted() is stable, so equal-hit services keep result order.
    candidates: Sequence[_Candidate] = sorted(
        (_Candidate(service=o.service, worker=o.worker, hits=o.hits) for o in observations),
        key=lambda c: c.hits,
        reverse=True,
    )
    moves: List[ProposedMove] = []
    moved_services: Set[str] = set()

    iterations = 0
    while iterations < max_iterations:
        iterations += 1
        moved = False

        overloaded = sorted(
            ((q, h) for q, h in simulated.items() if h > upper), key=lambda item: item[1], reverse=True
        )
        underloaded = sorted(((q, h) for q, h in simulated.items() if h < lower), key=lambda item: item[1])
        if not overloaded or not underloaded:
            break

        for source, _ in overloaded:
            movable = [c for c in candidates if c.worker == source and c.hits > 0]
            for candidate in movable:
                if simulated[source] <= upper:
                    break
                if candidate.service in moved_services:
                    # Same service reported under another queuer already moved this run.
                    continue
                for destination, _ in underloaded:
                    if destination == source:
                        continue
                    if simulated[destination] + candidate.hits <= upper:
                        moves.append(
                            ProposedMove(
                                service=candidate.service,
                                source=source,
                                destination=destination,
                                hits=candidate.hits,
                            )
                        )
                        simulated[source] -= candidate.hits
                        simulated[destination] += candidate.hits
                        logger.debug(
                            "Move %s (%d hits) %s -> %s", candidate.service, candidate.hits, source, destination
                        )
                        candidate.hits = 0
                        moved_services.add(candidate.service)
                        moved = True
                        break

        if not moved:
            break

    return RebalancePlan(
        moves=moves,
        initial_load=dict(load),
        final_load=simulated,
        mean=mean,
        upper_threshold=upper,
        lower_threshold=lower,
        iterations=iterations,
    )


def plan_from_observations(
    observations: Sequence[Observation],
    tolerance: float = DEFAULT_TOLERANCE,
    max_iterations: int = MAX_ITERATIONS,
) -> RebalancePlan:
    """Aggregate, compute the balance target, and plan in one step.

    Raises NoWorkersError when there are no observations.
    """
    load = aggregate(observations)
    return plan_rebalance(load, observations, mean_load(load), tolerance, max_iterations)
