"""Console and JSON rendering of a balance run."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from queuer_balance.aggregate import WorkerLoad, sorted_by_load
from queuer_balance.errors import ParseWarning
from queuer_balance.observations import Observation
from queuer_balance.planner import RebalancePlan
from queuer_balance.query import QueryWindow


def render_window(window: QueryWindow) -> None:
    start_local = window.start.astimezone()
    end_local = window.end.astimezone()
    print("Time Range:")
    print(f"FROM: {window.start.isoformat()} ({start_local:%Y-%m-%d %H:%M:%S %Z})")
    print(f"TO:   {window.end.isoformat()} ({end_local:%Y-%m-%d %H:%M:%S %Z})")


def _render_load(load: WorkerLoad) -> None:
    for queuer, hits in sorted_by_load(load):
        print(f"{queuer}: {round(hits)} hits")


def render_text(
    observations: Sequence[Observation],
    plan: RebalancePlan,
    problems: Sequence[ParseWarning] = (),
) -> None:
    print(f"\n--- Original Query Results ({len(observations)} rows) ---")
    for obs in observations:
        print(f"qProfile={obs.worker} | service={obs.service} | hits={obs.hits}")

    if problems:
        print(f"\n--- Parse Warnings ({len(problems)}) ---")
        for problem in problems:
            print(str(problem))

    print("\n--- Queuer Load Summary (Most Loaded First) ---")
    _render_load(plan.initial_load)
    print(f"\nAverage hits per queuer: {round(plan.mean)} hits")
    print(f"Tolerance band: {plan.lower_threshold:.1f} - {plan.upper_threshold:.1f} hits")

    print("\n--- Suggested Reassignments to Balance Load ---")
    if not plan.moves:
        print("No significant reassignments needed: system is balanced enough or no viable moves found.")
        return
    for move in plan.moves:
        print(f"Move service {move.service} ({move.hits} hits) from {move.source} to {move.destination}")

    print("\n--- Final Simulated Queuer Load After Reassignments ---")
    _render_load(plan.final_load)
    if plan.overloaded:
        print(f"\nStill above band: {', '.join(sorted(plan.overloaded))}")


def plan_payload(
    observations: Sequence[Observation],
    plan: Optional[RebalancePlan],
    problems: Sequence[ParseWarning] = (),
    window: Optional[QueryWindow] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "rows": [{"worker": o.worker, "service": o.service, "hits": o.hits} for o in observations],
        "warnings": [str(p) for p in problems],
    }
    if window is not None:
        payload["window"] = {"start": window.start.isoformat(), "end": window.end.isoformat()}
    if plan is None:
        payload["plan"] = None
        return payload

    moves: List[Dict[str, Any]] = [move.to_dict() for move in plan.moves]
    payload["plan"] = {
        "mean": plan.mean,
        "upper_threshold": plan.upper_threshold,
        "lower_threshold": plan.lower_threshold,
        "iterations": plan.iterations,
        "initial_load": dict(sorted_by_load(plan.initial_load)),
        "moves": moves,
        "final_load": dict(sorted_by_load(plan.final_load)),
        "still_overloaded": sorted(plan.overloaded),
        "still_underloaded": sorted(plan.underloaded),
    }
    return payload


def render_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))
