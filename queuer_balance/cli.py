#!/usr/bin/env python3
"""Suggest service reassignments that flatten queuer load.

Runs a CloudWatch Logs Insights query counting successful call launches per
(service, qProfile), sums the hits per queuer, and proposes greedy moves from
queuers above the tolerance band to queuers below it. Nothing is applied;
the output is for human review.

Examples:
  queuer-balance --profile na3_techsupport --hours 8
  queuer-balance --log-group /na3/queuer_19.0 --tolerance 0.1 --output json
  QUEUER_MAX_WAIT_SECONDS=600 queuer-balance --query-file stats.insights
"""

from __future__ import annotations

import argparse
import logging
import pathlib
import sys
import time
from typing import Any, Callable, List, Optional, Sequence, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from queuer_balance import __version__
from queuer_balance.aws_clients import logs_client, session_for_credentials
from queuer_balance.config import Settings
from queuer_balance.credentials import CredentialCache, CredentialResolver, prompt_for_mfa_code
from queuer_balance.errors import EmptyResult, ParseWarning, QueuerBalanceError
from queuer_balance.observations import Observation, parse_rows
from queuer_balance.planner import RebalancePlan, plan_from_observations
from queuer_balance.query import InsightsQueryRunner, QueryWindow
from queuer_balance.report import plan_payload, render_json, render_text, render_window

logger = logging.getLogger("queuer_balance")


def build_logs_client(settings: Settings, mfa_prompt: Callable[[str], str] = prompt_for_mfa_code):
    cache = CredentialCache(settings.cache_path) if settings.use_cache else None
    resolver = CredentialResolver(settings, cache=cache, mfa_prompt=mfa_prompt)
    credentials = resolver.resolve()
    logger.info("Using AWS Region: %s", settings.region)
    return logs_client(session_for_credentials(credentials, settings.region))


def run_balance(
    settings: Settings,
    window: QueryWindow,
    logs: Any,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[List[Observation], List[ParseWarning], RebalancePlan]:
    """Query, parse, aggregate and plan. Raises EmptyResult when nothing comes back."""
    runner = InsightsQueryRunner(
        logs,
        settings.log_group,
        poll_seconds=settings.poll_seconds,
        max_wait_seconds=settings.max_wait_seconds,
        limit=settings.query_limit,
        sleep=sleep,
    )
    logger.info("Running CloudWatch Logs Insights query on %s", settings.log_group)
    rows = runner.run(settings.query, window)
    if not rows:
        raise EmptyResult("No results found for the query.")

    observations, problems = parse_rows(
        rows,
        worker_field=settings.worker_field,
        service_field=settings.service_field,
        hits_field=settings.hits_field,
    )
    if not observations:
        raise EmptyResult(f"Query returned {len(rows)} rows but none had a queuer and service.")

    plan = plan_from_observations(observations, settings.tolerance, settings.max_iterations)
    return observations, problems, plan


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Suggest service moves that flatten queuer load, from CloudWatch Logs Insights counts.",
    )
    parser.add_argument("--log-group", help="Insights log group (QUEUER_LOG_GROUP)")
    parser.add_argument("--region", help="AWS region (QUEUER_AWS_REGION)")
    parser.add_argument("--profile", help="AWS CLI profile (QUEUER_AWS_PROFILE)")
    parser.add_argument("--hours", type=float, help="Query window ending now, in hours (QUEUER_WINDOW_HOURS)")
    parser.add_argument("--query-file", help="Read the Insights query text from this file")
    parser.add_argument("--limit", type=int, help="Insights result limit (QUEUER_QUERY_LIMIT)")
    parser.add_argument("--poll-seconds", type=float, help="Delay between status polls (QUEUER_POLL_SECONDS)")
    parser.add_argument(
        "--max-wait",
        type=float,
        help="Give up on a running query after this many seconds (QUEUER_MAX_WAIT_SECONDS, default: no limit)",
    )
    parser.add_argument("--tolerance", type=float, help="Balance band around the mean (QUEUER_BALANCE_TOLERANCE)")
    parser.add_argument("--max-iterations", type=int, help="Planner iteration cap (QUEUER_MAX_ITERATIONS)")
    parser.add_argument("--cache-dir", help="Credential cache directory (QUEUER_CACHE_DIR)")
    parser.add_argument("--no-cache", action="store_true", help="Do not read or write cached credentials")
    parser.add_argument("--output", choices=("text", "json"), default="text")
    parser.add_argument("--verbose", "-v", action="store_true")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def settings_from_args(args: argparse.Namespace, base: Optional[Settings] = None) -> Settings:
    settings = (base or Settings.from_env()).with_overrides(
        log_group=args.log_group,
        region=args.region,
        profile=args.profile,
        window_hours=args.hours,
        query_limit=args.limit,
        poll_seconds=args.poll_seconds,
        max_wait_seconds=args.max_wait,
        tolerance=args.tolerance,
        max_iterations=args.max_iterations,
        cache_dir=args.cache_dir,
    )
    if args.no_cache:
        settings = settings.with_overrides(use_cache=False)
    if args.query_file:
        settings = settings.with_overrides(
            query=pathlib.Path(args.query_file).expanduser().read_text(encoding="utf-8")
        )
    return settings


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = settings_from_args(args)
        window = QueryWindow.last_hours(settings.window_hours)
    except (OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    if args.output == "text":
        render_window(window)

    try:
        logs = build_logs_client(settings)
        observations, problems, plan = run_balance(settings, window, logs)
    except EmptyResult as exc:
        logger.info("%s", exc)
        if args.output == "json":
            render_json(plan_payload([], None, window=window))
        else:
            print(str(exc))
        return 0
    except (QueuerBalanceError, ClientError, BotoCoreError, ValueError) as exc:
        logger.error("Error running CloudWatch Logs Insights query: %s", exc)
        return 1

    if args.output == "json":
        render_json(plan_payload(observations, plan, problems, window))
    else:
        render_text(observations, plan, problems)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
