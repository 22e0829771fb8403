"""queuer_balance — Queuer load diagnosis from CloudWatch Logs Insights.

Provides:
    - Insights query submission and status polling
    - Row parsing into (service, queuer, hits) observations
    - Per-queuer load aggregation and balance target
    - Greedy reassignment planning within a tolerance band
"""

__version__ = "0.1.0"
