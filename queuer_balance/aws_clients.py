"""aws_clients.py — boto3 session and client factories.

Clients share the standard retry mode used across our AWS tooling.
"""

from __future__ import annotations

from typing import Any, Optional

import boto3
from botocore.config import Config

__all__ = [
    "CLIENT_CONFIG",
    "logs_client",
    "profile_session",
    "session_for_credentials",
    "sts_client",
]

CLIENT_CONFIG = Config(retries={"max_attempts": 3, "mode": "standard"})


def profile_session(profile: str, region: Optional[str] = None) -> boto3.Session:
    """Session bound to a named profile from the shared AWS config files."""
    return boto3.Session(profile_name=profile, region_name=region)


def session_for_credentials(credentials: Any, region: str) -> boto3.Session:
    """Session carrying explicit (usually temporary) credentials."""
    return boto3.Session(
        aws_access_key_id=credentials.access_key_id,
        aws_secret_access_key=credentials.secret_access_key,
        aws_session_token=credentials.session_token,
        region_name=region,
    )


def logs_client(session: boto3.Session, region: Optional[str] = None):
    """CloudWatch Logs client for Insights queries."""
    return session.client("logs", region_name=region or session.region_name, config=CLIENT_CONFIG)


def sts_client(session: boto3.Session, region: Optional[str] = None):
    """STS client for MFA session tokens and role assumption."""
    return session.client("sts", region_name=region or session.region_name, config=CLIENT_CONFIG)
