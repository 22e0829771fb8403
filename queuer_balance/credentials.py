"""credentials.py — Temporary AWS credentials with MFA and an on-disk cache.

The cache is a JSON file per profile holding the STS credential fields::

    {
        "AccessKeyId": "...",
        "SecretAccessKey": "...",
        "SessionToken": "...",
        "Expiration": "2025-06-01T12:00:00Z"
    }

``CredentialResolver.resolve`` is the single get-or-refresh entry point: a
valid cached entry wins, otherwise fresh credentials are fetched (prompting
for an MFA code when the profile requires one) and written back.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import pathlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import botocore.session
from botocore.exceptions import BotoCoreError, ClientError

from queuer_balance.aws_clients import profile_session, sts_client
from queuer_balance.config import Settings
from queuer_balance.errors import CredentialError

logger = logging.getLogger(__name__)

MfaPrompt = Callable[[str], str]
Clock = Callable[[], dt.datetime]


def _utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _parse_expiration(value: Any) -> dt.datetime:
    if isinstance(value, dt.datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise ValueError("missing Expiration")
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = dt.datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def _format_expiration(value: dt.datetime) -> str:
    return value.astimezone(dt.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(frozen=True)
class TemporaryCredentials:
    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None
    expiration: Optional[dt.datetime] = None

    @property
    def cacheable(self) -> bool:
        return bool(self.session_token and self.expiration)

    def expired(self, now: dt.datetime) -> bool:
        return self.expiration is not None and self.expiration <= now

    def to_json(self) -> Dict[str, str]:
        if not self.cacheable:
            raise ValueError("only temporary credentials with an expiration can be cached")
        return {
            "AccessKeyId": self.access_key_id,
            "SecretAccessKey": self.secret_access_key,
            "SessionToken": str(self.session_token),
            "Expiration": _format_expiration(self.expiration),
        }

    @classmethod
    def from_json(cls, payload: Dict[str, Any]) -> "TemporaryCredentials":
        """Build from cache-file or STS ``Credentials`` shaped data."""
        try:
            return cls(
                access_key_id=str(payload["AccessKeyId"]),
                secret_access_key=str(payload["SecretAccessKey"]),
                session_token=str(payload["SessionToken"]),
                expiration=_parse_expiration(payload["Expiration"]),
            )
        except (KeyError, TypeError) as exc:
            raise ValueError(f"incomplete credential payload: {exc}") from exc


class CredentialCache:
    """JSON file holding one profile's temporary credentials."""

    def __init__(self, path: pathlib.Path, clock: Clock = _utc_now):
        self.path = pathlib.Path(path)
        self._clock = clock

    def read(self) -> Optional[TemporaryCredentials]:
        """Return cached credentials if present and unexpired, else None."""
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.info("No cached AWS temporary credentials found.")
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Error reading cached credentials %s: %s", self.path, exc)
            return None

        try:
            if not isinstance(payload, dict):
                raise ValueError("cache file must contain a JSON object")
            cached = TemporaryCredentials.from_json(payload)
        except ValueError as exc:
            logger.warning("Ignoring corrupt credential cache %s: %s", self.path, exc)
            return None

        if cached.expired(self._clock()):
            logger.info("Cached AWS temporary credentials expired. Will refresh.")
            self.clear()
            return None

        logger.info("Using cached AWS temporary credentials.")
        return cached

    def write(self, credentials: TemporaryCredentials) -> None:
        """Persist credentials owner-readable only. Failures are logged, not raised."""
        try:
            payload = credentials.to_json()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(str(self.path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle, indent=2)
            os.chmod(self.path, 0o600)
            logger.info("AWS temporary credentials written to %s", self.path)
        except (OSError, ValueError) as exc:
            logger.error("Error writing cached credentials to %s: %s", self.path, exc)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove credential cache %s: %s", self.path, exc)


def prompt_for_mfa_code(mfa_serial: str) -> str:
    return input(f"Enter MFA code for {mfa_serial}: ").strip()


class CredentialResolver:
    """Resolve credentials for a profile, preferring the cache.

    Profiles with ``role_arn`` are assumed through STS using their
    ``source_profile``; profiles with only ``mfa_serial`` get an STS session
    token. Both pass an MFA code when ``mfa_serial`` is configured. Profiles
    with neither use their static credentials, which are never cached.
    """

    def __init__(
        self,
        settings: Settings,
        cache: Optional[CredentialCache] = None,
        mfa_prompt: MfaPrompt = prompt_for_mfa_code,
        session_factory: Callable[..., Any] = profile_session,
        profile_config_loader: Optional[Callable[[str], Dict[str, Any]]] = None,
    ):
        self.settings = settings
        self.cache = cache
        self._mfa_prompt = mfa_prompt
        self._session_factory = session_factory
        self._profile_config_loader = profile_config_loader or self._load_profile_config
        self._mfa_prompted = False

    @staticmethod
    def _load_profile_config(profile: str) -> Dict[str, Any]:
        return dict(botocore.session.Session(profile=profile).get_scoped_config())

    def resolve(self) -> TemporaryCredentials:
        if self.cache is not None:
            cached = self.cache.read()
            if cached is not None:
                return cached

        logger.info("Obtaining new AWS credentials for profile %s", self.settings.profile)
        fresh = self._fetch()
        if self.cache is not None and fresh.cacheable:
            self.cache.write(fresh)
        return fresh

    def _token_code(self, mfa_serial: str) -> str:
        if self._mfa_prompted:
            raise CredentialError("MFA code was already requested for this run")
        self._mfa_prompted = True
        try:
            code = str(self._mfa_prompt(mfa_serial) or "").strip()
        except EOFError as exc:
            raise CredentialError(f"No MFA code supplied for {mfa_serial}") from exc
        if not code:
            raise CredentialError(f"No MFA code supplied for {mfa_serial}")
        return code

    def _fetch(self) -> TemporaryCredentials:
        profile = self.settings.profile
        region = self.settings.region
        try:
            profile_config = self._profile_config_loader(profile)
            role_arn = str(profile_config.get("role_arn") or "")
            mfa_serial = str(profile_config.get("mfa_serial") or "")

            if role_arn:
                source_profile = profile_config.get("source_profile") or None
                sts = sts_client(self._session_factory(source_profile, region))
                params: Dict[str, Any] = {
                    "RoleArn": role_arn,
                    "RoleSessionName": f"queuer-balance-{int(time.time())}",
                }
                if mfa_serial:
                    params["SerialNumber"] = mfa_serial
                    params["TokenCode"] = self._token_code(mfa_serial)
                response = sts.assume_role(**params)
                return TemporaryCredentials.from_json(response.get("Credentials") or {})

            session = self._session_factory(profile, region)
            if mfa_serial:
                response = sts_client(session).get_session_token(
                    SerialNumber=mfa_serial,
                    TokenCode=self._token_code(mfa_serial),
                )
                return TemporaryCredentials.from_json(response.get("Credentials") or {})

            resolved = session.get_credentials()
            if resolved is None:
                raise CredentialError(f"No credentials configured for profile {profile}")
            frozen = resolved.get_frozen_credentials()
            return TemporaryCredentials(
                access_key_id=frozen.access_key,
                secret_access_key=frozen.secret_key,
                session_token=frozen.token,
            )
        except (ClientError, BotoCoreError, ValueError) as exc:
            raise CredentialError(f"Failed to obtain credentials for profile {profile}: {exc}") from exc
