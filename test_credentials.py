"""test_credentials.py — Credential cache and resolver tests (no network)."""

from __future__ import annotations

import datetime as dt
import json
import os
import stat
import unittest
from pathlib import Path
from tempfile import TemporaryDirectory

from botocore.credentials import Credentials
from botocore.exceptions import ClientError

from queuer_balance.config import Settings
from queuer_balance.credentials import CredentialCache, CredentialResolver, TemporaryCredentials
from queuer_balance.errors import CredentialError

NOW = dt.datetime(2025, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


def _creds(expiration=NOW + dt.timedelta(hours=1)):
    return TemporaryCredentials(
        access_key_id="ASIAEXAMPLE",
        secret_access_key="secret",
        session_token="token",
        expiration=expiration,
    )


class _FakeSts:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def _respond(self, name, kwargs):
        self.calls.append((name, kwargs))
        if self.fail:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "MultiFactorAuthentication failed"}}, name)
        return {
            "Credentials": {
                "AccessKeyId": "ASIAFRESH",
                "SecretAccessKey": "fresh-secret",
                "SessionToken": "fresh-token",
                "Expiration": NOW + dt.timedelta(hours=12),
            }
        }

    def assume_role(self, **kwargs):
        return self._respond("AssumeRole", kwargs)

    def get_session_token(self, **kwargs):
        return self._respond("GetSessionToken", kwargs)


class _FakeSession:
    def __init__(self, sts, profile, region, static=None):
        self.sts = sts
        self.profile = profile
        self.region_name = region
        self.static = static

    def client(self, name, region_name=None, config=None):
        assert name == "sts"
        return self.sts

    def get_credentials(self):
        return self.static


class CredentialCacheTests(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.path = Path(self._tmp.name) / "cache" / "na3_temp_credentials.json"
        self.cache = CredentialCache(self.path, clock=lambda: NOW)

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file_returns_none(self):
        self.assertIsNone(self.cache.read())

    def test_write_then_read(self):
        self.cache.write(_creds())
        self.assertTrue(self.path.exists())
        self.assertEqual(stat.S_IMODE(os.stat(self.path).st_mode), 0o600)

        payload = json.loads(self.path.read_text(encoding="utf-8"))
        self.assertEqual(payload["AccessKeyId"], "ASIAEXAMPLE")
        self.assertEqual(payload["Expiration"], "2025-03-01T13:00:00Z")

        cached = self.cache.read()
        self.assertEqual(cached, _creds())

    def test_expired_entry_is_removed(self):
        self.cache.write(_creds(expiration=NOW - dt.timedelta(seconds=1)))
        self.assertIsNone(self.cache.read())
        self.assertFalse(self.path.exists())

    def test_corrupt_entry_returns_none(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text("{not json", encoding="utf-8")
        self.assertIsNone(self.cache.read())

        self.path.write_text(json.dumps({"AccessKeyId": "x"}), encoding="utf-8")
        self.assertIsNone(self.cache.read())

    def test_reads_millisecond_iso_expiration(self):
        self.path.parent.mkdir(parents=True)
        self.path.write_text(
            json.dumps(
                {
                    "AccessKeyId": "a",
                    "SecretAccessKey": "b",
                    "SessionToken": "c",
                    "Expiration": "2025-03-01T12:30:00.000Z",
                }
            ),
            encoding="utf-8",
        )
        cached = self.cache.read()
        self.assertIsNotNone(cached)
        self.assertEqual(cached.expiration, NOW + dt.timedelta(minutes=30))

    def test_static_credentials_are_not_cacheable(self):
        static = TemporaryCredentials(access_key_id="AKIA", secret_access_key="s")
        self.assertFalse(static.cacheable)
        self.cache.write(static)
        self.assertFalse(self.path.exists())


class CredentialResolverTests(unittest.TestCase):
    def setUp(self):
        self._tmp = TemporaryDirectory()
        self.settings = Settings(profile="na3", region="us-east-1", cache_dir=self._tmp.name)
        self.cache = CredentialCache(self.settings.cache_path, clock=lambda: NOW)
        self.sts = _FakeSts()
        self.prompts = []
        self.sessions = []

    def tearDown(self):
        self._tmp.cleanup()

    def _prompt(self, serial):
        self.prompts.append(serial)
        return " 123456 "

    def _resolver(self, profile_config, static=None, sts=None):
        def factory(profile, region):
            session = _FakeSession(sts or self.sts, profile, region, static=static)
            self.sessions.append(session)
            return session

        return CredentialResolver(
            self.settings,
            cache=self.cache,
            mfa_prompt=self._prompt,
            session_factory=factory,
            profile_config_loader=lambda profile: profile_config,
        )

    def test_cache_hit_skips_sts_and_prompt(self):
        self.cache.write(_creds())
        resolver = self._resolver({"role_arn": "arn:aws:iam::1:role/support", "mfa_serial": "arn:mfa"})

        self.assertEqual(resolver.resolve(), _creds())
        self.assertEqual(self.prompts, [])
        self.assertEqual(self.sts.calls, [])

    def test_role_profile_assumes_role_with_mfa_and_caches(self):
        resolver = self._resolver(
            {
                "role_arn": "arn:aws:iam::1:role/support",
                "source_profile": "base",
                "mfa_serial": "arn:aws:iam::1:mfa/user",
            }
        )
        creds = resolver.resolve()

        self.assertEqual(creds.access_key_id, "ASIAFRESH")
        self.assertEqual(self.prompts, ["arn:aws:iam::1:mfa/user"])
        name, kwargs = self.sts.calls[0]
        self.assertEqual(name, "AssumeRole")
        self.assertEqual(kwargs["RoleArn"], "arn:aws:iam::1:role/support")
        self.assertEqual(kwargs["TokenCode"], "123456")
        self.assertEqual(kwargs["SerialNumber"], "arn:aws:iam::1:mfa/user")
        self.assertEqual(self.sessions[0].profile, "base")
        self.assertEqual(self.cache.read(), creds)

    def test_mfa_only_profile_gets_session_token(self):
        resolver = self._resolver({"mfa_serial": "arn:aws:iam::1:mfa/user"})
        creds = resolver.resolve()

        self.assertEqual(creds.session_token, "fresh-token")
        self.assertEqual(self.sts.calls[0][0], "GetSessionToken")
        self.assertEqual(self.sessions[0].profile, "na3")

    def test_static_profile_is_used_without_caching(self):
        resolver = self._resolver({}, static=Credentials("AKIASTATIC", "static-secret"))
        creds = resolver.resolve()

        self.assertEqual(creds.access_key_id, "AKIASTATIC")
        self.assertIsNone(creds.expiration)
        self.assertFalse(self.settings.cache_path.exists())

    def test_profile_without_credentials_fails(self):
        with self.assertRaises(CredentialError):
            self._resolver({}, static=None).resolve()

    def test_sts_failure_raises_credential_error(self):
        resolver = self._resolver({"mfa_serial": "arn:mfa"}, sts=_FakeSts(fail=True))
        with self.assertRaises(CredentialError) as ctx:
            resolver.resolve()
        self.assertIn("MultiFactorAuthentication", str(ctx.exception))

    def test_empty_mfa_code_raises_credential_error(self):
        resolver = self._resolver({"mfa_serial": "arn:mfa"})
        resolver._mfa_prompt = lambda serial: "   "
        with self.assertRaises(CredentialError):
            resolver.resolve()
        self.assertEqual(self.sts.calls, [])

    def test_closed_stdin_during_mfa_prompt_raises_credential_error(self):
        def closed_stdin(serial):
            raise EOFError("EOF when reading a line")

        resolver = self._resolver({"mfa_serial": "arn:mfa"})
        resolver._mfa_prompt = closed_stdin
        with self.assertRaises(CredentialError) as ctx:
            resolver.resolve()
        self.assertIn("No MFA code supplied for arn:mfa", str(ctx.exception))
        self.assertEqual(self.sts.calls, [])

    def test_mfa_prompt_is_used_once_per_run(self):
        resolver = self._resolver({"mfa_serial": "arn:mfa"})
        resolver.cache = None

        self.assertEqual(resolver.resolve().access_key_id, "ASIAFRESH")
        with self.assertRaises(CredentialError):
            resolver.resolve()
        self.assertEqual(self.prompts, ["arn:mfa"])
        self.assertEqual(len(self.sts.calls), 1)


if __name__ == "__main__":
    unittest.main()
