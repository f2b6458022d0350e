"""Tests for configuration and passkey handling."""

import warnings

import pytest

from site_analytics.config import (
    AnalyticsConfig,
    PasskeyTooShortError,
    hash_passkey,
    verify_passkey,
)


class TestPasskeyHashing:
    def test_hash_and_verify(self):
        stored = hash_passkey("a-long-enough-passkey")

        assert stored.startswith("pbkdf2:100000:")
        assert verify_passkey(stored, "a-long-enough-passkey")
        assert not verify_passkey(stored, "a-long-enough-passkeY")

    def test_salted(self):
        assert hash_passkey("a-long-enough-passkey") != hash_passkey("a-long-enough-passkey")

    def test_short_passkey_rejected(self):
        with pytest.raises(PasskeyTooShortError):
            hash_passkey("short")

    def test_short_passkey_allowed_without_validation(self):
        assert verify_passkey(hash_passkey("short", validate=False), "short")

    def test_malformed_hash_never_verifies(self):
        assert not verify_passkey("pbkdf2:nope", "anything")

    def test_plaintext_passkey(self):
        assert verify_passkey("plain-secret", "plain-secret")
        assert not verify_passkey("plain-secret", "other")


class TestAnalyticsConfig:
    def test_defaults(self):
        config = AnalyticsConfig(site_name="example.dev")

        assert config.session_timeout_minutes == 30
        assert config.api_prefix == "/api/analytics"
        assert not config.has_auth
        assert not config.uses_d1

    def test_uses_d1_needs_all_ids(self):
        assert not AnalyticsConfig(site_name="x", d1_database_id="db", cf_account_id="acct").uses_d1
        assert AnalyticsConfig(
            site_name="x", d1_database_id="db", cf_account_id="acct", cf_api_token="token"
        ).uses_d1

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError):
            AnalyticsConfig(site_name="x", session_timeout_minutes=0)

    def test_plaintext_passkey_warns(self):
        with pytest.warns(DeprecationWarning):
            config = AnalyticsConfig(site_name="x", passkey="plaintext-passkey-value")
        assert config.has_auth
        assert not config.is_passkey_hashed

    def test_hashed_passkey_does_not_warn(self):
        stored = hash_passkey("a-long-enough-passkey")
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            config = AnalyticsConfig(site_name="x", passkey=stored)
        assert config.is_passkey_hashed


class TestFromEnv:
    def test_reads_analytics_variables(self):
        config = AnalyticsConfig.from_env({
            "ANALYTICS_SITE_NAME": "example.dev",
            "ANALYTICS_DB": "/tmp/a.sqlite3",
            "ANALYTICS_SESSION_TIMEOUT_MINUTES": "45",
            "ANALYTICS_CORS_ALLOW_ORIGINS": "https://a.dev, https://b.dev,",
            "ANALYTICS_DEBUG": "true",
            "ANALYTICS_GEOLOCATION_TIMEOUT": "1.5",
        })

        assert config.site_name == "example.dev"
        assert config.sqlite_path == "/tmp/a.sqlite3"
        assert config.session_timeout_minutes == 45
        assert config.cors_origins == ["https://a.dev", "https://b.dev"]
        assert config.debug
        assert config.geolocation_timeout_seconds == 1.5

    def test_empty_environment(self):
        config = AnalyticsConfig.from_env({})

        assert config.site_name == "localhost"
        assert config.passkey is None
        assert config.cors_origins == []
        assert not config.debug

    def test_empty_d1_values_are_unset(self):
        config = AnalyticsConfig.from_env({
            "ANALYTICS_D1_DATABASE_ID": "",
            "ANALYTICS_CF_ACCOUNT_ID": "acct",
            "ANALYTICS_CF_API_TOKEN": "token",
        })
        assert config.d1_database_id is None
        assert not config.uses_d1
