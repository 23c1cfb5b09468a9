"""Tests for configuration validation and policy construction.

Invalid configurations must be rejected when Settings is built, so a bad
deployment fails at startup instead of at the first login.
"""

from datetime import timedelta

import pytest
from pydantic import ValidationError

from schoolgate.core.config import Settings, parse_lockout_thresholds
from schoolgate.core.policy import SecurityPolicy


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestLockoutThresholdParsing:
    def test_default_table(self):
        assert parse_lockout_thresholds("3:5,5:15,10:60,15:1440") == [
            (3, 5),
            (5, 15),
            (10, 60),
            (15, 1440),
        ]

    def test_sorted_and_whitespace_tolerant(self):
        assert parse_lockout_thresholds(" 10:60 , 3:5,") == [(3, 5), (10, 60)]

    @pytest.mark.parametrize("value", ["", "3", "3:x", "0:5", "3:-1", ","])
    def test_invalid_tables_rejected(self, value):
        with pytest.raises(ValueError):
            parse_lockout_thresholds(value)


class TestSettingsValidation:
    def test_defaults(self):
        config = _settings()
        assert config.lockout_threshold_table == [(3, 5), (5, 15), (10, 60), (15, 1440)]
        assert config.rate_limit_login_max == 5
        assert config.rate_limit_identity_window_minutes == 5
        assert config.audit_retention_days == 90

    def test_log_level_normalized(self):
        assert _settings(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level_rejected(self):
        with pytest.raises(ValidationError):
            _settings(log_level="chatty")

    def test_malformed_lockout_table_rejected(self):
        with pytest.raises(ValidationError):
            _settings(lockout_thresholds="three:five")

    @pytest.mark.parametrize(
        "field",
        ["rate_limit_login_max", "rate_limit_identity_window_minutes", "password_min_length"],
    )
    def test_non_positive_thresholds_rejected(self, field):
        with pytest.raises(ValidationError):
            _settings(**{field: 0})

    def test_list_properties(self):
        config = _settings(
            cors_origins="https://a.example, https://b.example",
            trusted_proxy_ips="10.0.0.1,10.0.0.2",
        )
        assert config.cors_origins_list == ["https://a.example", "https://b.example"]
        assert config.trusted_proxy_ip_set == frozenset({"10.0.0.1", "10.0.0.2"})


class TestSecurityWarnings:
    def test_missing_secret_uses_stable_ephemeral_key(self):
        config = _settings(jwt_secret_key="")
        assert config.effective_jwt_secret_key
        assert config.effective_jwt_secret_key == _settings(jwt_secret_key="").effective_jwt_secret_key
        assert any("JWT_SECRET_KEY" in w for w in config.check_security_configuration())

    def test_wildcard_cors_warned(self):
        config = _settings(jwt_secret_key="x" * 40, cors_origins="*", csrf_cookie_secure=True)
        warnings = config.check_security_configuration()
        assert len(warnings) == 1
        assert "CORS" in warnings[0]

    def test_secure_configuration_has_no_warnings(self):
        config = _settings(jwt_secret_key="x" * 40, csrf_cookie_secure=True)
        assert config.check_security_configuration() == []


class TestPolicyFromSettings:
    def test_policy_reflects_settings(self):
        config = _settings(
            jwt_secret_key="k" * 40,
            lockout_thresholds="2:1,4:10",
            rate_limit_login_max=7,
            rate_limit_login_window_minutes=60,
            password_min_length=12,
            csrf_header_name="X-XSRF-Token",
            trusted_proxy_ips="10.0.0.1",
        )
        policy = SecurityPolicy.from_settings(config)

        assert policy.tokens.secret_key == "k" * 40
        assert policy.lockout.duration_for(4) == timedelta(minutes=10)
        assert policy.rate_limits.login_ip.max_requests == 7
        assert policy.rate_limits.login_ip.message.endswith("after 1 hour.")
        assert policy.password.min_length == 12
        assert policy.csrf.header_name == "X-XSRF-Token"
        assert policy.trusted_proxies == frozenset({"10.0.0.1"})

    def test_policy_is_immutable(self):
        policy = SecurityPolicy.from_settings(_settings(jwt_secret_key="k" * 40))
        with pytest.raises(AttributeError):
            policy.audit_retention_days = 1  # type: ignore[misc]
