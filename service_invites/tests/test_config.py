"""
Unit tests for service configuration.
"""

import pytest
from pydantic import ValidationError as SettingsValidationError

from shared.config import get_config


class TestConfig:
    """Test cases for BaseConfig / ServiceConfig."""

    def test_defaults(self):
        config = get_config("invites", 8020)

        assert config.expiry_grace_seconds == 300
        assert config.invite_max_uses_limit == 50
        assert config.rate_limit_fail_open is True
        assert config.rate_limit_for("validate") == (30, 0.5)

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("INVITES_EXPIRY_GRACE_SECONDS", "60")
        monkeypatch.setenv("INVITES_RATE_LIMIT_ACCEPT_CAPACITY", "5")

        config = get_config("invites", 8020)

        assert config.expiry_grace_seconds == 60
        assert config.rate_limit_for("accept")[0] == 5

    def test_allowed_origins_list(self):
        config = get_config("invites", 8020, allowed_origins=" https://App.Example.com ,https://b.example.com,")

        assert config.allowed_origins_list == ["https://app.example.com", "https://b.example.com"]

    @pytest.mark.parametrize("field,value", [
        ("rate_limit_validate_capacity", 0),
        ("rate_limit_accept_refill_per_second", 0),
        ("expiry_grace_seconds", -1),
        ("operation_timeout_seconds", 0),
        ("invite_hash_key", "  "),
        ("env", "production"),
    ])
    def test_invalid_settings_rejected(self, field, value):
        with pytest.raises(SettingsValidationError):
            get_config("invites", 8020, **{field: value})

    def test_unknown_operation(self):
        with pytest.raises(KeyError):
            get_config("invites", 8020).rate_limit_for("export")

    def test_production_accepts_explicit_hash_key(self):
        config = get_config("invites", 8020, env="production", invite_hash_key="a-real-deployment-key")

        assert config.env == "production"
        assert config.invite_hash_key == "a-real-deployment-key"
