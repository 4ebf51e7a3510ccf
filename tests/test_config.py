"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from soa_switch.config import Settings
from soa_switch.models import Mode
from soa_switch.reconcile import allow_any, require_directory_synced


def load():
    return Settings(_env_file=None)


def test_defaults(exo_env):
    settings = load()
    assert settings.default_mode is Mode.ENABLE
    assert settings.simulate_only is False
    assert settings.eligibility is require_directory_synced
    assert settings.retry_policy.max_attempts == 4
    assert settings.invoke_command_url == (
        "https://outlook.office365.com/adminapi/beta/contoso.onmicrosoft.com/InvokeCommand"
    )
    assert settings.authority_url == "https://login.microsoftonline.com/contoso.onmicrosoft.com"


def test_overrides(exo_env):
    exo_env.setenv("SOA_DEFAULT_MODE", "disable")
    exo_env.setenv("SOA_SIMULATE_ONLY", "true")
    exo_env.setenv("SOA_REQUIRE_DIRSYNC", "false")
    exo_env.setenv("RETRY_MAX_ATTEMPTS", "2")
    exo_env.setenv("RETRY_INITIAL_DELAY", "0.5")
    exo_env.setenv("RETRY_MAX_DELAY", "1")
    settings = load()
    assert settings.default_mode is Mode.DISABLE
    assert settings.simulate_only is True
    assert settings.eligibility is allow_any
    assert list(settings.retry_policy.delays()) == [0.5]


def test_max_delay_below_initial_is_rejected(exo_env):
    exo_env.setenv("RETRY_INITIAL_DELAY", "10")
    exo_env.setenv("RETRY_MAX_DELAY", "5")
    with pytest.raises(ValidationError, match="RETRY_MAX_DELAY"):
        load()


def test_zero_attempts_rejected(exo_env):
    exo_env.setenv("RETRY_MAX_ATTEMPTS", "0")
    with pytest.raises(ValidationError):
        load()


def test_client_credentials_requires_secret(exo_env):
    exo_env.setenv("EXO_AUTH_MODE", "client_credentials")
    with pytest.raises(ValidationError, match="EXO_CLIENT_SECRET"):
        load()


def test_tenant_or_organization_required(exo_env):
    exo_env.delenv("EXO_TENANT_ID")
    with pytest.raises(ValidationError, match="EXO_ORGANIZATION"):
        load()


def test_empty_strings_become_none(exo_env):
    exo_env.setenv("EXO_ORGANIZATION", "  ")
    exo_env.setenv("OUTCOME_HISTORY_DB", "")
    settings = load()
    assert settings.exo_organization is None
    assert settings.outcome_history_db is None


def test_extra_identity_columns(exo_env):
    exo_env.setenv("SOA_IDENTITY_COLUMNS", "Mail; SamAccountName,")
    assert load().extra_identity_columns == ["Mail", "SamAccountName"]
