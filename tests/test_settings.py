import logging

import pytest

from licensed_search.config.settings import Settings

ENV_VARS = [
    "COPYRIGHTSH_LEDGER_API", "COPYRIGHTSH_LEDGER_API_KEY", "ENABLE_LICENSE_TRACKING",
    "ENABLE_LICENSE_CACHE", "LICENSE_CACHE_TTL_SECONDS", "LICENSE_CHECK_TIMEOUT_MS",
    "LICENSE_ACQUIRE_TIMEOUT_MS", "USAGE_LOG_TIMEOUT_MS", "DIRECT_FETCH_TIMEOUT_MS",
    "FETCH_MAX_CHARS", "FETCH_CONCURRENCY", "EXA_API_KEY", "EXA_API_URL", "SEARCH_TIMEOUT_MS",
    "LOG_LEVEL", "LOG_FILE", "SERVER_MODE", "MCP_PORT", "LEDGER_VERIFY_TLS",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = Settings(load_env_file=False)
    ledger = settings.config.ledger

    assert ledger.api_url == "https://ledger.copyright.sh"
    assert ledger.api_key is None
    assert ledger.enable_tracking is True
    assert ledger.enable_cache is False
    assert ledger.cache_ttl_seconds == 300
    assert ledger.license_check_timeout_ms == 5000
    assert ledger.license_acquire_timeout_ms == 8000
    assert ledger.usage_log_timeout_ms == 3000
    assert settings.config.fetch.concurrency == 1
    assert settings.config.server_mode == "stdio"


def test_environment_overrides(clean_env):
    clean_env.setenv("COPYRIGHTSH_LEDGER_API", "https://ledger.example/")
    clean_env.setenv("COPYRIGHTSH_LEDGER_API_KEY", "secret-key")
    clean_env.setenv("ENABLE_LICENSE_TRACKING", "no")
    clean_env.setenv("ENABLE_LICENSE_CACHE", "YES")
    clean_env.setenv("LICENSE_CACHE_TTL_SECONDS", "60")
    clean_env.setenv("DIRECT_FETCH_TIMEOUT_MS", "2500")
    clean_env.setenv("FETCH_CONCURRENCY", "3")
    clean_env.setenv("EXA_API_KEY", "exa-123456789")

    settings = Settings(load_env_file=False)

    assert settings.config.ledger.api_url == "https://ledger.example"
    assert settings.config.ledger.api_key == "secret-key"
    assert settings.config.ledger.enable_tracking is False
    assert settings.config.ledger.enable_cache is True
    assert settings.config.ledger.cache_ttl_seconds == 60
    assert settings.config.fetch.direct_fetch_timeout_ms == 2500
    assert settings.config.fetch.concurrency == 3
    assert settings.config.search_api.api_key == "exa-123456789"


def test_invalid_integer_keeps_default(clean_env, caplog):
    clean_env.setenv("LICENSE_CHECK_TIMEOUT_MS", "soon")

    with caplog.at_level(logging.WARNING):
        settings = Settings(load_env_file=False)

    assert settings.config.ledger.license_check_timeout_ms == 5000
    assert "LICENSE_CHECK_TIMEOUT_MS" in caplog.text


def test_validate_config_reports_blocking_problems(clean_env):
    clean_env.setenv("USAGE_LOG_TIMEOUT_MS", "0")
    clean_env.setenv("FETCH_CONCURRENCY", "0")

    errors = Settings(load_env_file=False).validate_config()

    assert any("EXA_API_KEY" in error for error in errors)
    assert any("USAGE_LOG_TIMEOUT_MS" in error for error in errors)
    assert any("FETCH_CONCURRENCY" in error for error in errors)


def test_validate_config_accepts_complete_setup(clean_env):
    clean_env.setenv("EXA_API_KEY", "exa-key")
    assert Settings(load_env_file=False).validate_config() == []


def test_to_dict_redacts_keys(clean_env):
    clean_env.setenv("COPYRIGHTSH_LEDGER_API_KEY", "abcdefghijkl")
    clean_env.setenv("EXA_API_KEY", "exa-123456789")

    data = Settings(load_env_file=False).to_dict()

    assert data["ledger"]["api_key"] == "set (abcd…)"
    assert data["search_api"]["api_key"] == "set (exa-12…)"
    assert "abcdefghijkl" not in str(data)
