import os
import pytest
import importlib

# Non-placeholder values for every variable config.py validates
MINIMAL_REQUIRED_CONFIG_FOR_TEST_NON_PLACEHOLDER = {
    "SECRET_KEY": "a_real_secret_key_for_testing",
    "REFRESH_SECRET_KEY": "a_real_refresh_secret_key_for_testing",
    "FRONTEND_URL": "https://test.app.com",
    "SENTRY_DSN": "https://test-sentry-dsn@sentry.io/12345",
    "DATABASE_URL": "sqlite:///./test_suite_app.db",
    "ENHANCEMENT_MODE": "analyze_generate",
}

@pytest.fixture(autouse=True)
def manage_environment():
    """
    Clears the keys config.py reads before each test, then restores the original
    environment and reloads config so later tests see the suite's settings again.
    """
    original_env = os.environ.copy()

    config_keys_to_clear = [
        "SECRET_KEY", "REFRESH_SECRET_KEY", "ACCESS_TOKEN_EXPIRE_MINUTES", "REFRESH_TOKEN_EXPIRE_DAYS",
        "FRONTEND_URL", "SENTRY_DSN", "DATABASE_URL", "OPENAI_API_KEY", "OPENAI_MODEL",
        "ENHANCEMENT_MODE", "FILTER_TIMEOUT_SECONDS", "BATCH_MAX_CONCURRENCY", "RATE_LIMIT_ENABLED",
    ]
    for key in config_keys_to_clear:
        os.environ.pop(key, None)

    yield # Test runs here

    os.environ.clear()
    os.environ.update(original_env)
    import config
    importlib.reload(config)


def test_config_loading_success():
    for key, value in MINIMAL_REQUIRED_CONFIG_FOR_TEST_NON_PLACEHOLDER.items():
        os.environ[key] = value

    import config
    importlib.reload(config)
    assert config.ENHANCEMENT_MODE == "analyze_generate"
    assert config.FRONTEND_URL == "https://test.app.com"


def test_config_loading_failure_placeholder_secret_key():
    for key, value in MINIMAL_REQUIRED_CONFIG_FOR_TEST_NON_PLACEHOLDER.items():
        if key != "SECRET_KEY":
            os.environ[key] = value

    with pytest.raises(ValueError, match=r"SECRET_KEY .*is set to a default placeholder value.*and must be changed"):
        import config
        importlib.reload(config)


def test_config_loading_failure_placeholder_refresh_secret_key():
    for key, value in MINIMAL_REQUIRED_CONFIG_FOR_TEST_NON_PLACEHOLDER.items():
        if key != "REFRESH_SECRET_KEY":
            os.environ[key] = value

    with pytest.raises(ValueError, match=r"REFRESH_SECRET_KEY .*is set to a default placeholder value"):
        import config
        importlib.reload(config)


def test_config_loading_failure_invalid_mode():
    for key, value in MINIMAL_REQUIRED_CONFIG_FOR_TEST_NON_PLACEHOLDER.items():
        os.environ[key] = value
    os.environ["ENHANCEMENT_MODE"] = "generate_everything"

    with pytest.raises(ValueError, match=r"ENHANCEMENT_MODE"):
        import config
        importlib.reload(config)


def test_defaults_used_if_not_in_env():
    """Optional settings fall back to their defaults; an empty OpenAI key is acceptable."""
    for key in ("SECRET_KEY", "REFRESH_SECRET_KEY"):
        os.environ[key] = MINIMAL_REQUIRED_CONFIG_FOR_TEST_NON_PLACEHOLDER[key]

    import config
    importlib.reload(config)
    assert config.ALGORITHM == "HS256"
    assert config.ACCESS_TOKEN_EXPIRE_MINUTES == 30
    assert config.ENHANCEMENT_MODE == "analyze_only"
    assert config.OPENAI_MODEL == "gpt-4o"
    assert config.FILTER_TIMEOUT_SECONDS == 30.0
    assert config.BATCH_MAX_CONCURRENCY == 2
    assert config.RATE_LIMIT_ENABLED is True


def test_enhancement_settings_from_config():
    for key, value in MINIMAL_REQUIRED_CONFIG_FOR_TEST_NON_PLACEHOLDER.items():
        os.environ[key] = value
    os.environ["OPENAI_API_KEY"] = "sk-test"
    os.environ["FILTER_TIMEOUT_SECONDS"] = "12.5"

    import config
    importlib.reload(config)
    from services.enhancement_service import EnhancementSettings
    from schemas.enhancement_schemas import EnhancementMode

    settings = EnhancementSettings.from_config()
    assert settings.mode == EnhancementMode.ANALYZE_GENERATE
    assert settings.openai_api_key == "sk-test"
    assert settings.filter_timeout == 12.5
