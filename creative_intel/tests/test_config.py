import pytest

from creative_intel import config


def _reset_config_caches():
    config.get_db_config.cache_clear()
    config.get_vision_config.cache_clear()
    config.get_asr_config.cache_clear()
    config.get_tagging_config.cache_clear()
    config.get_analysis_config.cache_clear()


@pytest.fixture(autouse=True)
def _clear_caches():
    _reset_config_caches()
    yield
    _reset_config_caches()


def test_db_config_prefers_database_url(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://new")
    monkeypatch.setenv("SUPABASE_DB_URL", "postgresql://legacy")

    assert config.get_db_config().url == "postgresql://new"


def test_db_config_falls_back_to_legacy_name(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setenv("SUPABASE_DB_URL", "postgresql://legacy")

    assert config.get_db_config().url == "postgresql://legacy"


def test_db_config_requires_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_DB_URL", raising=False)

    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        config.get_db_config()


def test_vision_config_defaults_to_flash(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "test-key")
    monkeypatch.delenv("VISION_MODEL_NAME", raising=False)
    monkeypatch.delenv("VISION_REQUEST_TIMEOUT", raising=False)

    cfg = config.get_vision_config()
    assert cfg.model_name == "gemini-2.5-flash"
    assert cfg.request_timeout == 60.0
    assert cfg.input_cost_per_mtok > 0


def test_vision_config_requires_api_key(monkeypatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)

    with pytest.raises(RuntimeError, match="GOOGLE_API_KEY"):
        config.get_vision_config()


def test_asr_config_reads_overrides(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("ASR_MODEL_NAME", "whisper-large")
    monkeypatch.setenv("ASR_REQUEST_TIMEOUT", "45")

    cfg = config.get_asr_config()
    assert cfg.model_name == "whisper-large"
    assert cfg.request_timeout == 45.0


def test_tagging_config_defaults(monkeypatch):
    for name in ("TAGGING_BATCH_SIZE", "TAGGING_CONCURRENCY", "TAGGING_MAX_RETRIES", "VIDEO_TIME_BUDGET"):
        monkeypatch.delenv(name, raising=False)

    cfg = config.get_tagging_config()
    assert cfg.batch_size == 200
    assert cfg.concurrency == 3
    assert cfg.max_retries == 3
    assert cfg.video_time_budget == 250.0


def test_tagging_config_env_overrides(monkeypatch):
    monkeypatch.setenv("TAGGING_CONCURRENCY", "8")
    monkeypatch.setenv("VIDEO_TIME_BUDGET", "120")
    monkeypatch.setenv("TAGGING_MIN_DAYS_ACTIVE", "0")

    cfg = config.get_tagging_config()
    assert cfg.concurrency == 8
    assert cfg.video_time_budget == 120.0
    assert cfg.min_days_active == 0


def test_tagging_config_rejects_non_integer(monkeypatch):
    monkeypatch.setenv("TAGGING_BATCH_SIZE", "lots")

    with pytest.raises(ValueError, match="TAGGING_BATCH_SIZE"):
        config.get_tagging_config()


def test_tagging_config_rejects_non_positive_budget(monkeypatch):
    monkeypatch.setenv("VIDEO_TIME_BUDGET", "-5")

    with pytest.raises(ValueError, match="VIDEO_TIME_BUDGET"):
        config.get_tagging_config()


def test_analysis_config_window_override(monkeypatch):
    monkeypatch.setenv("ANALYSIS_WINDOW_DAYS", "14")
    monkeypatch.delenv("VELOCITY_THRESHOLD", raising=False)

    cfg = config.get_analysis_config()
    assert cfg.window_days == 14
    assert cfg.velocity_threshold == 0.3


def test_log_level_validation(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    assert config.get_log_level() == "DEBUG"

    monkeypatch.setenv("LOG_LEVEL", "chatty")
    with pytest.raises(ValueError, match="LOG_LEVEL"):
        config.get_log_level()


def test_describe_active_models_has_no_credentials(monkeypatch):
    monkeypatch.setenv("GOOGLE_API_KEY", "secret")
    monkeypatch.setenv("VISION_MODEL_NAME", "gemini-custom")

    summary = config.describe_active_models()
    assert summary["vision"] == "gemini-custom"
    assert "secret" not in str(summary)
