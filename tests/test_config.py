import pytest

from job_relay.config import (
    DEFAULT_AI_MODEL,
    RUN_REQUIRED_ENVS,
    assert_required_envs,
    load_settings,
    mask_secret,
    missing_envs,
)


def _env(**extra: str) -> dict[str, str]:
    env = {
        "TELEGRAM_BOT_TOKEN": "123:abc",
        "TELEGRAM_CHAT_ID": "@yemen_jobs",
        "CF_ACCOUNT_ID": "acct",
        "CF_API_TOKEN": "token",
    }
    env.update(extra)
    return env


def test_admin_chat_is_optional() -> None:
    assert "ADMIN_CHAT_ID" not in RUN_REQUIRED_ENVS
    assert missing_envs(RUN_REQUIRED_ENVS, environ=_env()) == []


def test_missing_envs_treats_blank_values_as_missing() -> None:
    env = _env(CF_API_TOKEN="   ")
    assert missing_envs(RUN_REQUIRED_ENVS, environ=env) == ["CF_API_TOKEN"]

    with pytest.raises(ValueError, match="CF_API_TOKEN"):
        assert_required_envs(RUN_REQUIRED_ENVS, environ=env)


def test_load_settings_applies_defaults(tmp_path) -> None:
    settings = load_settings(_env(STATE_DB_PATH=str(tmp_path / "state.sqlite")))

    assert settings.ai_model == DEFAULT_AI_MODEL
    assert settings.max_postings_per_run == 15
    assert settings.delivery_delay_seconds == 1.0
    assert settings.admin_chat_id is None
    assert settings.enabled_source_names == []
    assert settings.archive_postings
    assert settings.state_db_path == tmp_path / "state.sqlite"


def test_enabled_sources_csv_is_normalized() -> None:
    settings = load_settings(_env(ENABLED_SOURCES=" YemenHR, eoi ,,reliefweb "))
    assert settings.enabled_source_names == ["yemenhr", "eoi", "reliefweb"]


def test_preview_environment_disables_posting_archive() -> None:
    settings = load_settings(_env(ENVIRONMENT="preview"))
    assert not settings.archive_postings


def test_feed_urls_must_use_https() -> None:
    with pytest.raises(ValueError, match="https"):
        load_settings(_env(YEMENHR_FEED_URL="http://yemenhr.com/jobs.rss"))


def test_invalid_limits_are_rejected() -> None:
    with pytest.raises(ValueError):
        load_settings(_env(MAX_POSTINGS_PER_RUN="0"))


def test_mask_secret() -> None:
    assert mask_secret("") == ""
    assert mask_secret("abcd") == "****"
    assert mask_secret("1234567890") == "123*****90"
