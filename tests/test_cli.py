import pytest

from job_relay.cli import main
from job_relay.ledger import RunLedger
from job_relay.storage import IdempotencyStore

REQUIRED = ("TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "CF_ACCOUNT_ID", "CF_API_TOKEN")


@pytest.fixture
def env(tmp_path, monkeypatch):
    for key in REQUIRED + ("ADMIN_CHAT_ID", "ENABLED_SOURCES", "MAX_POSTINGS_PER_RUN"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "state.sqlite"))
    monkeypatch.setenv("LEDGER_DB_PATH", str(tmp_path / "ledger.sqlite"))
    return tmp_path


def test_run_requires_credentials(env, capsys) -> None:
    assert main(["run"]) == 1
    assert "Missing required environment variables: TELEGRAM_BOT_TOKEN" in capsys.readouterr().out


def test_invalid_numeric_env_is_reported(env, monkeypatch, capsys) -> None:
    monkeypatch.setenv("MAX_POSTINGS_PER_RUN", "0")
    assert main(["runs"]) == 1
    assert "max_postings_per_run" in capsys.readouterr().out


def test_healthcheck(env, monkeypatch, capsys) -> None:
    assert main(["healthcheck"]) == 1
    assert "missing required env vars" in capsys.readouterr().out

    for key in REQUIRED:
        monkeypatch.setenv(key, f"{key.lower()}-value")
    monkeypatch.setenv("ENABLED_SOURCES", "eoi,qtb")

    assert main(["healthcheck"]) == 0
    out = capsys.readouterr().out
    assert "enabled sources: eoi, qtb" in out
    assert "ADMIN_CHAT_ID not set" in out
    assert "telegram_bot_token-value" not in out


def test_clear_posted(env, capsys) -> None:
    assert main(["clear-posted", "eoi-1"]) == 1

    with IdempotencyStore(env / "state.sqlite") as store:
        store.mark_posted("eoi-1", "Social Worker", "MSF")

    assert main(["clear-posted", "eoi-1"]) == 0
    assert "cleared delivery record for eoi-1" in capsys.readouterr().out
    with IdempotencyStore(env / "state.sqlite") as store:
        assert not store.is_posted("eoi-1")


def test_runs_and_postings_listing(env, capsys) -> None:
    assert main(["runs"]) == 0
    assert "no runs recorded" in capsys.readouterr().out

    with RunLedger(env / "ledger.sqlite") as ledger:
        run_id = ledger.create_run("scheduled")
        ledger.complete_run(run_id, fetched=4, posted=1, skipped=3, failed=0, source_stats={})

    assert main(["runs", "--limit", "5"]) == 0
    assert f"#{run_id}" in capsys.readouterr().out

    assert main(["postings", "--status", "posted"]) == 0
    assert "totals: none" in capsys.readouterr().out


def test_prompt_overrides(env, capsys) -> None:
    assert main(["prompt", "set", "yemenhr", "howtoapply", "on"]) == 0
    assert "howtoapply: on" in capsys.readouterr().out

    assert main(["prompt", "show", "yemenhr"]) == 0
    assert "yemenhr (overridden):" in capsys.readouterr().out

    assert main(["prompt", "set", "yemenhr", "howtoapply", "maybe"]) == 1
    assert "howtoapply expects on|off" in capsys.readouterr().out

    assert main(["prompt", "set", "nowhere", "hint", "x"]) == 1
    assert "Unknown source: nowhere" in capsys.readouterr().out

    assert main(["prompt", "reset", "yemenhr"]) == 0
    assert "reset prompt overrides for yemenhr" in capsys.readouterr().out
    assert main(["prompt", "reset"]) == 0
    assert "no overrides for all sources" in capsys.readouterr().out


def test_prompt_template_roundtrip(env, capsys) -> None:
    template_file = env / "template.txt"
    template_file.write_text("Summarize {{description}}", encoding="utf-8")

    assert main(["prompt", "template", "--file", str(template_file)]) == 0
    capsys.readouterr()
    assert main(["prompt", "template"]) == 0
    assert capsys.readouterr().out.strip() == "Summarize {{description}}"

    assert main(["prompt", "template", "--reset"]) == 0
    capsys.readouterr()
    assert main(["prompt", "template"]) == 0
    assert "JOB DESCRIPTION:" in capsys.readouterr().out
