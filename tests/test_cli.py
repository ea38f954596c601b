from __future__ import annotations

from typer.testing import CliRunner

from voice_orchestrator import cli


def test_serve_overrides(monkeypatch):
    captured: dict[str, object] = {}

    async def fake_run(settings):
        captured["settings"] = settings

    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret")
    monkeypatch.setattr("voice_orchestrator.cli.app_run", fake_run)
    runner = CliRunner()
    result = runner.invoke(
        cli.app,
        [
            "serve",
            "--host",
            "127.0.0.1",
            "--port",
            "9001",
            "--model",
            "foo",
            "--idle-timeout",
            "30",
            "--verbose",
        ],
    )
    assert result.exit_code == 0
    settings = captured["settings"]
    assert settings.host == "127.0.0.1"
    assert settings.port == 9001
    assert settings.model == "foo"
    assert settings.idle_timeout_s == 30
    assert settings.openai_api_key == "sk-secret"
    assert "foo" in result.stdout
    assert "sk-secret" not in result.stdout


def test_fake_client():
    runner = CliRunner()
    result = runner.invoke(cli.app, ["test", "--fake-client"])
    assert result.exit_code == 0
    assert "Hello from the fake client run." in result.stdout
    assert "You said: hello there" in result.stdout
    assert "You said: [DTMF 5]" in result.stdout
    assert "closed 1000 call ended" in result.stdout
    assert "Fake client exchange completed" in result.stdout


def test_without_flags_nothing_runs():
    result = CliRunner().invoke(cli.app, ["test"])
    assert result.exit_code == 0
    assert "No tests specified" in result.stdout
