from telemetry_agent.config import Settings


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("CURRENT_THRESHOLD", "75")
    monkeypatch.setenv("CLASSIFIER_VARIANT", "direct")
    monkeypatch.setenv("STRUCTURED_RESPONSES", "true")
    monkeypatch.setenv("ORACLE_COOLDOWN_SECONDS", "10")

    settings = Settings(_env_file=None)

    assert settings.pipeline_config().current_threshold == 75.0
    assert settings.pipeline_config().oracle_cooldown_seconds == 10.0
    assert settings.classifier_config().variant == "direct"
    assert settings.router_config().structured_responses is True
