import pytest
from pydantic import ValidationError

from duplex.config import StreamSettings


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("DUPLEX_CONFIG_FILE", raising=False)
    for name in ("DUPLEX_PROBE_INTERVAL_SECONDS", "DUPLEX_LOG_LEVEL", "DUPLEX_AUTH_TOKEN"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_match_documented_constants():
    settings = StreamSettings()

    assert settings.probe_interval_seconds == 10
    assert settings.effective_ack_timeout == 20
    assert settings.effective_read_timeout == 15
    assert settings.reconnect_initial_delay_seconds == 1
    assert settings.reconnect_multiplier == 2
    assert settings.reconnect_max_delay_seconds == 30
    assert settings.reconnect_jitter == 0
    assert settings.allowed_schemes == ["ws", "wss"]
    assert settings.recv_queue_max == 256
    assert settings.config_path is None


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DUPLEX_PROBE_INTERVAL_SECONDS", "4")
    monkeypatch.setenv("DUPLEX_LOG_LEVEL", "debug")
    monkeypatch.setenv("DUPLEX_AUTH_TOKEN", "secret")

    settings = StreamSettings()

    assert settings.effective_ack_timeout == 8
    assert settings.effective_read_timeout == 6
    assert settings.log_level == "DEBUG"
    assert "secret" not in repr(settings)


def test_yaml_config_file(monkeypatch, tmp_path):
    path = tmp_path / "client.yaml"
    path.write_text(
        "endpoint: wss://feed.example.com/stream\n"
        "transport: dummy\n"
        "probe_interval_seconds: 3\n"
        "ack_timeout_seconds: 9\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("DUPLEX_CONFIG_FILE", str(path))

    settings = StreamSettings()

    assert str(settings.endpoint).startswith("wss://feed.example.com")
    assert settings.transport == "dummy"
    assert settings.effective_ack_timeout == 9
    assert settings.effective_read_timeout == 4.5
    assert settings.config_path == path


def test_json_config_file(monkeypatch, tmp_path):
    path = tmp_path / "client.json"
    path.write_text('{"reconnect_max_delay_seconds": 60}', encoding="utf-8")
    monkeypatch.setenv("DUPLEX_CONFIG_FILE", str(path))

    assert StreamSettings().reconnect_max_delay_seconds == 60


def test_config_file_must_be_a_mapping(monkeypatch, tmp_path):
    path = tmp_path / "client.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    monkeypatch.setenv("DUPLEX_CONFIG_FILE", str(path))

    with pytest.raises(ValueError):
        StreamSettings()


def test_unsupported_config_format_rejected(monkeypatch, tmp_path):
    path = tmp_path / "client.toml"
    path.write_text("probe_interval_seconds = 3\n", encoding="utf-8")
    monkeypatch.setenv("DUPLEX_CONFIG_FILE", str(path))

    with pytest.raises(ValueError, match="Unsupported"):
        StreamSettings()


def test_missing_explicit_config_file_rejected(monkeypatch, tmp_path):
    monkeypatch.setenv("DUPLEX_CONFIG_FILE", str(tmp_path / "absent.yaml"))

    with pytest.raises(ValueError, match="not a file"):
        StreamSettings()


def test_default_location_is_discovered(tmp_path):
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "client.yml").write_text("reconnect_jitter: 0.25\n", encoding="utf-8")

    settings = StreamSettings()

    assert settings.reconnect_jitter == 0.25
    assert settings.config_path is not None and settings.config_path.name == "client.yml"


def test_inconsistent_backoff_bounds_rejected():
    with pytest.raises(ValidationError):
        StreamSettings(reconnect_initial_delay_seconds=10, reconnect_max_delay_seconds=5)


@pytest.mark.parametrize(
    "field,value",
    [("reconnect_multiplier", 0.5), ("reconnect_jitter", 1.0), ("probe_interval_seconds", 0), ("recv_queue_max", 0)],
)
def test_out_of_range_values_rejected(field, value):
    with pytest.raises(ValidationError):
        StreamSettings(**{field: value})
