"""Tests for config loading."""

from __future__ import annotations

from ollachat.config.loader import Config, _deep_merge, _load_yaml, get_config


def test_load_yaml_missing(tmp_path):
    assert _load_yaml(tmp_path / "nonexistent.yaml") == {}


def test_load_yaml_exists(tmp_path):
    path = tmp_path / "test.yaml"
    path.write_text("redis:\n  url: redis://custom:6380/2\n")
    assert _load_yaml(path)["redis"]["url"] == "redis://custom:6380/2"


def test_defaults_from_packaged_yaml(monkeypatch):
    monkeypatch.delenv("REDIS_URL", raising=False)
    config = get_config()
    assert config.redis.url == "redis://localhost:6379/0"
    assert config.ollama.host == "http://localhost:11434"
    assert config.ollama.default_model == "llama2"
    assert config.ollama.openai_compat is False
    assert config.server.port == 3000


def test_config_load_from_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("ollama:\n  host: http://gpu-box:11434\n  default_model: mistral\nserver:\n  port: 8080\n")
    config = Config.load(config_path=path)
    assert config.ollama.host == "http://gpu-box:11434"
    assert config.ollama.default_model == "mistral"
    assert config.server.port == 8080


def test_config_env_override(monkeypatch):
    monkeypatch.setenv("REDIS_URL", "redis://test:6379/5")
    monkeypatch.setenv("OLLAMA_HOST", "http://remote:11434")
    monkeypatch.setenv("OLLAMA_OPENAI_COMPAT", "true")
    monkeypatch.setenv("OLLAMA_DEFAULT_MODEL", "mistral")
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("SECRET_KEY", "s3cr3t")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    config = Config.load()
    assert config.redis.url == "redis://test:6379/5"
    assert config.ollama.host == "http://remote:11434"
    assert config.ollama.openai_compat is True
    assert config.ollama.default_model == "mistral"
    assert config.server.port == 9000
    assert config.server.secret_key == "s3cr3t"
    assert config.logging.level == "DEBUG"


def test_env_specific_yaml_merges(tmp_path, monkeypatch):
    (tmp_path / "config").mkdir()
    (tmp_path / "config" / "staging.yaml").write_text("ollama:\n  timeout_seconds: 30\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("OLLACHAT_ENV", "staging")
    config = Config.load()
    assert config.ollama.timeout_seconds == 30
    assert config.ollama.host == "http://localhost:11434"


def test_deep_merge():
    base = {"a": 1, "b": {"x": 10, "y": 20}}
    override = {"b": {"y": 22, "z": 30}, "c": 3}
    out = _deep_merge(base, override)
    assert out == {"a": 1, "b": {"x": 10, "y": 22, "z": 30}, "c": 3}
    assert base["b"] == {"x": 10, "y": 20}
