from pathlib import Path

import pytest
from pydantic import ValidationError

from llmrelay.config import RelaySettings


def test_defaults():
    settings = RelaySettings.from_env(dotenv=False)
    assert settings.log_level == "ERROR"
    assert settings.allow_insecure is False
    assert settings.proxy is None
    assert settings.artifact_dir is None


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("LLMRELAY_LOG_LEVEL", "debug")
    monkeypatch.setenv("LLMRELAY_ALLOW_INSECURE", "true")
    monkeypatch.setenv("LLMRELAY_PROXY", "http://proxy.local:8080")
    monkeypatch.setenv("LLMRELAY_ARTIFACT_DIR", str(tmp_path))

    settings = RelaySettings.from_env(dotenv=False)

    assert settings.log_level == "DEBUG"
    assert settings.allow_insecure is True
    assert settings.proxy == "http://proxy.local:8080"
    assert settings.artifact_dir == Path(tmp_path).resolve()


def test_from_env_reads_dotenv(monkeypatch, tmp_path):
    # set then delete so monkeypatch removes the value loaded from .env afterwards
    monkeypatch.setenv("LLMRELAY_LOG_LEVEL", "ERROR")
    monkeypatch.delenv("LLMRELAY_LOG_LEVEL")
    (tmp_path / ".env").write_text("LLMRELAY_LOG_LEVEL=trace\n")
    monkeypatch.chdir(tmp_path)

    settings = RelaySettings.from_env()

    assert settings.log_level == "TRACE"


def test_warning_is_an_alias_of_warn():
    assert RelaySettings(log_level="warning").log_level == "WARN"


def test_invalid_log_level():
    with pytest.raises(ValidationError):
        RelaySettings(log_level="verbose")
