import pytest

from news_desk.config import Settings, require_api_key


def test_require_api_key_returns_configured_key(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    assert require_api_key(Settings(_env_file=None)) == "sk-test"


def test_require_api_key_explains_missing_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(RuntimeError) as excinfo:
        require_api_key(Settings(_env_file=None))
    assert "OPENAI_API_KEY" in str(excinfo.value)


def test_credentials_path_env_override(monkeypatch, tmp_path):
    monkeypatch.setenv("NEWS_DESK_CREDENTIALS_PATH", str(tmp_path / "creds.json"))

    assert Settings(_env_file=None).credentials_path == tmp_path / "creds.json"
