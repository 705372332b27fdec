import pytest

from title_finder.config import BASE_DIR, PROJECT_DIR, load_settings


def test_defaults(monkeypatch):
    for name in ("GEMINI_MODEL", "GEMINI_MODEL_FLASH", "GEMINI_MODEL_PRO", "TITLES_PATH", "PORT", "RATE_LIMIT_MAX"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.gemini_model_flash == "gemini-2.5-flash"
    assert settings.gemini_model_pro == "gemini-2.5-pro"
    assert settings.titles_path == (PROJECT_DIR / "data" / "job-titles.csv").resolve()
    assert settings.prompts_dir == (BASE_DIR / "prompts").resolve()
    assert settings.port == 3000
    assert settings.rate_limit_max == 10


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("GEMINI_MODEL", "gemini-custom")
    monkeypatch.delenv("GEMINI_MODEL_FLASH", raising=False)
    monkeypatch.setenv("GEMINI_MODEL_PRO", "gemini-pro-x")
    monkeypatch.setenv("TITLES_PATH", str(tmp_path / "titles.csv"))
    monkeypatch.setenv("LLM_TIMEOUT", "5.5")
    settings = load_settings()
    assert settings.gemini_model_flash == "gemini-custom"
    assert settings.gemini_model_pro == "gemini-pro-x"
    assert settings.titles_path == (tmp_path / "titles.csv").resolve()
    assert settings.llm_timeout == 5.5


def test_relative_paths_resolve_from_project_root(monkeypatch):
    monkeypatch.setenv("TITLES_PATH", "data/other.csv")
    assert load_settings().titles_path == (PROJECT_DIR / "data" / "other.csv").resolve()


def test_invalid_numbers_raise(monkeypatch):
    monkeypatch.setenv("RATE_LIMIT_MAX", "lots")
    with pytest.raises(ValueError):
        load_settings()
