"""Tests for settings loading."""

from __future__ import annotations

import pytest

from skillshell.config import Settings, load_settings


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "skillshell.yaml"
    path.write_text(
        "skills_dir: my-skills\ncommand_timeout: 5\nmax_output_chars: 100\nllm_model: other-model\n",
        encoding="utf-8",
    )
    return path


class TestLoadSettings:
    def test_defaults_without_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = load_settings()
        assert settings == Settings()

    def test_yaml_values(self, config_file):
        settings = load_settings(str(config_file))
        assert settings.skills_dir == "my-skills"
        assert settings.command_timeout == 5.0
        assert isinstance(settings.command_timeout, float)
        assert settings.max_output_chars == 100
        assert settings.llm_model == "other-model"
        assert settings.destination == "/"

    def test_environment_overrides_yaml(self, config_file, monkeypatch):
        monkeypatch.setenv("SKILLS_DIR", "env-skills")
        monkeypatch.setenv("COMMAND_TIMEOUT", "2.5")
        settings = load_settings(str(config_file))
        assert settings.skills_dir == "env-skills"
        assert settings.command_timeout == 2.5

    def test_api_key_order(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("OPENAI_API_KEY", "sk-openai")
        assert load_settings().llm_api_key == "sk-openai"
        monkeypatch.setenv("DEEPSEEK_API_KEY", "sk-deepseek")
        assert load_settings().llm_api_key == "sk-deepseek"
        monkeypatch.setenv("LLM_API_KEY", "sk-llm")
        assert load_settings().llm_api_key == "sk-llm"

    def test_api_key_in_yaml_ignored(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("llm_api_key: leaked\nunknown_key: 1\n", encoding="utf-8")
        settings = load_settings(str(path))
        assert settings.llm_api_key is None
        assert not hasattr(settings, "unknown_key")

    def test_invalid_number(self, config_file, monkeypatch):
        monkeypatch.setenv("MAX_OUTPUT_CHARS", "lots")
        with pytest.raises(ValueError):
            load_settings(str(config_file))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("skills_dir: [unclosed\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_settings(str(path))

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_settings(str(path))

    def test_missing_explicit_config(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "absent.yaml"))
