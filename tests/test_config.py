"""Tests for config loading and validation."""

import os

import pytest

from config import (
    DEFAULTS, Config, config_from_dict, find_project_config, generate_config,
    get_api_key, load_config,
)
from protocol import ConfigError, MAX_FIXES


@pytest.fixture
def home(tmp_path, monkeypatch):
    d = tmp_path / "home"
    d.mkdir()
    monkeypatch.setenv("AI_RUN_HOME", str(d))
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    return d


@pytest.fixture
def project(tmp_path):
    d = tmp_path / "project"
    d.mkdir()
    (d / ".git").mkdir()
    return d


class TestDefaults:
    def test_defaults(self, home, project):
        cfg = load_config(str(project))
        assert cfg == Config()
        assert cfg.ai_confidence_threshold == 0.7
        assert cfg.max_fixes == MAX_FIXES
        assert cfg.api_key == ""
        assert cfg.project_config is None

    def test_config_matches_defaults(self):
        cfg = Config()
        for key, value in DEFAULTS.items():
            assert getattr(cfg, key) == value


class TestValidation:
    def test_good_values(self):
        cfg = config_from_dict({"ai_enabled": False, "max_fixes": 2, "ai_timeout": 5,
                                "ai_confidence_threshold": 0.9, "learning_mode": True})
        assert cfg.ai_enabled is False
        assert cfg.max_fixes == 2
        assert cfg.ai_timeout == 5.0
        assert cfg.ai_confidence_threshold == 0.9
        assert cfg.learning_mode is True

    def test_max_fixes_clamped(self):
        assert config_from_dict({"max_fixes": 10}).max_fixes == MAX_FIXES

    @pytest.mark.parametrize("key,value", [
        ("max_fixes", 0),
        ("max_fixes", "3"),
        ("ai_confidence_threshold", 1.5),
        ("ai_confidence_threshold", True),
        ("ai_timeout", 60),
        ("ai_timeout", 0),
        ("ai_enabled", "yes"),
        ("model", ""),
        ("api_url", "http://[::1"),
        ("api_url", "ftp://example.com/messages"),
        ("api_url", "api.anthropic.com"),
        ("api_url", 443),
    ])
    def test_bad_values_fall_back(self, key, value, capsys):
        cfg = config_from_dict({key: value})
        assert getattr(cfg, key) == DEFAULTS[key]
        assert key in capsys.readouterr().err

    def test_unknown_keys_ignored(self):
        assert config_from_dict({"colour": "blue"}) == Config()


class TestFiles:
    def test_global_then_project(self, home, project):
        (home / "config.py").write_text("max_fixes = 1\nlearning_mode = True\n")
        (project / ".ai-run.py").write_text("max_fixes = 2\n")
        cfg = load_config(str(project))
        assert cfg.max_fixes == 2
        assert cfg.learning_mode is True
        assert cfg.project_config == str(project / ".ai-run.py")

    def test_project_found_from_subdir(self, home, project):
        (project / ".ai-run.py").write_text("redact = False\n")
        sub = project / "src" / "pkg"
        sub.mkdir(parents=True)
        assert find_project_config(str(sub)) == str(project / ".ai-run.py")
        assert load_config(str(sub)).redact is False

    def test_search_stops_at_git_root(self, tmp_path, project):
        (tmp_path / ".ai-run.py").write_text("max_fixes = 1\n")
        assert find_project_config(str(project)) is None

    def test_broken_config_ignored(self, home, project, capsys):
        (project / ".ai-run.py").write_text("max_fixes = (\n")
        cfg = load_config(str(project))
        assert cfg.max_fixes == MAX_FIXES
        assert "ignored" in capsys.readouterr().err

    def test_expressions_allowed(self, home, project):
        (project / ".ai-run.py").write_text("import os\nai_timeout = 2 * 2\n")
        assert load_config(str(project)).ai_timeout == 4.0


class TestApiKey:
    def test_env_var(self, home, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
        assert get_api_key() == "sk-env"

    def test_key_file(self, home):
        (home / "api_key").write_text("sk-file\n")
        assert get_api_key() == "sk-file"

    def test_none(self, home):
        assert get_api_key() == ""


class TestGenerate:
    def test_creates_file(self, tmp_path):
        path = generate_config(str(tmp_path))
        assert os.path.isfile(path)
        assert "max_fixes" in open(path).read()

    def test_generated_file_loads_as_defaults(self, home, project):
        generate_config(str(project))
        assert load_config(str(project)) == Config(project_config=str(project / ".ai-run.py"))

    def test_refuses_to_overwrite(self, tmp_path):
        generate_config(str(tmp_path))
        with pytest.raises(ConfigError):
            generate_config(str(tmp_path))
