# tests/test_config.py
"""
Tests for loading the analysis configuration.
"""

import logging

import pytest

from pyscope_shims.config import (
    DEFAULT_CONFIG,
    DEFAULT_FACT_LIMIT,
    AnalysisConfig,
    find_config_file,
    load_config,
)


class TestAnalysisConfig:

    def test_defaults(self):
        config = AnalysisConfig()
        assert config.fact_limit == DEFAULT_FACT_LIMIT == 100_000
        assert config.check_cancel_every_pass
        assert not config.log_statistics

    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            AnalysisConfig(fact_limit=0)

    def test_from_mapping_accepts_dashes(self):
        config = AnalysisConfig.from_mapping(
            {"fact-limit": 50, "log_statistics": True})
        assert config.fact_limit == 50
        assert config.log_statistics

    def test_unknown_keys_warn(self, caplog):
        with caplog.at_level(logging.WARNING, logger="pyscope_shims.config"):
            config = AnalysisConfig.from_mapping({"colour": "blue"})
        assert config == DEFAULT_CONFIG
        assert "colour" in caplog.text

    def test_to_dict(self):
        assert AnalysisConfig(fact_limit=7).to_dict() == {
            "fact_limit": 7,
            "check_cancel_every_pass": True,
            "log_statistics": False,
        }


class TestLoadConfig:

    def test_pyproject_table(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text(
            '[project]\nname = "demo"\n\n'
            '[tool.pyscope-shims]\nfact-limit = 500\n',
            encoding="utf-8",
        )
        assert load_config(tmp_path).fact_limit == 500

    def test_pyproject_without_table(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text(
            '[project]\nname = "demo"\n', encoding="utf-8")
        assert load_config(tmp_path) is DEFAULT_CONFIG

    def test_standalone_file(self, tmp_path):
        path = tmp_path / "pyscope-shims.toml"
        path.write_text("check-cancel-every-pass = false\n", encoding="utf-8")
        config = load_config(path)
        assert not config.check_cancel_every_pass

    def test_standalone_file_preferred(self, tmp_path):
        (tmp_path / "pyscope-shims.toml").write_text(
            "fact-limit = 10\n", encoding="utf-8")
        (tmp_path / "pyproject.toml").write_text(
            "[tool.pyscope-shims]\nfact-limit = 20\n", encoding="utf-8")
        assert find_config_file(tmp_path).name == "pyscope-shims.toml"
        assert load_config(tmp_path).fact_limit == 10

    def test_found_from_subdirectory(self, tmp_path):
        (tmp_path / "pyscope-shims.toml").write_text(
            "fact-limit = 10\n", encoding="utf-8")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert load_config(nested).fact_limit == 10

    def test_skips_pyproject_without_table(self, tmp_path):
        (tmp_path / "pyscope-shims.toml").write_text(
            "fact-limit = 10\n", encoding="utf-8")
        project = tmp_path / "project"
        project.mkdir()
        (project / "pyproject.toml").write_text(
            '[project]\nname = "demo"\n', encoding="utf-8")
        assert find_config_file(project) == project / "pyproject.toml"
        assert load_config(project).fact_limit == 10

    def test_skips_empty_standalone_file(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text(
            "[tool.pyscope-shims]\nfact-limit = 20\n", encoding="utf-8")
        nested = tmp_path / "pkg"
        nested.mkdir()
        (nested / "pyscope-shims.toml").write_text("", encoding="utf-8")
        assert load_config(nested).fact_limit == 20

    def test_nearest_file_with_settings_wins(self, tmp_path):
        (tmp_path / "pyscope-shims.toml").write_text(
            "fact-limit = 10\n", encoding="utf-8")
        project = tmp_path / "project"
        project.mkdir()
        (project / "pyproject.toml").write_text(
            "[tool.pyscope-shims]\nfact-limit = 30\n", encoding="utf-8")
        assert load_config(project).fact_limit == 30

    def test_invalid_limit(self, tmp_path):
        path = tmp_path / "pyscope-shims.toml"
        path.write_text("fact-limit = -1\n", encoding="utf-8")
        with pytest.raises(ValueError):
            load_config(path)
