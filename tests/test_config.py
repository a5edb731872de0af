"""
Test configuration loading, environment overrides and logging helpers
"""

import logging

import pytest
import yaml

from dossier_core.config import (
    DossierConfig,
    config_from_dict,
    find_config_file,
    load_config,
    save_config,
)
from dossier_core.logging_utils import LogLevel, RunLogger, mask_secrets, setup_logging

ENV_VARS = (
    "DOSSIER_LLM_BACKEND",
    "DOSSIER_LLM_MODEL",
    "DOSSIER_LLM_BASE_URL",
    "DOSSIER_LLM_API_KEY",
    "DOSSIER_LOG_LEVEL",
    "DOSSIER_MAX_WORKERS",
    "DOSSIER_CACHE_ENABLED",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestLoadConfig:
    """YAML loading."""

    def test_defaults_without_file(self, temp_dir, monkeypatch):
        monkeypatch.setenv("HOME", str(temp_dir))
        config = load_config(start_path=temp_dir)
        assert config.collaborator.backend == "ollama"
        assert config.pipeline.await_optional_inputs is True
        assert "target" in config.extraction.excluded_dirs

    def test_load_yaml(self, temp_dir):
        path = temp_dir / "dossier.yaml"
        path.write_text(
            "project_name: shop\n"
            "collaborator:\n"
            "  backend: echo\n"
            "  retry_attempts: 5\n"
            "pipeline:\n"
            "  disabled_units: [section_code_index]\n"
            "  units:\n"
            "    workflows:\n"
            "      entry_points: [main]\n"
        )
        config = load_config(path)
        assert config.project_name == "shop"
        assert config.collaborator.backend == "echo"
        assert config.collaborator.retry_attempts == 5
        assert config.pipeline.disabled_units == ["section_code_index"]
        assert config.pipeline.unit_options("workflows") == {"entry_points": ["main"]}
        assert config.pipeline.unit_options("boundaries") == {}

    def test_found_by_upward_search(self, temp_dir):
        (temp_dir / ".dossier").mkdir()
        (temp_dir / ".dossier" / "dossier.yaml").write_text("project_name: nested\n")
        deep = temp_dir / "a" / "b"
        deep.mkdir(parents=True)
        assert find_config_file(deep) == (temp_dir / ".dossier" / "dossier.yaml").resolve()
        assert load_config(start_path=deep).project_name == "nested"

    def test_unknown_keys_are_ignored(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = config_from_dict({"collaborator": {"model": "m", "flavour": "spicy"}})
        assert config.collaborator.model == "m"
        assert "flavour" in caplog.text

    def test_invalid_values_are_corrected(self, temp_dir):
        path = temp_dir / "dossier.yaml"
        path.write_text(
            "collaborator:\n  backend: telepathy\n  retry_attempts: 0\n"
            "extraction:\n  max_workers: 0\n"
            "pipeline:\n  max_parallel_units: -2\n"
        )
        config = load_config(path)
        assert config.collaborator.backend == "ollama"
        assert config.collaborator.retry_attempts == 1
        assert config.extraction.max_workers == 1
        assert config.pipeline.max_parallel_units == 1

    def test_broken_yaml_falls_back_to_defaults(self, temp_dir):
        path = temp_dir / "dossier.yaml"
        path.write_text("collaborator: [unclosed\n")
        assert load_config(path).collaborator.backend == "ollama"


class TestEnvironmentOverrides:
    def test_overrides(self, temp_dir, monkeypatch):
        path = temp_dir / "dossier.yaml"
        path.write_text("collaborator:\n  backend: ollama\n")
        monkeypatch.setenv("DOSSIER_LLM_BACKEND", "openai")
        monkeypatch.setenv("DOSSIER_LLM_API_KEY", "sk-123")
        monkeypatch.setenv("DOSSIER_LOG_LEVEL", "debug")
        monkeypatch.setenv("DOSSIER_MAX_WORKERS", "8")
        monkeypatch.setenv("DOSSIER_CACHE_ENABLED", "no")
        config = load_config(path)
        assert config.collaborator.backend == "openai"
        assert config.collaborator.api_key == "sk-123"
        assert config.logging.level == "DEBUG"
        assert config.extraction.max_workers == 8
        assert config.cache.enabled is False

    def test_invalid_worker_count_ignored(self, temp_dir, monkeypatch):
        path = temp_dir / "dossier.yaml"
        path.write_text("extraction:\n  max_workers: 3\n")
        monkeypatch.setenv("DOSSIER_MAX_WORKERS", "many")
        assert load_config(path).extraction.max_workers == 3


class TestSaveConfig:
    def test_api_key_never_written(self, temp_dir):
        config = DossierConfig(project_name="shop")
        config.collaborator.api_key = "sk-secret"
        path = temp_dir / "out" / "dossier.yaml"
        save_config(config, path)
        data = yaml.safe_load(path.read_text())
        assert data["project_name"] == "shop"
        assert data["collaborator"]["api_key"] != "sk-secret"
        assert config.to_dict(include_secrets=True)["collaborator"]["api_key"] == "sk-secret"


class TestLogging:
    """Secret masking and the run logger."""

    def test_mask_secrets(self):
        assert mask_secrets("API_KEY=abc123") == "API_KEY=***"
        assert mask_secrets("Authorization: Bearer sk-live.42") == "Authorization: Bearer ***"
        assert mask_secrets("nothing to hide") == "nothing to hide"

    def test_min_level(self, temp_dir):
        run_logger = RunLogger(temp_dir, min_level=LogLevel.WARNING)
        run_logger.info("quiet")
        run_logger.error("loud")
        text = (temp_dir / "run.log").read_text()
        assert "quiet" not in text
        assert "loud" in text

    def test_run_log_is_masked(self, temp_dir):
        run_logger = RunLogger(temp_dir)
        run_logger.warning("token=abcdef")
        assert "abcdef" not in (temp_dir / "run.log").read_text()

    def test_setup_logging_file(self, temp_dir):
        log_file = temp_dir / "logs" / "dossier.log"
        setup_logging("debug", log_file)
        logging.getLogger("dossier_core.test").debug("hello file")
        root = logging.getLogger()
        for handler in list(root.handlers):
            handler.flush()
            if isinstance(handler, logging.FileHandler):
                root.removeHandler(handler)
                handler.close()
        assert "hello file" in log_file.read_text()
