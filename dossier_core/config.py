"""
Dossier Configuration
=====================

Loads and manages configuration from dossier.yaml with environment variable
overrides.

Example dossier.yaml:

    project_name: billing-service
    collaborator:
      backend: ollama
      model: qwen2.5:7b
      timeout: 120
    extraction:
      max_workers: 8
      excluded_dirs: [target, node_modules]
    pipeline:
      max_parallel_units: 4
      units:
        workflows:
          entry_points: [main, handle_request]
          max_depth: 6
    cache:
      enabled: true
      expire_hours: 168
"""

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "dossier.yaml"
_TRUE_VALUES = ("true", "1", "yes")


# =============================================================================
# Configuration Data Classes
# =============================================================================

@dataclass
class CollaboratorConfig:
    """Text-generation collaborator configuration."""
    backend: str = "ollama"  # ollama | openai | echo
    model: str = "qwen2.5:7b"
    base_url: str = "http://localhost:11434"
    api_key: Optional[str] = None
    temperature: float = 0.1
    max_tokens: int = 4096
    timeout: int = 120
    retry_attempts: int = 3
    retry_base_delay: float = 1.0


@dataclass
class ExtractionConfig:
    """Source discovery and extraction configuration."""
    max_workers: int = 4
    max_file_size: int = 512 * 1024
    include_tests: bool = True
    include_hidden: bool = False
    excluded_dirs: List[str] = field(default_factory=lambda: [
        ".git", ".hg", ".svn", "target", "build", "dist", "node_modules",
        "__pycache__", ".venv", "venv", ".tox", ".idea", ".vscode",
    ])
    languages: List[str] = field(default_factory=list)  # empty = all registered


@dataclass
class PipelineConfig:
    """Unit scheduling configuration."""
    max_parallel_units: int = 4
    await_optional_inputs: bool = True
    disabled_units: List[str] = field(default_factory=list)
    units: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    target_language: str = "English"

    def unit_options(self, name: str) -> Dict[str, Any]:
        return dict(self.units.get(name) or {})


@dataclass
class CacheConfig:
    """Response and insight cache configuration."""
    enabled: bool = True
    cache_dir: str = ".cache"
    expire_hours: int = 168


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    log_dir: str = "logs"
    events_log: str = "events.jsonl"


@dataclass
class DossierConfig:
    """Root configuration container."""
    collaborator: CollaboratorConfig = field(default_factory=CollaboratorConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    project_name: str = ""
    output_dir: str = "docs/dossier"

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        if data["collaborator"].get("api_key") and not include_secrets:
            data["collaborator"]["api_key"] = "*** SET VIA ENVIRONMENT VARIABLE ***"
        return data


# =============================================================================
# Configuration Loader
# =============================================================================

def find_config_file(start_path: Optional[Path] = None) -> Optional[Path]:
    """
    Find dossier.yaml by searching upward from start_path.

    Search order:
    1. start_path / dossier.yaml
    2. start_path / .dossier / dossier.yaml
    3. Parent directories (recursive)
    4. ~/.config/dossier/dossier.yaml

    Args:
        start_path: Starting directory (defaults to cwd)

    Returns:
        Path to config file or None if not found
    """
    if start_path is None:
        start_path = Path.cwd()

    current = Path(start_path).resolve()
    for _ in range(10):  # Max 10 levels up
        for candidate in (current / CONFIG_FILENAME, current / ".dossier" / CONFIG_FILENAME):
            if candidate.exists():
                return candidate
        parent = current.parent
        if parent == current:
            break
        current = parent

    user_config = Path.home() / ".config" / "dossier" / CONFIG_FILENAME
    if user_config.exists():
        return user_config

    return None


def load_config(config_path: Optional[Path] = None, start_path: Optional[Path] = None) -> DossierConfig:
    """
    Load configuration from YAML file with environment variable overrides.

    Environment variables override config file values:
    - DOSSIER_LLM_BACKEND -> collaborator.backend
    - DOSSIER_LLM_MODEL -> collaborator.model
    - DOSSIER_LLM_BASE_URL -> collaborator.base_url
    - DOSSIER_LLM_API_KEY -> collaborator.api_key
    - DOSSIER_LOG_LEVEL -> logging.level
    - DOSSIER_MAX_WORKERS -> extraction.max_workers
    - DOSSIER_CACHE_ENABLED -> cache.enabled

    Args:
        config_path: Path to config file (auto-detected if None)
        start_path: Where the upward search starts (defaults to cwd)

    Returns:
        DossierConfig instance
    """
    config = DossierConfig()

    if config_path is None:
        config_path = find_config_file(start_path)

    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            config = config_from_dict(data)
        except (OSError, yaml.YAMLError, TypeError) as e:
            logger.warning(f"Failed to load config: {e}, using defaults")
    else:
        logger.info("No config file found, using defaults")

    config = _apply_env_overrides(config)
    _validate_config(config)
    return config


def _section(cls, data: Optional[Dict[str, Any]]):
    """Build a section dataclass, ignoring unknown keys."""
    data = data or {}
    known = {f.name for f in dataclasses.fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {', '.join(unknown)}")
    return cls(**{k: v for k, v in data.items() if k in known})


def config_from_dict(data: Dict[str, Any]) -> DossierConfig:
    """Parse configuration dictionary into DossierConfig."""
    config = DossierConfig(
        collaborator=_section(CollaboratorConfig, data.get("collaborator")),
        extraction=_section(ExtractionConfig, data.get("extraction")),
        pipeline=_section(PipelineConfig, data.get("pipeline")),
        cache=_section(CacheConfig, data.get("cache")),
        logging=_section(LoggingConfig, data.get("logging")),
    )
    config.project_name = data.get("project_name", config.project_name)
    config.output_dir = data.get("output_dir", config.output_dir)
    return config


def _apply_env_overrides(config: DossierConfig) -> DossierConfig:
    """Apply environment variable overrides to config."""
    if os.environ.get("DOSSIER_LLM_BACKEND"):
        config.collaborator.backend = os.environ["DOSSIER_LLM_BACKEND"]

    if os.environ.get("DOSSIER_LLM_MODEL"):
        config.collaborator.model = os.environ["DOSSIER_LLM_MODEL"]

    if os.environ.get("DOSSIER_LLM_BASE_URL"):
        config.collaborator.base_url = os.environ["DOSSIER_LLM_BASE_URL"]

    if os.environ.get("DOSSIER_LLM_API_KEY"):
        config.collaborator.api_key = os.environ["DOSSIER_LLM_API_KEY"]

    if os.environ.get("DOSSIER_LOG_LEVEL"):
        config.logging.level = os.environ["DOSSIER_LOG_LEVEL"].upper()

    if os.environ.get("DOSSIER_MAX_WORKERS"):
        try:
            config.extraction.max_workers = int(os.environ["DOSSIER_MAX_WORKERS"])
        except ValueError:
            logger.warning(f"Invalid DOSSIER_MAX_WORKERS '{os.environ['DOSSIER_MAX_WORKERS']}', ignored")

    if os.environ.get("DOSSIER_CACHE_ENABLED"):
        config.cache.enabled = os.environ["DOSSIER_CACHE_ENABLED"].lower() in _TRUE_VALUES

    return config


def _validate_config(config: DossierConfig) -> None:
    """Validate configuration and log warnings."""
    valid_backends = ("ollama", "openai", "echo")
    if config.collaborator.backend not in valid_backends:
        logger.warning(f"Unknown collaborator backend '{config.collaborator.backend}', defaulting to 'ollama'")
        config.collaborator.backend = "ollama"

    if config.extraction.max_workers < 1:
        logger.warning("extraction.max_workers must be >= 1, using 1")
        config.extraction.max_workers = 1

    if config.pipeline.max_parallel_units < 1:
        logger.warning("pipeline.max_parallel_units must be >= 1, using 1")
        config.pipeline.max_parallel_units = 1

    if config.collaborator.retry_attempts < 1:
        config.collaborator.retry_attempts = 1


def save_config(config: DossierConfig, path: Path) -> None:
    """
    Save configuration to YAML file (API keys are never written).

    Args:
        config: DossierConfig instance
        path: Output path
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
    logger.info(f"Configuration saved to: {path}")


# =============================================================================
# Global Config Instance
# =============================================================================

_global_config: Optional[DossierConfig] = None


def get_config() -> DossierConfig:
    """Get the global configuration instance (lazy-loaded)."""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def reload_config(config_path: Optional[Path] = None) -> DossierConfig:
    """Reload configuration from file."""
    global _global_config
    _global_config = load_config(config_path)
    return _global_config
