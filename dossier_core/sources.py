"""
Source Provider - Walks a project directory and yields source files

Files are read as bytes; decoding is left to the extractors so that an
undecodable file becomes a FAILED insight instead of a crash. Paths are
reported relative to the project root with forward slashes, in sorted
order.
"""

import logging
import os
from pathlib import Path
from typing import Iterator, List, Optional, Set

from .config import ExtractionConfig
from .extractor_base import ExtractorRegistry, get_extractor_registry
from .insight_types import SourceFile

logger = logging.getLogger(__name__)

TEST_DIR_NAMES = {"test", "tests", "testing", "__tests__"}


def is_test_path(rel_path: str) -> bool:
    """Conventional test locations and file names across supported languages."""
    parts = rel_path.split("/")
    if any(part in TEST_DIR_NAMES for part in parts[:-1]):
        return True
    name = parts[-1]
    stem = name.rsplit(".", 1)[0]
    return (
        name.startswith("test_")
        or stem.endswith("_test")
        or stem.endswith("Test")
        or stem.endswith("Tests")
        or stem.endswith((".test", ".spec"))
    )


def iter_source_files(
    root: Path,
    config: Optional[ExtractionConfig] = None,
    registry: Optional[ExtractorRegistry] = None,
) -> Iterator[SourceFile]:
    """
    Yield (file_path, raw bytes, language tag) for every supported file.

    Args:
        root: Project root directory
        config: Extraction settings (skip lists, size limit, languages)
        registry: Extractor registry used to recognize file extensions
    """
    config = config or ExtractionConfig()
    registry = registry or get_extractor_registry()
    root = Path(root).resolve()
    excluded: Set[str] = set(config.excluded_dirs)
    languages: Set[str] = set(config.languages)

    found: List[Path] = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(
            d for d in dirnames
            if d not in excluded and (config.include_hidden or not d.startswith("."))
        )
        for filename in filenames:
            if not config.include_hidden and filename.startswith("."):
                continue
            found.append(Path(dirpath) / filename)

    for path in sorted(found):
        rel_path = path.relative_to(root).as_posix()
        tag = registry.detect_language(rel_path)
        if registry.get(tag) is None:
            continue
        if languages and tag not in languages:
            continue
        if not config.include_tests and is_test_path(rel_path):
            continue
        try:
            size = path.stat().st_size
            if size > config.max_file_size:
                logger.debug(f"Skipping {rel_path}: {size} bytes exceeds max_file_size")
                continue
            raw = path.read_bytes()
        except OSError as e:
            logger.warning(f"Cannot read {rel_path}: {e}")
            continue
        yield SourceFile(file_path=rel_path, raw_text=raw, language_tag=tag)
