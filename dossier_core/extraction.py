"""
Extraction - Parallel, cached extraction of FileInsight records

Files are independent: they are extracted on a bounded thread pool and the
results are returned in input order, so that aggregation sees a stable
first-seen order. Cancellation is checked at the start of every file; files
not started when cancellation arrives are reported as skipped and never
reach the knowledge base.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .cache import InsightCache
from .extractor_base import ExtractorRegistry, get_extractor_registry
from .insight_types import FileInsight, SourceFile
from .resilience import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    """Insights in input order, plus files skipped by cancellation."""
    insights: List[FileInsight] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    cache_hits: int = 0
    duration_ms: int = 0

    def summary(self) -> Dict[str, Any]:
        status_counts: Dict[str, int] = {}
        for insight in self.insights:
            key = insight.parse_status.value
            status_counts[key] = status_counts.get(key, 0) + 1
        return {
            "files": len(self.insights),
            "skipped": len(self.skipped),
            "cache_hits": self.cache_hits,
            "parse_status": dict(sorted(status_counts.items())),
            "duration_ms": self.duration_ms,
        }


def extract_sources(
    sources: Iterable[SourceFile],
    max_workers: int = 4,
    cache: Optional[InsightCache] = None,
    cancel_token: Optional[CancellationToken] = None,
    registry: Optional[ExtractorRegistry] = None,
) -> ExtractionResult:
    """
    Extract every source file on a bounded pool.

    Args:
        sources: Files to extract
        max_workers: Pool size
        cache: Optional insight cache
        cancel_token: Checked before each file starts
        registry: Extractor registry (global one by default)
    """
    registry = registry or get_extractor_registry()
    sources = list(sources)
    result = ExtractionResult()
    start = time.time()

    def extract_one(source: SourceFile):
        if cancel_token is not None and cancel_token.cancelled:
            return None, False
        extractor = (
            registry.get(source.language_tag) if source.language_tag
            else registry.get_for_file(source.file_path)
        )
        if extractor is not None and cache is not None:
            cached = cache.get(source.file_path, source.raw_text, extractor.language.value, extractor.version)
            if cached is not None:
                return cached, True
        try:
            insight = registry.extract(source.file_path, source.raw_text, source.language_tag or None)
        except Exception as e:
            # One bad file never aborts the run; the crash is not cached
            tag = source.language_tag or registry.detect_language(source.file_path)
            logger.error(f"[extract] {source.file_path}: extractor crashed: {type(e).__name__}: {e}")
            return FileInsight.failed(source.file_path, tag, f"extractor crashed: {type(e).__name__}: {e}"), False
        if extractor is not None and cache is not None:
            cache.put(source.file_path, source.raw_text, extractor.language.value, extractor.version, insight)
        return insight, False

    with ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="extract") as pool:
        futures = [pool.submit(extract_one, source) for source in sources]
        for source, future in zip(sources, futures):
            insight, from_cache = future.result()
            if insight is None:
                result.skipped.append(source.file_path)
                continue
            result.insights.append(insight)
            if from_cache:
                result.cache_hits += 1

    result.duration_ms = int((time.time() - start) * 1000)
    if result.skipped:
        logger.info(f"[extract] Cancelled: {len(result.skipped)} file(s) not extracted")
    logger.info(
        f"[extract] {len(result.insights)} files extracted "
        f"({result.cache_hits} from cache) in {result.duration_ms}ms"
    )
    return result
