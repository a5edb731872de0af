"""
Caches — Persistent response and insight caches.

ResponseCache stores collaborator responses keyed by a hash of
(model, temperature, prompt), with an optional time-to-live.

InsightCache stores extracted FileInsight records keyed by the file path,
a hash of its bytes and the extractor language and version: changing
either the file or the extractor invalidates the entry.
"""

import hashlib
import json
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .insight_types import FileInsight
from .version import SCHEMA_VERSION

logger = logging.getLogger(__name__)


def content_hash(data: Union[str, bytes]) -> str:
    """SHA256 of file content (str is hashed as UTF-8)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


@dataclass
class CacheStats:
    """Cache statistics."""
    hits: int = 0
    misses: int = 0
    expired: int = 0
    writes: int = 0

    @property
    def total_requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        if self.total_requests == 0:
            return 0.0
        return self.hits / self.total_requests

    def to_dict(self) -> Dict[str, Any]:
        return {**asdict(self), "total_requests": self.total_requests, "hit_rate": self.hit_rate}


class ResponseCache:
    """
    Persistent cache for collaborator responses.

    Usage:
        cache = ResponseCache(Path(".dossier/cache"), expire_hours=168)
        cached = cache.get("qwen2.5:7b", prompt)
        if cached is None:
            response = call_model(prompt)
            cache.put("qwen2.5:7b", prompt, response)
    """

    def __init__(self, cache_dir: Path, expire_hours: Optional[int] = None):
        self.cache_dir = Path(cache_dir)
        self.responses_dir = self.cache_dir / "responses"
        self.responses_dir.mkdir(parents=True, exist_ok=True)
        self.expire_hours = expire_hours
        self.stats = CacheStats()
        self._lock = threading.Lock()

    @staticmethod
    def compute_key(model: str, prompt: str, temperature: float = 0.0) -> str:
        """Compute deterministic cache key."""
        model_name = model.split("/")[-1]
        key_data = f"{model_name}:{temperature:.2f}:{prompt}"
        return hashlib.sha256(key_data.encode("utf-8")).hexdigest()[:16]

    def _get_cache_path(self, key: str) -> Path:
        return self.responses_dir / key[:2] / f"{key}.json"

    def get(self, model: str, prompt: str, temperature: float = 0.0) -> Optional[str]:
        """
        Get cached response if available and not expired.

        Returns:
            Cached response string, or None if not cached
        """
        key = self.compute_key(model, prompt, temperature)
        cache_file = self._get_cache_path(key)

        if cache_file.exists():
            try:
                entry = json.loads(cache_file.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning(f"Failed to read cache entry {key}: {e}")
            else:
                if self._is_expired(entry):
                    with self._lock:
                        self.stats.expired += 1
                        self.stats.misses += 1
                    logger.debug(f"Cache entry {key} expired")
                    return None
                with self._lock:
                    self.stats.hits += 1
                logger.debug(f"Cache hit for key {key}")
                return entry["response"]

        with self._lock:
            self.stats.misses += 1
        return None

    def put(self, model: str, prompt: str, response: str, temperature: float = 0.0) -> None:
        """Store a response in cache."""
        key = self.compute_key(model, prompt, temperature)
        cache_file = self._get_cache_path(key)
        cache_file.parent.mkdir(parents=True, exist_ok=True)
        entry = {
            "cache_key": key,
            "model": model,
            "temperature": temperature,
            "prompt_hash": hashlib.sha256(prompt.encode("utf-8")).hexdigest(),
            "created_at": datetime.now(timezone.utc).isoformat(),
            "response": response,
        }
        tmp = cache_file.with_suffix(f".{threading.get_ident()}.tmp")
        tmp.write_text(json.dumps(entry, indent=2, ensure_ascii=False), encoding="utf-8")
        tmp.replace(cache_file)
        with self._lock:
            self.stats.writes += 1
        logger.debug(f"Cached response for key {key}")

    def _is_expired(self, entry: Dict[str, Any]) -> bool:
        if not self.expire_hours:
            return False
        try:
            created = datetime.fromisoformat(entry["created_at"])
        except (KeyError, ValueError):
            return True
        return datetime.now(timezone.utc) - created > timedelta(hours=self.expire_hours)

    def clear(self) -> int:
        """Remove all cached responses; returns the number removed."""
        removed = 0
        for f in self.responses_dir.rglob("*.json"):
            f.unlink()
            removed += 1
        logger.info(f"Cleared {removed} cached responses")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return self.stats.to_dict()


class InsightCache:
    """
    Persistent cache for FileInsight records.

    Usage:
        cache = InsightCache(Path(".dossier/cache"))
        insight = cache.get(path, raw_bytes, "rust", extractor.version)
        if insight is None:
            insight = extractor.extract(path, raw_bytes)
            cache.put(path, raw_bytes, "rust", extractor.version, insight)
    """

    def __init__(self, cache_dir: Path):
        self.cache_dir = Path(cache_dir)
        self.insights_dir = self.cache_dir / "insights"
        self.insights_dir.mkdir(parents=True, exist_ok=True)
        self.stats = CacheStats()
        self._lock = threading.Lock()

    @staticmethod
    def compute_key(
        file_path: str,
        raw_text: Union[str, bytes],
        language_tag: str,
        extractor_version: str,
    ) -> str:
        key_data = f"{SCHEMA_VERSION}:{file_path}:{content_hash(raw_text)}:{language_tag}:{extractor_version}"
        return hashlib.sha256(key_data.encode("utf-8")).hexdigest()[:24]

    def _get_cache_path(self, key: str) -> Path:
        return self.insights_dir / key[:2] / f"{key}.json"

    def get(
        self,
        file_path: str,
        raw_text: Union[str, bytes],
        language_tag: str,
        extractor_version: str,
    ) -> Optional[FileInsight]:
        """Get the cached insight for this file, content and extractor version."""
        key = self.compute_key(file_path, raw_text, language_tag, extractor_version)
        cache_file = self._get_cache_path(key)
        if cache_file.exists():
            try:
                data = json.loads(cache_file.read_text(encoding="utf-8"))
                insight = FileInsight.from_dict(data["insight"])
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"[InsightCache] Failed to read entry {key}: {e}")
            else:
                with self._lock:
                    self.stats.hits += 1
                logger.debug(f"[InsightCache] HIT for {file_path}")
                return insight

        with self._lock:
            self.stats.misses += 1
        return None

    def put(
        self,
        file_path: str,
        raw_text: Union[str, bytes],
        language_tag: str,
        extractor_version: str,
        insight: FileInsight,
    ) -> None:
        key = self.compute_key(file_path, raw_text, language_tag, extractor_version)
        cache_file = self._get_cache_path(key)
        cache_file.parent.mkdir(parents=True, exist_ok=True)
        entry = {
            "file_path": file_path,
            "language_tag": language_tag,
            "extractor_version": extractor_version,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "insight": insight.to_dict(),
        }
        tmp = cache_file.with_suffix(f".{threading.get_ident()}.tmp")
        tmp.write_text(json.dumps(entry, ensure_ascii=False), encoding="utf-8")
        tmp.replace(cache_file)
        with self._lock:
            self.stats.writes += 1

    def invalidate(self) -> None:
        for f in self.insights_dir.rglob("*.json"):
            f.unlink()
        logger.info("[InsightCache] Invalidated all insight entries")

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return self.stats.to_dict()
