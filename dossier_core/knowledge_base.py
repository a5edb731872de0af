"""
Knowledge Base - Read-only snapshot of all extracted facts

aggregate() merges FileInsight records into three indices:
- files: file path -> FileInsight, in first-seen order
- symbol_index: symbol name -> sorted locations (collisions are kept)
- domain_groups: domain label -> file paths

symbol_index and domain_groups depend only on the set of insights, never on
their arrival order. The snapshot is immutable and safe to share between
concurrently running units.
"""

import hashlib
import json
import logging
from collections import defaultdict
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from .errors import AggregationError
from .insight_types import FileInsight, FunctionFact, SymbolLocation, TypeFact

logger = logging.getLogger(__name__)

UNGROUPED = "ungrouped"

# Directory names that hold sources without saying anything about the domain
SOURCE_ROOTS = {
    "src", "lib", "app", "main", "java", "kotlin", "python", "pkg",
    "internal", "crates", "source", "sources", ".",
}


def classify_domain(file_path: str, module_path: Optional[str] = None) -> str:
    """
    Assign a file to a domain label.

    Uses the directory holding the file (source-root names such as src/ or
    lib/ carry no meaning), then the last segment of a declared module path,
    and degrades to 'ungrouped'.
    """
    parent = PurePosixPath(file_path.replace("\\", "/")).parent
    name = parent.name
    if name and name.lower() not in SOURCE_ROOTS:
        return name
    if module_path:
        return module_path.split(".")[-1]
    return UNGROUPED


class KnowledgeBase:
    """
    Immutable, queryable view over all FileInsight records of one run.

    Example:
        kb = aggregate(insights)
        kb.locate("User")          # (SymbolLocation('src/models/user.rs', 4),)
        kb.files_in_domain("models")
    """

    def __init__(
        self,
        files: Dict[str, FileInsight],
        symbol_index: Dict[str, Tuple[SymbolLocation, ...]],
        domain_groups: Dict[str, FrozenSet[str]],
    ):
        self._files = MappingProxyType(dict(files))
        self._symbol_index = MappingProxyType(dict(symbol_index))
        self._domain_groups = MappingProxyType(dict(domain_groups))
        self._domain_of = MappingProxyType({
            path: label for label, paths in self._domain_groups.items() for path in paths
        })

    @property
    def files(self) -> Mapping[str, FileInsight]:
        return self._files

    @property
    def symbol_index(self) -> Mapping[str, Tuple[SymbolLocation, ...]]:
        return self._symbol_index

    @property
    def domain_groups(self) -> Mapping[str, FrozenSet[str]]:
        return self._domain_groups

    def __len__(self) -> int:
        return len(self._files)

    def locate(self, name: str) -> Tuple[SymbolLocation, ...]:
        """All declaration sites of a symbol name (empty if unknown)."""
        return self._symbol_index.get(name, ())

    def types(self) -> Iterator[TypeFact]:
        """All type facts in deterministic (path, line) order."""
        for path in sorted(self._files):
            yield from self._files[path].types

    def functions(self) -> Iterator[FunctionFact]:
        """All function facts in deterministic (path, line) order."""
        for path in sorted(self._files):
            yield from self._files[path].functions

    def functions_named(self, name: str) -> List[FunctionFact]:
        return [f for f in self.functions() if f.name == name]

    def domain_of(self, file_path: str) -> str:
        return self._domain_of.get(file_path, UNGROUPED)

    def files_in_domain(self, label: str) -> List[str]:
        return sorted(self._domain_groups.get(label, ()))

    def failed_files(self) -> List[str]:
        return [path for path, insight in self._files.items() if insight.is_failed]

    def stats(self) -> Dict[str, Any]:
        status_counts: Dict[str, int] = defaultdict(int)
        language_counts: Dict[str, int] = defaultdict(int)
        for insight in self._files.values():
            status_counts[insight.parse_status.value] += 1
            language_counts[insight.language_tag] += 1
        return {
            "files": len(self._files),
            "types": sum(len(i.types) for i in self._files.values()),
            "functions": sum(len(i.functions) for i in self._files.values()),
            "symbols": len(self._symbol_index),
            "domains": len(self._domain_groups),
            "parse_status": dict(sorted(status_counts.items())),
            "languages": dict(sorted(language_counts.items())),
        }

    def fingerprint(self) -> str:
        """SHA256 prefix identifying the set of facts (order-independent)."""
        payload = json.dumps(
            [self._files[path].to_dict() for path in sorted(self._files)],
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files": [insight.to_dict() for insight in self._files.values()],
            "fingerprint": self.fingerprint(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KnowledgeBase":
        return aggregate(FileInsight.from_dict(f) for f in data.get("files", []))

    def save(self, path: Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        logger.info(f"[kb] Snapshot saved to {path} ({len(self)} files)")

    @classmethod
    def load(cls, path: Path) -> "KnowledgeBase":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_dict(data)

    def __repr__(self) -> str:
        return (
            f"<KnowledgeBase files={len(self._files)} symbols={len(self._symbol_index)} "
            f"domains={len(self._domain_groups)}>"
        )


def aggregate(insights: Iterable[FileInsight]) -> KnowledgeBase:
    """
    Merge FileInsight records into a KnowledgeBase.

    Raises:
        AggregationError: If two different insights claim the same file path
    """
    files: Dict[str, FileInsight] = {}
    symbols: Dict[str, set] = defaultdict(set)
    domains: Dict[str, set] = defaultdict(set)

    for insight in insights:
        existing = files.get(insight.file_path)
        if existing is not None:
            if existing == insight:
                logger.debug(f"[kb] Duplicate insight for {insight.file_path} ignored")
                continue
            raise AggregationError(
                f"conflicting insights for file '{insight.file_path}' "
                f"({existing.parse_status.value} vs {insight.parse_status.value})"
            )
        files[insight.file_path] = insight

        if insight.is_failed:
            continue
        domains[classify_domain(insight.file_path, insight.module_path)].add(insight.file_path)
        for type_fact in insight.types:
            symbols[type_fact.name].add(SymbolLocation(type_fact.file_path, type_fact.line_number))
        for function in insight.functions:
            symbols[function.name].add(SymbolLocation(function.file_path, function.line_number))

    symbol_index = {name: tuple(sorted(locs)) for name, locs in sorted(symbols.items())}
    domain_groups = {label: frozenset(paths) for label, paths in sorted(domains.items())}

    kb = KnowledgeBase(files, symbol_index, domain_groups)
    logger.info(
        f"[kb] Aggregated {len(files)} files, {len(symbol_index)} symbols, "
        f"{len(domain_groups)} domains"
    )
    return kb
