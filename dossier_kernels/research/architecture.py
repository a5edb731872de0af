"""
Kernel: Architecture Research
Stage: 1 (Research)

Groups type and function facts by domain and sketches the dependencies
between domains. A domain A depends on a domain B when a file of A:
- imports a module path naming B or one of B's modules, or
- mentions a type declared only in B in a raw snippet, a signature or a
  function body.

Each edge carries a weight (number of distinct pieces of evidence) and the
sorted evidence itself, capped for readability.
"""

import logging
import re
from collections import defaultdict
from pathlib import PurePosixPath
from typing import Any, Dict, Iterable, List, Set, Tuple

from dossier_core.insight_types import FileInsight, Visibility
from dossier_core.knowledge_base import UNGROUPED, KnowledgeBase
from dossier_kernels.base import Kernel, KernelInput

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"\b[A-Za-z_][A-Za-z0-9_]*\b")
IMPORT_SPLIT_RE = re.compile(r"[.:/\\{},\s]+")


def _file_texts(insight: FileInsight) -> Iterable[str]:
    """Source fragments of a file in which type references are searched."""
    for type_fact in insight.types:
        if type_fact.raw_snippet:
            yield type_fact.raw_snippet
    for function in insight.functions:
        if function.signature_snippet:
            yield function.signature_snippet
        if function.body_snippet:
            yield function.body_snippet


def _module_names(kb: KnowledgeBase) -> Dict[str, str]:
    """Module-like names (file stems, declared module paths) -> domain."""
    names: Dict[str, Set[str]] = defaultdict(set)
    for path, insight in kb.files.items():
        if insight.is_failed:
            continue
        domain = kb.domain_of(path)
        stem = PurePosixPath(path).stem
        if stem not in ("__init__", "mod", "lib", "main"):
            names[stem].add(domain)
        if insight.module_path:
            names[insight.module_path.split(".")[-1]].add(domain)
    # Ambiguous module names say nothing about the target domain
    return {name: next(iter(domains)) for name, domains in names.items() if len(domains) == 1}


def _unique_type_owners(kb: KnowledgeBase) -> Dict[str, str]:
    owners: Dict[str, Set[str]] = defaultdict(set)
    for type_fact in kb.types():
        owners[type_fact.name].add(kb.domain_of(type_fact.file_path))
    return {name: next(iter(domains)) for name, domains in owners.items() if len(domains) == 1}


def dependency_edges(kb: KnowledgeBase) -> Dict[Tuple[str, str], Set[str]]:
    """(source domain, target domain) -> evidence strings."""
    domains = set(kb.domain_groups)
    modules = _module_names(kb)
    type_owners = _unique_type_owners(kb)
    edges: Dict[Tuple[str, str], Set[str]] = defaultdict(set)

    for path in sorted(kb.files):
        insight = kb.files[path]
        if insight.is_failed:
            continue
        source = kb.domain_of(path)

        for imported in insight.imports:
            tokens = [t for t in IMPORT_SPLIT_RE.split(imported) if t]
            targets = {t for t in tokens if t in domains and t != UNGROUPED}
            targets |= {modules[t] for t in tokens if t in modules}
            for target in targets - {source}:
                edges[(source, target)].add(f"{path} imports {imported}")

        mentioned: Set[str] = set()
        for text in _file_texts(insight):
            mentioned.update(IDENTIFIER_RE.findall(text))
        local_types = {t.name for t in insight.types}
        for name in sorted(mentioned - local_types):
            target = type_owners.get(name)
            if target is not None and target != source:
                edges[(source, target)].add(f"{path} uses {name}")

    return edges


class ArchitectureKernel(Kernel):
    """
    Domain structure and dependency sketch.

    Configuration options:
        max_evidence: Evidence items kept per edge (default: 10)

    Dependencies:
        knowledge_base: Extracted facts (required)

    Output:
        domains: Per-domain files, types and functions with locations
        edges: Inter-domain dependencies with weight and evidence
        failed_files: Files whose extraction failed
        statistics: Knowledge Base counts
    """

    name = "architecture"
    version = "1.0.0"
    category = "research"
    stage = 1
    description = "Group facts by domain and sketch inter-domain dependencies"

    requires = ["knowledge_base"]
    provides = "architecture"

    def compute(self, input: KernelInput) -> Dict[str, Any]:
        kb = input.knowledge_base
        max_evidence = int(input.config.get("max_evidence", 10))

        domains: List[Dict[str, Any]] = []
        for label in sorted(kb.domain_groups):
            files = kb.files_in_domain(label)
            types = []
            functions = []
            for path in files:
                insight = kb.files[path]
                for t in insight.types:
                    types.append({
                        "name": t.name,
                        "kind": t.kind.value,
                        "visibility": t.visibility.value,
                        "file_path": t.file_path,
                        "line_number": t.line_number,
                    })
                for f in insight.functions:
                    functions.append({
                        "name": f.name,
                        "qualified_name": f.qualified_name,
                        "kind": f.kind.value,
                        "visibility": f.visibility.value,
                        "file_path": f.file_path,
                        "line_number": f.line_number,
                    })
            public = sum(1 for t in types if t["visibility"] == Visibility.PUBLIC.value)
            public += sum(1 for f in functions if f["visibility"] == Visibility.PUBLIC.value)
            domains.append({
                "name": label,
                "files": files,
                "types": types,
                "functions": functions,
                "public_symbols": public,
            })

        edges = []
        for (source, target), evidence in sorted(dependency_edges(kb).items()):
            ordered = sorted(evidence)
            edges.append({
                "source": source,
                "target": target,
                "weight": len(ordered),
                "evidence": ordered[:max_evidence],
            })

        logger.info(f"[architecture] {len(domains)} domains, {len(edges)} dependency edges")

        return {
            "domains": domains,
            "edges": edges,
            "failed_files": sorted(kb.failed_files()),
            "statistics": kb.stats(),
        }

    def summarize(self, data: Dict[str, Any]) -> str:
        domains = data["domains"]
        edges = data["edges"]
        largest = max(domains, key=lambda d: (len(d["files"]), d["name"]), default=None)
        summary = f"Architecture: {len(domains)} domains, {len(edges)} dependencies."
        if largest is not None:
            summary += f" Largest: {largest['name']} ({len(largest['files'])} files)."
        if data["failed_files"]:
            summary += f" {len(data['failed_files'])} file(s) could not be read."
        return summary
