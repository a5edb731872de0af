"""
Kernel: Key Modules Research
Stage: 1 (Research)

Ranks domains by how central they are: public surface (public types and
functions) plus inbound dependency weight from the architecture sketch.
For each ranked domain, lists its most prominent public symbols: types
before functions, documented before undocumented, then by location.
"""

import logging
from typing import Any, Dict, List

from dossier_core.insight_types import Visibility
from dossier_core.knowledge_base import KnowledgeBase
from dossier_kernels.base import Kernel, KernelInput

logger = logging.getLogger(__name__)


def _top_symbols(kb: KnowledgeBase, domain: str, limit: int) -> List[Dict[str, Any]]:
    symbols = []
    for path in kb.files_in_domain(domain):
        insight = kb.files[path]
        for t in insight.types:
            if t.visibility == Visibility.PUBLIC:
                symbols.append((0, t.doc_comment is None, t.file_path, t.line_number, {
                    "name": t.name,
                    "kind": t.kind.value,
                    "file_path": t.file_path,
                    "line_number": t.line_number,
                    "doc_comment": t.doc_comment,
                }))
        for f in insight.functions:
            if f.visibility == Visibility.PUBLIC and not f.name.startswith("__"):
                symbols.append((1, f.doc_comment is None, f.file_path, f.line_number, {
                    "name": f.qualified_name,
                    "kind": f.kind.value,
                    "file_path": f.file_path,
                    "line_number": f.line_number,
                    "doc_comment": f.doc_comment,
                }))
    symbols.sort(key=lambda s: s[:4])
    return [s[4] for s in symbols[:limit]]


class KeyModulesKernel(Kernel):
    """
    Rank domains and surface their key symbols.

    Configuration options:
        top_n: Number of domains kept (default: 8)
        symbols_per_module: Symbols listed per domain (default: 5)
        inbound_weight: Score multiplier for inbound dependencies (default: 2)

    Dependencies:
        knowledge_base: Extracted facts (required)
        architecture: Domain grouping and edges (required)

    Output:
        modules: Ranked domains with score, counts and top symbols
    """

    name = "key_modules"
    version = "1.0.0"
    category = "research"
    stage = 1
    description = "Rank domains by public surface and inbound dependencies"

    requires = ["knowledge_base", "architecture"]
    provides = "key_modules"

    def compute(self, input: KernelInput) -> Dict[str, Any]:
        kb = input.knowledge_base
        architecture = input.artifacts["architecture"]
        top_n = int(input.config.get("top_n", 8))
        per_module = int(input.config.get("symbols_per_module", 5))
        inbound_weight = float(input.config.get("inbound_weight", 2))

        inbound: Dict[str, int] = {}
        outbound: Dict[str, int] = {}
        for edge in architecture.get("edges", []):
            inbound[edge["target"]] = inbound.get(edge["target"], 0) + edge["weight"]
            outbound[edge["source"]] = outbound.get(edge["source"], 0) + edge["weight"]

        modules = []
        for domain in architecture.get("domains", []):
            name = domain["name"]
            public_types = sum(1 for t in domain["types"] if t["visibility"] == Visibility.PUBLIC.value)
            public_functions = sum(1 for f in domain["functions"] if f["visibility"] == Visibility.PUBLIC.value)
            score = public_types + public_functions + inbound_weight * inbound.get(name, 0)
            modules.append({
                "domain": name,
                "score": round(score, 2),
                "files": len(domain["files"]),
                "public_types": public_types,
                "public_functions": public_functions,
                "inbound": inbound.get(name, 0),
                "outbound": outbound.get(name, 0),
            })

        modules.sort(key=lambda m: (-m["score"], m["domain"]))
        modules = modules[:top_n]
        for rank, module in enumerate(modules, 1):
            module["rank"] = rank
            module["top_symbols"] = _top_symbols(kb, module["domain"], per_module)

        logger.info(f"[key_modules] Ranked {len(modules)} module(s)")
        return {"modules": modules}

    def summarize(self, data: Dict[str, Any]) -> str:
        modules = data["modules"]
        if not modules:
            return "Key modules: none."
        names = ", ".join(m["domain"] for m in modules[:3])
        return f"Key modules: {len(modules)} ranked, led by {names}."
