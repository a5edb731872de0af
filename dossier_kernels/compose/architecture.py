"""
Kernel: Architecture Section
Stage: 2 (Composition)

Domains with their size, a Mermaid graph of inter-domain dependencies and
one subsection per domain listing its main types.
"""

import logging
import re
from typing import Any, Dict, List, Mapping, Optional

from dossier_core.knowledge_base import KnowledgeBase
from dossier_kernels.compose.base import ComposeKernel
from dossier_kernels.document import DocumentNode, markdown_table, reference_at

logger = logging.getLogger(__name__)


def mermaid_id(name: str) -> str:
    return "d_" + re.sub(r"\W", "_", name)


def mermaid_graph(domains: List[str], edges: List[Dict[str, Any]]) -> str:
    """Left-to-right graph; edge labels are dependency weights."""
    lines = ["graph LR"]
    for name in domains:
        lines.append(f'    {mermaid_id(name)}["{name}"]')
    for edge in edges:
        lines.append(f"    {mermaid_id(edge['source'])} -->|{edge['weight']}| {mermaid_id(edge['target'])}")
    return "\n".join(lines)


class ArchitectureSectionKernel(ComposeKernel):
    """
    Architecture section.

    Configuration options:
        types_per_domain: Types referenced per domain subsection (default: 10)

    Dependencies:
        knowledge_base: Extracted facts (required)
        architecture: Domain sketch (required)
    """

    name = "section_architecture"
    version = "1.0.0"
    description = "Compose the architecture section"

    requires = ["knowledge_base", "architecture"]
    provides = "section_architecture"

    section_title = "Architecture"
    ordinal = 2
    instructions = "Explain how the domains divide the work and how they depend on each other."

    def gather_facts(
        self,
        kb: KnowledgeBase,
        artifacts: Mapping[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        options = options or {}
        per_domain = int(options.get("types_per_domain", 10))
        architecture = artifacts["architecture"]
        return {
            "domains": [
                {
                    "name": d["name"],
                    "files": d["files"],
                    "type_count": len(d["types"]),
                    "function_count": len(d["functions"]),
                    "public_symbols": d["public_symbols"],
                    "types": [
                        {"name": t["name"], "kind": t["kind"], "file_path": t["file_path"], "line_number": t["line_number"]}
                        for t in d["types"][:per_domain]
                    ],
                }
                for d in architecture["domains"]
            ],
            "dependencies": [
                {"source": e["source"], "target": e["target"], "weight": e["weight"], "evidence": e["evidence"][:3]}
                for e in architecture["edges"]
            ],
        }

    def build_node(self, kb: KnowledgeBase, facts: Dict[str, Any], narrative: str) -> DocumentNode:
        domains = facts["domains"]
        table = markdown_table(
            ["Domain", "Files", "Types", "Functions", "Public symbols"],
            [[d["name"], len(d["files"]), d["type_count"], d["function_count"], d["public_symbols"]] for d in domains],
            ["left", "right", "right", "right", "right"],
        )

        children = []
        for index, domain in enumerate(domains, 1):
            files = "\n".join(f"- `{path}`" for path in domain["files"])
            children.append(DocumentNode(
                title=f"Domain: {domain['name']}",
                ordinal=index,
                body=files,
                references=tuple(
                    reference_at(kb, t["name"], t["file_path"], t["line_number"]) for t in domain["types"]
                ),
            ))

        diagram = None
        if facts["dependencies"]:
            diagram = mermaid_graph([d["name"] for d in domains], facts["dependencies"])

        return DocumentNode(
            title=self.section_title,
            ordinal=self.ordinal,
            body=self.join_body(narrative, table),
            children=tuple(children),
            diagram=diagram,
        )
