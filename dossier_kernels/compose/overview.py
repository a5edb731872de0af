"""
Kernel: Overview Section
Stage: 2 (Composition)

Opening section: what the project is made of (languages, size, domains)
and, when the research stages succeeded, its key modules and exposed
endpoints.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from dossier_core.knowledge_base import KnowledgeBase
from dossier_kernels.compose.base import ComposeKernel
from dossier_kernels.document import DocumentNode, markdown_table, reference_at

logger = logging.getLogger(__name__)


class OverviewSectionKernel(ComposeKernel):
    """
    Project overview section.

    Configuration options:
        project_name: Name used in the narrative (default: none)

    Dependencies:
        knowledge_base: Extracted facts (required)
        architecture: Domain sketch (optional)
        key_modules: Ranked modules (optional)
        boundaries: Endpoint inventory (optional)
    """

    name = "section_overview"
    version = "1.0.0"
    description = "Compose the project overview section"

    requires = ["knowledge_base"]
    optional = ["architecture", "key_modules", "boundaries"]
    provides = "section_overview"

    section_title = "Overview"
    ordinal = 1
    instructions = "Summarize the purpose and the main building blocks of the project in two short paragraphs."

    def gather_facts(
        self,
        kb: KnowledgeBase,
        artifacts: Mapping[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        options = options or {}
        stats = kb.stats()
        facts: Dict[str, Any] = {
            "project_name": options.get("project_name") or "",
            "statistics": {
                "files": stats["files"],
                "types": stats["types"],
                "functions": stats["functions"],
                "domains": stats["domains"],
            },
            "languages": stats["languages"],
            "domains": [
                {"name": label, "files": len(kb.domain_groups[label])}
                for label in sorted(kb.domain_groups)
            ],
            "unreadable_files": sorted(kb.failed_files()),
        }

        architecture = artifacts.get("architecture")
        if architecture:
            facts["dependencies"] = [
                {"source": e["source"], "target": e["target"], "weight": e["weight"]}
                for e in architecture["edges"]
            ]

        key_modules = artifacts.get("key_modules")
        if key_modules:
            facts["key_modules"] = [
                {
                    "domain": m["domain"],
                    "symbols": [
                        {"name": s["name"], "file_path": s["file_path"], "line_number": s["line_number"]}
                        for s in m["top_symbols"][:3]
                    ],
                }
                for m in key_modules["modules"][:3]
            ]

        boundaries = artifacts.get("boundaries")
        if boundaries:
            facts["endpoints"] = dict(boundaries["by_kind"])

        return facts

    def build_node(self, kb: KnowledgeBase, facts: Dict[str, Any], narrative: str) -> DocumentNode:
        stats = facts["statistics"]
        rows: List[List[Any]] = [
            ["Files", stats["files"]],
            ["Types", stats["types"]],
            ["Functions", stats["functions"]],
            ["Domains", stats["domains"]],
        ]
        rows += [[f"Files ({language})", count] for language, count in facts["languages"].items()]
        for kind, count in sorted(facts.get("endpoints", {}).items()):
            rows.append([f"Endpoints ({kind})", count])
        parts = [markdown_table(["Metric", "Value"], rows, ["left", "right"])]

        if facts["unreadable_files"]:
            parts.append(
                "Files that could not be analyzed: "
                + ", ".join(f"`{p}`" for p in facts["unreadable_files"])
            )

        references = []
        for module in facts.get("key_modules", []):
            for symbol in module["symbols"]:
                references.append(reference_at(kb, symbol["name"], symbol["file_path"], symbol["line_number"]))

        return DocumentNode(
            title=self.section_title,
            ordinal=self.ordinal,
            body=self.join_body(narrative, *parts),
            references=tuple(references),
        )
