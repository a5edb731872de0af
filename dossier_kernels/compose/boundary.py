"""
Kernel: Boundaries Section
Stage: 2 (Composition)

Tables of HTTP endpoints and CLI commands, one subsection per kind.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from dossier_core.knowledge_base import KnowledgeBase
from dossier_kernels.compose.base import ComposeKernel
from dossier_kernels.document import DocumentNode, markdown_table, reference_at

logger = logging.getLogger(__name__)

KIND_TITLES = {"http": "HTTP endpoints", "cli": "CLI commands"}


def _parameter_text(parameters: List[Dict[str, Any]]) -> str:
    parts = []
    for p in parameters:
        text = f"{p['name']}: {p['declared_type']}" if p["declared_type"] else p["name"]
        parts.append(text + ("?" if p["is_optional"] and not text.endswith("?") else ""))
    return ", ".join(parts)


class BoundarySectionKernel(ComposeKernel):
    """
    Boundaries section.

    Dependencies:
        knowledge_base: Extracted facts (required)
        boundaries: Endpoint inventory (required)
    """

    name = "section_boundaries"
    version = "1.0.0"
    description = "Compose the boundaries section"

    requires = ["knowledge_base", "boundaries"]
    provides = "section_boundaries"

    section_title = "Boundaries"
    ordinal = 5
    instructions = "Describe how external callers reach the system through these endpoints and commands."

    def gather_facts(
        self,
        kb: KnowledgeBase,
        artifacts: Mapping[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        boundaries = artifacts["boundaries"]
        return {
            "frameworks": list(boundaries["frameworks"]),
            "endpoints": [
                {k: e[k] for k in ("kind", "method", "path", "handler", "handler_location",
                                   "file_path", "line_number", "parameters", "response_type", "framework")}
                for e in boundaries["endpoints"]
            ],
        }

    def build_node(self, kb: KnowledgeBase, facts: Dict[str, Any], narrative: str) -> DocumentNode:
        endpoints = facts["endpoints"]
        kinds = sorted({e["kind"] for e in endpoints})

        children = []
        for index, kind in enumerate(kinds, 1):
            selected = [e for e in endpoints if e["kind"] == kind]
            rows = [
                [
                    e["method"],
                    f"`{e['path']}`",
                    f"`{e['handler']}`",
                    _parameter_text(e["parameters"]),
                    e["response_type"] or "",
                    e["handler_location"],
                    e["framework"],
                ]
                for e in selected
            ]
            children.append(DocumentNode(
                title=KIND_TITLES.get(kind, kind),
                ordinal=index,
                body=markdown_table(
                    ["Method", "Path", "Handler", "Parameters", "Response", "Location", "Framework"], rows
                ),
                references=tuple(
                    reference_at(kb, e["handler"], e["file_path"], e["line_number"]) for e in selected
                ),
            ))

        intro = (
            f"{len(endpoints)} endpoint(s) recognized." if endpoints
            else "No routes or commands were recognized."
        )
        return DocumentNode(
            title=self.section_title,
            ordinal=self.ordinal,
            body=self.join_body(narrative, intro),
            children=tuple(children),
        )
