"""
Kernel: Key Modules Section
Stage: 2 (Composition)
"""

import logging
from typing import Any, Dict, Mapping, Optional

from dossier_core.knowledge_base import KnowledgeBase
from dossier_kernels.compose.base import ComposeKernel
from dossier_kernels.document import DocumentNode, markdown_table, reference_at

logger = logging.getLogger(__name__)


class KeyModulesSectionKernel(ComposeKernel):
    """
    Key modules section: ranked domains and their prominent symbols.

    Dependencies:
        knowledge_base: Extracted facts (required)
        key_modules: Ranked modules (required)
    """

    name = "section_key_modules"
    version = "1.0.0"
    description = "Compose the key modules section"

    requires = ["knowledge_base", "key_modules"]
    provides = "section_key_modules"

    section_title = "Key Modules"
    ordinal = 4
    instructions = "For each key module, explain its responsibility and its most important symbols."

    def gather_facts(
        self,
        kb: KnowledgeBase,
        artifacts: Mapping[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        return {"modules": list(artifacts["key_modules"]["modules"])}

    def build_node(self, kb: KnowledgeBase, facts: Dict[str, Any], narrative: str) -> DocumentNode:
        modules = facts["modules"]
        ranking = markdown_table(
            ["Rank", "Module", "Score", "Public types", "Public functions", "Inbound", "Outbound"],
            [
                [m["rank"], m["domain"], m["score"], m["public_types"], m["public_functions"], m["inbound"], m["outbound"]]
                for m in modules
            ],
            ["right", "left", "right", "right", "right", "right", "right"],
        )

        children = []
        for module in modules:
            symbols = module["top_symbols"]
            rows = [
                [f"`{s['name']}`", s["kind"], f"{s['file_path']}:{s['line_number']}", s["doc_comment"] or ""]
                for s in symbols
            ]
            children.append(DocumentNode(
                title=f"Module: {module['domain']}",
                ordinal=module["rank"],
                body=markdown_table(["Symbol", "Kind", "Location", "Description"], rows),
                references=tuple(
                    reference_at(kb, s["name"], s["file_path"], s["line_number"]) for s in symbols
                ),
            ))

        return DocumentNode(
            title=self.section_title,
            ordinal=self.ordinal,
            body=self.join_body(narrative, ranking),
            children=tuple(children),
        )
