"""
Kernel: Code Index Section
Stage: 2 (Composition)

Every type and function with its location, grouped by domain. Built from
the Knowledge Base only; no collaborator involved.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from dossier_core.knowledge_base import KnowledgeBase
from dossier_kernels.compose.base import ComposeKernel
from dossier_kernels.document import DocumentNode, markdown_table

logger = logging.getLogger(__name__)


class CodeIndexSectionKernel(ComposeKernel):
    """
    Code index section.

    Configuration options:
        include_private: List private symbols too (default: false)

    Dependencies:
        knowledge_base: Extracted facts (required)
    """

    name = "section_code_index"
    version = "1.0.0"
    description = "Compose the code index section"

    requires = ["knowledge_base"]
    provides = "section_code_index"
    needs_collaborator = False

    section_title = "Code Index"
    ordinal = 6

    def gather_facts(
        self,
        kb: KnowledgeBase,
        artifacts: Mapping[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        options = options or {}
        include_private = bool(options.get("include_private", False))
        domains = []
        for label in sorted(kb.domain_groups):
            entries = []
            for path in kb.files_in_domain(label):
                insight = kb.files[path]
                facts = [(t.name, t.kind.value, t.visibility.value, t.line_number) for t in insight.types]
                facts += [(f.qualified_name, f.kind.value, f.visibility.value, f.line_number) for f in insight.functions]
                for name, kind, visibility, line in sorted(facts, key=lambda x: (x[3], x[0])):
                    if visibility == "private" and not include_private:
                        continue
                    entries.append({
                        "name": name,
                        "kind": kind,
                        "visibility": visibility,
                        "file_path": path,
                        "line_number": line,
                    })
            domains.append({"domain": label, "symbols": entries})
        return {"domains": domains}

    def build_node(self, kb: KnowledgeBase, facts: Dict[str, Any], narrative: str) -> DocumentNode:
        children = []
        for index, domain in enumerate(facts["domains"], 1):
            rows = [
                [f"`{s['name']}`", s["kind"], s["visibility"], f"{s['file_path']}:{s['line_number']}"]
                for s in domain["symbols"]
            ]
            children.append(DocumentNode(
                title=domain["domain"],
                ordinal=index,
                body=markdown_table(["Symbol", "Kind", "Visibility", "Location"], rows) or "No listed symbols.",
            ))
        total = sum(len(d["symbols"]) for d in facts["domains"])
        return DocumentNode(
            title=self.section_title,
            ordinal=self.ordinal,
            body=self.join_body(narrative, f"{total} symbol(s) in {len(children)} domain(s)."),
            children=tuple(children),
        )
