"""
Kernel: Workflows Section
Stage: 2 (Composition)

One subsection per traced entry point, rendering the call chain as an
indented list with cycle and truncation markers.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from dossier_core.knowledge_base import KnowledgeBase
from dossier_kernels.compose.base import ComposeKernel
from dossier_kernels.document import DocumentNode, reference_at

logger = logging.getLogger(__name__)

MARKER_TEXT = {
    "cycle": "cycle, not expanded",
    "max_depth": "depth limit reached",
    "truncated": "trace truncated",
}


def render_steps(steps) -> str:
    lines = []
    for step in steps:
        indent = "  " * step["depth"]
        line = f"{indent}- `{step['qualified_name']}` ({step['file_path']}:{step['line_number']})"
        if step["marker"]:
            line += f" *[{MARKER_TEXT.get(step['marker'], step['marker'])}]*"
        lines.append(line)
    return "\n".join(lines)


class WorkflowSectionKernel(ComposeKernel):
    """
    Workflows section.

    Dependencies:
        knowledge_base: Extracted facts (required)
        workflows: Call traces (required)
    """

    name = "section_workflows"
    version = "1.0.0"
    description = "Compose the workflows section"

    requires = ["knowledge_base", "workflows"]
    provides = "section_workflows"

    section_title = "Workflows"
    ordinal = 3
    instructions = "Describe what each traced workflow does, step by step, from its entry point."

    def gather_facts(
        self,
        kb: KnowledgeBase,
        artifacts: Mapping[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        workflows = artifacts["workflows"]
        return {
            "entry_source": workflows["entry_source"],
            "limits": workflows["limits"],
            "workflows": [
                {
                    "entry": w["entry"],
                    "entry_location": w["entry_location"],
                    "file_path": w["file_path"],
                    "line_number": w["line_number"],
                    "truncated": w["truncated"],
                    "has_cycle": w["has_cycle"],
                    "steps": [
                        {k: s[k] for k in ("depth", "qualified_name", "file_path", "line_number", "marker")}
                        for s in w["steps"]
                    ],
                }
                for w in workflows["workflows"]
            ],
        }

    def build_node(self, kb: KnowledgeBase, facts: Dict[str, Any], narrative: str) -> DocumentNode:
        children = []
        for index, workflow in enumerate(facts["workflows"], 1):
            references = []
            seen = set()
            for step in workflow["steps"]:
                key = (step["qualified_name"], step["file_path"], step["line_number"])
                if key in seen:
                    continue
                seen.add(key)
                references.append(reference_at(kb, step["qualified_name"], step["file_path"], step["line_number"]))
            children.append(DocumentNode(
                title=f"Workflow: {workflow['entry']}",
                ordinal=index,
                body=render_steps(workflow["steps"]),
                references=tuple(references),
            ))

        if not children:
            intro = "No entry points were found, so no workflow could be traced."
        else:
            limits = facts["limits"]
            intro = (
                f"{len(children)} workflow(s) traced from {facts['entry_source']} entry points "
                f"(depth limit {limits['max_depth']}, step limit {limits['max_steps']}). "
                "Calls are matched by name."
            )

        return DocumentNode(
            title=self.section_title,
            ordinal=self.ordinal,
            body=self.join_body(narrative, intro),
            children=tuple(children),
        )
