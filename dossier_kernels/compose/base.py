"""
Composition Kernel Base — One document section per kernel

A composition kernel works in three steps:
1. gather_facts(): pure selection of what the section talks about, from
   the Knowledge Base and research artifacts (testable without a model)
2. narrate(): a thin adapter asking the collaborator for prose over those
   facts (skipped when needs_collaborator is False)
3. build_node(): deterministic DocumentNode with tables, diagrams and
   located symbol references, plus the narrative

The node is returned as a dict so it can be persisted like any other
kernel output; the orchestrator rebuilds the DocumentNode.
"""

import logging
from abc import abstractmethod
from typing import Any, Dict, Mapping, Optional

import yaml

from dossier_core.collaborator import CollaboratorClient, GenerationRequest
from dossier_core.errors import CollaboratorError, UnitError
from dossier_core.knowledge_base import KnowledgeBase
from dossier_kernels.base import Kernel, KernelInput
from dossier_kernels.document import DocumentNode

logger = logging.getLogger(__name__)

BASE_INSTRUCTIONS = (
    "You are a senior software engineer writing project documentation. "
    "Use only the facts provided. Do not invent files, symbols or line numbers. "
    "Write plain Markdown paragraphs without headings."
)


class ComposeKernel(Kernel):
    """
    Base class of the section kernels.

    Subclasses set section_title, ordinal, requires/optional, and implement
    gather_facts() and build_node().
    """

    category = "compose"
    stage = 2
    needs_collaborator = True

    section_title: str = ""
    ordinal: int = 0
    instructions: str = ""

    @abstractmethod
    def gather_facts(
        self,
        kb: KnowledgeBase,
        artifacts: Mapping[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Select the facts the section is about. Must not call the collaborator."""
        pass

    @abstractmethod
    def build_node(self, kb: KnowledgeBase, facts: Dict[str, Any], narrative: str) -> DocumentNode:
        pass

    def render_context(self, facts: Dict[str, Any]) -> str:
        """Facts as YAML, the input context of the collaborator request."""
        return yaml.safe_dump(facts, sort_keys=True, allow_unicode=True, default_flow_style=False)

    def build_request(self, facts: Dict[str, Any], options: Dict[str, Any]) -> GenerationRequest:
        language = options.get("target_language") or "English"
        system = f"{BASE_INSTRUCTIONS} {self.instructions} Write in {language}.".strip()
        return GenerationRequest(system_instructions=system, input_context=self.render_context(facts))

    def narrate(
        self,
        collaborator: CollaboratorClient,
        facts: Dict[str, Any],
        options: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Ask the collaborator for the section prose.

        Raises:
            UnitError: When the collaborator keeps failing after its retries
        """
        request = self.build_request(facts, options or {})
        try:
            return collaborator.generate_text(request).strip()
        except CollaboratorError as e:
            raise UnitError(self.name, f"collaborator failed: {e}") from e

    def compute(self, input: KernelInput) -> Dict[str, Any]:
        kb = input.knowledge_base
        facts = self.gather_facts(kb, input.artifacts, input.config)
        narrative = ""
        if self.needs_collaborator:
            narrative = self.narrate(input.collaborator, facts, input.config)
        node = self.build_node(kb, facts, narrative)
        return {
            "section": {"title": self.section_title, "ordinal": self.ordinal},
            "facts": facts,
            "node": node.to_dict(),
        }

    def summarize(self, data: Dict[str, Any]) -> str:
        node = DocumentNode.from_dict(data["node"])
        references = sum(len(n.references) for n in node.walk())
        return f"{self.section_title}: {len(node.children)} subsection(s), {references} reference(s)."

    @staticmethod
    def join_body(narrative: str, *parts: str) -> str:
        """Narrative first, then the non-empty generated parts."""
        return "\n\n".join(p.strip() for p in (narrative, *parts) if p and p.strip())
