"""
Test composition kernels and the Document Tree
"""

import pytest

from dossier_core.collaborator import CollaboratorClient, EchoCollaborator, TextCollaborator
from dossier_core.errors import CollaboratorError, UnitError
from dossier_core.resilience import BackoffStrategy, RetryConfig
from dossier_kernels.base import KernelInput
from dossier_kernels.compose.architecture import ArchitectureSectionKernel, mermaid_id
from dossier_kernels.compose.boundary import BoundarySectionKernel
from dossier_kernels.compose.code_index import CodeIndexSectionKernel
from dossier_kernels.compose.key_modules import KeyModulesSectionKernel
from dossier_kernels.compose.overview import OverviewSectionKernel
from dossier_kernels.compose.workflow import WorkflowSectionKernel, render_steps
from dossier_kernels.document import (
    LOCATION_UNKNOWN,
    DocumentNode,
    MarkdownDirectorySink,
    SectionOutcome,
    SymbolReference,
    assemble_document_tree,
    markdown_table,
    reference_at,
    reference_for,
    render_markdown,
    slugify,
)
from dossier_kernels.research.architecture import ArchitectureKernel
from dossier_kernels.research.boundary import BoundaryKernel
from dossier_kernels.research.key_modules import KeyModulesKernel
from dossier_kernels.research.workflow import WorkflowKernel

NO_RETRY = RetryConfig(
    max_attempts=1,
    base_delay=0,
    strategy=BackoffStrategy.CONSTANT,
    retry_exceptions=(CollaboratorError,),
)


class DownCollaborator(TextCollaborator):
    model = "down"

    def generate(self, request):
        raise CollaboratorError("service unavailable", retryable=False)


@pytest.fixture
def research(sample_kb):
    """Research artifacts of the sample project."""
    artifacts = {}
    artifacts["architecture"] = ArchitectureKernel().compute(KernelInput(knowledge_base=sample_kb))
    artifacts["boundaries"] = BoundaryKernel().compute(KernelInput(knowledge_base=sample_kb))
    artifacts["workflows"] = WorkflowKernel().compute(KernelInput(knowledge_base=sample_kb, artifacts=artifacts))
    artifacts["key_modules"] = KeyModulesKernel().compute(KernelInput(knowledge_base=sample_kb, artifacts=artifacts))
    return artifacts


@pytest.fixture
def echo_client():
    return CollaboratorClient(EchoCollaborator(), retry_config=NO_RETRY)


class TestReferences:
    """Symbol references never invent a location."""

    def test_reference_for_known_symbol(self, sample_kb):
        ref = reference_for(sample_kb, "User")
        assert ref == SymbolReference("User", "models/user.rs", 10)
        assert ref.render() == "`User` (models/user.rs:10)"

    def test_reference_for_unknown_symbol(self, sample_kb):
        ref = reference_for(sample_kb, "Ghost")
        assert not ref.is_located
        assert ref.render() == f"`Ghost` ({LOCATION_UNKNOWN})"

    def test_reference_for_wrong_file(self, sample_kb):
        assert not reference_for(sample_kb, "User", "web/UserController.java").is_located

    def test_reference_at_matching_location(self, sample_kb):
        new = sample_kb.functions_named("new")[0]
        ref = reference_at(sample_kb, "User.new", new.file_path, new.line_number)
        assert ref.is_located
        assert ref.symbol == "User.new"

    def test_reference_at_mismatched_line(self, sample_kb):
        ref = reference_at(sample_kb, "User", "models/user.rs", 11)
        assert ref == SymbolReference("User")
        assert LOCATION_UNKNOWN in ref.render()

    def test_reference_at_rust_path(self, sample_kb):
        list_users = sample_kb.functions_named("list_users")[0]
        ref = reference_at(sample_kb, "crate::list_users", list_users.file_path, list_users.line_number)
        assert ref.is_located


class TestMarkdown:
    """Table and document rendering."""

    def test_table(self):
        table = markdown_table(["Name", "Count"], [["a", 1], ["bb", 22]], ["left", "right"])
        lines = table.splitlines()
        assert lines[0] == "| Name | Count |"
        assert lines[1] == "|:----|-----:|"
        assert lines[2] == "| a    | 1     |"

    def test_table_escapes_pipes(self):
        table = markdown_table(["Value"], [["a|b"]])
        assert "a\\|b" in table

    def test_empty_table(self):
        assert markdown_table(["Value"], []) == ""
        assert markdown_table([], [["x"]]) == ""

    def test_slugify(self):
        assert slugify("Key Modules") == "key-modules"
        assert slugify("???") == "section"

    def test_render_markdown(self):
        section = DocumentNode(
            title="Architecture",
            ordinal=2,
            body="Two domains.",
            diagram="graph LR\n    d_a --> d_b",
            references=(SymbolReference("User", "models/user.rs", 10), SymbolReference("Ghost")),
            children=(DocumentNode(title="Domain: a", ordinal=1, body="- `a/x.py`"),),
        )
        tree = assemble_document_tree([
            SectionOutcome("section_architecture", "Architecture", 2, node=section),
            SectionOutcome("section_workflows", "Workflows", 3, reason="stage failed"),
        ])
        text = render_markdown(tree)
        assert text.startswith("# Project Documentation\n")
        assert "## Architecture" in text
        assert "### Domain: a" in text
        assert "```mermaid\ngraph LR\n    d_a --> d_b\n```" in text
        assert "- `User` (models/user.rs:10)" in text
        assert "- `Ghost` (location unknown)" in text
        assert "## Sections not generated\n\n- Workflows: stage failed" in text


class TestAssembly:
    """Ordering and omission of sections."""

    def test_ordinal_order_and_omissions(self):
        outcomes = [
            SectionOutcome("c", "Third", 3, node=DocumentNode("Third", 3)),
            SectionOutcome("a", "First", 1, node=DocumentNode("First", 1)),
            SectionOutcome("b", "Second", 2, reason="required input 'x' has no producer"),
        ]
        tree = assemble_document_tree(outcomes, title="Shop")
        assert tree.root.title == "Shop"
        assert tree.section_titles() == ["First", "Third"]
        assert [o.to_dict() for o in tree.omitted] == [
            {"name": "b", "title": "Second", "reason": "required input 'x' has no producer"},
        ]

    def test_equal_ordinals_break_ties_by_name(self):
        tree = assemble_document_tree([
            SectionOutcome("zeta", "Z", 1, node=DocumentNode("Z", 1)),
            SectionOutcome("alpha", "A", 1, node=DocumentNode("A", 1)),
        ])
        assert tree.section_titles() == ["A", "Z"]

    def test_structure_excludes_prose(self):
        first = DocumentNode("Overview", 1, body="first wording")
        second = DocumentNode("Overview", 1, body="other wording")
        tree_a = assemble_document_tree([SectionOutcome("o", "Overview", 1, node=first)])
        tree_b = assemble_document_tree([SectionOutcome("o", "Overview", 1, node=second)])
        assert tree_a.structure() == tree_b.structure()
        assert tree_a.to_dict() != tree_b.to_dict()

    def test_node_round_trip(self):
        node = DocumentNode(
            "Boundaries", 5, body="x",
            children=(DocumentNode("HTTP endpoints", 1, references=(SymbolReference("f", "a.py", 1),)),),
        )
        assert DocumentNode.from_dict(node.to_dict()) == node


class TestMarkdownDirectorySink:
    """One file per section plus an index."""

    def test_write(self, temp_dir):
        tree = assemble_document_tree([
            SectionOutcome("o", "Overview", 1, node=DocumentNode("Overview", 1, body="Hello.")),
            SectionOutcome("k", "Key Modules", 4, node=DocumentNode("Key Modules", 4)),
            SectionOutcome("w", "Workflows", 3, reason="stage failed"),
        ])
        written = MarkdownDirectorySink(temp_dir / "docs").write(tree)
        assert [p.name for p in written] == ["01-overview.md", "04-key-modules.md", "index.md"]
        assert (temp_dir / "docs" / "01-overview.md").read_text().startswith("# Overview\n\nHello.")
        index = (temp_dir / "docs" / "index.md").read_text()
        assert "1. [Overview](01-overview.md)" in index
        assert "- Workflows: stage failed" in index


class TestGatherFacts:
    """Fact selection is pure and deterministic."""

    def test_architecture_facts_are_deterministic(self, sample_kb, research):
        kernel = ArchitectureSectionKernel()
        first = kernel.gather_facts(sample_kb, research)
        second = kernel.gather_facts(sample_kb, dict(research))
        assert first == second
        assert first["dependencies"][0]["source"] == "api"

    def test_overview_without_research(self, sample_kb):
        facts = OverviewSectionKernel().gather_facts(sample_kb, {}, {"project_name": "shop"})
        assert facts["project_name"] == "shop"
        assert facts["statistics"]["files"] == 5
        assert "dependencies" not in facts
        assert "key_modules" not in facts

    def test_overview_with_research(self, sample_kb, research):
        facts = OverviewSectionKernel().gather_facts(sample_kb, research)
        assert facts["endpoints"] == {"http": 5}
        assert facts["key_modules"][0]["domain"] == "services"

    def test_code_index_private_symbols(self, sample_kb):
        kernel = CodeIndexSectionKernel()
        public = kernel.gather_facts(sample_kb, {})
        everything = kernel.gather_facts(sample_kb, {}, {"include_private": True})

        def names(facts, domain):
            return [s["name"] for d in facts["domains"] if d["domain"] == domain for s in d["symbols"]]

        assert names(public, "models") == ["User", "User.new"]
        assert names(everything, "models") == ["User", "User.new", "User.has_email"]
        assert names(public, "ungrouped") == []


class TestSectionKernels:
    """Section kernels end to end with the offline collaborator."""

    def test_architecture_section(self, sample_kb, research, echo_client):
        output = ArchitectureSectionKernel().run(KernelInput(
            knowledge_base=sample_kb, artifacts=research, collaborator=echo_client,
        ))
        assert output.success
        node = DocumentNode.from_dict(output.data["node"])
        assert node.title == "Architecture"
        assert node.ordinal == 2
        assert f"{mermaid_id('api')} -->|1| {mermaid_id('services')}" in node.diagram
        assert [c.title for c in node.children][:2] == ["Domain: api", "Domain: models"]
        models = node.children[1]
        assert models.references == (SymbolReference("User", "models/user.rs", 10),)

    def test_narrative_comes_from_facts(self, sample_kb, research):
        echo = EchoCollaborator()
        client = CollaboratorClient(echo, retry_config=NO_RETRY)
        output = KeyModulesSectionKernel().run(KernelInput(
            knowledge_base=sample_kb, artifacts=research, collaborator=client,
            config={"target_language": "French"},
        ))
        assert output.success
        assert len(echo.calls) == 1
        assert "Write in French." in echo.calls[0].system_instructions
        assert "services" in echo.calls[0].input_context

    def test_boundary_section(self, sample_kb, research, echo_client):
        output = BoundarySectionKernel().run(KernelInput(
            knowledge_base=sample_kb, artifacts=research, collaborator=echo_client,
        ))
        node = DocumentNode.from_dict(output.data["node"])
        assert [c.title for c in node.children] == ["HTTP endpoints"]
        assert "`/invoices/{invoice_id}`" in node.children[0].body
        assert all(ref.is_located for ref in node.children[0].references)

    def test_workflow_section(self, sample_kb, research, echo_client):
        output = WorkflowSectionKernel().run(KernelInput(
            knowledge_base=sample_kb, artifacts=research, collaborator=echo_client,
        ))
        node = DocumentNode.from_dict(output.data["node"])
        titles = [c.title for c in node.children]
        assert "Workflow: create_invoice" in titles
        assert "Calls are matched by name." in node.body

    def test_render_steps_markers(self):
        steps = [
            {"depth": 0, "qualified_name": "a", "file_path": "f.py", "line_number": 1, "marker": None},
            {"depth": 1, "qualified_name": "a", "file_path": "f.py", "line_number": 1, "marker": "cycle"},
        ]
        assert render_steps(steps) == "- `a` (f.py:1)\n  - `a` (f.py:1) *[cycle, not expanded]*"

    def test_code_index_needs_no_collaborator(self, sample_kb):
        output = CodeIndexSectionKernel().run(KernelInput(knowledge_base=sample_kb))
        assert output.success
        node = DocumentNode.from_dict(output.data["node"])
        assert node.title == "Code Index"
        assert [c.title for c in node.children] == ["api", "models", "services", "ungrouped", "web"]

    def test_missing_collaborator_fails_validation(self, sample_kb, research):
        output = OverviewSectionKernel().run(KernelInput(knowledge_base=sample_kb, artifacts=research))
        assert not output.success
        assert output.errors == ["No collaborator configured"]

    def test_collaborator_failure_is_a_unit_error(self, sample_kb, research):
        client = CollaboratorClient(DownCollaborator(), retry_config=NO_RETRY)
        kernel = OverviewSectionKernel()
        facts = kernel.gather_facts(sample_kb, research)
        with pytest.raises(UnitError, match=r"\[section_overview\] collaborator failed"):
            kernel.narrate(client, facts)

        output = kernel.run(KernelInput(knowledge_base=sample_kb, artifacts=research, collaborator=client))
        assert not output.success
        assert output.data == {}
        assert output.errors[0].startswith("UnitError: [section_overview]")
