"""
Document Tree — Assembled output of the composition kernels

Each composition kernel owns one top-level DocumentNode. The assembler
merges them in ordinal order; failed sections are left out and listed in
DocumentTree.omitted with their reason, never replaced by placeholders.

Symbol references carry the Knowledge Base location verbatim, or render
as "location unknown".
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

from dossier_core.knowledge_base import KnowledgeBase

logger = logging.getLogger(__name__)

LOCATION_UNKNOWN = "location unknown"


@dataclass(frozen=True)
class SymbolReference:
    symbol: str
    file_path: Optional[str] = None
    line_number: Optional[int] = None

    @property
    def is_located(self) -> bool:
        return self.file_path is not None and self.line_number is not None

    def render(self) -> str:
        if self.is_located:
            return f"`{self.symbol}` ({self.file_path}:{self.line_number})"
        return f"`{self.symbol}` ({LOCATION_UNKNOWN})"

    def to_dict(self) -> Dict[str, Any]:
        return {"symbol": self.symbol, "file_path": self.file_path, "line_number": self.line_number}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SymbolReference":
        return cls(symbol=data["symbol"], file_path=data.get("file_path"), line_number=data.get("line_number"))


def reference_for(kb: KnowledgeBase, symbol: str, file_path: Optional[str] = None) -> SymbolReference:
    """
    Reference a symbol by its Knowledge Base location.

    With file_path, only a declaration in that file is accepted. Several
    declarations resolve to the first in (path, line) order.
    """
    locations = kb.locate(symbol)
    if file_path is not None:
        locations = tuple(loc for loc in locations if loc.file_path == file_path)
    if not locations:
        return SymbolReference(symbol)
    return SymbolReference(symbol, locations[0].file_path, locations[0].line_number)


def reference_at(
    kb: KnowledgeBase,
    symbol: str,
    file_path: Optional[str],
    line_number: Optional[int],
) -> SymbolReference:
    """
    Reference a symbol at a location reported by an upstream artifact.

    The location is kept only if the Knowledge Base knows a declaration of
    the symbol's simple name there; otherwise the reference is unlocated.
    """
    simple = symbol.rsplit(".", 1)[-1].rsplit("::", 1)[-1]
    for loc in kb.locate(simple):
        if loc.file_path == file_path and loc.line_number == line_number:
            return SymbolReference(symbol, file_path, line_number)
    return SymbolReference(symbol)


@dataclass(frozen=True)
class DocumentNode:
    """One section (or subsection) of the generated documentation."""
    title: str
    ordinal: int
    body: str = ""
    children: Tuple["DocumentNode", ...] = ()
    references: Tuple[SymbolReference, ...] = ()
    diagram: Optional[str] = None

    def walk(self) -> Iterable["DocumentNode"]:
        yield self
        for child in self.children:
            yield from child.walk()

    def structure(self) -> Dict[str, Any]:
        """Titles, ordering and cross-references without generated prose."""
        return {
            "title": self.title,
            "ordinal": self.ordinal,
            "references": [ref.to_dict() for ref in self.references],
            "children": [child.structure() for child in self.children],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "ordinal": self.ordinal,
            "body": self.body,
            "children": [child.to_dict() for child in self.children],
            "references": [ref.to_dict() for ref in self.references],
            "diagram": self.diagram,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentNode":
        return cls(
            title=data["title"],
            ordinal=int(data.get("ordinal", 0)),
            body=data.get("body", ""),
            children=tuple(cls.from_dict(c) for c in data.get("children", [])),
            references=tuple(SymbolReference.from_dict(r) for r in data.get("references", [])),
            diagram=data.get("diagram"),
        )


@dataclass(frozen=True)
class OmittedSection:
    name: str
    title: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"name": self.name, "title": self.title, "reason": self.reason}


@dataclass(frozen=True)
class DocumentTree:
    root: DocumentNode
    omitted: Tuple[OmittedSection, ...] = ()

    @property
    def sections(self) -> Tuple[DocumentNode, ...]:
        return self.root.children

    def section_titles(self) -> List[str]:
        return [node.title for node in self.sections]

    def structure(self) -> Dict[str, Any]:
        return {
            "root": self.root.structure(),
            "omitted": [o.to_dict() for o in self.omitted],
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"root": self.root.to_dict(), "omitted": [o.to_dict() for o in self.omitted]}


@dataclass
class SectionOutcome:
    """What the assembler knows about one composition kernel."""
    name: str
    title: str
    ordinal: int
    node: Optional[DocumentNode] = None
    reason: str = ""


def assemble_document_tree(
    outcomes: Iterable[SectionOutcome],
    title: str = "Project Documentation",
) -> DocumentTree:
    """
    Merge per-section subtrees in ordinal order.

    Sections without a node are recorded as omitted, in ordinal order.
    Equal ordinals fall back to the section name.
    """
    ordered = sorted(outcomes, key=lambda o: (o.ordinal, o.name))
    children = []
    omitted = []
    for outcome in ordered:
        if outcome.node is not None:
            children.append(outcome.node)
        else:
            omitted.append(OmittedSection(outcome.name, outcome.title, outcome.reason or "not generated"))
            logger.info(f"[document] Section '{outcome.title}' omitted: {outcome.reason}")
    root = DocumentNode(title=title, ordinal=0, children=tuple(children))
    return DocumentTree(root=root, omitted=tuple(omitted))


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def markdown_table(
    headers: List[str],
    rows: List[List[Any]],
    alignments: Optional[List[str]] = None,
) -> str:
    """
    Generate Markdown table.

    Args:
        headers: Column headers
        rows: List of row data
        alignments: Column alignments ("left", "right")
    """
    if not headers or not rows:
        return ""

    if not alignments:
        alignments = ["left"] * len(headers)

    widths = [len(str(h)) for h in headers]
    for row in rows:
        for i, cell in enumerate(row):
            if i < len(widths):
                widths[i] = max(widths[i], len(str(cell).replace("|", "\\|")))

    lines = ["|" + "".join(f" {str(h):<{widths[i]}} |" for i, h in enumerate(headers))]

    sep_row = "|"
    for i, align in enumerate(alignments):
        w = widths[i] if i < len(widths) else 3
        sep_row += f"{'-' * w}:|" if align == "right" else f":{'-' * w}|"
    lines.append(sep_row)

    for row in rows:
        data_row = "|"
        for i, cell in enumerate(row):
            text = str(cell).replace("|", "\\|")
            w = widths[i] if i < len(widths) else len(text)
            data_row += f" {text:<{w}} |"
        lines.append(data_row)

    return "\n".join(lines)


def _render_node(node: DocumentNode, depth: int, lines: List[str]) -> None:
    lines.append(f"{'#' * min(depth, 6)} {node.title}")
    lines.append("")
    if node.body.strip():
        lines.append(node.body.strip())
        lines.append("")
    if node.diagram:
        lines.extend(["```mermaid", node.diagram.strip(), "```", ""])
    if node.references:
        lines.append("**References**")
        lines.append("")
        for ref in node.references:
            lines.append(f"- {ref.render()}")
        lines.append("")
    for child in node.children:
        _render_node(child, depth + 1, lines)


def render_section(node: DocumentNode, depth: int = 1) -> str:
    lines: List[str] = []
    _render_node(node, depth, lines)
    return "\n".join(lines).rstrip() + "\n"


def render_markdown(tree: DocumentTree) -> str:
    """Render the whole tree as one Markdown document."""
    lines: List[str] = [f"# {tree.root.title}", ""]
    for section in tree.sections:
        _render_node(section, 2, lines)
    if tree.omitted:
        lines.append("## Sections not generated")
        lines.append("")
        for item in tree.omitted:
            lines.append(f"- {item.title}: {item.reason}")
        lines.append("")
    return "\n".join(lines).rstrip() + "\n"


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or "section"


class DocumentSink(Protocol):
    """Accepts a completed Document Tree."""

    def write(self, tree: DocumentTree) -> List[Path]:
        ...


class MarkdownDirectorySink:
    """
    One Markdown file per top-level section plus an index.

    Files are named "<ordinal>-<slug>.md" so a directory listing keeps the
    document order.
    """

    def __init__(self, output_dir: Path):
        self.output_dir = Path(output_dir)

    def section_filename(self, node: DocumentNode) -> str:
        return f"{node.ordinal:02d}-{slugify(node.title)}.md"

    def write(self, tree: DocumentTree) -> List[Path]:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []

        index_lines = [f"# {tree.root.title}", ""]
        for node in tree.sections:
            filename = self.section_filename(node)
            path = self.output_dir / filename
            path.write_text(render_section(node), encoding="utf-8")
            written.append(path)
            index_lines.append(f"{node.ordinal}. [{node.title}]({filename})")
        if tree.omitted:
            index_lines.extend(["", "## Sections not generated", ""])
            index_lines.extend(f"- {item.title}: {item.reason}" for item in tree.omitted)

        index = self.output_dir / "index.md"
        index.write_text("\n".join(index_lines) + "\n", encoding="utf-8")
        written.append(index)
        logger.info(f"[document] Wrote {len(written)} file(s) to {self.output_dir}")
        return written
