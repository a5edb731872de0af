"""
Rust Extractor - Facts from Rust source via tree-sitter

Uses the tree-sitter-rust grammar (tree-sitter >= 0.22 per-language
package). tree-sitter recovers from syntax errors on its own: the facts it
can still see are reported, and a tree containing ERROR/MISSING nodes
marks the insight PARTIAL.

Mapping:
- struct_item -> struct (named and tuple fields)
- enum_item -> enum (variants with their fields)
- trait_item -> interface (its functions become methods of the trait)
- function_item -> function; inside impl blocks -> method of the impl type
"""

import logging
import textwrap
from typing import List, Optional, Tuple

import tree_sitter_rust
from tree_sitter import Language as TSLanguage
from tree_sitter import Parser as TSParser

from .extractor_base import (
    Extractor,
    first_error_line,
    is_optional_type,
    leading_comment_block,
    register_extractor,
)
from .insight_types import (
    FieldFact,
    FileInsight,
    FunctionFact,
    Language,
    ParameterFact,
    ParseStatus,
    SymbolKind,
    TypeFact,
    VariantFact,
    Visibility,
)

logger = logging.getLogger(__name__)

RUST_LANGUAGE = TSLanguage(tree_sitter_rust.language())

DOC_MARKERS = ("///", "//!")
ATTRIBUTE_PREFIXES = ("#[",)


def _text(node) -> str:
    return node.text.decode("utf-8") if node is not None else ""


def rust_visibility(node) -> Visibility:
    """`pub` -> public, `pub(crate|super|in ...)` -> restricted, none -> private."""
    for child in node.children:
        if child.type == "visibility_modifier":
            text = "".join(_text(child).split())
            return Visibility.PUBLIC if text == "pub" else Visibility.RESTRICTED
    return Visibility.PRIVATE


class RustExtractor(Extractor):
    """
    Rust extractor using tree-sitter-rust.

    Extracts:
    - Structs, enums, traits (inside nested modules too)
    - Functions, impl methods and trait method signatures
    - `///` doc comments (attribute lines in between are skipped)
    - `#[...]` attributes (kept verbatim as annotations) and `use` paths
    """

    version = "1.0.0"

    @property
    def language(self) -> Language:
        return Language.RUST

    @property
    def file_extensions(self) -> List[str]:
        return [".rs"]

    def parse(self, file_path: str, text: str) -> FileInsight:
        parser = TSParser(RUST_LANGUAGE)
        tree = parser.parse(text.encode("utf-8"))
        root = tree.root_node

        collector = _RustFactCollector(file_path, text.split("\n"))
        collector.walk(root)

        status = ParseStatus.COMPLETE
        diagnostics: Tuple[str, ...] = ()
        if root.has_error:
            status = ParseStatus.PARTIAL
            line = first_error_line(root) or 1
            diagnostics = (f"syntax error near line {line}; recovered surrounding declarations",)

        return FileInsight(
            file_path=file_path,
            language_tag=Language.RUST.value,
            types=tuple(collector.types),
            functions=tuple(collector.functions),
            parse_status=status,
            diagnostics=diagnostics,
            imports=tuple(collector.imports),
        )


class _RustFactCollector:
    """Accumulates facts while walking a tree-sitter tree."""

    def __init__(self, file_path: str, lines: List[str]):
        self.file_path = file_path
        self.lines = lines
        self.types: List[TypeFact] = []
        self.functions: List[FunctionFact] = []
        self.imports: List[str] = []

    def walk(self, node) -> None:
        for child in node.named_children:
            kind = child.type
            if kind == "struct_item":
                self._struct(child)
            elif kind == "enum_item":
                self._enum(child)
            elif kind == "trait_item":
                self._trait(child)
            elif kind == "function_item":
                self.functions.append(self._function(child, owner=None))
            elif kind == "impl_item":
                self._impl(child)
            elif kind == "mod_item":
                body = child.child_by_field_name("body")
                if body is not None:
                    self.walk(body)
            elif kind == "use_declaration":
                argument = child.child_by_field_name("argument")
                if argument is not None:
                    self.imports.append(_text(argument))
            elif kind == "ERROR":
                self.walk(child)

    # -- types -----------------------------------------------------------

    def _struct(self, node) -> None:
        body = node.child_by_field_name("body")
        fields = self._fields(body) if body is not None else []
        self._add_type(node, SymbolKind.STRUCT, fields=fields)

    def _enum(self, node) -> None:
        variants = []
        body = node.child_by_field_name("body")
        if body is not None:
            for variant in body.named_children:
                if variant.type != "enum_variant":
                    continue
                variant_body = variant.child_by_field_name("body")
                doc, _ = self._doc(variant)
                variants.append(VariantFact(
                    name=_text(variant.child_by_field_name("name")),
                    fields=tuple(self._fields(variant_body)) if variant_body is not None else (),
                    doc_comment=doc,
                ))
        self._add_type(node, SymbolKind.ENUM, variants=variants)

    def _trait(self, node) -> None:
        type_fact = self._add_type(node, SymbolKind.INTERFACE)
        body = node.child_by_field_name("body")
        if body is None:
            return
        for member in body.named_children:
            if member.type in ("function_item", "function_signature_item"):
                self.functions.append(
                    self._function(member, owner=type_fact.name, visibility=type_fact.visibility)
                )

    def _impl(self, node) -> None:
        type_node = node.child_by_field_name("type")
        owner = _text(type_node).split("<")[0].strip()
        is_trait_impl = node.child_by_field_name("trait") is not None
        body = node.child_by_field_name("body")
        if body is None:
            return
        for member in body.named_children:
            if member.type == "function_item":
                visibility = Visibility.PUBLIC if is_trait_impl else None
                self.functions.append(self._function(member, owner=owner, visibility=visibility))

    def _add_type(self, node, kind: SymbolKind, fields=(), variants=()) -> TypeFact:
        doc, start = self._doc(node)
        end = node.end_point[0]
        fact = TypeFact(
            name=_text(node.child_by_field_name("name")),
            kind=kind,
            visibility=rust_visibility(node),
            file_path=self.file_path,
            line_number=node.start_point[0] + 1,
            fields=tuple(fields),
            variants=tuple(variants),
            doc_comment=doc,
            raw_snippet=textwrap.dedent("\n".join(self.lines[start:end + 1])),
            annotations=tuple(self._attributes(node, start)),
        )
        self.types.append(fact)
        return fact

    def _fields(self, body) -> List[FieldFact]:
        fields: List[FieldFact] = []
        if body.type == "field_declaration_list":
            for decl in body.named_children:
                if decl.type != "field_declaration":
                    continue
                declared_type = _text(decl.child_by_field_name("type"))
                doc, _ = self._doc(decl)
                fields.append(FieldFact(
                    name=_text(decl.child_by_field_name("name")),
                    declared_type=declared_type,
                    visibility=rust_visibility(decl),
                    doc_comment=doc,
                    is_optional=is_optional_type(declared_type),
                ))
        elif body.type == "ordered_field_declaration_list":
            # Tuple fields: visibility modifiers precede the type they apply to
            visibility = Visibility.PRIVATE
            index = 0
            for child in body.named_children:
                if child.type == "visibility_modifier":
                    text = "".join(_text(child).split())
                    visibility = Visibility.PUBLIC if text == "pub" else Visibility.RESTRICTED
                    continue
                if child.type in ("attribute_item", "line_comment", "block_comment"):
                    continue
                declared_type = _text(child)
                fields.append(FieldFact(
                    name=str(index),
                    declared_type=declared_type,
                    visibility=visibility,
                    is_optional=is_optional_type(declared_type),
                ))
                visibility = Visibility.PRIVATE
                index += 1
        return fields

    # -- functions -------------------------------------------------------

    def _function(self, node, owner: Optional[str], visibility: Optional[Visibility] = None) -> FunctionFact:
        doc, start = self._doc(node)
        params = []
        parameters = node.child_by_field_name("parameters")
        if parameters is not None:
            for param in parameters.named_children:
                if param.type != "parameter":
                    continue
                declared_type = _text(param.child_by_field_name("type"))
                params.append(ParameterFact(
                    name=_text(param.child_by_field_name("pattern")),
                    declared_type=declared_type,
                    is_optional=is_optional_type(declared_type),
                ))

        return_node = node.child_by_field_name("return_type")
        body = node.child_by_field_name("body")
        is_async = any(
            child.type == "function_modifiers" and "async" in _text(child).split()
            for child in node.children
        )

        source = node.text
        if body is not None:
            signature = source[:body.start_byte - node.start_byte].decode("utf-8")
            inner = _text(body).strip()
            if inner.startswith("{") and inner.endswith("}"):
                inner = inner[1:-1]
            body_text = textwrap.dedent(inner).strip("\n") or None
        else:
            signature = source.decode("utf-8").rstrip(";")
            body_text = None

        return FunctionFact(
            name=_text(node.child_by_field_name("name")),
            kind=SymbolKind.METHOD if owner else SymbolKind.FUNCTION,
            visibility=visibility if visibility is not None else rust_visibility(node),
            file_path=self.file_path,
            line_number=node.start_point[0] + 1,
            owning_type=owner,
            parameters=tuple(params),
            return_type=_text(return_node) or None,
            is_asynchronous=is_async,
            doc_comment=doc,
            signature_snippet=" ".join(signature.split()),
            body_snippet=body_text,
            annotations=tuple(self._attributes(node, start)),
        )

    # -- comments and attributes -----------------------------------------

    def _doc(self, node) -> Tuple[Optional[str], int]:
        return leading_comment_block(
            self.lines, node.start_point[0], DOC_MARKERS, ATTRIBUTE_PREFIXES
        )

    def _attributes(self, node, start: int) -> List[str]:
        decl_index = node.start_point[0]
        return [
            line.strip() for line in self.lines[start:decl_index]
            if line.strip().startswith(ATTRIBUTE_PREFIXES)
        ]


# Registration

def register_rust_extractor() -> RustExtractor:
    """Create and register the Rust extractor."""
    extractor = RustExtractor()
    register_extractor(extractor)
    return extractor


# Auto-register on import
_rust_extractor = register_rust_extractor()
