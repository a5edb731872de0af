"""
JavaScript / TypeScript Extractor - Facts from JS and TS source via tree-sitter

Uses the tree-sitter-javascript grammar for .js/.jsx/.mjs/.cjs and the
tree-sitter-typescript grammars (typescript, tsx) for .ts/.tsx/.mts/.cts.
Like the Rust extractor, a tree with ERROR/MISSING nodes still yields the
declarations tree-sitter could see and marks the insight PARTIAL.

Mapping:
- class / abstract class -> struct (class fields become fields)
- interface -> interface (property signatures become fields)
- enum -> enum
- function declarations, and const/let/var bound arrow functions or
  function expressions -> function; class and interface members -> method

Visibility: exported module-level declarations (`export ...` or a later
`export { name }`) are public, the rest private. Class members follow their
accessibility modifier and are public without one; `#name` members are
private. Optional: `name?:` markers and nullable types (`T | null`,
`T | undefined`).
"""

import logging
import textwrap
from dataclasses import replace
from typing import List, Optional, Set, Tuple

import tree_sitter_javascript
import tree_sitter_typescript
from tree_sitter import Language as TSLanguage
from tree_sitter import Parser as TSParser

from .extractor_base import (
    Extractor,
    clean_block_doc,
    first_error_line,
    is_optional_type,
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

JAVASCRIPT_LANGUAGE = TSLanguage(tree_sitter_javascript.language())
TYPESCRIPT_LANGUAGE = TSLanguage(tree_sitter_typescript.language_typescript())
TSX_LANGUAGE = TSLanguage(tree_sitter_typescript.language_tsx())

CLASS_NODES = ("class_declaration", "abstract_class_declaration")
FUNCTION_NODES = ("function_declaration", "generator_function_declaration")
FUNCTION_VALUES = ("arrow_function", "function_expression", "function", "generator_function")
VARIABLE_NODES = ("lexical_declaration", "variable_declaration")
MEMBER_FUNCTIONS = ("method_definition", "method_signature", "abstract_method_signature")
FIELD_NODES = ("field_definition", "public_field_definition")


def _text(node) -> str:
    return node.text.decode("utf-8") if node is not None else ""


def _unquote(node) -> str:
    return _text(node).strip("'\"`")


def _annotation_type(node) -> str:
    """Declared type of a type_annotation node (': T' -> 'T')."""
    text = _text(node).strip()
    return text[1:].strip() if text.startswith(":") else text


def _has_token(node, token: str) -> bool:
    return any(child.type == token for child in node.children)


def _member_name(node):
    name = node.child_by_field_name("name")
    return name if name is not None else node.child_by_field_name("property")


def member_visibility(node) -> Visibility:
    """TS accessibility modifier, `#name` -> private, public otherwise."""
    for child in node.children:
        if child.type == "accessibility_modifier":
            modifier = _text(child)
            if modifier == "private":
                return Visibility.PRIVATE
            if modifier == "protected":
                return Visibility.RESTRICTED
            return Visibility.PUBLIC
    name = _member_name(node)
    if name is not None and name.type == "private_property_identifier":
        return Visibility.PRIVATE
    return Visibility.PUBLIC


class ScriptExtractor(Extractor):
    """
    Shared JavaScript/TypeScript extraction over a tree-sitter grammar.

    Extracts:
    - Classes, interfaces and enums (inside namespaces too)
    - Functions, arrow functions bound to names, class and interface methods
    - `/** */` doc comments and decorators (verbatim, as annotations)
    - Import sources, including `require("...")` bindings
    """

    version = "1.0.0"

    def grammar_for(self, file_path: str) -> TSLanguage:
        raise NotImplementedError

    def parse(self, file_path: str, text: str) -> FileInsight:
        source = text.encode("utf-8")
        parser = TSParser(self.grammar_for(file_path))
        root = parser.parse(source).root_node

        collector = _ScriptFactCollector(file_path, text.split("\n"), source)
        collector.walk(root)
        types, functions = collector.apply_exports()

        status = ParseStatus.COMPLETE
        diagnostics: Tuple[str, ...] = ()
        if root.has_error:
            status = ParseStatus.PARTIAL
            line = first_error_line(root) or 1
            diagnostics = (f"syntax error near line {line}; recovered surrounding declarations",)

        return FileInsight(
            file_path=file_path,
            language_tag=self.language.value,
            types=tuple(types),
            functions=tuple(functions),
            parse_status=status,
            diagnostics=diagnostics,
            imports=tuple(collector.imports),
        )


class JavaScriptExtractor(ScriptExtractor):
    """JavaScript (and JSX) extractor."""

    @property
    def language(self) -> Language:
        return Language.JAVASCRIPT

    @property
    def file_extensions(self) -> List[str]:
        return [".js", ".jsx", ".mjs", ".cjs"]

    def grammar_for(self, file_path: str) -> TSLanguage:
        return JAVASCRIPT_LANGUAGE


class TypeScriptExtractor(ScriptExtractor):
    """TypeScript extractor; .tsx files use the TSX grammar."""

    @property
    def language(self) -> Language:
        return Language.TYPESCRIPT

    @property
    def file_extensions(self) -> List[str]:
        return [".ts", ".tsx", ".mts", ".cts"]

    def grammar_for(self, file_path: str) -> TSLanguage:
        return TSX_LANGUAGE if file_path.lower().endswith(".tsx") else TYPESCRIPT_LANGUAGE


class _ScriptFactCollector:
    """Accumulates facts while walking a JS/TS tree-sitter tree."""

    def __init__(self, file_path: str, lines: List[str], source: bytes):
        self.file_path = file_path
        self.lines = lines
        self.source = source
        self.types: List[TypeFact] = []
        self.functions: List[FunctionFact] = []
        self.imports: List[str] = []
        self.exported_names: Set[str] = set()

    def walk(self, node) -> None:
        for child in node.named_children:
            self._statement(child, child, exported=False)

    def _statement(self, node, outer, exported: bool) -> None:
        kind = node.type
        visibility = Visibility.PUBLIC if exported else Visibility.PRIVATE
        if kind == "export_statement":
            self._export(node)
        elif kind in CLASS_NODES:
            self._class(node, outer, visibility)
        elif kind == "interface_declaration":
            self._interface(node, outer, visibility)
        elif kind == "enum_declaration":
            self._enum(node, outer, visibility)
        elif kind in FUNCTION_NODES:
            self.functions.append(self._function(node, outer, node, owner=None, visibility=visibility))
        elif kind in VARIABLE_NODES:
            self._variables(node, outer, visibility)
        elif kind == "import_statement":
            source = node.child_by_field_name("source")
            if source is not None:
                self.imports.append(_unquote(source))
        elif kind in ("internal_module", "module"):
            body = node.child_by_field_name("body")
            if body is not None:
                self.walk(body)
        elif kind == "expression_statement" and node.named_children:
            if node.named_children[0].type == "internal_module":
                self._statement(node.named_children[0], outer, exported)
        elif kind == "ERROR":
            self.walk(node)

    def _export(self, node) -> None:
        declaration = node.child_by_field_name("declaration")
        if declaration is not None:
            self._statement(declaration, node, exported=True)
        source = node.child_by_field_name("source")
        if source is not None:
            self.imports.append(_unquote(source))
            return
        value = node.child_by_field_name("value")
        if value is not None and value.type == "identifier":
            self.exported_names.add(_text(value))
        for child in node.named_children:
            if child.type == "export_clause":
                for specifier in child.named_children:
                    name = specifier.child_by_field_name("name")
                    if name is not None:
                        self.exported_names.add(_text(name))

    def apply_exports(self) -> Tuple[List[TypeFact], List[FunctionFact]]:
        """Module-level facts named in `export { ... }` clauses become public."""
        if not self.exported_names:
            return self.types, self.functions
        types = [
            replace(t, visibility=Visibility.PUBLIC) if t.name in self.exported_names else t
            for t in self.types
        ]
        functions = [
            replace(f, visibility=Visibility.PUBLIC)
            if f.owning_type is None and f.name in self.exported_names else f
            for f in self.functions
        ]
        return types, functions

    # -- types -----------------------------------------------------------

    def _class(self, node, outer, visibility: Visibility, name: Optional[str] = None) -> None:
        owner = name or _text(node.child_by_field_name("name"))
        fields: List[FieldFact] = []
        body = node.child_by_field_name("body")
        members = body.named_children if body is not None else []
        for member in members:
            if member.type in FIELD_NODES:
                fields.append(self._field(member))
            elif member.type in MEMBER_FUNCTIONS:
                self.functions.append(self._function(
                    member, member, member, owner=owner, visibility=member_visibility(member),
                ))
        self._add_type(node, outer, owner, SymbolKind.STRUCT, visibility, fields=fields)

    def _interface(self, node, outer, visibility: Visibility) -> None:
        owner = _text(node.child_by_field_name("name"))
        fields: List[FieldFact] = []
        body = node.child_by_field_name("body")
        members = body.named_children if body is not None else []
        for member in members:
            if member.type == "property_signature":
                fields.append(self._field(member))
            elif member.type == "method_signature":
                self.functions.append(self._function(
                    member, member, member, owner=owner, visibility=Visibility.PUBLIC,
                ))
        self._add_type(node, outer, owner, SymbolKind.INTERFACE, visibility, fields=fields)

    def _enum(self, node, outer, visibility: Visibility) -> None:
        variants = []
        body = node.child_by_field_name("body")
        members = body.named_children if body is not None else []
        for member in members:
            if member.type == "enum_assignment":
                name = _unquote(member.child_by_field_name("name"))
            elif member.type in ("property_identifier", "string"):
                name = _unquote(member)
            else:
                continue
            doc, _ = self._doc(member)
            variants.append(VariantFact(name=name, doc_comment=doc))
        self._add_type(
            node, outer, _text(node.child_by_field_name("name")), SymbolKind.ENUM, visibility,
            variants=variants,
        )

    def _add_type(self, node, outer, name: str, kind: SymbolKind, visibility: Visibility,
                  fields=(), variants=()) -> None:
        doc, start = self._doc(outer)
        name_node = node.child_by_field_name("name")
        if name_node is None:
            name_node = node
        self.types.append(TypeFact(
            name=name,
            kind=kind,
            visibility=visibility,
            file_path=self.file_path,
            line_number=name_node.start_point[0] + 1,
            fields=tuple(fields),
            variants=tuple(variants),
            doc_comment=doc,
            raw_snippet=textwrap.dedent("\n".join(self.lines[start:node.end_point[0] + 1])),
            annotations=tuple(self._decorators(node, outer)),
        ))

    def _field(self, node) -> FieldFact:
        name = _member_name(node)
        declared_type = _annotation_type(node.child_by_field_name("type"))
        value = node.child_by_field_name("value")
        doc, _ = self._doc(node)
        return FieldFact(
            name=_text(name),
            declared_type=declared_type,
            visibility=member_visibility(node),
            doc_comment=doc,
            is_optional=_has_token(node, "?") or is_optional_type(declared_type),
            default_value=_text(value) or None,
        )

    # -- functions -------------------------------------------------------

    def _variables(self, node, outer, visibility: Visibility) -> None:
        for declarator in node.named_children:
            if declarator.type != "variable_declarator":
                continue
            value = declarator.child_by_field_name("value")
            if value is None:
                continue
            name = _text(declarator.child_by_field_name("name"))
            if value.type in FUNCTION_VALUES:
                self.functions.append(self._function(value, outer, node, owner=None,
                                                     visibility=visibility, name=name))
            elif value.type == "class":
                self._class(value, outer, visibility, name=name)
            elif value.type == "call_expression":
                self._require(value)

    def _require(self, call) -> None:
        callee = call.child_by_field_name("function")
        arguments = call.child_by_field_name("arguments")
        if _text(callee) != "require" or arguments is None:
            return
        strings = [a for a in arguments.named_children if a.type == "string"]
        if strings:
            self.imports.append(_unquote(strings[0]))

    def _function(self, node, outer, declaration, owner: Optional[str], visibility: Visibility,
                  name: Optional[str] = None) -> FunctionFact:
        """
        Args:
            node: The function-like node (declaration, method or arrow function)
            outer: Outermost node of the statement (doc comments sit above it)
            declaration: Node whose text starts the signature
        """
        doc, _ = self._doc(outer)
        name_node = node.child_by_field_name("name")
        params = self._parameters(node)
        return_node = node.child_by_field_name("return_type")
        body = node.child_by_field_name("body")

        if body is not None:
            signature = self.source[declaration.start_byte:body.start_byte].decode("utf-8")
            signature = signature.rstrip()
            if signature.endswith("=>"):
                signature = signature[:-2]
            inner = _text(body).strip()
            if body.type == "statement_block" and inner.startswith("{") and inner.endswith("}"):
                inner = inner[1:-1]
            body_text = textwrap.dedent(inner).strip("\n") or None
        else:
            signature = _text(declaration).rstrip(";,")
            body_text = None

        line_node = name_node if name_node is not None and name is None else declaration
        return FunctionFact(
            name=name or _text(name_node),
            kind=SymbolKind.METHOD if owner else SymbolKind.FUNCTION,
            visibility=visibility,
            file_path=self.file_path,
            line_number=line_node.start_point[0] + 1,
            owning_type=owner,
            parameters=tuple(params),
            return_type=_annotation_type(return_node) or None,
            is_asynchronous=_has_token(node, "async"),
            doc_comment=doc,
            signature_snippet=" ".join(signature.split()),
            body_snippet=body_text,
            annotations=tuple(self._decorators(node, outer)),
        )

    def _parameters(self, node) -> List[ParameterFact]:
        single = node.child_by_field_name("parameter")
        if single is not None:
            return [ParameterFact(name=_text(single))]
        parameters = node.child_by_field_name("parameters")
        if parameters is None:
            return []

        params = []
        for param in parameters.named_children:
            if param.type in ("required_parameter", "optional_parameter"):
                declared_type = _annotation_type(param.child_by_field_name("type"))
                params.append(ParameterFact(
                    name=_text(param.child_by_field_name("pattern")),
                    declared_type=declared_type,
                    is_optional=param.type == "optional_parameter" or is_optional_type(declared_type),
                ))
            elif param.type == "assignment_pattern":
                params.append(ParameterFact(name=_text(param.child_by_field_name("left"))))
            elif param.type in ("identifier", "rest_pattern", "object_pattern", "array_pattern"):
                params.append(ParameterFact(name=_text(param)))
        return params

    # -- comments and decorators -----------------------------------------

    def _doc(self, node) -> Tuple[Optional[str], int]:
        """Nearest `/** */` comment ending right above node, and the snippet start line."""
        first = node
        sibling = node.prev_named_sibling
        while sibling is not None and sibling.type == "decorator":
            first = sibling
            sibling = sibling.prev_named_sibling
        start = first.start_point[0]
        if sibling is None or sibling.type != "comment":
            return None, start
        text = _text(sibling)
        if not text.startswith("/**") or sibling.end_point[0] < start - 1:
            return None, start
        return clean_block_doc(text), sibling.start_point[0]

    def _decorators(self, node, outer) -> List[str]:
        found = []
        preceding = []
        sibling = outer.prev_named_sibling
        while sibling is not None and sibling.type == "decorator":
            preceding.append(_text(sibling))
            sibling = sibling.prev_named_sibling
        found.extend(reversed(preceding))
        holders = [outer] if outer is node else [outer, node]
        for holder in holders:
            found.extend(_text(c) for c in holder.children if c.type == "decorator")
        return found


# Registration

def register_script_extractors() -> Tuple[JavaScriptExtractor, TypeScriptExtractor]:
    """Create and register the JavaScript and TypeScript extractors."""
    extractors = (JavaScriptExtractor(), TypeScriptExtractor())
    for extractor in extractors:
        register_extractor(extractor)
    return extractors


# Auto-register on import
_script_extractors = register_script_extractors()
