"""
Java Extractor - Facts from Java source via the javalang library

Classes map to struct, interfaces and annotation types to interface, enums
to enum (constants become variants). Methods and constructors become
method facts owned by their enclosing type.

javalang reports node positions at the first token of a declaration, which
may be an annotation or modifier; the declaration line is refined to the
line carrying the `class Name` / `name(` tokens. When javalang rejects a
file, a header scanner recovers types and method headers (PARTIAL).
"""

import logging
import re
import textwrap
from typing import List, Optional, Sequence, Tuple

import javalang
from javalang.tree import (
    AnnotationDeclaration,
    ClassDeclaration,
    ConstructorDeclaration,
    EnumDeclaration,
    FieldDeclaration,
    InterfaceDeclaration,
    MethodDeclaration,
)

from .extractor_base import (
    Extractor,
    clean_block_doc,
    find_block_end,
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

ANNOTATION_RE = re.compile(r"@\w+(?:\.\w+)*(?:\s*\((?:[^()]|\([^()]*\))*\))?")

HEADER_TYPE_RE = re.compile(
    r"^\s*(?:@\w+(?:\([^)]*\))?\s+)*"
    r"((?:(?:public|protected|private|static|abstract|final|sealed|non-sealed|strictfp)\s+)*)"
    r"(class|interface|enum|record|@interface)\s+(\w+)"
)
HEADER_METHOD_RE = re.compile(
    r"^\s*((?:(?:public|protected|private|static|abstract|final|synchronized|native|default)\s+)*)"
    r"(?:<[^>]+>\s+)?([\w.$<>\[\], ?]+?)\s+(\w+)\s*\(([^)]*)\)?"
)
JAVA_KEYWORDS = {
    "if", "for", "while", "switch", "return", "new", "catch", "throw", "else",
    "do", "try", "synchronized", "case",
}


def java_visibility(modifiers, interface_member: bool = False) -> Visibility:
    """public -> public; protected or package-private -> restricted; private -> private."""
    modifiers = set(modifiers or ())
    if "public" in modifiers:
        return Visibility.PUBLIC
    if "private" in modifiers:
        return Visibility.PRIVATE
    if interface_member:
        return Visibility.PUBLIC
    return Visibility.RESTRICTED


def type_to_str(type_node) -> str:
    """Render a javalang type node as source-like text."""
    if type_node is None:
        return "void"
    name = getattr(type_node, "name", None) or str(type_node)
    arguments = getattr(type_node, "arguments", None)
    if arguments:
        name += "<" + ", ".join(_type_argument_to_str(a) for a in arguments) + ">"
    sub_type = getattr(type_node, "sub_type", None)
    if sub_type is not None:
        name += "." + type_to_str(sub_type)
    dimensions = getattr(type_node, "dimensions", None) or []
    return name + "[]" * len(dimensions)


def _type_argument_to_str(arg) -> str:
    inner = getattr(arg, "type", None)
    pattern = getattr(arg, "pattern_type", None)
    if inner is None:
        return "?"
    if pattern in ("extends", "super"):
        return f"? {pattern} {type_to_str(inner)}"
    return type_to_str(inner)


def _leading_start(lines: Sequence[str], decl_index: int) -> int:
    """First line of the javadoc/annotation block above a declaration."""
    i = decl_index - 1
    while i >= 0:
        stripped = lines[i].strip()
        if stripped.startswith("@"):
            i -= 1
        elif stripped.endswith("*/"):
            while i >= 0 and "/*" not in lines[i]:
                i -= 1
            i -= 1
        else:
            break
    return i + 1


def _annotations_between(lines: Sequence[str], start: int, decl_index: int) -> List[str]:
    """Annotations written between the javadoc and the declaration keyword."""
    text = []
    in_comment = False
    for line in lines[start:decl_index + 1]:
        stripped = line.strip()
        if stripped.startswith("/*"):
            in_comment = True
        if not in_comment and not stripped.startswith("//"):
            text.append(stripped)
        if in_comment and stripped.endswith("*/"):
            in_comment = False
    return ANNOTATION_RE.findall(" ".join(text))


class JavaExtractor(Extractor):
    """
    Java extractor using the javalang library.

    Extracts:
    - Classes, interfaces, enums, annotation types (nested ones included)
    - Fields with declared type, visibility, initializer and javadoc
    - Methods and constructors with parameters and return types
    - Annotations (verbatim), package declaration and imports
    """

    version = "1.0.0"

    @property
    def language(self) -> Language:
        return Language.JAVA

    @property
    def file_extensions(self) -> List[str]:
        return [".java"]

    def parse(self, file_path: str, text: str) -> FileInsight:
        lines = text.splitlines()
        try:
            tree = javalang.parse.parse(text)
        except (javalang.parser.JavaSyntaxError, javalang.tokenizer.LexerError) as e:
            return self._scan_headers(file_path, lines, e)
        except (TypeError, StopIteration, IndexError, AttributeError) as e:
            # javalang runs off the token stream on truncated input
            return self._scan_headers(file_path, lines, e)

        builder = _JavaFactBuilder(file_path, lines)
        for type_decl in tree.types or []:
            builder.visit_type(type_decl, enclosing_interface=False)

        imports = []
        for imp in tree.imports or []:
            imports.append(imp.path + (".*" if imp.wildcard else ""))

        return FileInsight(
            file_path=file_path,
            language_tag=Language.JAVA.value,
            types=tuple(builder.types),
            functions=tuple(builder.functions),
            parse_status=ParseStatus.COMPLETE,
            imports=tuple(imports),
            module_path=tree.package.name if tree.package else None,
        )

    def _scan_headers(self, file_path: str, lines: List[str], error: Exception) -> FileInsight:
        """Recover type and method headers line by line after a parse failure."""
        position = getattr(error, "at", None)
        position = getattr(position, "position", None) or getattr(error, "position", None)
        line_hint = f" near line {position[0]}" if position else ""
        message = getattr(error, "description", None) or str(error) or type(error).__name__
        diagnostic = f"javalang rejected the file{line_hint}: {message}; recovered headers only"

        types: List[TypeFact] = []
        spans: List[Tuple[str, int, int, bool]] = []
        functions: List[FunctionFact] = []
        imports: List[str] = []
        module_path = None

        for index, line in enumerate(lines):
            stripped = line.strip()
            if stripped.startswith("package ") and module_path is None:
                module_path = stripped[len("package "):].rstrip(";").strip()
            elif stripped.startswith("import "):
                imports.append(stripped[len("import "):].rstrip(";").replace("static ", "").strip())

            match = HEADER_TYPE_RE.match(line)
            if match:
                modifiers, keyword, name = match.group(1).split(), match.group(2), match.group(3)
                kind = {
                    "enum": SymbolKind.ENUM,
                    "interface": SymbolKind.INTERFACE,
                    "@interface": SymbolKind.INTERFACE,
                }.get(keyword, SymbolKind.STRUCT)
                start = _leading_start(lines, index)
                end = find_block_end(lines, index)
                doc = self._javadoc_above(lines, index)
                types.append(TypeFact(
                    name=name,
                    kind=kind,
                    visibility=java_visibility(modifiers),
                    file_path=file_path,
                    line_number=index + 1,
                    doc_comment=doc,
                    raw_snippet=textwrap.dedent("\n".join(lines[start:end + 1])),
                    annotations=tuple(_annotations_between(lines, start, index)),
                ))
                spans.append((name, index, end, kind == SymbolKind.INTERFACE))
                continue

            match = HEADER_METHOD_RE.match(line)
            header = stripped.split("{", 1)[0].rstrip()
            if not match or not ("{" in stripped or header.endswith((")", ","))):
                continue
            modifiers, return_type, name = match.group(1).split(), match.group(2).strip(), match.group(3)
            if name in JAVA_KEYWORDS or return_type.split()[-1] in JAVA_KEYWORDS:
                continue
            owner = None
            in_interface = False
            for type_name, t_start, t_end, is_interface in spans:
                if t_start < index <= t_end:
                    owner, in_interface = type_name, is_interface
            params = []
            for raw in (match.group(4) or "").split(","):
                parts = raw.strip().split()
                if len(parts) >= 2:
                    declared = " ".join(parts[:-1])
                    params.append(ParameterFact(
                        name=parts[-1], declared_type=declared,
                        is_optional=is_optional_type(declared),
                    ))
            start = _leading_start(lines, index)
            functions.append(FunctionFact(
                name=name,
                kind=SymbolKind.METHOD if owner else SymbolKind.FUNCTION,
                visibility=java_visibility(modifiers, interface_member=in_interface),
                file_path=file_path,
                line_number=index + 1,
                owning_type=owner,
                parameters=tuple(params),
                return_type=return_type,
                doc_comment=self._javadoc_above(lines, index),
                signature_snippet=header,
                annotations=tuple(_annotations_between(lines, start, index)),
            ))

        return FileInsight(
            file_path=file_path,
            language_tag=Language.JAVA.value,
            types=tuple(types),
            functions=tuple(functions),
            parse_status=ParseStatus.PARTIAL,
            diagnostics=(diagnostic,),
            imports=tuple(imports),
            module_path=module_path,
        )

    @staticmethod
    def _javadoc_above(lines: Sequence[str], decl_index: int) -> Optional[str]:
        i = decl_index - 1
        while i >= 0 and lines[i].strip().startswith("@"):
            i -= 1
        if i < 0 or not lines[i].strip().endswith("*/"):
            return None
        end = i
        while i >= 0 and "/**" not in lines[i]:
            i -= 1
        if i < 0:
            return None
        return clean_block_doc("\n".join(lines[i:end + 1]))


class _JavaFactBuilder:
    """Converts javalang declarations into facts."""

    def __init__(self, file_path: str, lines: List[str]):
        self.file_path = file_path
        self.lines = lines
        self.types: List[TypeFact] = []
        self.functions: List[FunctionFact] = []

    def visit_type(self, node, enclosing_interface: bool) -> None:
        if isinstance(node, EnumDeclaration):
            kind, keyword = SymbolKind.ENUM, "enum"
        elif isinstance(node, AnnotationDeclaration):
            kind, keyword = SymbolKind.INTERFACE, "@interface"
        elif isinstance(node, InterfaceDeclaration):
            kind, keyword = SymbolKind.INTERFACE, "interface"
        elif isinstance(node, ClassDeclaration):
            kind, keyword = SymbolKind.STRUCT, "class"
        else:
            return

        decl_index = self._declaration_index(
            node, re.compile(rf"(?:^|[\s}}]){re.escape(keyword)}\s+{re.escape(node.name)}\b")
        )
        start = _leading_start(self.lines, decl_index)
        end = find_block_end(self.lines, decl_index)
        is_interface = kind == SymbolKind.INTERFACE

        fields: List[FieldFact] = []
        variants: List[VariantFact] = []
        members = []
        if kind == SymbolKind.ENUM:
            body = node.body
            for constant in getattr(body, "constants", None) or []:
                variants.append(VariantFact(
                    name=constant.name,
                    doc_comment=clean_block_doc(getattr(constant, "documentation", None)),
                ))
            members = list(getattr(body, "declarations", None) or [])
        else:
            members = list(node.body or [])

        for member in members:
            if isinstance(member, FieldDeclaration) and kind != SymbolKind.ENUM:
                fields.extend(self._fields(member, is_interface))

        self.types.append(TypeFact(
            name=node.name,
            kind=kind,
            visibility=java_visibility(node.modifiers, interface_member=enclosing_interface),
            file_path=self.file_path,
            line_number=decl_index + 1,
            fields=tuple(fields),
            variants=tuple(variants),
            doc_comment=clean_block_doc(node.documentation),
            raw_snippet=textwrap.dedent("\n".join(self.lines[start:end + 1])),
            annotations=tuple(_annotations_between(self.lines, start, decl_index)),
        ))

        for member in members:
            if isinstance(member, (MethodDeclaration, ConstructorDeclaration)):
                self.functions.append(self._method(member, node.name, is_interface))
            elif isinstance(member, (ClassDeclaration, InterfaceDeclaration, EnumDeclaration,
                                     AnnotationDeclaration)):
                self.visit_type(member, enclosing_interface=is_interface)

    def _fields(self, node: FieldDeclaration, is_interface: bool) -> List[FieldFact]:
        declared_type = type_to_str(node.type)
        doc = clean_block_doc(node.documentation)
        result = []
        for declarator in node.declarators:
            name_re = re.compile(rf"\b{re.escape(declarator.name)}\b")
            index = self._declaration_index(node, name_re)
            default = None
            if declarator.initializer is not None:
                match = re.search(
                    rf"\b{re.escape(declarator.name)}\s*=\s*([^;]+?)\s*[;,]?\s*$",
                    self.lines[index],
                )
                if match:
                    default = match.group(1)
            result.append(FieldFact(
                name=declarator.name,
                declared_type=declared_type,
                visibility=java_visibility(node.modifiers, interface_member=is_interface),
                doc_comment=doc,
                is_optional=is_optional_type(declared_type),
                default_value=default,
            ))
        return result

    def _method(self, node, owner: str, is_interface: bool) -> FunctionFact:
        is_constructor = isinstance(node, ConstructorDeclaration)
        decl_index = self._declaration_index(node, re.compile(rf"\b{re.escape(node.name)}\s*\("))
        start = _leading_start(self.lines, decl_index)

        params = []
        for param in node.parameters or []:
            declared_type = type_to_str(param.type) + ("..." if param.varargs else "")
            params.append(ParameterFact(
                name=param.name,
                declared_type=declared_type,
                is_optional=is_optional_type(declared_type),
            ))

        signature, body = self._signature_and_body(decl_index, has_body=node.body is not None)
        return FunctionFact(
            name=node.name,
            kind=SymbolKind.METHOD,
            visibility=java_visibility(node.modifiers, interface_member=is_interface),
            file_path=self.file_path,
            line_number=decl_index + 1,
            owning_type=owner,
            parameters=tuple(params),
            return_type=None if is_constructor else type_to_str(node.return_type),
            is_asynchronous=False,
            doc_comment=clean_block_doc(node.documentation),
            signature_snippet=signature,
            body_snippet=body,
            annotations=tuple(_annotations_between(self.lines, start, decl_index)),
        )

    def _signature_and_body(self, decl_index: int, has_body: bool) -> Tuple[str, Optional[str]]:
        if not has_body:
            end = decl_index
            while end < len(self.lines) - 1 and ";" not in self.lines[end]:
                end += 1
            header = " ".join(l.strip() for l in self.lines[decl_index:end + 1])
            return header.rstrip(";").strip(), None

        end = find_block_end(self.lines, decl_index)
        text = "\n".join(self.lines[decl_index:end + 1])
        open_brace = text.find("{")
        if open_brace < 0:
            return text.strip(), None
        header = " ".join(part.strip() for part in text[:open_brace].splitlines())
        close_brace = text.rfind("}")
        inner = text[open_brace + 1:close_brace if close_brace > open_brace else len(text)]
        inner = textwrap.dedent(inner).strip("\n")
        return header.strip(), inner or None

    def _declaration_index(self, node, pattern) -> int:
        """0-based line of the declaration keyword, searching from javalang's position."""
        position = getattr(node, "position", None)
        start = (position.line - 1) if position else 0
        for index in range(max(start, 0), len(self.lines)):
            line = self.lines[index]
            if line.strip().startswith(("*", "/*", "//")):
                continue
            if pattern.search(line):
                return index
        return max(start, 0)


# Registration

def register_java_extractor() -> JavaExtractor:
    """Create and register the Java extractor."""
    extractor = JavaExtractor()
    register_extractor(extractor)
    return extractor


# Auto-register on import
_java_extractor = register_java_extractor()
