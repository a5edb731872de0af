"""
Python Extractor - Facts from Python source via the stdlib ast module

Maps Python declarations onto the shared fact model:
- classes deriving from Enum-like bases -> enum (members become variants)
- classes deriving from Protocol/ABC (or using ABCMeta) -> interface
- any other class -> struct, with annotated class attributes as fields
- functions and methods, with parameters, return annotations and decorators

On a syntax error the longest parseable prefix of the file is re-parsed,
so everything declared before the error is still reported (PARTIAL).
"""

import ast
import logging
import textwrap
from typing import List, Optional, Tuple

from .extractor_base import (
    Extractor,
    is_optional_type,
    join_doc_lines,
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

ENUM_BASES = {"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag"}
INTERFACE_BASES = {"Protocol", "ABC"}

# Upper bound on re-parse attempts when recovering from a syntax error
MAX_RECOVERY_ATTEMPTS = 64


def python_visibility(name: str) -> Visibility:
    """Naming convention: __x private, _x restricted, everything else public."""
    if name.startswith("__") and not name.endswith("__"):
        return Visibility.PRIVATE
    if name.startswith("_") and not name.startswith("__"):
        return Visibility.RESTRICTED
    return Visibility.PUBLIC


def _base_name(expr: ast.expr) -> str:
    if isinstance(expr, ast.Name):
        return expr.id
    if isinstance(expr, ast.Attribute):
        return expr.attr
    if isinstance(expr, ast.Subscript):
        return _base_name(expr.value)
    return ""


class PythonExtractor(Extractor):
    """
    Python extractor using the stdlib ast module.

    Extracts:
    - Classes (struct / enum / interface) with fields and variants
    - Functions and methods with parameters and return annotations
    - Decorators (kept verbatim as annotations)
    - Docstrings, or leading # comments when there is no docstring
    - Imports
    """

    version = "1.0.0"

    @property
    def language(self) -> Language:
        return Language.PYTHON

    @property
    def file_extensions(self) -> List[str]:
        return [".py", ".pyi"]

    def parse(self, file_path: str, text: str) -> FileInsight:
        lines = text.splitlines()
        status = ParseStatus.COMPLETE
        diagnostics: Tuple[str, ...] = ()

        try:
            tree = ast.parse(text, filename=file_path)
        except SyntaxError as e:
            error_line = e.lineno or 1
            tree, kept = self._recover_prefix(lines, error_line)
            status = ParseStatus.PARTIAL
            diagnostics = (
                f"syntax error at line {error_line}: {e.msg}; "
                f"recovered declarations from the first {kept} line(s)",
            )
            if tree is None:
                tree = ast.Module(body=[], type_ignores=[])

        collector = _FactCollector(file_path, text, lines)
        collector.visit_module(tree)

        return FileInsight(
            file_path=file_path,
            language_tag=Language.PYTHON.value,
            types=tuple(collector.types),
            functions=tuple(collector.functions),
            parse_status=status,
            diagnostics=diagnostics,
            imports=tuple(collector.imports),
        )

    def _recover_prefix(self, lines: List[str], error_line: int) -> Tuple[Optional[ast.Module], int]:
        """Parse the longest prefix ending before a top-level statement preceding the error."""
        attempts = 0
        cut = min(error_line - 1, len(lines))
        while cut > 0 and attempts < MAX_RECOVERY_ATTEMPTS:
            boundary = cut == error_line - 1 or (
                cut < len(lines) and lines[cut].strip() and not lines[cut][0].isspace()
            )
            if boundary:
                attempts += 1
                try:
                    return ast.parse("\n".join(lines[:cut])), cut
                except SyntaxError:
                    pass
            cut -= 1
        return None, 0


class _FactCollector:
    """Walks a module and accumulates facts."""

    def __init__(self, file_path: str, text: str, lines: List[str]):
        self.file_path = file_path
        self.text = text
        self.lines = lines
        self.types: List[TypeFact] = []
        self.functions: List[FunctionFact] = []
        self.imports: List[str] = []

    def visit_module(self, tree: ast.Module) -> None:
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                self.imports.extend(alias.name for alias in node.names)
            elif isinstance(node, ast.ImportFrom):
                self.imports.append("." * node.level + (node.module or ""))

        for stmt in tree.body:
            if isinstance(stmt, ast.ClassDef):
                self._visit_class(stmt)
            elif isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                self.functions.append(self._function_fact(stmt, owner=None))

    # -- classes ---------------------------------------------------------

    def _visit_class(self, node: ast.ClassDef) -> None:
        base_names = {_base_name(b) for b in node.bases}
        metaclass = next(
            (_base_name(k.value) for k in node.keywords if k.arg == "metaclass"), ""
        )
        if base_names & ENUM_BASES:
            kind = SymbolKind.ENUM
        elif base_names & INTERFACE_BASES or metaclass == "ABCMeta":
            kind = SymbolKind.INTERFACE
        else:
            kind = SymbolKind.STRUCT

        fields: List[FieldFact] = []
        variants: List[VariantFact] = []
        for index, stmt in enumerate(node.body):
            trailing_doc = self._attribute_docstring(node.body, index)
            if kind == SymbolKind.ENUM:
                variant = self._variant(stmt, trailing_doc)
                if variant:
                    variants.append(variant)
            elif isinstance(stmt, ast.AnnAssign) and isinstance(stmt.target, ast.Name):
                fields.append(self._field(stmt, trailing_doc))

        doc, snippet_start = self._doc_and_start(node)
        self.types.append(
            TypeFact(
                name=node.name,
                kind=kind,
                visibility=python_visibility(node.name),
                file_path=self.file_path,
                line_number=node.lineno,
                fields=tuple(fields),
                variants=tuple(variants),
                doc_comment=doc,
                raw_snippet=self._snippet(snippet_start, node.end_lineno),
                annotations=tuple(self._decorators(node)),
            )
        )

        for stmt in node.body:
            if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                self.functions.append(self._function_fact(stmt, owner=node.name))
            elif isinstance(stmt, ast.ClassDef):
                self._visit_class(stmt)

    def _field(self, stmt: ast.AnnAssign, trailing_doc: Optional[str]) -> FieldFact:
        name = stmt.target.id
        declared_type = ast.unparse(stmt.annotation)
        doc, _ = leading_comment_block(self.lines, stmt.lineno - 1, ("#",))
        return FieldFact(
            name=name,
            declared_type=declared_type,
            visibility=python_visibility(name),
            doc_comment=doc or trailing_doc,
            is_optional=is_optional_type(declared_type),
            default_value=ast.unparse(stmt.value) if stmt.value is not None else None,
        )

    def _variant(self, stmt: ast.stmt, trailing_doc: Optional[str]) -> Optional[VariantFact]:
        if isinstance(stmt, ast.Assign) and len(stmt.targets) == 1:
            target = stmt.targets[0]
        elif isinstance(stmt, ast.AnnAssign):
            target = stmt.target
        else:
            return None
        if not isinstance(target, ast.Name) or target.id.startswith("_"):
            return None
        doc, _ = leading_comment_block(self.lines, stmt.lineno - 1, ("#",))
        return VariantFact(name=target.id, doc_comment=doc or trailing_doc)

    @staticmethod
    def _attribute_docstring(body: List[ast.stmt], index: int) -> Optional[str]:
        """String literal directly following an attribute assignment."""
        if index + 1 >= len(body) or not isinstance(body[index], (ast.Assign, ast.AnnAssign)):
            return None
        nxt = body[index + 1]
        if (
            isinstance(nxt, ast.Expr)
            and isinstance(nxt.value, ast.Constant)
            and isinstance(nxt.value.value, str)
        ):
            return join_doc_lines(nxt.value.value.splitlines())
        return None

    # -- functions -------------------------------------------------------

    def _function_fact(self, node, owner: Optional[str]) -> FunctionFact:
        doc, _ = self._doc_and_start(node)
        return_type = ast.unparse(node.returns) if node.returns is not None else None
        return FunctionFact(
            name=node.name,
            kind=SymbolKind.METHOD if owner else SymbolKind.FUNCTION,
            visibility=python_visibility(node.name),
            file_path=self.file_path,
            line_number=node.lineno,
            owning_type=owner,
            parameters=tuple(self._parameters(node.args, is_method=owner is not None)),
            return_type=return_type,
            is_asynchronous=isinstance(node, ast.AsyncFunctionDef),
            doc_comment=doc,
            signature_snippet=self._signature(node),
            body_snippet=self._body(node),
            annotations=tuple(self._decorators(node)),
        )

    def _parameters(self, args: ast.arguments, is_method: bool) -> List[ParameterFact]:
        params: List[ParameterFact] = []
        positional = list(args.posonlyargs) + list(args.args)
        if is_method and positional and positional[0].arg in ("self", "cls"):
            positional = positional[1:]

        def make(arg: ast.arg, prefix: str = "") -> ParameterFact:
            declared_type = ast.unparse(arg.annotation) if arg.annotation is not None else ""
            return ParameterFact(
                name=prefix + arg.arg,
                declared_type=declared_type,
                is_optional=is_optional_type(declared_type),
            )

        params.extend(make(a) for a in positional)
        if args.vararg:
            params.append(make(args.vararg, "*"))
        params.extend(make(a) for a in args.kwonlyargs)
        if args.kwarg:
            params.append(make(args.kwarg, "**"))
        return params

    def _signature(self, node) -> str:
        first_body_line = node.body[0].lineno
        end = max(node.lineno, first_body_line - 1)
        header = " ".join(line.strip() for line in self.lines[node.lineno - 1:end])
        if first_body_line > node.lineno and header.endswith(":"):
            header = header[:-1]
        return header

    def _body(self, node) -> Optional[str]:
        body = node.body
        if body and ast.get_docstring(node) is not None:
            body = body[1:]
        segments = [ast.get_source_segment(self.text, stmt) for stmt in body]
        text = "\n".join(s for s in segments if s)
        return text or None

    # -- shared helpers --------------------------------------------------

    def _doc_and_start(self, node) -> Tuple[Optional[str], int]:
        """Docstring (or leading # comments) and the first line of the snippet."""
        first_line = node.decorator_list[0].lineno if node.decorator_list else node.lineno
        comment_doc, start = leading_comment_block(self.lines, first_line - 1, ("#",))
        docstring = ast.get_docstring(node)
        if docstring is not None:
            doc = join_doc_lines(docstring.splitlines())
        else:
            doc = comment_doc
        return doc, start + 1

    def _snippet(self, start_line: int, end_line: Optional[int]) -> str:
        end = end_line or start_line
        return textwrap.dedent("\n".join(self.lines[start_line - 1:end]))

    @staticmethod
    def _decorators(node) -> List[str]:
        return ["@" + ast.unparse(d) for d in node.decorator_list]


# Registration

def register_python_extractor() -> PythonExtractor:
    """Create and register the Python extractor."""
    extractor = PythonExtractor()
    register_extractor(extractor)
    return extractor


# Auto-register on import
_python_extractor = register_python_extractor()
