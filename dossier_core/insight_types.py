"""
Insight Types - Language-neutral facts extracted from source files

Every fact is immutable once built. Collections are tuples so that a
FileInsight can be shared between threads and stages without copying.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class Language(str, Enum):
    """Supported programming languages."""
    PYTHON = "python"
    JAVA = "java"
    RUST = "rust"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    UNKNOWN = "unknown"


class SymbolKind(str, Enum):
    """Kinds of declarations the extractors recognize."""
    STRUCT = "struct"
    ENUM = "enum"
    INTERFACE = "interface"
    FUNCTION = "function"
    METHOD = "method"


class Visibility(str, Enum):
    """Reduced visibility model shared by all languages."""
    PUBLIC = "public"
    RESTRICTED = "restricted"
    PRIVATE = "private"

    @classmethod
    def coerce(cls, value: Any) -> "Visibility":
        """Map any value to a Visibility; unknown values become PRIVATE."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.PRIVATE


class ParseStatus(str, Enum):
    """Outcome of parsing one file."""
    COMPLETE = "complete"
    PARTIAL = "partial"
    FAILED = "failed"


TYPE_KINDS = (SymbolKind.STRUCT, SymbolKind.ENUM, SymbolKind.INTERFACE)
FUNCTION_KINDS = (SymbolKind.FUNCTION, SymbolKind.METHOD)


@dataclass(frozen=True)
class FieldFact:
    """A field of a struct/interface or of an enum variant."""
    name: str
    declared_type: str
    visibility: Visibility = Visibility.PRIVATE
    doc_comment: Optional[str] = None
    is_optional: bool = False
    default_value: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "declared_type": self.declared_type,
            "visibility": self.visibility.value,
            "doc_comment": self.doc_comment,
            "is_optional": self.is_optional,
            "default_value": self.default_value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldFact":
        return cls(
            name=data["name"],
            declared_type=data.get("declared_type", ""),
            visibility=Visibility.coerce(data.get("visibility")),
            doc_comment=data.get("doc_comment"),
            is_optional=bool(data.get("is_optional", False)),
            default_value=data.get("default_value"),
        )


@dataclass(frozen=True)
class VariantFact:
    """An enum variant, possibly carrying fields."""
    name: str
    fields: Tuple[FieldFact, ...] = ()
    doc_comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "fields": [f.to_dict() for f in self.fields],
            "doc_comment": self.doc_comment,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VariantFact":
        return cls(
            name=data["name"],
            fields=tuple(FieldFact.from_dict(f) for f in data.get("fields", [])),
            doc_comment=data.get("doc_comment"),
        )


@dataclass(frozen=True)
class ParameterFact:
    """A function parameter."""
    name: str
    declared_type: str = ""
    is_optional: bool = False
    doc_comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "declared_type": self.declared_type,
            "is_optional": self.is_optional,
            "doc_comment": self.doc_comment,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParameterFact":
        return cls(
            name=data["name"],
            declared_type=data.get("declared_type", ""),
            is_optional=bool(data.get("is_optional", False)),
            doc_comment=data.get("doc_comment"),
        )


@dataclass(frozen=True)
class TypeFact:
    """
    A struct, enum or interface declaration.

    Only structs and interfaces carry fields; only enums carry variants.
    line_number is the line of the declaration keyword, not of its doc
    comment or annotations.
    """
    name: str
    kind: SymbolKind
    visibility: Visibility
    file_path: str
    line_number: int
    fields: Tuple[FieldFact, ...] = ()
    variants: Tuple[VariantFact, ...] = ()
    doc_comment: Optional[str] = None
    raw_snippet: Optional[str] = None
    annotations: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.kind not in TYPE_KINDS:
            raise ValueError(f"TypeFact {self.name}: invalid kind {self.kind!r}")
        if self.fields and self.kind == SymbolKind.ENUM:
            raise ValueError(f"TypeFact {self.name}: enums carry variants, not fields")
        if self.variants and self.kind != SymbolKind.ENUM:
            raise ValueError(f"TypeFact {self.name}: only enums carry variants")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "visibility": self.visibility.value,
            "file_path": self.file_path,
            "line_number": self.line_number,
            "fields": [f.to_dict() for f in self.fields],
            "variants": [v.to_dict() for v in self.variants],
            "doc_comment": self.doc_comment,
            "raw_snippet": self.raw_snippet,
            "annotations": list(self.annotations),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TypeFact":
        return cls(
            name=data["name"],
            kind=SymbolKind(data["kind"]),
            visibility=Visibility.coerce(data.get("visibility")),
            file_path=data["file_path"],
            line_number=int(data["line_number"]),
            fields=tuple(FieldFact.from_dict(f) for f in data.get("fields", [])),
            variants=tuple(VariantFact.from_dict(v) for v in data.get("variants", [])),
            doc_comment=data.get("doc_comment"),
            raw_snippet=data.get("raw_snippet"),
            annotations=tuple(data.get("annotations", [])),
        )


@dataclass(frozen=True)
class FunctionFact:
    """A free function or a method (owning_type set for methods)."""
    name: str
    kind: SymbolKind
    visibility: Visibility
    file_path: str
    line_number: int
    owning_type: Optional[str] = None
    parameters: Tuple[ParameterFact, ...] = ()
    return_type: Optional[str] = None
    is_asynchronous: bool = False
    doc_comment: Optional[str] = None
    signature_snippet: Optional[str] = None
    body_snippet: Optional[str] = None
    annotations: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.kind not in FUNCTION_KINDS:
            raise ValueError(f"FunctionFact {self.name}: invalid kind {self.kind!r}")

    @property
    def qualified_name(self) -> str:
        if self.owning_type:
            return f"{self.owning_type}.{self.name}"
        return self.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "visibility": self.visibility.value,
            "file_path": self.file_path,
            "line_number": self.line_number,
            "owning_type": self.owning_type,
            "parameters": [p.to_dict() for p in self.parameters],
            "return_type": self.return_type,
            "is_asynchronous": self.is_asynchronous,
            "doc_comment": self.doc_comment,
            "signature_snippet": self.signature_snippet,
            "body_snippet": self.body_snippet,
            "annotations": list(self.annotations),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FunctionFact":
        return cls(
            name=data["name"],
            kind=SymbolKind(data["kind"]),
            visibility=Visibility.coerce(data.get("visibility")),
            file_path=data["file_path"],
            line_number=int(data["line_number"]),
            owning_type=data.get("owning_type"),
            parameters=tuple(ParameterFact.from_dict(p) for p in data.get("parameters", [])),
            return_type=data.get("return_type"),
            is_asynchronous=bool(data.get("is_asynchronous", False)),
            doc_comment=data.get("doc_comment"),
            signature_snippet=data.get("signature_snippet"),
            body_snippet=data.get("body_snippet"),
            annotations=tuple(data.get("annotations", [])),
        )


@dataclass(frozen=True)
class FileInsight:
    """All facts recovered from one source file."""
    file_path: str
    language_tag: str
    types: Tuple[TypeFact, ...] = ()
    functions: Tuple[FunctionFact, ...] = ()
    parse_status: ParseStatus = ParseStatus.COMPLETE
    diagnostics: Tuple[str, ...] = ()
    imports: Tuple[str, ...] = ()
    module_path: Optional[str] = None

    @property
    def is_failed(self) -> bool:
        return self.parse_status == ParseStatus.FAILED

    @property
    def symbol_count(self) -> int:
        return len(self.types) + len(self.functions)

    @classmethod
    def failed(cls, file_path: str, language_tag: str, diagnostic: str) -> "FileInsight":
        """An insight with no facts and a single diagnostic."""
        return cls(
            file_path=file_path,
            language_tag=language_tag,
            parse_status=ParseStatus.FAILED,
            diagnostics=(diagnostic,),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "language_tag": self.language_tag,
            "types": [t.to_dict() for t in self.types],
            "functions": [f.to_dict() for f in self.functions],
            "parse_status": self.parse_status.value,
            "diagnostics": list(self.diagnostics),
            "imports": list(self.imports),
            "module_path": self.module_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileInsight":
        return cls(
            file_path=data["file_path"],
            language_tag=data["language_tag"],
            types=tuple(TypeFact.from_dict(t) for t in data.get("types", [])),
            functions=tuple(FunctionFact.from_dict(f) for f in data.get("functions", [])),
            parse_status=ParseStatus(data.get("parse_status", "complete")),
            diagnostics=tuple(data.get("diagnostics", [])),
            imports=tuple(data.get("imports", [])),
            module_path=data.get("module_path"),
        )


@dataclass(frozen=True, order=True)
class SymbolLocation:
    """Where a symbol is declared."""
    file_path: str
    line_number: int

    def __str__(self) -> str:
        return f"{self.file_path}:{self.line_number}"


@dataclass
class SourceFile:
    """A file handed to the extractors (bytes are decoded by the extractor)."""
    file_path: str
    raw_text: Any
    language_tag: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
