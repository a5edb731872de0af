"""
Extractor Base - Contract and registry for per-language fact extractors

An extractor turns the text of one source file into a FileInsight. It never
raises for malformed input: recoverable syntax errors give a PARTIAL insight
with a diagnostic, undecodable or unsupported input gives a FAILED one.

Extractors register themselves on import, keyed by language tag and by file
extension; adding a language means registering one more Extractor subclass.
"""

import importlib
import logging
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import ExtractionError
from .insight_types import FileInsight, Language, ParseStatus, TypeFact

logger = logging.getLogger(__name__)


# Modules providing the built-in extractors (auto-registered on import)
BUILTIN_EXTRACTORS = (
    "dossier_core.extract_python",
    "dossier_core.extract_java",
    "dossier_core.extract_rust",
    "dossier_core.extract_javascript",
)

_OPTIONAL_PATTERNS = [
    re.compile(r"^(?:(?:std|core)::option::)?Option\s*<"),
    re.compile(r"^(?:java\.util\.)?Optional(?:Int|Long|Double)?\s*(?:<|$)"),
    re.compile(r"^(?:typing\.|t\.)?Optional\s*\["),
    re.compile(r"^[\w.$<>\[\], ]+\?$"),
]
_UNION_RE = re.compile(r"^(?:typing\.|t\.)?Union\s*\[(.*)\]$")
_ABSENT = {"None", "NoneType", "null", "undefined"}


def split_top_level(text: str, separator: str) -> List[str]:
    """Split on separator, ignoring separators nested in (), [], <> or {}."""
    parts = []
    depth = 0
    current = []
    previous = ""
    for ch in text:
        if ch in "([<{":
            depth += 1
        elif ch in ")]}" or (ch == ">" and previous not in ("=", "-")):
            depth -= 1
        previous = ch
        if ch == separator and depth == 0:
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    parts.append("".join(current).strip())
    return parts


def is_optional_type(declared_type: Optional[str]) -> bool:
    """
    True when a declared type is a recognized absence-capable wrapper.

    Recognized: Option<T>, Optional<T>, Optional[T], T?, and unions with at
    least one other member where None (or null/undefined) is a top-level
    alternative: Union[..., None], T | None. None nested inside another
    type argument does not count.
    """
    if not declared_type:
        return False
    text = declared_type.strip().strip("'\"")
    if any(p.search(text) for p in _OPTIONAL_PATTERNS):
        return True
    match = _UNION_RE.match(text)
    members = split_top_level(match.group(1), ",") if match else split_top_level(text, "|")
    return len(members) > 1 and any(m in _ABSENT for m in members)


def decode_source(file_path: str, raw_text: Union[str, bytes]) -> str:
    """Decode file content as strict UTF-8.

    Raises:
        ExtractionError: If the bytes are not valid UTF-8
    """
    if isinstance(raw_text, str):
        return raw_text
    try:
        text = bytes(raw_text).decode("utf-8")
    except UnicodeDecodeError as e:
        raise ExtractionError(file_path, f"not valid UTF-8 at byte {e.start}") from e
    return text[1:] if text.startswith("\ufeff") else text


def join_doc_lines(lines: Iterable[str]) -> Optional[str]:
    """Concatenate comment lines with single spaces; None when nothing is left."""
    parts = [line.strip() for line in lines]
    text = " ".join(p for p in parts if p)
    return text or None


def clean_block_doc(doc: Optional[str]) -> Optional[str]:
    """Strip /** */ and leading * markers, join lines with single spaces."""
    if not doc:
        return None
    content = doc.strip()
    if content.startswith("/**"):
        content = content[3:]
    elif content.startswith("/*"):
        content = content[2:]
    if content.endswith("*/"):
        content = content[:-2]
    return join_doc_lines(line.strip().lstrip("*").strip() for line in content.split("\n"))


def first_error_line(node) -> Optional[int]:
    """1-based line of the first ERROR or MISSING node of a tree-sitter tree."""
    if node.type == "ERROR" or node.is_missing:
        return node.start_point[0] + 1
    for child in node.children:
        if child.has_error or child.is_missing:
            line = first_error_line(child)
            if line is not None:
                return line
    return None


def leading_comment_block(
    lines: Sequence[str],
    decl_index: int,
    markers: Tuple[str, ...],
    skip_prefixes: Tuple[str, ...] = (),
) -> Tuple[Optional[str], int]:
    """
    Collect the contiguous comment lines directly above a declaration.

    Args:
        lines: File lines
        decl_index: 0-based index of the first line of the declaration
        markers: Comment markers to strip (e.g. ("///",) or ("#",))
        skip_prefixes: Lines to step over without breaking contiguity
            (attributes, decorators)

    Returns:
        (doc comment or None, 0-based index of the first line of the block)
    """
    collected: List[str] = []
    start = decl_index
    i = decl_index - 1
    while i >= 0:
        stripped = lines[i].strip()
        marker = next((m for m in markers if stripped.startswith(m)), None)
        if marker is not None:
            collected.append(stripped[len(marker):])
            start = i
        elif skip_prefixes and stripped.startswith(skip_prefixes):
            start = i
        else:
            break
        i -= 1
    collected.reverse()
    return join_doc_lines(collected), start


def find_block_end(lines: Sequence[str], start_index: int) -> int:
    """
    Return the 0-based index of the line closing the first brace block
    opened at or after start_index. String literals and comments are skipped.
    Returns the last line index when the block is never closed.
    """
    depth = 0
    opened = False
    in_block_comment = False
    for idx in range(start_index, len(lines)):
        line = lines[idx]
        i = 0
        quote = None
        while i < len(line):
            ch = line[i]
            nxt = line[i + 1] if i + 1 < len(line) else ""
            if in_block_comment:
                if ch == "*" and nxt == "/":
                    in_block_comment = False
                    i += 1
            elif quote:
                if ch == "\\":
                    i += 1
                elif ch == quote:
                    quote = None
            elif ch == "/" and nxt == "/":
                break
            elif ch == "/" and nxt == "*":
                in_block_comment = True
                i += 1
            elif ch in ("\"", "'"):
                quote = ch
            elif ch == "{":
                depth += 1
                opened = True
            elif ch == "}":
                depth -= 1
                if opened and depth == 0:
                    return idx
            i += 1
    return len(lines) - 1


class Extractor(ABC):
    """
    Abstract base for language extractors.

    Subclasses implement parse() on decoded text. extract() adds the
    contract guarantees: decoding, failure containment and logging.
    """

    version: str = "1.0.0"

    @property
    @abstractmethod
    def language(self) -> Language:
        """The language this extractor handles."""
        pass

    @property
    @abstractmethod
    def file_extensions(self) -> List[str]:
        """File extensions this extractor handles."""
        pass

    @abstractmethod
    def parse(self, file_path: str, text: str) -> FileInsight:
        """
        Extract facts from decoded source text.

        Recoverable syntax errors must be handled here and reported as a
        PARTIAL insight. Raising ExtractionError yields a FAILED insight.
        """
        pass

    def extract(
        self,
        file_path: str,
        raw_text: Union[str, bytes],
        language_tag: Optional[str] = None,
    ) -> FileInsight:
        """Extract a FileInsight; never raises for malformed input."""
        tag = language_tag or self.language.value
        try:
            text = decode_source(file_path, raw_text)
            insight = self.parse(file_path, text)
        except ExtractionError as e:
            logger.warning(f"[extract] {e}")
            return FileInsight.failed(file_path, tag, str(e))
        except (RecursionError, ValueError, IndexError) as e:
            logger.warning(f"[extract] {file_path}: unrecoverable parse error: {e}")
            return FileInsight.failed(file_path, tag, f"unrecoverable parse error: {e}")

        if insight.parse_status == ParseStatus.PARTIAL:
            logger.info(f"[extract] {file_path}: partial ({'; '.join(insight.diagnostics)})")
        return insight

    def reparse_type(self, type_fact: TypeFact) -> Optional[TypeFact]:
        """Re-extract a TypeFact from its own raw_snippet."""
        if not type_fact.raw_snippet:
            return None
        insight = self.parse(type_fact.file_path, type_fact.raw_snippet)
        for candidate in insight.types:
            if candidate.name == type_fact.name:
                return candidate
        return None


class ExtractorRegistry:
    """Registry of extractors keyed by language tag and file extension."""

    def __init__(self):
        self._extractors: Dict[str, Extractor] = {}
        self._extension_map: Dict[str, str] = {}

    def register(self, extractor: Extractor) -> None:
        """Register an extractor."""
        tag = extractor.language.value
        self._extractors[tag] = extractor
        for ext in extractor.file_extensions:
            self._extension_map[ext.lower()] = tag
        logger.debug(f"Registered extractor: {tag} ({', '.join(extractor.file_extensions)})")

    def get(self, language_tag: str) -> Optional[Extractor]:
        """Get extractor for a language tag."""
        return self._extractors.get((language_tag or "").lower())

    def get_for_file(self, file_path: str) -> Optional[Extractor]:
        """Get extractor for a file based on extension."""
        tag = self.detect_language(file_path)
        return self._extractors.get(tag)

    def detect_language(self, file_path: str) -> str:
        """Detect language tag from file extension."""
        ext = Path(file_path).suffix.lower()
        return self._extension_map.get(ext, Language.UNKNOWN.value)

    def list_languages(self) -> List[str]:
        """List registered language tags."""
        return sorted(self._extractors.keys())

    def supported_extensions(self) -> List[str]:
        return sorted(self._extension_map.keys())

    def extract(
        self,
        file_path: str,
        raw_text: Union[str, bytes],
        language_tag: Optional[str] = None,
    ) -> FileInsight:
        """Dispatch to the extractor for language_tag (or the file extension)."""
        extractor = self.get(language_tag) if language_tag else self.get_for_file(file_path)
        if extractor is None:
            tag = language_tag or self.detect_language(file_path)
            logger.debug(f"[extract] {file_path}: unsupported language '{tag}'")
            return FileInsight.failed(file_path, tag, f"unsupported language '{tag}'")
        return extractor.extract(file_path, raw_text, language_tag or extractor.language.value)


# Global registry instance
_registry: Optional[ExtractorRegistry] = None
_builtins_loaded = False
_registry_lock = threading.Lock()


def _registry_instance() -> ExtractorRegistry:
    global _registry
    if _registry is None:
        _registry = ExtractorRegistry()
    return _registry


def get_extractor_registry() -> ExtractorRegistry:
    """Get the global extractor registry, loading built-in extractors once."""
    global _builtins_loaded
    with _registry_lock:
        if not _builtins_loaded:
            _builtins_loaded = True
            for module_name in BUILTIN_EXTRACTORS:
                importlib.import_module(module_name)
    return _registry_instance()


def register_extractor(extractor: Extractor) -> None:
    """Register an extractor in the global registry."""
    _registry_instance().register(extractor)


def extract_file(
    file_path: str,
    raw_text: Union[str, bytes],
    language_tag: Optional[str] = None,
) -> FileInsight:
    """Extract a file using the global registry."""
    return get_extractor_registry().extract(file_path, raw_text, language_tag)


def detect_language(file_path: str) -> str:
    """Detect language tag from file path."""
    return get_extractor_registry().detect_language(file_path)


def reparse_type_snippet(type_fact: TypeFact, language_tag: str) -> Optional[TypeFact]:
    """Re-extract a TypeFact from its raw_snippet with the matching extractor."""
    extractor = get_extractor_registry().get(language_tag)
    if extractor is None:
        return None
    return extractor.reparse_type(type_fact)
