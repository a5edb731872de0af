"""
Kernel: Workflow Research
Stage: 1 (Research)

Reconstructs call chains from entry points by name matching:

- A call is an identifier followed by "(" in a function body, once string
  literals and comments are removed. Language keywords are ignored.
- A called name resolves to one known function, searched in order: same
  file, same owning type, same domain, anywhere. Ties go to the smallest
  (file_path, line_number).
- Traversal is depth-first. A function already on the current path is
  emitted with a "cycle" marker and not expanded; a function at max_depth
  that has callees gets a "max_depth" marker; reaching max_steps appends a
  "truncated" step and stops the trace.

Matching is by name only, without scope resolution: overloaded or shadowed
names can produce false edges.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Set, Tuple

from dossier_core.insight_types import FunctionFact, Language
from dossier_core.knowledge_base import KnowledgeBase
from dossier_kernels.base import Kernel, KernelInput

logger = logging.getLogger(__name__)

DEFAULT_ENTRY_NAMES = ("main", "run", "start", "serve", "launch", "execute", "cli")
DEFAULT_MAX_DEPTH = 6
DEFAULT_MAX_STEPS = 200

CYCLE = "cycle"
MAX_DEPTH = "max_depth"
TRUNCATED = "truncated"

CALL_RE = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\s*\(")
DECLARATION_RE = re.compile(r"\b(?:def|fn|func|function|class|struct|enum|trait|interface)\s+[A-Za-z_]\w*")

KEYWORDS = {
    # shared
    "if", "else", "for", "while", "return", "switch", "case", "catch", "try",
    "match", "assert", "await", "async", "yield", "new", "throw", "throws",
    "super", "this", "self", "Self", "in", "is", "not", "and", "or", "with",
    # python
    "elif", "except", "lambda", "print", "raise", "del", "global", "nonlocal",
    # java
    "synchronized", "instanceof", "do",
    # rust
    "loop", "impl", "where", "as", "ref", "mut", "move", "unsafe", "dyn",
    "Some", "Ok", "Err", "Box",
    # javascript / typescript
    "function", "typeof", "void", "require",
}

_PY_STRIP_RE = re.compile(
    r'"""[\s\S]*?"""|\'\'\'[\s\S]*?\'\'\'|"(?:\\.|[^"\\\n])*"|\'(?:\\.|[^\'\\\n])*\'|#[^\n]*'
)
_C_STRIP_RE = re.compile(
    r'/\*[\s\S]*?\*/|//[^\n]*|"(?:\\.|[^"\\])*"|\'(?:\\.|[^\'\\\n])\''
)
_JS_STRIP_RE = re.compile(
    r'/\*[\s\S]*?\*/|//[^\n]*|"(?:\\.|[^"\\\n])*"|\'(?:\\.|[^\'\\\n])*\'|`(?:\\.|[^`\\])*`'
)

FunctionKey = Tuple[str, int, str]


def strip_literals(text: str, language_tag: str) -> str:
    """Blank out string literals and comments."""
    if language_tag == Language.PYTHON.value:
        pattern = _PY_STRIP_RE
    elif language_tag in (Language.JAVASCRIPT.value, Language.TYPESCRIPT.value):
        pattern = _JS_STRIP_RE
    else:
        pattern = _C_STRIP_RE
    return pattern.sub(" ", text)


def called_names(function: FunctionFact, language_tag: str) -> List[str]:
    """Names called in a function body, in order of first appearance."""
    body = function.body_snippet or ""
    if not body:
        return []
    text = DECLARATION_RE.sub(" ", strip_literals(body, language_tag))
    seen: Dict[str, None] = {}
    for name in CALL_RE.findall(text):
        if name not in KEYWORDS:
            seen.setdefault(name, None)
    return list(seen)


def function_key(function: FunctionFact) -> FunctionKey:
    return (function.file_path, function.line_number, function.qualified_name)


class CallResolver:
    """Resolves called names to known functions with a fixed precedence."""

    def __init__(self, kb: KnowledgeBase):
        self.kb = kb
        self._by_name: Dict[str, List[FunctionFact]] = {}
        for function in kb.functions():
            self._by_name.setdefault(function.name, []).append(function)
        for candidates in self._by_name.values():
            candidates.sort(key=lambda f: (f.file_path, f.line_number))

    def knows(self, name: str) -> bool:
        return name in self._by_name

    def candidates(self, name: str) -> List[FunctionFact]:
        return list(self._by_name.get(name, ()))

    def resolve(self, name: str, caller: FunctionFact) -> Optional[FunctionFact]:
        candidates = self._by_name.get(name)
        if not candidates:
            return None
        tiers = (
            lambda f: f.file_path == caller.file_path,
            lambda f: caller.owning_type is not None and f.owning_type == caller.owning_type,
            lambda f: self.kb.domain_of(f.file_path) == self.kb.domain_of(caller.file_path),
            lambda f: True,
        )
        for matches in tiers:
            # candidates are sorted, so the first match is the tie-break winner
            for candidate in candidates:
                if matches(candidate):
                    return candidate
        return None

    def callees(self, function: FunctionFact) -> List[FunctionFact]:
        language_tag = self.kb.files[function.file_path].language_tag if function.file_path in self.kb.files else ""
        result = []
        for name in called_names(function, language_tag):
            callee = self.resolve(name, function)
            if callee is not None:
                result.append(callee)
        return result


def _step(function: FunctionFact, depth: int, caller: Optional[FunctionFact], marker: Optional[str]) -> Dict[str, Any]:
    return {
        "depth": depth,
        "name": function.name,
        "qualified_name": function.qualified_name,
        "file_path": function.file_path,
        "line_number": function.line_number,
        "caller": caller.qualified_name if caller is not None else None,
        "marker": marker,
    }


def trace_workflow(
    resolver: CallResolver,
    entry: FunctionFact,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_steps: int = DEFAULT_MAX_STEPS,
) -> Dict[str, Any]:
    """Depth-first call trace from one entry function."""
    steps: List[Dict[str, Any]] = []
    path: Set[FunctionKey] = set()
    truncated = False

    def visit(function: FunctionFact, depth: int, caller: Optional[FunctionFact]) -> None:
        nonlocal truncated
        if truncated:
            return
        if len(steps) >= max_steps:
            steps.append(_step(function, depth, caller, TRUNCATED))
            truncated = True
            return

        key = function_key(function)
        if key in path:
            steps.append(_step(function, depth, caller, CYCLE))
            return

        callees = resolver.callees(function)
        if depth >= max_depth and callees:
            steps.append(_step(function, depth, caller, MAX_DEPTH))
            return

        steps.append(_step(function, depth, caller, None))
        path.add(key)
        for callee in callees:
            visit(callee, depth + 1, function)
            if truncated:
                break
        path.discard(key)

    visit(entry, 0, None)
    return {
        "entry": entry.qualified_name,
        "entry_location": f"{entry.file_path}:{entry.line_number}",
        "file_path": entry.file_path,
        "line_number": entry.line_number,
        "steps": steps,
        "truncated": truncated,
        "has_cycle": any(s["marker"] == CYCLE for s in steps),
    }


def select_entry_points(
    kb: KnowledgeBase,
    resolver: CallResolver,
    configured: Optional[List[str]],
    boundaries: Optional[Dict[str, Any]],
) -> Tuple[str, List[FunctionFact]]:
    """
    Entry functions and where they came from.

    Configured names win; otherwise boundary handlers; otherwise
    conventional entry names.
    """
    if configured:
        entries = [f for name in configured for f in resolver.candidates(name)]
        return "configured", _dedupe(entries)

    if boundaries and boundaries.get("endpoints"):
        entries = []
        for record in boundaries["endpoints"]:
            location = record.get("handler_location", "")
            path, _, line = location.rpartition(":")
            for function in resolver.candidates(record.get("handler", "").split(".")[-1]):
                if function.file_path == path and str(function.line_number) == line:
                    entries.append(function)
        if entries:
            return "boundaries", _dedupe(entries)

    entries = [f for name in DEFAULT_ENTRY_NAMES for f in resolver.candidates(name)]
    return "conventional", _dedupe(entries)


def _dedupe(functions: List[FunctionFact]) -> List[FunctionFact]:
    unique: Dict[FunctionKey, FunctionFact] = {}
    for function in functions:
        unique.setdefault(function_key(function), function)
    return [unique[key] for key in sorted(unique)]


class WorkflowKernel(Kernel):
    """
    Call chains from entry points.

    Configuration options:
        entry_points: Function names to start from (default: boundary
                      handlers, then main/run/start/serve/launch/execute/cli)
        max_depth: Maximum call depth (default: 6)
        max_steps: Maximum steps per trace (default: 200)
        max_entries: Maximum traced entry points (default: 20)

    Dependencies:
        knowledge_base: Extracted facts (required)
        boundaries: Endpoint inventory (optional, supplies handlers)

    Output:
        entry_source: configured | boundaries | conventional
        workflows: One trace per entry point with ordered steps
        limits: Depth and step bounds applied
    """

    name = "workflows"
    version = "1.0.0"
    category = "research"
    stage = 1
    description = "Reconstruct call chains from entry points"

    requires = ["knowledge_base"]
    optional = ["boundaries"]
    provides = "workflows"

    def compute(self, input: KernelInput) -> Dict[str, Any]:
        kb = input.knowledge_base
        max_depth = int(input.config.get("max_depth", DEFAULT_MAX_DEPTH))
        max_steps = int(input.config.get("max_steps", DEFAULT_MAX_STEPS))
        max_entries = int(input.config.get("max_entries", 20))
        if max_depth < 0 or max_steps < 1:
            raise ValueError(f"invalid bounds max_depth={max_depth} max_steps={max_steps}")

        resolver = CallResolver(kb)
        source, entries = select_entry_points(
            kb, resolver, input.config.get("entry_points"), input.artifacts.get("boundaries")
        )
        if len(entries) > max_entries:
            logger.info(f"[workflows] {len(entries)} entry points, tracing the first {max_entries}")
            entries = entries[:max_entries]

        workflows = [trace_workflow(resolver, entry, max_depth, max_steps) for entry in entries]
        logger.info(f"[workflows] {len(workflows)} trace(s) from {source} entry points")

        return {
            "entry_source": source,
            "workflows": workflows,
            "limits": {"max_depth": max_depth, "max_steps": max_steps},
        }

    def summarize(self, data: Dict[str, Any]) -> str:
        workflows = data["workflows"]
        if not workflows:
            return "Workflows: no entry points found."
        steps = sum(len(w["steps"]) for w in workflows)
        cycles = sum(1 for w in workflows if w["has_cycle"])
        summary = f"Workflows: {len(workflows)} trace(s), {steps} steps from {data['entry_source']} entry points."
        if cycles:
            summary += f" {cycles} with cycles."
        return summary
