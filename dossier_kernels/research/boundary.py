"""
Kernel: Boundary Research
Stage: 1 (Research)

Inventories the entry points a project exposes to the outside world:
HTTP routes and CLI commands. Recognized patterns:

- Python: @app.get("/x") style method decorators, @app.route("/x",
  methods=[...]), @cli.command(...) / @click.command()
- Java (Spring): @GetMapping/@PostMapping/... and @RequestMapping, with
  class-level @RequestMapping prefixes joined to method paths
- Rust: #[get("/x")] style attributes (actix-web, rocket), axum
  .route("/x", get(handler)) calls resolved to known handlers, clap
  #[derive(Subcommand)] enums
- TypeScript (NestJS): @Get(":id")/@Post()/... method decorators, joined to
  the class-level @Controller("prefix")

Anything else is skipped rather than guessed.
"""

import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dossier_core.insight_types import FileInsight, FunctionFact, Language, TypeFact
from dossier_core.knowledge_base import KnowledgeBase
from dossier_kernels.base import Kernel, KernelInput

logger = logging.getLogger(__name__)

HTTP_METHODS = ("get", "post", "put", "delete", "patch", "head", "options")

PY_METHOD_DECORATOR_RE = re.compile(
    r"^@[\w.]+\.(get|post|put|delete|patch|head|options)\(\s*(?:path\s*=\s*)?['\"]([^'\"]*)['\"]"
)
PY_ROUTE_DECORATOR_RE = re.compile(r"^@[\w.]+\.route\(\s*['\"]([^'\"]*)['\"](.*)\)\s*$", re.DOTALL)
PY_COMMAND_DECORATOR_RE = re.compile(r"^@(?:[\w.]+\.)?command\b(?:\((.*)\))?\s*$", re.DOTALL)
METHODS_LIST_RE = re.compile(r"methods\s*=\s*[\[(]([^\])]*)[\])]")
QUOTED_RE = re.compile(r"['\"]([^'\"]*)['\"]")
NAME_KWARG_RE = re.compile(r"\bname\s*=\s*['\"]([^'\"]*)['\"]")

JAVA_MAPPING_RE = re.compile(r"^@(Get|Post|Put|Delete|Patch|Request)Mapping\b(?:\((.*)\))?\s*$", re.DOTALL)
JAVA_PATH_KWARG_RE = re.compile(r"\b(?:value|path)\s*=\s*\{?\s*\"([^\"]*)\"")
JAVA_REQUEST_METHOD_RE = re.compile(r"RequestMethod\.(\w+)")

RUST_ROUTE_ATTR_RE = re.compile(r"^#\[(get|post|put|delete|patch|head|options)\(\s*\"([^\"]*)\"")
RUST_AXUM_ROUTE_RE = re.compile(r"\.route\(\s*\"([^\"]*)\"\s*,")
RUST_AXUM_METHOD_RE = re.compile(r"\b(get|post|put|delete|patch|head|options)\(\s*([\w:]+)\s*\)")

NEST_METHOD_RE = re.compile(r"^@(Get|Post|Put|Delete|Patch|Head|Options|All)\((.*)\)\s*$", re.DOTALL)
NEST_CONTROLLER_RE = re.compile(r"^@Controller\((.*)\)\s*$", re.DOTALL)
NEST_PATH_KEY_RE = re.compile(r"\bpath\s*:\s*['\"`]([^'\"`]*)['\"`]")


def join_paths(prefix: str, path: str) -> str:
    """Join URL path fragments with exactly one slash between them."""
    parts = [p.strip("/") for p in (prefix, path) if p and p.strip("/")]
    return "/" + "/".join(parts)


def _first_string(args: Optional[str]) -> Optional[str]:
    if not args:
        return None
    match = QUOTED_RE.search(args)
    return match.group(1) if match else None


def _balanced_args(text: str, open_index: int) -> Optional[str]:
    """Text between the parenthesis at open_index and its match."""
    depth = 0
    in_string = False
    i = open_index
    while i < len(text):
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 1
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return text[open_index + 1:i]
        i += 1
    return None


def _framework(insight: FileInsight, candidates: Iterable[Tuple[str, str]], default: str) -> str:
    """First framework whose import marker appears in the file's imports."""
    for marker, name in candidates:
        if any(marker in imported for imported in insight.imports):
            return name
    return default


def _parameters(function: FunctionFact) -> List[Dict[str, Any]]:
    return [
        {"name": p.name, "declared_type": p.declared_type, "is_optional": p.is_optional}
        for p in function.parameters
    ]


def _record(
    kind: str,
    method: str,
    path: str,
    function: FunctionFact,
    framework: str,
) -> Dict[str, Any]:
    return {
        "kind": kind,
        "method": method,
        "path": path,
        "handler": function.qualified_name,
        "handler_location": f"{function.file_path}:{function.line_number}",
        "file_path": function.file_path,
        "line_number": function.line_number,
        "parameters": _parameters(function),
        "response_type": function.return_type,
        "framework": framework,
    }


# ---------------------------------------------------------------------------
# Python
# ---------------------------------------------------------------------------

PY_WEB_FRAMEWORKS = (("fastapi", "fastapi"), ("flask", "flask"), ("starlette", "starlette"))
PY_CLI_FRAMEWORKS = (("typer", "typer"), ("click", "click"))


def python_endpoints(insight: FileInsight) -> List[Dict[str, Any]]:
    records = []
    for function in insight.functions:
        for decorator in function.annotations:
            match = PY_METHOD_DECORATOR_RE.match(decorator)
            if match:
                framework = _framework(insight, PY_WEB_FRAMEWORKS, "python-web")
                records.append(_record("http", match.group(1).upper(), join_paths("", match.group(2)), function, framework))
                continue

            match = PY_ROUTE_DECORATOR_RE.match(decorator)
            if match:
                framework = _framework(insight, PY_WEB_FRAMEWORKS, "flask")
                methods_match = METHODS_LIST_RE.search(match.group(2))
                methods = QUOTED_RE.findall(methods_match.group(1)) if methods_match else ["GET"]
                for method in methods:
                    records.append(_record("http", method.upper(), join_paths("", match.group(1)), function, framework))
                continue

            match = PY_COMMAND_DECORATOR_RE.match(decorator)
            if match:
                args = match.group(1)
                name_match = NAME_KWARG_RE.search(args or "")
                command = name_match.group(1) if name_match else _first_string(args)
                if not command:
                    command = function.name.replace("_", "-")
                framework = _framework(insight, PY_CLI_FRAMEWORKS, "click")
                records.append(_record("cli", "COMMAND", command, function, framework))
    return records


# ---------------------------------------------------------------------------
# Java
# ---------------------------------------------------------------------------

def _java_mapping(annotation: str) -> Optional[Tuple[str, str]]:
    """(method, path) of a Spring mapping annotation."""
    match = JAVA_MAPPING_RE.match(annotation)
    if not match:
        return None
    verb, args = match.group(1), match.group(2) or ""
    kwarg = JAVA_PATH_KWARG_RE.search(args)
    if kwarg:
        path = kwarg.group(1)
    else:
        stripped = args.strip()
        path = _first_string(args) if stripped.startswith(("\"", "{")) else ""
    if verb == "Request":
        method_match = JAVA_REQUEST_METHOD_RE.search(args)
        method = method_match.group(1).upper() if method_match else "ANY"
    else:
        method = verb.upper()
    return method, path or ""


def java_endpoints(insight: FileInsight) -> List[Dict[str, Any]]:
    prefixes: Dict[str, str] = {}
    for type_fact in insight.types:
        for annotation in type_fact.annotations:
            mapping = _java_mapping(annotation)
            if mapping is not None and annotation.startswith("@RequestMapping"):
                prefixes[type_fact.name] = mapping[1]

    records = []
    for function in insight.functions:
        for annotation in function.annotations:
            mapping = _java_mapping(annotation)
            if mapping is None:
                continue
            method, path = mapping
            prefix = prefixes.get(function.owning_type or "", "")
            records.append(_record("http", method, join_paths(prefix, path), function, "spring"))
    return records


# ---------------------------------------------------------------------------
# Rust
# ---------------------------------------------------------------------------

RUST_WEB_FRAMEWORKS = (("actix_web", "actix-web"), ("rocket", "rocket"), ("axum", "axum"))


def _resolve_handler(kb: KnowledgeBase, name: str, near: str) -> Optional[FunctionFact]:
    """Known function for a handler path, preferring the file that routes it."""
    candidates = kb.functions_named(name.split("::")[-1])
    if not candidates:
        return None
    local = [f for f in candidates if f.file_path == near]
    return min(local or candidates, key=lambda f: (f.file_path, f.line_number))


def rust_endpoints(insight: FileInsight, kb: KnowledgeBase) -> List[Dict[str, Any]]:
    records = []
    for function in insight.functions:
        for attribute in function.annotations:
            match = RUST_ROUTE_ATTR_RE.match(attribute)
            if match:
                framework = _framework(insight, RUST_WEB_FRAMEWORKS, "rust-web")
                records.append(_record("http", match.group(1).upper(), join_paths("", match.group(2)), function, framework))

        body = function.body_snippet or ""
        for route in RUST_AXUM_ROUTE_RE.finditer(body):
            open_index = body.index("(", route.start())
            args = _balanced_args(body, open_index)
            if args is None:
                continue
            _, _, handlers = args.partition(",")
            for method, handler_name in RUST_AXUM_METHOD_RE.findall(handlers):
                handler = _resolve_handler(kb, handler_name, insight.file_path)
                if handler is None:
                    logger.debug(f"[boundaries] Unresolved axum handler {handler_name} in {insight.file_path}")
                    continue
                records.append(_record("http", method.upper(), join_paths("", route.group(1)), handler, "axum"))

    for type_fact in insight.types:
        if not any("derive" in a and "Subcommand" in a for a in type_fact.annotations):
            continue
        for variant in type_fact.variants:
            records.append(_cli_variant_record(type_fact, variant.name))
    return records


_WORD_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def _kebab(name: str) -> str:
    """Variant name as clap spells the subcommand; an acronym stays one word."""
    return _WORD_BOUNDARY_RE.sub("-", name).lower()


def _cli_variant_record(type_fact: TypeFact, variant: str) -> Dict[str, Any]:
    return {
        "kind": "cli",
        "method": "COMMAND",
        "path": _kebab(variant),
        "handler": f"{type_fact.name}::{variant}",
        "handler_location": f"{type_fact.file_path}:{type_fact.line_number}",
        "file_path": type_fact.file_path,
        "line_number": type_fact.line_number,
        "parameters": [],
        "response_type": None,
        "framework": "clap",
    }


# ---------------------------------------------------------------------------
# TypeScript
# ---------------------------------------------------------------------------

def _nest_path(args: str) -> str:
    key = NEST_PATH_KEY_RE.search(args)
    if key:
        return key.group(1)
    return (_first_string(args) or "") if args.strip()[:1] in ("'", '"') else ""


def typescript_endpoints(insight: FileInsight) -> List[Dict[str, Any]]:
    prefixes: Dict[str, str] = {}
    for type_fact in insight.types:
        for decorator in type_fact.annotations:
            match = NEST_CONTROLLER_RE.match(decorator)
            if match:
                prefixes[type_fact.name] = _nest_path(match.group(1))

    records = []
    for function in insight.functions:
        if function.owning_type not in prefixes:
            continue
        for decorator in function.annotations:
            match = NEST_METHOD_RE.match(decorator)
            if not match:
                continue
            method = "ANY" if match.group(1) == "All" else match.group(1).upper()
            path = join_paths(prefixes[function.owning_type], _nest_path(match.group(2)))
            records.append(_record("http", method, path, function, "nestjs"))
    return records


def collect_endpoints(kb: KnowledgeBase) -> List[Dict[str, Any]]:
    """All recognized endpoints, deduplicated and sorted."""
    records: List[Dict[str, Any]] = []
    for path in sorted(kb.files):
        insight = kb.files[path]
        if insight.is_failed:
            continue
        if insight.language_tag == Language.PYTHON.value:
            records.extend(python_endpoints(insight))
        elif insight.language_tag == Language.JAVA.value:
            records.extend(java_endpoints(insight))
        elif insight.language_tag == Language.RUST.value:
            records.extend(rust_endpoints(insight, kb))
        elif insight.language_tag == Language.TYPESCRIPT.value:
            records.extend(typescript_endpoints(insight))

    unique: Dict[Tuple[str, str, str, str], Dict[str, Any]] = {}
    for record in records:
        key = (record["kind"], record["path"], record["method"], record["handler_location"])
        unique.setdefault(key, record)
    return [unique[key] for key in sorted(unique)]


class BoundaryKernel(Kernel):
    """
    Inventory of HTTP routes and CLI commands.

    Dependencies:
        knowledge_base: Extracted facts (required)

    Output:
        endpoints: Normalized records {kind, method, path, handler,
                   handler_location, parameters, response_type, framework}
        by_kind: Endpoint count per kind
        frameworks: Frameworks seen, sorted
    """

    name = "boundaries"
    version = "1.0.0"
    category = "research"
    stage = 1
    description = "Recognize routes and CLI commands"

    requires = ["knowledge_base"]
    provides = "boundaries"

    def compute(self, input: KernelInput) -> Dict[str, Any]:
        endpoints = collect_endpoints(input.knowledge_base)
        by_kind: Dict[str, int] = {}
        for record in endpoints:
            by_kind[record["kind"]] = by_kind.get(record["kind"], 0) + 1

        logger.info(f"[boundaries] {len(endpoints)} endpoint(s) recognized")

        return {
            "endpoints": endpoints,
            "by_kind": dict(sorted(by_kind.items())),
            "frameworks": sorted({r["framework"] for r in endpoints}),
        }

    def summarize(self, data: Dict[str, Any]) -> str:
        if not data["endpoints"]:
            return "Boundaries: no routes or commands recognized."
        counts = ", ".join(f"{n} {kind}" for kind, n in data["by_kind"].items())
        return f"Boundaries: {counts} ({', '.join(data['frameworks'])})."
