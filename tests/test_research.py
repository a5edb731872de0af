"""
Test research kernels: architecture, workflows, boundaries, key modules
"""

import pytest

from dossier_core.extractor_base import extract_file
from dossier_kernels.base import KernelInput
from dossier_kernels.research.architecture import ArchitectureKernel, dependency_edges
from dossier_kernels.research.boundary import BoundaryKernel, _balanced_args, collect_endpoints, join_paths
from dossier_kernels.research.key_modules import KeyModulesKernel
from dossier_kernels.research.workflow import (
    CYCLE,
    MAX_DEPTH,
    TRUNCATED,
    CallResolver,
    WorkflowKernel,
    called_names,
    select_entry_points,
    trace_workflow,
)

CYCLE_PY = "def a():\n    b()\n\n\ndef b():\n    a()\n"


def markers(trace):
    return [(s["name"], s["depth"], s["marker"]) for s in trace["steps"]]


class TestCallExtraction:
    """Called names in function bodies."""

    def test_literals_and_comments_ignored(self):
        source = (
            "def job():\n"
            "    log(\"fake() inside a string\")\n"
            "    # hidden() in a comment\n"
            "    if ready():\n"
            "        real()\n"
        )
        function = extract_file("jobs/job.py", source).functions[0]
        assert called_names(function, "python") == ["log", "ready", "real"]

    def test_rust_comments_ignored(self):
        source = "fn go() {\n    // skip(1)\n    let s = \"nope()\";\n    step_one();\n    Some(step_two())\n}\n"
        function = extract_file("src/go.rs", source).functions[0]
        assert called_names(function, "rust") == ["step_one", "step_two"]

    def test_javascript_strings_and_templates_ignored(self):
        source = (
            "async function sync() {\n"
            "  log('skip() in quotes');\n"
            "  const msg = `hidden(${x})`;\n"
            "  if (typeof fetchAll === \"function\") {\n"
            "    await fetchAll();\n"
            "  }\n"
            "}\n"
        )
        function = extract_file("lib/sync.js", source).functions[0]
        assert called_names(function, "javascript") == ["log", "fetchAll"]


class TestCallResolution:
    """Name resolution precedence: file, owning type, domain, global."""

    def test_same_file_first(self, make_kb):
        kb = make_kb({
            "aaa/tools.py": "def util():\n    pass\n",
            "zzz/main.py": "def main():\n    util()\n\n\ndef util():\n    pass\n",
        })
        resolver = CallResolver(kb)
        main = kb.functions_named("main")[0]
        assert resolver.resolve("util", main).file_path == "zzz/main.py"

    def test_same_owning_type_before_domain(self, make_kb):
        kb = make_kb({
            "a/free.rs": "fn helper() {}\n",
            "p/service.rs": "struct Service;\nimpl Service {\n    fn run(&self) {\n        self.helper();\n    }\n}\n",
            "q/service_ext.rs": "impl Service {\n    fn helper(&self) {}\n}\n",
        })
        resolver = CallResolver(kb)
        run = kb.functions_named("run")[0]
        assert resolver.resolve("helper", run).file_path == "q/service_ext.rs"

    def test_same_domain_before_global(self, make_kb):
        kb = make_kb({
            "aaa/tools.py": "def util():\n    pass\n",
            "zzz/helpers.py": "def util():\n    pass\n",
            "zzz/main.py": "def main():\n    util()\n",
        })
        resolver = CallResolver(kb)
        main = kb.functions_named("main")[0]
        assert resolver.resolve("util", main).file_path == "zzz/helpers.py"

    def test_global_tie_break_by_location(self, make_kb):
        kb = make_kb({
            "bbb/tools.py": "def util():\n    pass\n",
            "aaa/tools.py": "\n\ndef util():\n    pass\n",
            "mmm/main.py": "def main():\n    util()\n",
        })
        resolver = CallResolver(kb)
        main = kb.functions_named("main")[0]
        callee = resolver.resolve("util", main)
        assert (callee.file_path, callee.line_number) == ("aaa/tools.py", 3)

    def test_unknown_name(self, make_kb):
        kb = make_kb({"x/main.py": "def main():\n    print(len([]))\n"})
        resolver = CallResolver(kb)
        assert resolver.callees(kb.functions_named("main")[0]) == []


class TestTraceWorkflow:
    """Bounded depth-first traces."""

    def test_cycle_marker(self, make_kb):
        kb = make_kb({"flow/cycle.py": CYCLE_PY})
        resolver = CallResolver(kb)
        trace = trace_workflow(resolver, kb.functions_named("a")[0], max_depth=6)
        assert markers(trace) == [("a", 0, None), ("b", 1, None), ("a", 2, CYCLE)]
        assert trace["has_cycle"]
        assert not trace["truncated"]
        assert trace["entry_location"] == "flow/cycle.py:1"

    def test_depth_bound(self, make_kb):
        kb = make_kb({"flow/cycle.py": CYCLE_PY})
        resolver = CallResolver(kb)
        trace = trace_workflow(resolver, kb.functions_named("a")[0], max_depth=1)
        assert markers(trace) == [("a", 0, None), ("b", 1, MAX_DEPTH)]

    def test_leaf_at_depth_bound_is_unmarked(self, make_kb):
        kb = make_kb({"flow/chain.py": "def top():\n    leaf()\n\n\ndef leaf():\n    pass\n"})
        resolver = CallResolver(kb)
        trace = trace_workflow(resolver, kb.functions_named("top")[0], max_depth=1)
        assert markers(trace) == [("top", 0, None), ("leaf", 1, None)]

    def test_step_bound(self, make_kb):
        kb = make_kb({"flow/cycle.py": CYCLE_PY})
        resolver = CallResolver(kb)
        trace = trace_workflow(resolver, kb.functions_named("a")[0], max_depth=6, max_steps=2)
        assert markers(trace) == [("a", 0, None), ("b", 1, None), ("a", 2, TRUNCATED)]
        assert trace["truncated"]

    def test_steps_record_caller(self, make_kb):
        kb = make_kb({"flow/cycle.py": CYCLE_PY})
        trace = trace_workflow(CallResolver(kb), kb.functions_named("a")[0])
        assert [s["caller"] for s in trace["steps"]] == [None, "a", "b"]


class TestWorkflowKernel:
    """Entry point selection and kernel output."""

    def test_entry_points_from_boundaries(self, sample_kb):
        boundaries = BoundaryKernel().compute(KernelInput(knowledge_base=sample_kb))
        source, entries = select_entry_points(sample_kb, CallResolver(sample_kb), None, boundaries)
        assert source == "boundaries"
        assert "get_invoice" in [e.name for e in entries]

    def test_configured_entry_points_win(self, sample_kb):
        boundaries = BoundaryKernel().compute(KernelInput(knowledge_base=sample_kb))
        source, entries = select_entry_points(sample_kb, CallResolver(sample_kb), ["charge"], boundaries)
        assert source == "configured"
        assert [e.qualified_name for e in entries] == ["charge"]

    def test_conventional_entry_points(self, make_kb):
        kb = make_kb({"flow/cycle.py": CYCLE_PY, "cli/main.py": "def main():\n    a()\n"})
        source, entries = select_entry_points(kb, CallResolver(kb), None, None)
        assert source == "conventional"
        assert [e.name for e in entries] == ["main"]

    def test_kernel_output(self, sample_kb):
        output = WorkflowKernel().run(KernelInput(
            knowledge_base=sample_kb,
            config={"entry_points": ["create_invoice"], "max_depth": 4},
        ))
        assert output.success
        assert output.data["entry_source"] == "configured"
        assert output.data["limits"] == {"max_depth": 4, "max_steps": 200}
        trace = output.data["workflows"][0]
        assert [s["qualified_name"] for s in trace["steps"]] == ["create_invoice", "charge", "record"]

    def test_invalid_bounds_fail_the_kernel(self, sample_kb):
        output = WorkflowKernel().run(KernelInput(knowledge_base=sample_kb, config={"max_steps": 0}))
        assert not output.success
        assert output.data == {}
        assert output.errors[0].startswith("ValueError")


class TestBoundaries:
    """Route and command recognition."""

    def test_join_paths(self):
        assert join_paths("/users/", "/{id}") == "/users/{id}"
        assert join_paths("", "") == "/"
        assert join_paths("api", "") == "/api"

    def test_sample_project_endpoints(self, sample_kb):
        endpoints = collect_endpoints(sample_kb)
        assert [(e["method"], e["path"], e["handler"], e["framework"]) for e in endpoints] == [
            ("POST", "/invoices", "create_invoice", "fastapi"),
            ("GET", "/invoices/{invoice_id}", "get_invoice", "fastapi"),
            ("GET", "/users", "list_users", "axum"),
            ("POST", "/users", "UserController.createUser", "spring"),
            ("GET", "/users/{id}", "UserController.getUser", "spring"),
        ]

    def test_endpoint_record(self, sample_kb):
        record = next(e for e in collect_endpoints(sample_kb) if e["handler"] == "get_invoice")
        assert record["kind"] == "http"
        assert record["handler_location"] == "app/api/routes.py:10"
        assert record["response_type"] == "dict"
        assert record["parameters"] == [
            {"name": "invoice_id", "declared_type": "int", "is_optional": False},
            {"name": "verbose", "declared_type": "Optional[bool]", "is_optional": True},
        ]

    def test_flask_route_methods(self, make_kb):
        kb = make_kb({"web/app.py": (
            "from flask import Flask\n"
            "app = Flask(__name__)\n"
            "\n"
            "@app.route(\"/items\", methods=[\"GET\", \"POST\"])\n"
            "def items():\n"
            "    return []\n"
        )})
        endpoints = collect_endpoints(kb)
        assert [(e["method"], e["path"], e["framework"]) for e in endpoints] == [
            ("GET", "/items", "flask"),
            ("POST", "/items", "flask"),
        ]

    def test_click_commands(self, make_kb):
        kb = make_kb({"tools/cli.py": (
            "import click\n"
            "\n"
            "@click.command(name=\"sync-all\")\n"
            "def sync():\n"
            "    pass\n"
            "\n"
            "@cli.command()\n"
            "def export_data():\n"
            "    pass\n"
        )})
        endpoints = collect_endpoints(kb)
        assert [(e["kind"], e["method"], e["path"], e["handler"]) for e in endpoints] == [
            ("cli", "COMMAND", "export-data", "export_data"),
            ("cli", "COMMAND", "sync-all", "sync"),
        ]

    def test_spring_request_mapping_method(self, make_kb):
        kb = make_kb({"api/Api.java": (
            "@RestController\n"
            "public class Api {\n"
            "    @RequestMapping(value = \"/ping\", method = RequestMethod.POST)\n"
            "    public String ping() { return \"pong\"; }\n"
            "\n"
            "    @RequestMapping(\"/any\")\n"
            "    public String any() { return \"any\"; }\n"
            "}\n"
        )})
        endpoints = collect_endpoints(kb)
        assert [(e["method"], e["path"]) for e in endpoints] == [("ANY", "/any"), ("POST", "/ping")]

    def test_rust_attribute_routes_and_clap(self, make_kb):
        kb = make_kb({
            "src/health.rs": (
                "use actix_web::{get, HttpResponse};\n"
                "\n"
                "#[get(\"/health\")]\n"
                "async fn health() -> HttpResponse {\n"
                "    HttpResponse::Ok().finish()\n"
                "}\n"
            ),
            "src/cli.rs": (
                "#[derive(Subcommand)]\n"
                "enum Command {\n"
                "    Init,\n"
                "    RunAll { verbose: bool },\n"
                "}\n"
            ),
        })
        endpoints = collect_endpoints(kb)
        assert [(e["kind"], e["method"], e["path"], e["framework"]) for e in endpoints] == [
            ("cli", "COMMAND", "init", "clap"),
            ("cli", "COMMAND", "run-all", "clap"),
            ("http", "GET", "/health", "actix-web"),
        ]

    def test_nestjs_controller_routes(self, make_kb):
        kb = make_kb({
            "src/users.controller.ts": (
                "import { Controller, Get, Post } from \"@nestjs/common\";\n"
                "\n"
                "@Controller(\"users\")\n"
                "export class UsersController {\n"
                "  @Get(\":id\")\n"
                "  findOne(id: string): string {\n"
                "    return id;\n"
                "  }\n"
                "\n"
                "  @Post()\n"
                "  create(): void {}\n"
                "\n"
                "  helper(): void {}\n"
                "}\n"
            ),
        })
        endpoints = collect_endpoints(kb)
        assert [(e["method"], e["path"], e["handler"], e["framework"]) for e in endpoints] == [
            ("POST", "/users", "UsersController.create", "nestjs"),
            ("GET", "/users/:id", "UsersController.findOne", "nestjs"),
        ]
        assert endpoints[1]["handler_location"] == "src/users.controller.ts:6"
        assert endpoints[1]["parameters"] == [{"name": "id", "declared_type": "string", "is_optional": False}]

    def test_clap_acronyms_stay_one_word(self, make_kb):
        kb = make_kb({
            "src/cli.rs": (
                "#[derive(Subcommand)]\n"
                "enum Command {\n"
                "    HTTPServer,\n"
                "    ExportCSV,\n"
                "    Sync2Remote,\n"
                "}\n"
            ),
        })
        assert [e["path"] for e in collect_endpoints(kb)] == ["export-csv", "http-server", "sync2-remote"]

    def test_balanced_args_skip_escaped_quotes(self):
        text = '.route("/a", get(h).layer(tag("a\\")b")))'
        assert _balanced_args(text, text.index("(")) == '"/a", get(h).layer(tag("a\\")b"))'
        assert _balanced_args('f("unterminated', 1) is None

    def test_kernel_output(self, sample_kb):
        output = BoundaryKernel().run(KernelInput(knowledge_base=sample_kb))
        assert output.success
        assert output.data["by_kind"] == {"http": 5}
        assert output.data["frameworks"] == ["axum", "fastapi", "spring"]

    def test_no_endpoints(self, make_kb):
        kb = make_kb({"lib/util.py": "def f():\n    pass\n"})
        output = BoundaryKernel().run(KernelInput(knowledge_base=kb))
        assert output.data["endpoints"] == []
        assert output.summary == "Boundaries: no routes or commands recognized."


class TestArchitecture:
    """Domain grouping and dependency sketch."""

    def test_import_edge(self, sample_kb):
        edges = dependency_edges(sample_kb)
        assert edges == {("api", "services"): {"app/api/routes.py imports services.billing"}}

    def test_type_usage_edge(self, make_kb):
        kb = make_kb({
            "models/user.rs": "pub struct User {\n    pub id: i64,\n}\n",
            "handlers/users.rs": "pub fn show(user: User) -> String {\n    format!(\"{}\", user.id)\n}\n",
        })
        edges = dependency_edges(kb)
        assert edges == {("handlers", "models"): {"handlers/users.rs uses User"}}

    def test_kernel_output(self, sample_kb):
        output = ArchitectureKernel().run(KernelInput(knowledge_base=sample_kb))
        assert output.success
        data = output.data
        assert [d["name"] for d in data["domains"]] == ["api", "models", "services", "ungrouped", "web"]
        models = next(d for d in data["domains"] if d["name"] == "models")
        assert models["types"][0] == {
            "name": "User", "kind": "struct", "visibility": "public",
            "file_path": "models/user.rs", "line_number": 10,
        }
        assert data["edges"] == [{
            "source": "api",
            "target": "services",
            "weight": 1,
            "evidence": ["app/api/routes.py imports services.billing"],
        }]
        assert data["failed_files"] == []

    def test_evidence_is_capped(self, make_kb):
        sources = {"models/user.rs": "pub struct User {}\n"}
        for i in range(4):
            sources[f"handlers/h{i}.rs"] = f"pub fn h{i}(u: User) {{}}\n"
        output = ArchitectureKernel().run(KernelInput(
            knowledge_base=make_kb(sources), config={"max_evidence": 2},
        ))
        edge = output.data["edges"][0]
        assert edge["weight"] == 4
        assert len(edge["evidence"]) == 2


class TestKeyModules:
    """Ranking by public surface and inbound dependencies."""

    def test_ranking(self, sample_kb):
        architecture = ArchitectureKernel().compute(KernelInput(knowledge_base=sample_kb))
        output = KeyModulesKernel().run(KernelInput(
            knowledge_base=sample_kb, artifacts={"architecture": architecture},
        ))
        assert output.success
        modules = output.data["modules"]
        assert [(m["rank"], m["domain"], m["score"]) for m in modules] == [
            (1, "services", 5),
            (2, "api", 3),
            (3, "web", 3),
            (4, "models", 2),
            (5, "ungrouped", 0),
        ]
        services = modules[0]
        assert services["inbound"] == 1
        assert [s["name"] for s in services["top_symbols"]] == ["Invoice", "charge", "record"]

    def test_top_n(self, sample_kb):
        architecture = ArchitectureKernel().compute(KernelInput(knowledge_base=sample_kb))
        output = KeyModulesKernel().run(KernelInput(
            knowledge_base=sample_kb, artifacts={"architecture": architecture}, config={"top_n": 2},
        ))
        assert [m["domain"] for m in output.data["modules"]] == ["services", "api"]

    def test_requires_architecture(self, sample_kb):
        output = KeyModulesKernel().run(KernelInput(knowledge_base=sample_kb))
        assert not output.success
        assert output.errors == ["Missing required input: architecture"]
