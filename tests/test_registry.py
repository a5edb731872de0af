"""
Test kernel discovery, registration and dependency resolution
"""

from typing import Any, Dict

import pytest

from dossier_kernels.base import Kernel, KernelInput
from dossier_kernels.registry import KernelRegistry, list_kernels

RESEARCH = ["architecture", "boundaries", "key_modules", "workflows"]
SECTIONS = [
    "section_architecture",
    "section_boundaries",
    "section_code_index",
    "section_key_modules",
    "section_overview",
    "section_workflows",
]


class EndpointCountKernel(Kernel):
    name = "endpoint_count"
    category = "research"
    stage = 1
    requires = ["knowledge_base", "boundaries"]
    provides = "endpoint_count"

    def compute(self, input: KernelInput) -> Dict[str, Any]:
        return {"endpoints": len(input.artifacts["boundaries"]["endpoints"])}

    def summarize(self, data: Dict[str, Any]) -> str:
        return f"{data['endpoints']} endpoints."


class TestKernelRegistry:
    """Registry behavior."""

    def setup_method(self):
        KernelRegistry.reset()

    def teardown_method(self):
        KernelRegistry.reset()

    def test_discover(self):
        count = KernelRegistry.discover()
        assert count == len(RESEARCH) + len(SECTIONS)
        assert KernelRegistry.list_all() == sorted(RESEARCH + SECTIONS)

    def test_discover_is_idempotent(self):
        KernelRegistry.discover()
        assert KernelRegistry.discover() == len(RESEARCH) + len(SECTIONS)

    def test_categories_and_stages(self):
        assert KernelRegistry.list_category("research") == RESEARCH
        assert KernelRegistry.list_category("compose") == SECTIONS
        assert KernelRegistry.list_stage(2) == SECTIONS
        assert list_kernels(stage=1) == RESEARCH

    def test_unknown_kernel(self):
        with pytest.raises(KeyError, match="not found"):
            KernelRegistry.get("does_not_exist")

    def test_producer_of(self):
        assert KernelRegistry.producer_of("workflows") == "workflows"
        assert KernelRegistry.producer_of("section_overview") == "section_overview"
        assert KernelRegistry.producer_of("nothing") is None

    def test_get_info(self):
        info = KernelRegistry.get_info("section_workflows")
        assert info["category"] == "compose"
        assert info["requires"] == ["knowledge_base", "workflows"]
        assert info["provides"] == "section_workflows"
        assert info["needs_collaborator"] is True
        assert KernelRegistry.get_info("section_code_index")["needs_collaborator"] is False

    def test_resolve_adds_required_producers(self):
        ordered = KernelRegistry.resolve_dependencies(["section_key_modules"])
        assert ordered == ["architecture", "key_modules", "section_key_modules"]

    def test_resolve_orders_optional_inputs(self):
        ordered = KernelRegistry.resolve_dependencies(["workflows", "boundaries"])
        assert ordered == ["boundaries", "workflows"]

    def test_resolve_all(self):
        ordered = KernelRegistry.resolve_dependencies(KernelRegistry.list_all())
        position = {name: i for i, name in enumerate(ordered)}
        for name in ordered:
            kernel_class = KernelRegistry.get(name)
            for label in list(kernel_class.requires) + list(kernel_class.optional):
                producer = KernelRegistry.producer_of(label)
                if producer is not None:
                    assert position[producer] < position[name]

    def test_register_external_kernel(self, sample_kb):
        KernelRegistry.discover()
        KernelRegistry.register(EndpointCountKernel)
        assert "endpoint_count" in KernelRegistry.list_category("research")
        assert KernelRegistry.resolve_dependencies(["endpoint_count"]) == ["boundaries", "endpoint_count"]

        kernel = KernelRegistry.get_instance("endpoint_count")
        output = kernel.run(KernelInput(knowledge_base=sample_kb, artifacts={"boundaries": {"endpoints": [1, 2]}}))
        assert output.success
        assert output.summary == "2 endpoints."
        assert output.dependencies_used == ["boundaries"]

    def test_descriptor(self):
        descriptor = KernelRegistry.get_instance("section_overview").descriptor()
        assert descriptor.name == "section_overview"
        assert descriptor.required_inputs == frozenset({"knowledge_base"})
        assert descriptor.optional_inputs == frozenset({"architecture", "key_modules", "boundaries"})
        assert descriptor.produces == "section_overview"


class TestKernelRun:
    """Kernel.run traceability and persistence."""

    def test_persisted_output(self, sample_kb, temp_dir):
        output = EndpointCountKernel().run(KernelInput(
            knowledge_base=sample_kb,
            artifacts={"boundaries": {"endpoints": []}},
            workspace=temp_dir,
        ))
        assert output.output_file == temp_dir / "stage1" / "endpoint_count.json"
        assert (temp_dir / "stage1" / "endpoint_count.summary.txt").read_text() == "0 endpoints."
        assert len(output.input_hash) == 16

    def test_input_hash_tracks_config(self, sample_kb):
        artifacts = {"boundaries": {"endpoints": []}}
        first = EndpointCountKernel().run(KernelInput(knowledge_base=sample_kb, artifacts=artifacts))
        same = EndpointCountKernel().run(KernelInput(knowledge_base=sample_kb, artifacts=artifacts))
        other = EndpointCountKernel().run(KernelInput(knowledge_base=sample_kb, artifacts=artifacts, config={"x": 1}))
        assert first.input_hash == same.input_hash
        assert first.input_hash != other.input_hash

    def test_missing_input(self, sample_kb):
        output = EndpointCountKernel().run(KernelInput(knowledge_base=sample_kb))
        assert not output.success
        assert output.errors == ["Missing required input: boundaries"]
