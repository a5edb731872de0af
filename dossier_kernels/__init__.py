"""
Dossier Kernels — Research, composition and scheduling

This package turns a KnowledgeBase into a Document Tree:
- Kernels do one analysis or one section each, with declared inputs
- The PipelineScheduler runs them as a DAG with bounded parallelism
- DocumentationPipeline drives extraction, aggregation, scheduling and assembly
"""

from dossier_core.version import __version__

__all__ = [
    # Base classes
    "Kernel",
    "KernelInput",
    "KernelOutput",
    # Registry
    "KernelRegistry",
    "discover_kernels",
    "get_kernel",
    "list_kernels",
    # Scheduling
    "PipelineScheduler",
    "StageDescriptor",
    "StageState",
    # Documents
    "DocumentTree",
    "DocumentNode",
    "render_markdown",
    # Pipeline
    "DocumentationPipeline",
]


def __getattr__(name):
    """Lazy imports to avoid circular dependencies."""
    if name in ("Kernel", "KernelInput", "KernelOutput"):
        from dossier_kernels.base import Kernel, KernelInput, KernelOutput
        return locals()[name]
    elif name in ("KernelRegistry", "discover_kernels", "get_kernel", "list_kernels"):
        from dossier_kernels.registry import KernelRegistry, discover_kernels, get_kernel, list_kernels
        return locals()[name]
    elif name in ("PipelineScheduler", "StageDescriptor", "StageState"):
        from dossier_kernels.scheduler import PipelineScheduler, StageDescriptor, StageState
        return locals()[name]
    elif name in ("DocumentTree", "DocumentNode", "render_markdown"):
        from dossier_kernels.document import DocumentTree, DocumentNode, render_markdown
        return locals()[name]
    elif name == "DocumentationPipeline":
        from dossier_kernels.orchestrator import DocumentationPipeline
        return DocumentationPipeline
    raise AttributeError(f"module 'dossier_kernels' has no attribute '{name}'")
