"""
Kernel Registry — Discovery and artifact-driven ordering of kernels.

Kernels live in two subpackages: research (stage 1) and compose (stage 2).
Each kernel provides exactly one artifact label, so the registry keeps a
label -> kernel index next to the name index. Ordering a selection means
closing it over required labels and sorting it so that every producer runs
before its consumers.

Usage:
    KernelRegistry.discover()
    KernelRegistry.resolve_dependencies(["section_overview"])
    KernelRegistry.get_info("workflows")
"""

import heapq
import importlib
import inspect
import logging
import pkgutil
from typing import Dict, Iterable, List, Optional, Set

from dossier_kernels.base import KNOWLEDGE_BASE, Kernel, KernelClass

logger = logging.getLogger(__name__)

KERNEL_SUBPACKAGES = ("research", "compose")


def _kernel_classes(module) -> Iterable[KernelClass]:
    for _, member in inspect.getmembers(module, inspect.isclass):
        if (
            issubclass(member, Kernel)
            and member.__module__ == module.__name__
            and not inspect.isabstract(member)
        ):
            yield member


class KernelRegistry:
    """
    Process-wide index of kernel classes.

    Example:
        KernelRegistry.list_category("compose")   # section kernels
        KernelRegistry.producer_of("boundaries")  # 'boundaries'
    """

    _kernels: Dict[str, KernelClass] = {}
    _producers: Dict[str, str] = {}
    _discovered: bool = False

    @classmethod
    def discover(cls, package: str = "dossier_kernels") -> int:
        """
        Import every module of the kernel subpackages and register the
        concrete Kernel subclasses found there.

        Returns:
            Number of registered kernels
        """
        if cls._discovered:
            return len(cls._kernels)

        for subpackage in KERNEL_SUBPACKAGES:
            parent = importlib.import_module(f"{package}.{subpackage}")
            for module_info in pkgutil.iter_modules(parent.__path__):
                if module_info.name == "base":
                    continue
                module_name = f"{parent.__name__}.{module_info.name}"
                try:
                    module = importlib.import_module(module_name)
                except ImportError as e:
                    logger.warning(f"[registry] Cannot import {module_name}: {e}")
                    continue
                for kernel_class in _kernel_classes(module):
                    cls.register(kernel_class)

        cls._discovered = True
        logger.info(f"[registry] {len(cls._kernels)} kernels available")
        return len(cls._kernels)

    @classmethod
    def register(cls, kernel_class: KernelClass) -> None:
        """Add a kernel class; a different class under a taken name or label is refused."""
        name = kernel_class.name
        known = cls._kernels.get(name)
        if known is kernel_class:
            return
        if known is not None:
            logger.warning(f"[registry] '{name}' already provided by {known.__module__}, ignoring {kernel_class.__module__}")
            return
        label_owner = cls._producers.get(kernel_class.provides)
        if label_owner is not None:
            logger.warning(f"[registry] Artifact '{kernel_class.provides}' already produced by '{label_owner}', ignoring '{name}'")
            return

        cls._kernels[name] = kernel_class
        cls._producers[kernel_class.provides] = name
        logger.debug(f"[registry] + {name} (stage {kernel_class.stage}, provides {kernel_class.provides})")

    @classmethod
    def get(cls, name: str) -> KernelClass:
        """
        Raises:
            KeyError: unknown kernel name
        """
        cls._ensure_discovered()
        try:
            return cls._kernels[name]
        except KeyError:
            raise KeyError(f"Kernel '{name}' not found. Available: {', '.join(sorted(cls._kernels))}") from None

    @classmethod
    def get_instance(cls, name: str) -> Kernel:
        return cls.get(name)()

    @classmethod
    def list_all(cls) -> List[str]:
        cls._ensure_discovered()
        return sorted(cls._kernels)

    @classmethod
    def list_category(cls, category: str) -> List[str]:
        cls._ensure_discovered()
        return sorted(n for n, k in cls._kernels.items() if k.category == category)

    @classmethod
    def list_stage(cls, stage: int) -> List[str]:
        cls._ensure_discovered()
        return sorted(n for n, k in cls._kernels.items() if k.stage == stage)

    @classmethod
    def producer_of(cls, label: str) -> Optional[str]:
        """Kernel providing an artifact label; None for the knowledge base and unknown labels."""
        cls._ensure_discovered()
        return cls._producers.get(label)

    @classmethod
    def get_info(cls, name: str) -> Dict:
        kernel_class = cls.get(name)
        return {
            "name": kernel_class.name,
            "version": kernel_class.version,
            "category": kernel_class.category,
            "stage": kernel_class.stage,
            "description": kernel_class.description,
            "requires": list(kernel_class.requires),
            "optional": list(kernel_class.optional),
            "provides": kernel_class.provides,
            "needs_collaborator": kernel_class.needs_collaborator,
            "module": kernel_class.__module__,
        }

    @classmethod
    def resolve_dependencies(cls, kernel_names: List[str]) -> List[str]:
        """
        Order a selection of kernels producers-first.

        Producers of required labels join the selection. Optional labels
        only order kernels whose producer is already selected. Ties are
        broken by name, so the result is stable across runs.

        Raises:
            KeyError: unknown kernel name
            ValueError: circular dependency
        """
        selected: Set[str] = set()
        pending = list(kernel_names)
        while pending:
            name = pending.pop()
            if name in selected:
                continue
            selected.add(name)
            for label in cls.get(name).requires:
                producer = None if label == KNOWLEDGE_BASE else cls.producer_of(label)
                if producer is not None:
                    pending.append(producer)

        upstream: Dict[str, Set[str]] = {}
        for name in selected:
            kernel_class = cls.get(name)
            labels = list(kernel_class.requires) + list(kernel_class.optional)
            upstream[name] = {
                cls._producers[label] for label in labels
                if cls._producers.get(label) in selected
            } - {name}

        waiting = {name: len(deps) for name, deps in upstream.items()}
        ready = [name for name, count in waiting.items() if count == 0]
        heapq.heapify(ready)
        ordered: List[str] = []
        while ready:
            name = heapq.heappop(ready)
            ordered.append(name)
            for other, deps in upstream.items():
                if name in deps:
                    waiting[other] -= 1
                    if waiting[other] == 0:
                        heapq.heappush(ready, other)

        if len(ordered) != len(selected):
            raise ValueError(f"Circular dependency among kernels: {sorted(selected - set(ordered))}")
        return ordered

    @classmethod
    def _ensure_discovered(cls) -> None:
        if not cls._discovered:
            cls.discover()

    @classmethod
    def reset(cls) -> None:
        """Forget every registration (tests)."""
        cls._kernels.clear()
        cls._producers.clear()
        cls._discovered = False


def discover_kernels() -> int:
    return KernelRegistry.discover()


def get_kernel(name: str) -> KernelClass:
    return KernelRegistry.get(name)


def list_kernels(category: Optional[str] = None, stage: Optional[int] = None) -> List[str]:
    """All kernel names, optionally narrowed to one category or one stage."""
    if category:
        return KernelRegistry.list_category(category)
    if stage is not None:
        return KernelRegistry.list_stage(stage)
    return KernelRegistry.list_all()
