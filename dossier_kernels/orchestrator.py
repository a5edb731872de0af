"""
Documentation Pipeline — End-to-end orchestration

Source files → extraction (parallel, cached) → aggregation (barrier) →
research kernels → composition kernels → Document Tree.

Kernels are discovered through the KernelRegistry and registered as
scheduler stages. A kernel that fails marks its stage failed; sections
whose kernel failed, or whose required inputs were lost, are listed as
omitted in the Document Tree. AggregationError aborts the run.

When a workspace is given, the run leaves behind:
    workspace/knowledge_base.json      Knowledge Base snapshot
    workspace/stage1/*.json            Research kernel outputs (+ .summary.txt)
    workspace/stage2/*.json            Composition kernel outputs (+ .summary.txt)
    workspace/document_tree.json       Assembled tree
    workspace/logs/run.log             Human-readable log
    workspace/logs/events.jsonl        Structured events
    workspace/logs/audit_trail.json    Stage transitions with chained hashes
    workspace/.cache/                  Insight and response caches

Usage:
    pipeline = DocumentationPipeline(config, collaborator=EchoCollaborator())
    result = pipeline.run_project(Path("my-project"))
    pipeline.write_documents(result, Path("docs/dossier"))
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Union

from dossier_core.cache import InsightCache, ResponseCache
from dossier_core.collaborator import (
    CollaboratorClient,
    TextCollaborator,
    create_collaborator,
    retry_config_from,
)
from dossier_core.config import DossierConfig
from dossier_core.errors import UnitError
from dossier_core.extraction import ExtractionResult, extract_sources
from dossier_core.insight_types import SourceFile
from dossier_core.knowledge_base import KnowledgeBase, aggregate
from dossier_core.logging_utils import LogLevel, RunLogger
from dossier_core.resilience import CancellationToken
from dossier_core.sources import iter_source_files
from dossier_core.version import get_version_info
from dossier_kernels.base import KNOWLEDGE_BASE, Kernel, KernelInput, KernelOutput
from dossier_kernels.compose.base import ComposeKernel
from dossier_kernels.document import (
    DocumentNode,
    DocumentTree,
    MarkdownDirectorySink,
    SectionOutcome,
    assemble_document_tree,
)
from dossier_kernels.registry import KernelRegistry
from dossier_kernels.scheduler import PipelineScheduler, SchedulerResult, StageState

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Everything one run produced."""
    knowledge_base: KnowledgeBase
    document_tree: DocumentTree
    stage_states: Dict[str, str]
    stage_reasons: Dict[str, str]
    artifacts: Dict[str, Any]
    audit_trail: List[Dict[str, Any]]
    extraction: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, KernelOutput] = field(default_factory=dict)

    @property
    def failed_stages(self) -> Dict[str, str]:
        return {
            name: self.stage_reasons.get(name, "")
            for name, state in self.stage_states.items() if state == StageState.FAILED.value
        }

    def summary(self) -> Dict[str, Any]:
        return {
            "files": len(self.knowledge_base),
            "sections": self.document_tree.section_titles(),
            "omitted": [o.title for o in self.document_tree.omitted],
            "failed_stages": self.failed_stages,
            "extraction": self.extraction,
        }


class DocumentationPipeline:
    """
    Runs the whole documentation pipeline.

    Args:
        config: Run configuration (defaults apply when omitted)
        collaborator: Backend or ready client for the composition kernels
                      (default: built from config.collaborator)
        workspace: Directory for persisted outputs, logs and caches
                   (None = nothing written, no caching)
        cancel_token: Cooperative cancellation, checked per file and per stage
    """

    def __init__(
        self,
        config: Optional[DossierConfig] = None,
        collaborator: Optional[Union[TextCollaborator, CollaboratorClient]] = None,
        workspace: Optional[Path] = None,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.config = config or DossierConfig()
        self.workspace = Path(workspace) if workspace is not None else None
        self.cancel_token = cancel_token

        self.run_logger: Optional[RunLogger] = None
        self.insight_cache: Optional[InsightCache] = None
        response_cache: Optional[ResponseCache] = None
        if self.workspace is not None:
            self.workspace.mkdir(parents=True, exist_ok=True)
            level = self.config.logging.level.upper()
            self.run_logger = RunLogger(
                self.workspace / self.config.logging.log_dir,
                min_level=LogLevel(level) if level in LogLevel.__members__ else LogLevel.INFO,
                events_log=self.config.logging.events_log,
            )
            if self.config.cache.enabled:
                cache_dir = self.workspace / self.config.cache.cache_dir
                self.insight_cache = InsightCache(cache_dir)
                response_cache = ResponseCache(cache_dir, expire_hours=self.config.cache.expire_hours)

        if isinstance(collaborator, CollaboratorClient):
            self.client = collaborator
        else:
            backend = collaborator or create_collaborator(self.config.collaborator)
            self.client = CollaboratorClient(
                backend,
                retry_config=retry_config_from(self.config.collaborator),
                cache=response_cache,
                run_logger=self.run_logger,
            )

        KernelRegistry.discover()

    # ------------------------------------------------------------------
    # Kernel selection
    # ------------------------------------------------------------------

    def selected_kernels(self) -> List[Kernel]:
        """Enabled kernels in dependency order."""
        disabled = set(self.config.pipeline.disabled_units)
        enabled = [name for name in KernelRegistry.list_all() if name not in disabled]
        # Disabled producers stay disabled: their dependents fail instead
        ordered = [name for name in KernelRegistry.resolve_dependencies(enabled) if name in enabled]
        return [KernelRegistry.get_instance(name) for name in ordered]

    def kernel_options(self, kernel: Kernel) -> Dict[str, Any]:
        options = {
            "project_name": self.config.project_name,
            "target_language": self.config.pipeline.target_language,
        }
        options.update(self.config.pipeline.unit_options(kernel.name))
        return options

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run_project(self, root: Path) -> PipelineResult:
        """Run the pipeline on every supported file under a directory."""
        root = Path(root)
        logger.info(f"[pipeline] Reading sources from {root}")
        return self.run(iter_source_files(root, self.config.extraction))

    def run(self, sources: Iterable[SourceFile]) -> PipelineResult:
        """
        Run the pipeline on already-provided source files.

        Raises:
            AggregationError: If two different insights claim one file path
        """
        start_time = datetime.now()

        extraction = extract_sources(
            sources,
            max_workers=self.config.extraction.max_workers,
            cache=self.insight_cache,
            cancel_token=self.cancel_token,
        )
        self._log_extraction(extraction)

        kb = aggregate(extraction.insights)
        if self.workspace is not None:
            kb.save(self.workspace / "knowledge_base.json")

        kernels = self.selected_kernels()
        outputs: Dict[str, KernelOutput] = {}
        outputs_lock = Lock()

        scheduler = PipelineScheduler(
            max_workers=self.config.pipeline.max_parallel_units,
            await_optional_inputs=self.config.pipeline.await_optional_inputs,
            cancel_token=self.cancel_token,
            run_logger=self.run_logger,
        )
        for kernel in kernels:
            scheduler.add_stage(kernel.descriptor(), self._stage_runner(kernel, kb, outputs, outputs_lock))

        schedule = scheduler.run({KNOWLEDGE_BASE: kb})
        tree = self._assemble(kernels, schedule)

        if self.workspace is not None:
            self._save_run(tree, schedule, start_time)

        result = PipelineResult(
            knowledge_base=kb,
            document_tree=tree,
            stage_states={name: state.value for name, state in schedule.states.items()},
            stage_reasons=dict(schedule.reasons),
            artifacts={k: v for k, v in schedule.artifacts.items() if k != KNOWLEDGE_BASE},
            audit_trail=schedule.audit_trail,
            extraction=extraction.summary(),
            outputs=outputs,
        )
        logger.info(
            f"[pipeline] Done: {len(tree.sections)} section(s), {len(tree.omitted)} omitted "
            f"in {(datetime.now() - start_time).total_seconds():.1f}s"
        )
        return result

    def _stage_runner(self, kernel: Kernel, kb: KnowledgeBase, outputs: Dict[str, KernelOutput], lock: Lock):
        def run_stage(inputs: Dict[str, Any]) -> Dict[str, Any]:
            kernel_input = KernelInput(
                knowledge_base=kb,
                artifacts={label: value for label, value in inputs.items() if label != KNOWLEDGE_BASE},
                config=self.kernel_options(kernel),
                collaborator=self.client if kernel.needs_collaborator else None,
                workspace=self.workspace,
            )
            output = kernel.run(kernel_input)
            with lock:
                outputs[kernel.name] = output
            if not output.success:
                raise UnitError(kernel.name, "; ".join(output.errors) or output.summary)
            return output.data

        return run_stage

    def _assemble(self, kernels: List[Kernel], schedule: SchedulerResult) -> DocumentTree:
        outcomes = []
        for kernel in kernels:
            if not isinstance(kernel, ComposeKernel):
                continue
            node = None
            if schedule.succeeded(kernel.name):
                node = DocumentNode.from_dict(schedule.artifacts[kernel.provides]["node"])
            outcomes.append(SectionOutcome(
                name=kernel.name,
                title=kernel.section_title,
                ordinal=kernel.ordinal,
                node=node,
                reason=schedule.reasons.get(kernel.name, ""),
            ))
        title = f"{self.config.project_name} Documentation" if self.config.project_name else "Project Documentation"
        return assemble_document_tree(outcomes, title=title)

    def _log_extraction(self, extraction: ExtractionResult) -> None:
        summary = extraction.summary()
        logger.info(f"[pipeline] Extraction: {summary}")
        if self.run_logger is not None:
            self.run_logger.log_extraction(summary)

    def _save_run(self, tree: DocumentTree, schedule: SchedulerResult, start_time: datetime) -> None:
        tree_file = self.workspace / "document_tree.json"
        tree_file.write_text(json.dumps(tree.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")

        logs_dir = self.workspace / self.config.logging.log_dir
        logs_dir.mkdir(parents=True, exist_ok=True)
        trail_file = logs_dir / "audit_trail.json"
        with open(trail_file, "w", encoding="utf-8") as f:
            json.dump({
                "project": self.config.project_name,
                **get_version_info(),
                "start_time": start_time.isoformat(),
                "end_time": datetime.now().isoformat(),
                "entries": schedule.audit_trail,
            }, f, indent=2)
        logger.info(f"[pipeline] Audit trail saved to {trail_file}")

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def write_documents(self, result: PipelineResult, output_dir: Optional[Path] = None) -> List[Path]:
        """Write the Document Tree as Markdown (one file per section plus an index)."""
        sink = MarkdownDirectorySink(Path(output_dir or self.config.output_dir))
        return sink.write(result.document_tree)
