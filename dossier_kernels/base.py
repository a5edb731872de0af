"""
Kernel Base Classes — research and composition units

A kernel is one stage of the documentation pipeline:
- It declares the artifact labels it requires, the ones it can use when
  present (optional), and the single label it provides.
- compute() receives the knowledge base and the available artifacts and
  returns a JSON-serializable dict; summarize() condenses it to one line.
- run() adds validation, input hashing, failure containment and optional
  persistence. A failed run never exposes partial data.

Research kernels are pure functions of their inputs. Composition kernels
may additionally call the collaborator through a CollaboratorClient.
"""

import hashlib
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Type

from dossier_core.collaborator import CollaboratorClient
from dossier_core.errors import FatalPipelineError
from dossier_core.knowledge_base import KnowledgeBase
from dossier_core.version import SCHEMA_VERSION

logger = logging.getLogger(__name__)

KNOWLEDGE_BASE = "knowledge_base"
SUMMARY_LIMIT = 500


@dataclass
class KernelInput:
    """Standard input for any kernel.

    Attributes:
        knowledge_base: Read-only snapshot of all extracted facts
        artifacts: Outputs of upstream stages that exist, by label
        config: Kernel-specific options
        collaborator: Text-generation client (composition kernels only)
        workspace: Where outputs are persisted (None = in memory only)
    """
    knowledge_base: KnowledgeBase
    artifacts: Mapping[str, Any] = field(default_factory=dict)
    config: Dict[str, Any] = field(default_factory=dict)
    collaborator: Optional[CollaboratorClient] = None
    workspace: Optional[Path] = None

    def __post_init__(self):
        if isinstance(self.workspace, str):
            self.workspace = Path(self.workspace)


@dataclass
class KernelOutput:
    """Result of one Kernel.run(); data is empty whenever success is False."""
    success: bool
    data: Dict[str, Any]
    summary: str
    kernel_name: str
    kernel_version: str
    provides: str
    execution_time_ms: int
    input_hash: str
    dependencies_used: List[str]
    output_file: Optional[Path] = None
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


class Kernel(ABC):
    """
    One research analysis or one document section.

    Class attributes describe the kernel to the registry and the scheduler:
        name                  unique identifier, also the stage name
        category / stage      "research" (1) or "compose" (2)
        requires              labels that must be present
        optional              labels consumed when present
        provides              the single label produced
        needs_collaborator    refuse to run without a CollaboratorClient

    Example:
        class DomainCount(Kernel):
            name = "domain_count"
            category = "research"
            stage = 1
            requires = ["knowledge_base"]
            provides = "domain_count"

            def compute(self, input: KernelInput) -> Dict[str, Any]:
                return {"domains": len(input.knowledge_base.domain_groups)}

            def summarize(self, data: Dict[str, Any]) -> str:
                return f"{data['domains']} domains."
    """

    name: str = "base"
    version: str = "1.0.0"
    category: str = "base"
    stage: int = 0
    description: str = "Base kernel"

    requires: List[str] = []
    optional: List[str] = []
    provides: str = ""
    needs_collaborator: bool = False

    @abstractmethod
    def compute(self, input: KernelInput) -> Dict[str, Any]:
        """
        Produce the artifact as a JSON-serializable dict.

        Raises:
            UnitError: the kernel cannot produce its artifact
        """

    @abstractmethod
    def summarize(self, data: Dict[str, Any]) -> str:
        """One line describing compute() output."""

    def validate_input(self, input: KernelInput) -> List[str]:
        missing = [
            label for label in self.requires
            if (input.knowledge_base is None if label == KNOWLEDGE_BASE else label not in input.artifacts)
        ]
        errors = [f"Missing required input: {label}" for label in missing]
        if self.needs_collaborator and input.collaborator is None:
            errors.append("No collaborator configured")
        return errors

    def run(self, input: KernelInput) -> KernelOutput:
        """
        Validate, compute, summarize and (with a workspace) persist.

        Subclasses implement compute() and summarize() and leave run() alone.
        FatalPipelineError propagates; any other exception becomes a failed
        output carrying "<ExceptionType>: <message>".
        """
        used = sorted(label for label in input.artifacts if label in self.requires or label in self.optional)
        problems = self.validate_input(input)
        if problems:
            logger.error(f"[{self.name}] Not runnable: {'; '.join(problems)}")
            return self._output(False, {}, f"{self.name} not runnable: {problems[0]}", used, errors=problems)

        started = time.perf_counter()
        input_hash = self._hash_input(input)
        logger.info(f"[{self.name}] Computing (input {input_hash[:8]})")
        warnings: List[str] = []
        try:
            data = self.compute(input)
            summary = self.summarize(data)
        except FatalPipelineError:
            raise
        except Exception as e:
            logger.error(f"[{self.name}] Failed: {e}")
            data, summary = {}, f"{self.name} failed: {str(e)[:100]}"
            errors = [f"{type(e).__name__}: {e}"]
        else:
            errors = []
            if len(summary) > SUMMARY_LIMIT:
                summary = summary[:SUMMARY_LIMIT - 3] + "..."
                warnings.append(f"Summary truncated to {SUMMARY_LIMIT} characters")

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        output = self._output(not errors, data, summary, used, input_hash, elapsed_ms, warnings, errors)
        if input.workspace is not None:
            output.output_file = self._persist(input.workspace, output)
        return output

    def _output(
        self,
        success: bool,
        data: Dict[str, Any],
        summary: str,
        used: List[str],
        input_hash: str = "",
        elapsed_ms: int = 0,
        warnings: Optional[List[str]] = None,
        errors: Optional[List[str]] = None,
    ) -> KernelOutput:
        return KernelOutput(
            success=success,
            data=data,
            summary=summary,
            kernel_name=self.name,
            kernel_version=self.version,
            provides=self.provides,
            execution_time_ms=elapsed_ms,
            input_hash=input_hash,
            dependencies_used=used,
            warnings=warnings or [],
            errors=errors or [],
        )

    def _persist(self, workspace: Path, output: KernelOutput) -> Path:
        """Write stage<N>/<name>.json ({_meta, data}) and its .summary.txt."""
        target = workspace / f"stage{self.stage}" / f"{self.name}.json"
        target.parent.mkdir(parents=True, exist_ok=True)
        meta = {
            "kernel_name": self.name,
            "kernel_version": self.version,
            "schema_version": SCHEMA_VERSION,
            "provides": self.provides,
            "execution_time_ms": output.execution_time_ms,
            "input_hash": output.input_hash,
            "timestamp": datetime.now().isoformat(),
            "success": output.success,
            "errors": output.errors,
        }
        target.write_text(json.dumps({"_meta": meta, "data": output.data}, indent=2, default=str), encoding="utf-8")
        target.with_suffix(".summary.txt").write_text(output.summary, encoding="utf-8")
        logger.debug(f"[{self.name}] Saved {target}")
        return target

    def _hash_input(self, input: KernelInput) -> str:
        """16-hex SHA-256 prefix over kernel identity, options, facts and upstream artifacts."""
        content = json.dumps({
            "kernel": f"{self.name}@{self.version}",
            "config": input.config,
            "knowledge_base": input.knowledge_base.fingerprint() if input.knowledge_base else "",
            "artifacts": {k: v for k, v in input.artifacts.items() if k != KNOWLEDGE_BASE},
        }, sort_keys=True, default=str)
        return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]

    def descriptor(self):
        """Scheduler view of this kernel."""
        from dossier_kernels.scheduler import StageDescriptor
        return StageDescriptor(
            name=self.name,
            required_inputs=frozenset(self.requires),
            optional_inputs=frozenset(self.optional),
            produces=self.provides,
        )

    def __repr__(self) -> str:
        return f"<Kernel {self.name}@{self.version} stage={self.stage}>"


KernelClass = Type[Kernel]
