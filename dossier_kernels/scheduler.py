"""
Pipeline Scheduler — DAG executor over named stages

Each stage declares the artifact labels it requires, the labels it can use
when they exist, and the one label it produces. The scheduler:

- validates the graph before anything runs (duplicate names or producers,
  cycles, seeds colliding with produced labels raise ValueError),
- starts a stage once its required inputs are available, on a bounded
  thread pool, never twice,
- fails dependents of a failed or missing producer without invoking them,
- honours a CancellationToken before each stage start,
- aborts on FatalPipelineError: nothing new starts, in-flight stages
  finish, then the error is re-raised.

Outputs of failed stages are never visible. Every transition is logged and
appended to an audit trail with chained SHA256 hashes.
"""

import copy
import hashlib
import json
import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional

from dossier_core.errors import FatalPipelineError
from dossier_core.logging_utils import RunLogger
from dossier_core.resilience import CancellationToken

logger = logging.getLogger(__name__)

# A runner receives the available inputs by label and returns the artifact
StageRunner = Callable[[Dict[str, Any]], Any]


class StageState(str, Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (StageState.DONE, StageState.FAILED)


@dataclass(frozen=True)
class StageDescriptor:
    """Static description of a stage and its artifact contract."""
    name: str
    required_inputs: FrozenSet[str] = frozenset()
    optional_inputs: FrozenSet[str] = frozenset()
    produces: str = ""

    def __post_init__(self):
        if not self.name:
            raise ValueError("stage name must not be empty")
        if not self.produces:
            raise ValueError(f"stage '{self.name}' must produce an artifact label")
        required = frozenset(self.required_inputs)
        object.__setattr__(self, "required_inputs", required)
        object.__setattr__(self, "optional_inputs", frozenset(self.optional_inputs) - required)

    @property
    def inputs(self) -> FrozenSet[str]:
        return self.required_inputs | self.optional_inputs


@dataclass
class SchedulerResult:
    """Final state of every stage, the visible artifacts and the audit trail."""
    states: Dict[str, StageState] = field(default_factory=dict)
    reasons: Dict[str, str] = field(default_factory=dict)
    artifacts: Dict[str, Any] = field(default_factory=dict)
    completion_order: List[str] = field(default_factory=list)
    audit_trail: List[Dict[str, Any]] = field(default_factory=list)

    def succeeded(self, name: str) -> bool:
        return self.states.get(name) == StageState.DONE

    def failed_stages(self) -> Dict[str, str]:
        """Failed stage names mapped to their reason."""
        return {
            name: self.reasons.get(name, "")
            for name, state in self.states.items() if state == StageState.FAILED
        }

    def summary(self) -> Dict[str, Any]:
        done = sum(1 for s in self.states.values() if s == StageState.DONE)
        return {
            "stages": len(self.states),
            "done": done,
            "failed": len(self.states) - done,
            "failures": self.failed_stages(),
        }


def _copy_input(value: Any) -> Any:
    # Containers are copied so a stage cannot mutate another stage's view
    if isinstance(value, (dict, list)):
        return copy.deepcopy(value)
    return value


class PipelineScheduler:
    """
    Executes stages in dependency order with bounded parallelism.

    Example:
        scheduler = PipelineScheduler(max_workers=4)
        scheduler.add_stage(StageDescriptor("arch", frozenset({"kb"}), produces="architecture"), run_arch)
        result = scheduler.run({"kb": knowledge_base})
        result.states["arch"]     # StageState.DONE
    """

    def __init__(
        self,
        max_workers: int = 4,
        await_optional_inputs: bool = True,
        cancel_token: Optional[CancellationToken] = None,
        run_logger: Optional[RunLogger] = None,
    ):
        self.max_workers = max(1, max_workers)
        self.await_optional_inputs = await_optional_inputs
        self.cancel_token = cancel_token
        self.run_logger = run_logger
        self._descriptors: Dict[str, StageDescriptor] = {}
        self._runners: Dict[str, StageRunner] = {}
        self._producers: Dict[str, str] = {}
        self.last_result: Optional[SchedulerResult] = None

    @property
    def stages(self) -> List[StageDescriptor]:
        """Descriptors in registration order."""
        return list(self._descriptors.values())

    def add_stage(self, descriptor: StageDescriptor, runner: StageRunner) -> None:
        """
        Register a stage.

        Raises:
            ValueError: If the name or the produced label is already taken
        """
        if descriptor.name in self._descriptors:
            raise ValueError(f"duplicate stage name '{descriptor.name}'")
        if descriptor.produces in self._producers:
            raise ValueError(
                f"artifact '{descriptor.produces}' already produced by stage "
                f"'{self._producers[descriptor.produces]}'"
            )
        self._descriptors[descriptor.name] = descriptor
        self._runners[descriptor.name] = runner
        self._producers[descriptor.produces] = descriptor.name
        logger.debug(f"[scheduler] Stage '{descriptor.name}' registered (produces {descriptor.produces})")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _edges(self) -> Dict[str, List[str]]:
        """Stage name -> upstream stage names it waits for."""
        edges: Dict[str, List[str]] = {}
        for name, desc in self._descriptors.items():
            labels = set(desc.required_inputs)
            if self.await_optional_inputs:
                labels |= desc.optional_inputs
            edges[name] = sorted(self._producers[label] for label in labels if label in self._producers)
        return edges

    def validate(self, initial_artifacts: Iterable[str] = ()) -> None:
        """
        Check the graph before running.

        Raises:
            ValueError: On a dependency cycle or a seed colliding with a produced label
        """
        collisions = sorted(set(initial_artifacts) & set(self._producers))
        if collisions:
            raise ValueError(f"seeded artifacts are also produced by stages: {collisions}")

        edges = self._edges()
        in_degree = {name: len(deps) for name, deps in edges.items()}
        queue = sorted(name for name, degree in in_degree.items() if degree == 0)
        visited = 0
        while queue:
            name = queue.pop(0)
            visited += 1
            for other, deps in edges.items():
                if name in deps:
                    in_degree[other] -= 1
                    if in_degree[other] == 0:
                        queue.append(other)
        if visited != len(edges):
            remaining = sorted(name for name, degree in in_degree.items() if degree > 0)
            raise ValueError(f"dependency cycle among stages: {remaining}")

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def run(self, initial_artifacts: Optional[Mapping[str, Any]] = None) -> SchedulerResult:
        """
        Run every registered stage.

        Args:
            initial_artifacts: Seeded artifacts by label (e.g. the knowledge base)

        Returns:
            SchedulerResult with every stage in a terminal state

        Raises:
            ValueError: If validation fails (nothing runs)
            FatalPipelineError: Re-raised from a runner after in-flight stages finish
        """
        seeds = dict(initial_artifacts or {})
        self.validate(seeds.keys())

        result = SchedulerResult(
            states={name: StageState.PENDING for name in self._descriptors},
            artifacts=seeds,
        )
        order = {name: index for index, name in enumerate(self._descriptors)}
        running: Dict[Future, str] = {}
        started: Dict[str, float] = {}
        fatal: Optional[FatalPipelineError] = None

        logger.info(f"[scheduler] Running {len(self._descriptors)} stage(s), max_workers={self.max_workers}")

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="stage") as pool:
            while True:
                if fatal is None:
                    if self.cancel_token is not None and self.cancel_token.cancelled:
                        for name in self._descriptors:
                            if result.states[name] == StageState.PENDING:
                                self._transition(result, name, StageState.FAILED, "cancelled")
                    self._propagate_failures(result)
                    for name in self._descriptors:
                        if result.states[name] != StageState.PENDING or not self._is_ready(name, result):
                            continue
                        self._transition(result, name, StageState.READY)
                        inputs = self._collect_inputs(name, result.artifacts)
                        self._transition(result, name, StageState.RUNNING)
                        started[name] = time.time()
                        running[pool.submit(self._runners[name], inputs)] = name

                if not running:
                    break

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in sorted(done, key=lambda f: order[running[f]]):
                    name = running.pop(future)
                    duration_ms = int((time.time() - started[name]) * 1000)
                    try:
                        value = future.result()
                    except FatalPipelineError as e:
                        self._transition(result, name, StageState.FAILED, f"fatal: {e}", duration_ms)
                        if fatal is None:
                            fatal = e
                            logger.error(f"[scheduler] Fatal error in stage '{name}', aborting: {e}")
                    except Exception as e:
                        self._transition(result, name, StageState.FAILED, f"{type(e).__name__}: {e}", duration_ms)
                    else:
                        result.artifacts[self._descriptors[name].produces] = value
                        result.completion_order.append(name)
                        self._transition(result, name, StageState.DONE, duration_ms=duration_ms)

        for name in self._descriptors:
            if result.states[name].is_terminal:
                continue
            if fatal is not None:
                reason = "aborted"
            elif self.cancel_token is not None and self.cancel_token.cancelled:
                reason = "cancelled"
            else:
                reason = "unsatisfiable inputs"
            self._transition(result, name, StageState.FAILED, reason)

        self.last_result = result
        summary = result.summary()
        logger.info(f"[scheduler] Finished: {summary['done']} done, {summary['failed']} failed")

        if fatal is not None:
            raise fatal
        return result

    def _is_ready(self, name: str, result: SchedulerResult) -> bool:
        desc = self._descriptors[name]
        if any(label not in result.artifacts for label in desc.required_inputs):
            return False
        if self.await_optional_inputs:
            for label in desc.optional_inputs:
                producer = self._producers.get(label)
                if producer is not None and not result.states[producer].is_terminal:
                    return False
        return True

    def _propagate_failures(self, result: SchedulerResult) -> None:
        """Fail pending stages whose required inputs can never become available."""
        changed = True
        while changed:
            changed = False
            for name, desc in self._descriptors.items():
                if result.states[name] != StageState.PENDING:
                    continue
                for label in sorted(desc.required_inputs):
                    if label in result.artifacts:
                        continue
                    producer = self._producers.get(label)
                    if producer is None:
                        reason = f"required input '{label}' has no producer"
                    elif result.states[producer] == StageState.FAILED:
                        reason = f"required input '{label}' unavailable: stage '{producer}' failed"
                    else:
                        continue
                    self._transition(result, name, StageState.FAILED, reason)
                    changed = True
                    break

    def _collect_inputs(self, name: str, artifacts: Dict[str, Any]) -> Dict[str, Any]:
        desc = self._descriptors[name]
        return {
            label: _copy_input(artifacts[label])
            for label in sorted(desc.inputs) if label in artifacts
        }

    def _transition(
        self,
        result: SchedulerResult,
        name: str,
        state: StageState,
        reason: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        result.states[name] = state
        if reason:
            result.reasons[name] = reason

        entry: Dict[str, Any] = {
            "timestamp": datetime.now().isoformat(),
            "stage": name,
            "state": state.value,
            "reason": reason,
            "duration_ms": duration_ms,
        }
        prev_hash = result.audit_trail[-1].get("chain_hash", "") if result.audit_trail else ""
        chain_content = json.dumps(entry, sort_keys=True) + prev_hash
        entry["chain_hash"] = hashlib.sha256(chain_content.encode()).hexdigest()[:16]
        result.audit_trail.append(entry)

        if state == StageState.FAILED:
            logger.warning(f"[{name}] failed: {reason}")
        else:
            logger.debug(f"[{name}] {state.value}")
        if self.run_logger is not None:
            self.run_logger.log_stage(name, state.value, reason, duration_ms)
