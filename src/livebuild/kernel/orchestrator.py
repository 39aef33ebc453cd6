"""Dependency-ordered regeneration of artifacts.

State machine driven by settle signals for watched inputs:

1. Poll the change detector; unchanged content is a no-op.
2. Every artifact transitively depending on the input becomes pending.
3. Pending artifacts are recomputed level by level in the graph's fixed
   topological order. Artifacts sharing a level have no dependency
   relationship and run concurrently.
4. A step with an absent dependency is skipped and its artifact becomes
   absent; stale or default values are never used.
5. A successful derivation is published (new version), then its effects run.
6. A failed derivation makes the artifact and all its dependents absent.

At most one chain is in flight. Signals arriving meanwhile are queued per
input and coalesced; queued chains re-read the latest file content.
"""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from livebuild._internal.logging import get_logger, log_failure
from livebuild.codes import FailureCode

from .change_detector import ChangeDetector
from .errors import BuildError, InputReadError, RegenerationError
from .graph import ArtifactGraph, DerivationRule
from .kinds import ArtifactKind, InputKind, Node, node_key
from .store import ArtifactStore

logger = get_logger(__name__)

Listener = Callable[["ChainReport"], None]


@dataclass
class StepFailure:
    """Why an artifact is absent after a chain."""
    kind: ArtifactKind
    code: FailureCode
    message: str
    step: str
    input_path: Optional[str] = None


@dataclass
class StepOutcome:
    kind: ArtifactKind
    status: str  # "rebuilt" | "failed" | "skipped"
    version: Optional[int] = None
    failure: Optional[StepFailure] = None
    effect_failures: Dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0


@dataclass
class ChainReport:
    """Result of processing one trigger."""
    inputs: Tuple[InputKind, ...]
    trigger: str  # "settle" | "bootstrap"
    changed: bool
    rebuilt: List[ArtifactKind] = field(default_factory=list)
    skipped: List[ArtifactKind] = field(default_factory=list)
    failures: Dict[ArtifactKind, StepFailure] = field(default_factory=dict)
    effect_failures: Dict[str, str] = field(default_factory=dict)
    store_version: int = 0
    duration_ms: float = 0.0
    error: Optional[str] = None  # set when the chain itself raised

    @property
    def ok(self) -> bool:
        """True when the chain completed and no derivation failed or was skipped."""
        return self.error is None and not self.failures and not self.skipped

    def record(self, outcome: StepOutcome) -> None:
        if outcome.status == "rebuilt":
            self.rebuilt.append(outcome.kind)
        elif outcome.status == "skipped":
            self.skipped.append(outcome.kind)
        if outcome.failure is not None:
            self.failures[outcome.kind] = outcome.failure
        self.effect_failures.update(outcome.effect_failures)


_Job = Tuple[Tuple[InputKind, ...], str]


class Orchestrator:
    """Owns the artifact store and re-runs derivation rules on input changes."""

    def __init__(
        self,
        graph: ArtifactGraph,
        detector: ChangeDetector,
        store: Optional[ArtifactStore] = None,
        max_workers: int = 4,
        listeners: Iterable[Listener] = (),
    ):
        self.graph = graph
        self.detector = detector
        self.store = store if store is not None else ArtifactStore(graph)
        self.max_workers = max(1, max_workers)
        self.listeners: List[Listener] = list(listeners)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._state_lock = threading.Lock()
        self._running = False
        self._queue: "OrderedDict[_Job, None]" = OrderedDict()
        self._idle = threading.Event()
        self._idle.set()
        self.chains_run = 0

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def handle_settle(self, kind: InputKind) -> Optional[ChainReport]:
        """Process a settle signal for ``kind``.

        Returns:
            The report of the chain run for this signal, or None when the
            signal was queued behind an in-flight chain.
        """
        return self._submit(((kind,), "settle"))

    def bootstrap(self) -> Optional[ChainReport]:
        """Build every artifact from the current content of all inputs."""
        return self._submit((tuple(sorted(self.detector.paths, key=node_key)), "bootstrap"))

    def _submit(self, job: _Job) -> Optional[ChainReport]:
        with self._state_lock:
            if self._running:
                if job in self._queue:
                    logger.debug("chain_coalesced", inputs=[k.value for k in job[0]], trigger=job[1])
                else:
                    self._queue[job] = None
                    logger.debug("chain_queued", inputs=[k.value for k in job[0]], trigger=job[1])
                return None
            self._running = True
            self._idle.clear()
        return self._drain(job)

    def _drain(self, job: _Job) -> ChainReport:
        first_report: Optional[ChainReport] = None
        try:
            while True:
                report = self._run_job(job)
                if first_report is None:
                    first_report = report
                # Empty-queue check and going idle share one critical section.
                with self._state_lock:
                    if not self._queue:
                        self._running = False
                        self._idle.set()
                        return first_report
                    job, _ = self._queue.popitem(last=False)
        except BaseException:
            # Interrupts abandon queued work
            with self._state_lock:
                self._queue.clear()
                self._running = False
                self._idle.set()
            raise

    def _run_job(self, job: _Job) -> ChainReport:
        """Run one chain; an exception is reported and never stops the drain loop."""
        inputs, trigger = job
        try:
            return self._run_chain(inputs, trigger)
        except Exception as e:
            log_failure(
                logger,
                "chain_failed",
                e,
                trigger=trigger,
                inputs=[k.value for k in inputs],
            )
            report = ChainReport(
                inputs=inputs,
                trigger=trigger,
                changed=False,
                error=f"{type(e).__name__}: {e}",
                store_version=self.store.version,
            )
            self._notify(report)
            return report

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no chain is running or queued."""
        return self._idle.wait(timeout)

    @property
    def busy(self) -> bool:
        with self._state_lock:
            return self._running

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    # ------------------------------------------------------------------
    # Chain execution
    # ------------------------------------------------------------------

    def _run_chain(self, inputs: Tuple[InputKind, ...], trigger: str) -> ChainReport:
        started = time.monotonic()
        force = trigger == "bootstrap"
        input_values: Dict[Node, bytes] = {}
        changed_inputs: List[InputKind] = []

        for kind in inputs:
            result = self.detector.poll(kind)
            if result.content is not None:
                input_values[kind] = result.content
            if result.changed:
                changed_inputs.append(kind)

        report = ChainReport(inputs=inputs, trigger=trigger, changed=bool(changed_inputs))
        if not changed_inputs and not force:
            report.store_version = self.store.version
            logger.debug("input_unchanged", inputs=[k.value for k in inputs])
            return report

        pending = set()
        for kind in (inputs if force else changed_inputs):
            pending |= self.graph.get_transitive_dependents(kind)
        pending = {node for node in pending if isinstance(node, ArtifactKind)}

        self.chains_run += 1
        logger.info(
            "chain_started",
            trigger=trigger,
            inputs=[k.value for k in (inputs if force else changed_inputs)],
            pending=sorted(k.value for k in pending),
        )

        for level in self.graph.schedule(pending):
            for outcome in self._run_level(level, input_values, inputs):
                report.record(outcome)

        report.store_version = self.store.version
        report.duration_ms = (time.monotonic() - started) * 1000
        logger.info(
            "chain_completed",
            trigger=trigger,
            rebuilt=[k.value for k in report.rebuilt],
            skipped=[k.value for k in report.skipped],
            failed=sorted(k.value for k in report.failures),
            store_version=report.store_version,
            duration_ms=round(report.duration_ms, 1),
        )
        self._notify(report)
        return report

    def _run_level(
        self,
        level: List[ArtifactKind],
        input_values: Mapping[Node, bytes],
        chain_inputs: Tuple[InputKind, ...],
    ) -> List[StepOutcome]:
        rules = [self.graph.rules[kind] for kind in level]
        if len(rules) == 1 or self.max_workers == 1:
            return [self._run_step(rule, input_values, chain_inputs) for rule in rules]
        executor = self._get_executor()
        futures = [
            executor.submit(self._run_step, rule, input_values, chain_inputs)
            for rule in rules
        ]
        return [future.result() for future in futures]

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers,
                thread_name_prefix="livebuild-derive",
            )
        return self._executor

    def _input_path_for(self, target: ArtifactKind, chain_inputs: Tuple[InputKind, ...]) -> Optional[str]:
        roots = self.graph.get_transitive_dependencies(target)
        paths = [
            str(self.detector.path_for(kind))
            for kind in chain_inputs
            if kind in roots
        ]
        return ", ".join(paths) if paths else None

    def _run_step(
        self,
        rule: DerivationRule,
        input_values: Mapping[Node, bytes],
        chain_inputs: Tuple[InputKind, ...],
    ) -> StepOutcome:
        target = rule.target
        input_path = self._input_path_for(target, chain_inputs)
        started = time.monotonic()

        with self.store.slot_lock(target):
            missing_inputs = [
                dep for dep in rule.dependencies
                if isinstance(dep, InputKind) and dep not in input_values
            ]
            if missing_inputs:
                error = InputReadError(
                    f"Input unreadable: {', '.join(k.value for k in missing_inputs)}",
                    input_path=input_path,
                    step=rule.step,
                )
                return self._fail(rule, error, started)

            missing = self.store.missing_dependencies(target)
            if missing:
                self.store.invalidate(target)
                logger.warning(
                    "derivation_skipped",
                    artifact=target.value,
                    step=rule.step,
                    missing=sorted(k.value for k in missing),
                    input_path=input_path,
                )
                return StepOutcome(
                    kind=target,
                    status="skipped",
                    failure=StepFailure(
                        kind=target,
                        code=FailureCode.SKIPPED_MISSING_DEPENDENCY,
                        message=f"Missing dependencies: {', '.join(sorted(k.value for k in missing))}",
                        step=rule.step,
                        input_path=input_path,
                    ),
                    duration_ms=(time.monotonic() - started) * 1000,
                )

            values: Dict[Node, Any] = {
                dep: input_values[dep] if isinstance(dep, InputKind) else self.store.value(dep)
                for dep in rule.dependencies
            }
            try:
                value = rule.derive(values)
            except RegenerationError as e:
                if e.step is None:
                    e.step = rule.step
                if e.input_path is None:
                    e.input_path = input_path
                return self._fail(rule, e, started)
            except Exception as e:
                error = BuildError(
                    f"{type(e).__name__}: {e}",
                    input_path=input_path,
                    step=rule.step,
                )
                error.__cause__ = e
                return self._fail(rule, error, started)

            record = self.store.publish(target, value)

        outcome = StepOutcome(kind=target, status="rebuilt", version=record.version)
        logger.info("artifact_rebuilt", artifact=target.value, step=rule.step, version=record.version)

        for effect in rule.effects:
            try:
                effect.run(value, values)
            except Exception as e:
                log_failure(
                    logger,
                    "effect_failed",
                    e,
                    artifact=target.value,
                    effect=effect.name,
                    input_path=input_path,
                    code=FailureCode.EFFECT_FAILED.value,
                )
                outcome.effect_failures[effect.name] = f"{type(e).__name__}: {e}"

        outcome.duration_ms = (time.monotonic() - started) * 1000
        return outcome

    def _fail(self, rule: DerivationRule, error: RegenerationError, started: float) -> StepOutcome:
        removed = self.store.invalidate(rule.target)
        log_failure(
            logger,
            "derivation_failed",
            error,
            artifact=rule.target.value,
            invalidated=sorted(k.value for k in removed),
        )
        return StepOutcome(
            kind=rule.target,
            status="failed",
            failure=StepFailure(
                kind=rule.target,
                code=error.code,
                message=error.message,
                step=error.step or rule.step,
                input_path=error.input_path,
            ),
            duration_ms=(time.monotonic() - started) * 1000,
        )

    def _notify(self, report: ChainReport) -> None:
        for listener in self.listeners:
            try:
                listener(report)
            except Exception as e:
                log_failure(logger, "listener_failed", e, listener=getattr(listener, "__name__", repr(listener)))
