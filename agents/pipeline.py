"""Pipeline orchestrator — DAG-based concurrent agent execution for one analysis run.

Stages start as soon as every dependency has completed; independent stages run
concurrently as asyncio tasks. Agent tasks never touch run state themselves:
progress, attempts and completions are posted to a run-scoped channel and the
scheduler loop applies them one message at a time.
"""

import asyncio
import copy
import json
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from agents import AGENT_REGISTRY, REPORT_STAGE_ID, default_registry
from agents.base import AgentContext, BaseAgent
from lib.config import load_config, stage_policies
from lib.errors import (
    AgentError,
    IncompleteAggregation,
    InputUnavailable,
    PipelineFailed,
    RunCancelled,
    StageTimeout,
)
from lib.graph import validate
from lib.media import MediaSource, resolve_input
from lib.paths import run_work_dir
from lib.registry import StageDefinition, StagePolicy, StageRegistry
from lib.results import AnalysisResult, ResultAggregator
from lib.state import (
    EventBroadcaster,
    RunStatus,
    StageExecutionState,
    StageStatus,
    StateChangeEvent,
)

logger = logging.getLogger("thoughtgraph.pipeline")

AgentFactory = Callable[[StageDefinition, AgentContext], BaseAgent]
Resolver = Callable[[str], Awaitable[MediaSource]]


# Messages posted to the scheduler channel
@dataclass(frozen=True)
class _Progress:
    stage_id: str
    percent: int


@dataclass(frozen=True)
class _Attempt:
    stage_id: str
    attempt: int


@dataclass(frozen=True)
class _Finished:
    stage_id: str
    task: asyncio.Task


@dataclass(frozen=True)
class _Cancel:
    pass


def default_agent_factory(stage: StageDefinition, context: AgentContext) -> BaseAgent:
    agent_cls = AGENT_REGISTRY[stage.agent_kind]
    return agent_cls(stage, context)


def new_run_id() -> str:
    now = datetime.now(timezone.utc)
    return f"run_{now.strftime('%Y-%m-%d')}_{now.strftime('%H%M%S')}_{uuid.uuid4().hex[:6]}"


class PipelineRun:
    """One execution of the stage graph against one video reference.

    Call `execute()` once (or iterate `snapshots()`); observe with `subscribe()`;
    stop with `cancel()`. All methods must be called from the event loop the
    run executes on.
    """

    def __init__(
        self,
        registry: StageRegistry,
        reference: str,
        config: Optional[dict] = None,
        *,
        agent_factory: Optional[AgentFactory] = None,
        resolver: Optional[Resolver] = None,
        policies: Optional[Dict[str, StagePolicy]] = None,
        report_stage_id: Optional[str] = None,
        run_id: Optional[str] = None,
        work_dir: Optional[Path] = None,
    ):
        validate(registry)
        self.registry = registry
        self.reference = reference
        self.config = config if config is not None else {}
        self.run_id = run_id or new_run_id()
        self.report_stage_id = report_stage_id or self.config.get("pipeline", {}).get(
            "report_stage", REPORT_STAGE_ID
        )
        self.aggregator = ResultAggregator(registry, self.report_stage_id)
        self.policies = policies if policies is not None else stage_policies(self.config, registry)
        self.work_dir = Path(work_dir) if work_dir else run_work_dir(self.run_id)

        self._agent_factory = agent_factory or default_agent_factory
        self._resolver = resolver or (lambda ref: resolve_input(ref, self.config))

        self.status = RunStatus.PENDING
        self.states: Dict[str, StageExecutionState] = {
            sid: StageExecutionState(sid) for sid in registry.ids
        }
        self.outputs: Dict[str, dict] = {}
        self.source: Optional[MediaSource] = None
        self.result: Optional[AnalysisResult] = None
        self.error: Optional[Exception] = None
        self.created_at = datetime.now(timezone.utc)
        self.started_at: Optional[datetime] = None
        self.finished_at: Optional[datetime] = None

        self._events = EventBroadcaster(self.run_id)
        self._channel: Optional[asyncio.Queue] = None
        self._tasks: Dict[str, asyncio.Task] = {}
        self._resolve_task: Optional[asyncio.Future] = None
        self._cancel_requested = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)

    def snapshot(self) -> List[StageExecutionState]:
        """Copies of every stage's state, in registry order."""
        return [self.states[sid].copy() for sid in self.registry.ids]

    def subscribe(self) -> AsyncIterator[StateChangeEvent]:
        """Every state change of this run, including those already published."""
        return self._events.subscribe()

    async def snapshots(self) -> AsyncIterator[List[StageExecutionState]]:
        """Drive the run, yielding a snapshot after each state change.

        Raises PipelineFailed or RunCancelled after the last snapshot when the
        run does not complete.
        """
        task = asyncio.ensure_future(self.execute()) if self.status == RunStatus.PENDING else None
        async for _event in self.subscribe():
            yield self.snapshot()
        if task is not None:
            await task

    def cancel(self) -> None:
        """Request cancellation. No effect once the run is terminal."""
        if self.is_terminal or self._cancel_requested:
            return
        logger.info(f"Run {self.run_id}: cancellation requested")
        self._cancel_requested = True

        if self.status == RunStatus.PENDING:
            for sid in self.registry.ids:
                self._transition(sid, StageStatus.CANCELLED)
            self._finish(RunStatus.CANCELLED)
            return

        if self._resolve_task is not None:
            self._resolve_task.cancel()
        for task in self._tasks.values():
            task.cancel()
        if self._channel is not None:
            self._channel.put_nowait(_Cancel())

    async def execute(self) -> AnalysisResult:
        """Run every stage and aggregate the result.

        Raises PipelineFailed when the input cannot be resolved or a required
        stage does not complete, RunCancelled when cancelled.
        """
        if self.status == RunStatus.CANCELLED:
            raise RunCancelled(self.run_id)
        if self.status != RunStatus.PENDING:
            raise RuntimeError(f"Run {self.run_id} already started")

        self.status = RunStatus.RUNNING
        self.started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        self._channel = asyncio.Queue()
        logger.info(f"Run {self.run_id}: {len(self.registry)} stages for {self.reference}")
        for sid in self.registry.ids:
            self._publish(sid)

        try:
            if not await self._resolve():
                raise RunCancelled(self.run_id)

            self._start_ready()
            while not self._all_terminal():
                message = await self._channel.get()
                self._handle(message)
        except asyncio.CancelledError:
            # The run itself was cancelled from outside (e.g. server shutdown)
            self._cancel_requested = True
            for task in self._tasks.values():
                task.cancel()
            self._settle_cancelled()
            raise

        return self._conclude(time.monotonic() - started)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def _resolve(self) -> bool:
        """Resolve the input reference. False if cancelled meanwhile."""
        self._resolve_task = asyncio.ensure_future(self._resolver(self.reference))
        try:
            self.source = await self._resolve_task
        except asyncio.CancelledError:
            if not self._cancel_requested:
                raise
            self._settle_cancelled()
            return False
        except InputUnavailable as e:
            self._fail_unresolved(str(e))
            raise self.error from e
        except Exception as e:
            self._fail_unresolved(f"input could not be resolved: {e!r}")
            raise self.error from e
        finally:
            self._resolve_task = None
        return True

    def _fail_unresolved(self, reason: str) -> None:
        logger.error(f"Run {self.run_id}: {reason}")
        for sid in self.registry.ids:
            self._transition(sid, StageStatus.BLOCKED, error=reason)
        self.error = PipelineFailed(self.run_id, reason)
        self._finish(RunStatus.FAILED)

    def _all_terminal(self) -> bool:
        return all(state.status.is_terminal for state in self.states.values())

    def _start_ready(self) -> None:
        if self._cancel_requested:
            return
        for stage in self.registry.all():
            if self.states[stage.id].status is not StageStatus.PENDING:
                continue
            if all(self.states[dep].status is StageStatus.COMPLETED for dep in stage.depends_on):
                self._launch(stage)

    def _launch(self, stage: StageDefinition) -> None:
        # Agents see the outputs of every upstream stage, not just direct dependencies
        ancestors = self.registry.ancestors(stage.id)
        inputs = {
            dep: copy.deepcopy(self.outputs[dep])
            for dep in self.registry.ids
            if dep in ancestors
        }
        self._transition(stage.id, StageStatus.RUNNING)
        task = asyncio.ensure_future(self._invoke(stage, inputs))
        self._tasks[stage.id] = task
        channel = self._channel
        task.add_done_callback(lambda t, sid=stage.id: channel.put_nowait(_Finished(sid, t)))

    async def _invoke(self, stage: StageDefinition, inputs: Dict[str, dict]) -> dict:
        """Run one stage with its timeout and retry policy."""
        policy = self.policies.get(stage.id) or StagePolicy()
        channel = self._channel
        context = AgentContext(
            run_id=self.run_id,
            config=self.config,
            source=self.source,
            work_dir=self.work_dir,
            progress=lambda pct, sid=stage.id: channel.put_nowait(_Progress(sid, int(pct))),
        )

        last_error: Optional[AgentError] = None
        for attempt in range(1, policy.max_attempts + 1):
            channel.put_nowait(_Attempt(stage.id, attempt))
            agent = self._agent_factory(stage, context)
            try:
                if policy.timeout_seconds:
                    return await asyncio.wait_for(agent.invoke(inputs), policy.timeout_seconds)
                return await agent.invoke(inputs)
            except asyncio.TimeoutError:
                last_error = StageTimeout(stage.id, policy.timeout_seconds)
            except AgentError as e:
                last_error = e
            except Exception as e:
                last_error = AgentError(stage.id, e)

            if attempt < policy.max_attempts:
                delay = policy.retry.delay(attempt)
                logger.warning(
                    f"Stage {stage.id} attempt {attempt}/{policy.max_attempts} failed "
                    f"({last_error.cause}); retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

        raise last_error

    def _handle(self, message: Any) -> None:
        if isinstance(message, _Progress):
            state = self.states[message.stage_id]
            percent = max(0, min(100, message.percent))
            if state.status is StageStatus.RUNNING and percent > state.progress:
                state.progress = percent
                self._publish(message.stage_id)
        elif isinstance(message, _Attempt):
            self.states[message.stage_id].attempts = message.attempt
            if message.attempt > 1:
                logger.info(f"Stage {message.stage_id}: attempt {message.attempt}")
        elif isinstance(message, _Finished):
            self._on_finished(message.stage_id, message.task)
        elif isinstance(message, _Cancel):
            for sid in self.registry.ids:
                if self.states[sid].status is StageStatus.PENDING:
                    self._transition(sid, StageStatus.CANCELLED)

    def _on_finished(self, stage_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(stage_id, None)
        if task.cancelled():
            self._transition(stage_id, StageStatus.CANCELLED)
            return

        exc = task.exception()
        if exc is None:
            self.outputs[stage_id] = task.result()
            self._transition(stage_id, StageStatus.COMPLETED, progress=100)
            logger.info(f"Stage {stage_id} completed for {self.run_id}")
            self._start_ready()
            return

        error = exc if isinstance(exc, AgentError) else AgentError(stage_id, exc)
        logger.error(f"Stage {stage_id} failed for {self.run_id}: {error}")
        self._transition(stage_id, StageStatus.FAILED, error=str(error))

        descendants = self.registry.descendants(stage_id)
        for sid in self.registry.ids:
            if sid in descendants and self.states[sid].status is StageStatus.PENDING:
                self._transition(sid, StageStatus.BLOCKED, error=f"dependency {stage_id} failed")

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def _transition(
        self,
        stage_id: str,
        status: StageStatus,
        progress: Optional[int] = None,
        error: Optional[str] = None,
    ) -> None:
        state = self.states[stage_id]
        state.status = status
        now = datetime.now(timezone.utc)
        if status is StageStatus.RUNNING:
            state.started_at = now
        elif status.is_terminal:
            state.finished_at = now
        if progress is not None:
            state.progress = progress
        if error is not None:
            state.error = error
        logger.debug(f"[{self.run_id}] {stage_id} -> {status.value}")
        self._publish(stage_id)

    def _publish(self, stage_id: str) -> None:
        state = self.states[stage_id]
        self._events.publish(StateChangeEvent(
            run_id=self.run_id,
            stage_id=stage_id,
            status=state.status,
            progress=state.progress,
            error=state.error,
        ))

    def _settle_cancelled(self) -> None:
        for sid in self.registry.ids:
            if not self.states[sid].status.is_terminal:
                self._transition(sid, StageStatus.CANCELLED)
        self._finish(RunStatus.CANCELLED)

    def _conclude(self, processing_time: float) -> AnalysisResult:
        if self._cancel_requested:
            self._finish(RunStatus.CANCELLED)
            raise RunCancelled(self.run_id)

        statuses = {sid: self.states[sid].status.value for sid in self.registry.ids}
        try:
            result = self.aggregator.aggregate(
                self.outputs,
                run_id=self.run_id,
                video_url=self.reference,
                processing_time=processing_time,
                stage_statuses=statuses,
            )
        except IncompleteAggregation as e:
            self.error = PipelineFailed(
                self.run_id,
                f"required stages did not complete: {', '.join(e.missing_stage_ids)}",
                e.missing_stage_ids,
            )
            self._finish(RunStatus.FAILED)
            raise self.error from e
        except ValidationError as e:
            self.error = PipelineFailed(self.run_id, f"malformed stage output: {e}")
            self._finish(RunStatus.FAILED)
            raise self.error from e
        except Exception as e:
            logger.exception(f"Run {self.run_id}: aggregation failed")
            self.error = PipelineFailed(self.run_id, f"aggregation failed: {e!r}")
            self._finish(RunStatus.FAILED)
            raise self.error from e

        self.result = result
        self._finish(RunStatus.COMPLETED)
        return result

    def _finish(self, status: RunStatus) -> None:
        self.status = status
        self.finished_at = datetime.now(timezone.utc)
        self._events.close()
        logger.info(f"Run {self.run_id} {status.value}")
        if self.started_at is not None:
            self._save_run()

    def _save_run(self) -> None:
        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            with open(self.work_dir / "run.json", "w") as f:
                json.dump(self.to_dict(include_result=True), f, indent=2, default=str)
        except OSError as e:
            logger.warning(f"Failed to save run.json for {self.run_id}: {e}")

    def to_dict(self, include_result: bool = False) -> dict:
        data = {
            "run_id": self.run_id,
            "video_url": self.reference,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "error": str(self.error) if self.error else None,
            "stages": [
                {
                    "id": stage.id,
                    "name": stage.name,
                    "service": stage.service_label,
                    "depends_on": sorted(stage.depends_on),
                    **self.states[stage.id].to_dict(),
                }
                for stage in self.registry.all()
            ],
        }
        if include_result and self.result is not None:
            data["result"] = self.result.model_dump(mode="json", by_alias=True)
        return data


def create_run(
    reference: str,
    config: Optional[dict] = None,
    registry: Optional[StageRegistry] = None,
    **kwargs,
) -> PipelineRun:
    """Build a run over the default stage graph and project configuration."""
    config = config if config is not None else load_config()
    registry = registry or default_registry(config)
    return PipelineRun(registry, reference, config, **kwargs)
