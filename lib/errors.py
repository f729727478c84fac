"""Error taxonomy for the analysis pipeline.

Startup errors (RegistryError, CycleDetected) abort before any run begins.
AgentError is contained to one stage's branch of the DAG. The remaining errors
describe the terminal outcome of a whole run.
"""

from typing import Iterable, List, Optional


class PipelineError(Exception):
    """Base class for every pipeline error."""


class RegistryError(PipelineError):
    """The stage registry is malformed."""


class DuplicateStageId(RegistryError):
    def __init__(self, stage_id: str):
        self.stage_id = stage_id
        super().__init__(f"Duplicate stage id: {stage_id}")


class UnknownDependency(RegistryError):
    def __init__(self, stage_id: str, dependency: str):
        self.stage_id = stage_id
        self.dependency = dependency
        super().__init__(f"Stage {stage_id} depends on unknown stage {dependency}")


class CycleDetected(PipelineError):
    def __init__(self, path: Iterable[str]):
        self.path = list(path)
        super().__init__("Dependency cycle: " + " -> ".join(self.path))


class AgentError(PipelineError):
    """An agent invocation failed. `cause` is a short description or the original exception."""

    def __init__(self, stage_id: str, cause):
        self.stage_id = stage_id
        self.cause = cause
        super().__init__(f"[{stage_id}] {cause}")


class StageTimeout(AgentError):
    def __init__(self, stage_id: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(stage_id, "Timeout")

    def __str__(self) -> str:
        return f"[{self.stage_id}] Timeout after {self.timeout_seconds:g}s"


class IncompleteAggregation(PipelineError):
    def __init__(self, missing_stage_ids: Iterable[str]):
        self.missing_stage_ids = sorted(missing_stage_ids)
        super().__init__("Aggregation is missing stages: " + ", ".join(self.missing_stage_ids))


class InputUnavailable(PipelineError):
    def __init__(self, reference: str, reason: str):
        self.reference = reference
        self.reason = reason
        super().__init__(f"Input unavailable ({reference}): {reason}")


class PipelineFailed(PipelineError):
    """Terminal failure of a run."""

    def __init__(self, run_id: str, reason: str, missing_stage_ids: Optional[List[str]] = None):
        self.run_id = run_id
        self.reason = reason
        self.missing_stage_ids = list(missing_stage_ids or [])
        super().__init__(f"Run {run_id} failed: {reason}")


class RunCancelled(PipelineError):
    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run {run_id} was cancelled")
