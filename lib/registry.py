"""Stage registry — static declaration of the processing DAG."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Iterator, Optional, Set, Tuple

from lib.errors import DuplicateStageId, UnknownDependency


class AgentKind(str, Enum):
    FETCHER = "fetcher"
    SPEAKER_IDENTIFICATION = "speaker_identification"
    DIARIZER = "diarizer"
    TRANSCRIBER = "transcriber"
    SPEECH_AGGREGATION = "speech_aggregation"
    EMOTION = "emotion"
    FACT_CHECK = "fact_check"
    BIAS = "bias"
    CREDIBILITY = "credibility"
    COMMUNICATION = "communication"
    REPORTER = "reporter"
    UI_RENDER = "ui_render"


@dataclass(frozen=True)
class StageDefinition:
    id: str
    name: str
    agent_kind: AgentKind
    service_label: str
    depends_on: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))


@dataclass(frozen=True)
class RetryPolicy:
    """Opt-in retry for one stage: exponential backoff, capped."""

    max_attempts: int = 1
    backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0

    def delay(self, attempt: int) -> float:
        """Delay before the attempt following `attempt` (1-based)."""
        return min(self.backoff_seconds * (2 ** (attempt - 1)), self.max_backoff_seconds)


@dataclass(frozen=True)
class StagePolicy:
    timeout_seconds: Optional[float] = None
    retry: Optional[RetryPolicy] = None

    @property
    def max_attempts(self) -> int:
        return max(1, self.retry.max_attempts) if self.retry else 1


class StageRegistry:
    """Immutable, ordered collection of stage definitions.

    Built through `register()`, which checks ids and dependency references.
    """

    def __init__(self, stages: Tuple[StageDefinition, ...]):
        self._stages = stages
        self._by_id: Dict[str, StageDefinition] = {s.id: s for s in stages}
        dependents: Dict[str, Set[str]] = {s.id: set() for s in stages}
        for stage in stages:
            for dep in stage.depends_on:
                dependents[dep].add(stage.id)
        self._dependents = {k: frozenset(v) for k, v in dependents.items()}

    def get(self, stage_id: str) -> Optional[StageDefinition]:
        return self._by_id.get(stage_id)

    def all(self) -> Tuple[StageDefinition, ...]:
        return self._stages

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(s.id for s in self._stages)

    def dependents(self, stage_id: str) -> FrozenSet[str]:
        """Stages that directly depend on `stage_id`."""
        return self._dependents.get(stage_id, frozenset())

    def descendants(self, stage_id: str) -> Set[str]:
        """Every stage that transitively depends on `stage_id`."""
        return self._walk(stage_id, self.dependents)

    def ancestors(self, stage_id: str) -> Set[str]:
        """Every stage `stage_id` transitively depends on."""
        return self._walk(stage_id, lambda sid: self._by_id[sid].depends_on)

    def _walk(self, start: str, edges) -> Set[str]:
        seen: Set[str] = set()
        stack = list(edges(start))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(edges(current))
        return seen

    def __contains__(self, stage_id: object) -> bool:
        return stage_id in self._by_id

    def __iter__(self) -> Iterator[StageDefinition]:
        return iter(self._stages)

    def __len__(self) -> int:
        return len(self._stages)


def register(stages: Iterable[StageDefinition]) -> StageRegistry:
    """Build a registry, rejecting duplicate ids and dangling dependencies.

    Dependencies may reference stages declared later in the sequence.
    Cycles are not checked here; see lib.graph.validate.
    """
    ordered = tuple(stages)
    seen = set()
    for stage in ordered:
        if stage.id in seen:
            raise DuplicateStageId(stage.id)
        seen.add(stage.id)

    for stage in ordered:
        for dep in sorted(stage.depends_on):
            if dep not in seen:
                raise UnknownDependency(stage.id, dep)

    return StageRegistry(ordered)
