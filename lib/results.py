"""Analysis result schema and the result aggregator.

Models serialise with camelCase aliases (``model_dump(by_alias=True)``) for the
web UI and accept either snake_case or camelCase on input, so LLM payloads can
be validated directly.
"""

import logging
from enum import Enum
from typing import Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from lib.errors import IncompleteAggregation
from lib.registry import AgentKind, StageRegistry

logger = logging.getLogger("thoughtgraph.results")

EMOTIONS = ("joy", "sadness", "anger", "fear", "surprise", "disgust", "neutral")


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def _unit(value) -> float:
    """Clamp to [0, 1]; None and garbage become 0."""
    try:
        return min(1.0, max(0.0, float(value)))
    except (TypeError, ValueError):
        return 0.0


def _score(value) -> int:
    """Clamp to an integer 0-100."""
    try:
        return int(round(min(100.0, max(0.0, float(value)))))
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# Speakers
# ---------------------------------------------------------------------------

class SpeakerRole(str, Enum):
    MODERATOR = "moderator"
    PANELIST = "panelist"
    GUEST = "guest"
    AUDIENCE = "audience"
    UNKNOWN = "unknown"


class EmotionScore(_Model):
    emotion: str
    score: float

    @field_validator("score", mode="before")
    @classmethod
    def clamp_score(cls, value):
        return _unit(value)


class EmotionProfile(_Model):
    dominant: str
    scores: List[EmotionScore] = []


class SpeechSegment(_Model):
    start: float
    end: float
    text: str
    confidence: float = 0.0
    emotions: List[EmotionScore] = []

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value):
        return _unit(value)


class BoundingBox(_Model):
    x: float
    y: float
    width: float
    height: float


class VisualFeatures(_Model):
    face_embedding: List[float] = []
    position: Optional[BoundingBox] = None
    screen_time: float = 0.0


class AudioFeatures(_Model):
    voice_embedding: List[float] = []
    speaking_time: float = 0.0
    average_volume: Optional[float] = None
    speech_rate: float = 0.0


class ContextualClues(_Model):
    introduced_as: Optional[str] = None
    title_mentioned: Optional[str] = None
    expertise_area: Optional[str] = None
    speaking_pattern: str = "occasional"


class SpeakerProfile(_Model):
    id: str
    name: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    role: SpeakerRole = SpeakerRole.UNKNOWN
    visual_features: VisualFeatures = VisualFeatures()
    audio_features: AudioFeatures = AudioFeatures()
    contextual_clues: ContextualClues = ContextualClues()
    emotion_profile: Optional[EmotionProfile] = None
    segments: List[SpeechSegment] = []
    time_spoken: float = 0.0


# ---------------------------------------------------------------------------
# Findings
# ---------------------------------------------------------------------------

class Verdict(str, Enum):
    TRUE = "TRUE"
    FALSE = "FALSE"
    MIXED = "MIXED"
    UNVERIFIED = "UNVERIFIED"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class FactCheck(_Model):
    claim: str
    verdict: Verdict = Verdict.UNVERIFIED
    confidence: float = 0.0
    sources: List[str] = []
    explanation: str = ""

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value):
        return _unit(value)

    @field_validator("verdict", mode="before")
    @classmethod
    def normalize_verdict(cls, value):
        value = str(value or "").strip().upper()
        return value if value in Verdict.__members__ else Verdict.UNVERIFIED


class BiasDetection(_Model):
    type: str
    severity: Severity = Severity.LOW
    description: str = ""
    examples: List[str] = []
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, value):
        return _unit(value)

    @field_validator("severity", mode="before")
    @classmethod
    def normalize_severity(cls, value):
        value = str(value or "").strip().upper()
        return value if value in Severity.__members__ else Severity.LOW


# ---------------------------------------------------------------------------
# Metric groups (0-100 each)
# ---------------------------------------------------------------------------

class _Metrics(_Model):
    @field_validator("*", mode="before")
    @classmethod
    def clamp_metric(cls, value):
        return _score(value)


class CredibilityMetrics(_Metrics):
    source_reliability: int
    fact_accuracy: int
    citation_quality: int
    expert_consensus: int
    data_transparency: int
    methodology_clarity: int


class CommunicationMetrics(_Metrics):
    clarity: int
    engagement: int
    persuasiveness: int
    emotional_appeal: int
    logical_structure: int
    audience_adaptation: int


class BiasMetrics(_Metrics):
    confirmation_bias: int
    selection_bias: int
    authority_bias: int
    anchoring_bias: int
    availability_bias: int
    framing_effect: int


class EmotionalMetrics(_Metrics):
    self_awareness: int
    empathy: int
    emotional_regulation: int
    social_skills: int
    motivation: int
    adaptability: int


M = TypeVar("M", bound=BaseModel)


def parse_metrics(model: Type[M], payload: Optional[Mapping]) -> Optional[M]:
    """Validate an LLM metric payload; a missing group stays None."""
    if not payload:
        return None
    return model.model_validate(dict(payload))


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

class AnalysisResult(_Model):
    id: str
    video_url: str
    title: str
    duration: float
    speakers: List[SpeakerProfile]
    fact_checks: List[FactCheck]
    biases: List[BiasDetection]
    overall_sentiment: Optional[float] = Field(default=None, ge=-1.0, le=1.0)
    processing_time: float = 0.0
    credibility_metrics: Optional[CredibilityMetrics] = None
    communication_metrics: Optional[CommunicationMetrics] = None
    bias_metrics: Optional[BiasMetrics] = None
    emotional_metrics: Optional[EmotionalMetrics] = None
    summary: Optional[str] = None
    key_findings: List[str] = []
    stage_statuses: Dict[str, str] = {}


def _with_emotions(speaker: SpeakerProfile, profile, segment_scores) -> SpeakerProfile:
    update = {}
    if profile:
        update["emotion_profile"] = EmotionProfile.model_validate(profile)
    if segment_scores and len(segment_scores) == len(speaker.segments):
        update["segments"] = [
            seg.model_copy(update={"emotions": [EmotionScore.model_validate(e) for e in scores]})
            for seg, scores in zip(speaker.segments, segment_scores)
        ]
    return speaker.model_copy(update=update) if update else speaker


def merge_outputs(
    by_kind: Mapping[AgentKind, dict],
    *,
    run_id: str,
    video_url: str,
    processing_time: float = 0.0,
    stage_statuses: Optional[Mapping[str, str]] = None,
) -> AnalysisResult:
    """Build an AnalysisResult from stage outputs keyed by the agent kind that produced them.

    Every contribution is optional here; absent groups stay None or empty.
    """
    fetched = by_kind.get(AgentKind.FETCHER, {})
    title = fetched.get("title") or video_url
    duration = float(fetched.get("duration_seconds") or 0.0)

    speakers: List[SpeakerProfile] = []
    # Fused speakers from speech aggregation supersede the visual-only profiles
    for kind in (AgentKind.SPEECH_AGGREGATION, AgentKind.SPEAKER_IDENTIFICATION):
        output = by_kind.get(kind)
        if output and "speakers" in output:
            speakers = [SpeakerProfile.model_validate(s) for s in output["speakers"]]
            break

    emotion = by_kind.get(AgentKind.EMOTION, {})
    if emotion:
        speakers = [
            _with_emotions(
                s,
                emotion.get("profiles", {}).get(s.id),
                emotion.get("segment_emotions", {}).get(s.id),
            )
            for s in speakers
        ]

    fact_checks = [
        FactCheck.model_validate(fc)
        for fc in by_kind.get(AgentKind.FACT_CHECK, {}).get("fact_checks", [])
    ]
    bias = by_kind.get(AgentKind.BIAS, {})
    biases = [BiasDetection.model_validate(b) for b in bias.get("biases", [])]

    report = by_kind.get(AgentKind.REPORTER, {})
    if report.get("title"):
        title = report["title"]

    return AnalysisResult(
        id=run_id,
        video_url=video_url,
        title=title,
        duration=duration,
        speakers=speakers,
        fact_checks=fact_checks,
        biases=biases,
        overall_sentiment=emotion.get("overall_sentiment"),
        processing_time=round(processing_time, 2),
        credibility_metrics=parse_metrics(
            CredibilityMetrics,
            by_kind.get(AgentKind.CREDIBILITY, {}).get("credibility_metrics"),
        ),
        communication_metrics=parse_metrics(
            CommunicationMetrics,
            by_kind.get(AgentKind.COMMUNICATION, {}).get("communication_metrics"),
        ),
        bias_metrics=parse_metrics(BiasMetrics, bias.get("bias_metrics")),
        emotional_metrics=parse_metrics(EmotionalMetrics, emotion.get("emotional_metrics")),
        summary=report.get("summary"),
        key_findings=list(report.get("key_findings", [])),
        stage_statuses=dict(stage_statuses or {}),
    )


class ResultAggregator:
    """Merges completed stage outputs into one AnalysisResult.

    The direct dependencies of the report stage are required; every other
    contribution is optional and left as None when its stage did not complete.
    """

    def __init__(self, registry: StageRegistry, report_stage_id: str):
        report = registry.get(report_stage_id)
        if report is None:
            raise KeyError(f"Unknown report stage: {report_stage_id}")
        self.registry = registry
        self.report_stage_id = report_stage_id
        self.required_stage_ids = frozenset(report.depends_on)

    def missing(self, completed: Mapping[str, dict]) -> List[str]:
        return sorted(sid for sid in self.required_stage_ids if sid not in completed)

    def aggregate(
        self,
        completed: Mapping[str, dict],
        *,
        run_id: str,
        video_url: str,
        processing_time: float = 0.0,
        stage_statuses: Optional[Mapping[str, str]] = None,
    ) -> AnalysisResult:
        missing = self.missing(completed)
        if missing:
            raise IncompleteAggregation(missing)

        by_kind: Dict[AgentKind, dict] = {}
        for stage in self.registry.all():
            if stage.id in completed:
                by_kind[stage.agent_kind] = completed[stage.id]

        result = merge_outputs(
            by_kind,
            run_id=run_id,
            video_url=video_url,
            processing_time=processing_time,
            stage_statuses=stage_statuses,
        )
        logger.info(
            f"Aggregated {run_id}: {len(result.speakers)} speakers, "
            f"{len(result.fact_checks)} fact checks, {len(result.biases)} biases"
        )
        return result
