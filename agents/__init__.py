"""ThoughtGraph agents package — 12-stage video analysis graph."""

from typing import Optional

from agents.fetcher import FetcherAgent
from agents.speaker_id import SpeakerIdentificationAgent
from agents.diarize import DiarizerAgent
from agents.transcribe import TranscriberAgent
from agents.aggregate import SpeechAggregationAgent
from agents.emotion import EmotionAgent
from agents.fact_check import FactCheckAgent
from agents.bias import BiasAgent
from agents.credibility import CredibilityAgent
from agents.communication import CommunicationAgent
from agents.report import ReportAgent
from agents.ui_render import UIRenderAgent
from lib.registry import AgentKind, StageDefinition, StageRegistry, register

AGENT_REGISTRY = {
    AgentKind.FETCHER: FetcherAgent,
    AgentKind.SPEAKER_IDENTIFICATION: SpeakerIdentificationAgent,
    AgentKind.DIARIZER: DiarizerAgent,
    AgentKind.TRANSCRIBER: TranscriberAgent,
    AgentKind.SPEECH_AGGREGATION: SpeechAggregationAgent,
    AgentKind.EMOTION: EmotionAgent,
    AgentKind.FACT_CHECK: FactCheckAgent,
    AgentKind.BIAS: BiasAgent,
    AgentKind.CREDIBILITY: CredibilityAgent,
    AgentKind.COMMUNICATION: CommunicationAgent,
    AgentKind.REPORTER: ReportAgent,
    AgentKind.UI_RENDER: UIRenderAgent,
}

ANALYSIS_STAGES = ["N6", "N7", "N8", "N9", "N10"]

# (id, display name, agent kind, dependencies)
STAGES = [
    ("N1", "Video Fetcher", AgentKind.FETCHER, []),
    ("N2", "Speaker Identification", AgentKind.SPEAKER_IDENTIFICATION, ["N1"]),
    ("N3", "Speaker Diarization", AgentKind.DIARIZER, ["N2"]),
    ("N4", "Audio Transcription", AgentKind.TRANSCRIBER, ["N3"]),
    ("N5", "Speech Aggregation", AgentKind.SPEECH_AGGREGATION, ["N4"]),
    ("N6", "Emotion Analysis", AgentKind.EMOTION, ["N5"]),
    ("N7", "Fact Checking", AgentKind.FACT_CHECK, ["N5"]),
    ("N8", "Bias Detection", AgentKind.BIAS, ["N5"]),
    ("N9", "Credibility Analysis", AgentKind.CREDIBILITY, ["N5"]),
    ("N10", "Communication Analysis", AgentKind.COMMUNICATION, ["N5"]),
    ("N11", "Report Generation", AgentKind.REPORTER, ANALYSIS_STAGES),
    ("N12", "UI Rendering", AgentKind.UI_RENDER, ["N11"]),
]

PIPELINE_ORDER = [stage_id for stage_id, _, _, _ in STAGES]

REPORT_STAGE_ID = "N11"


def service_label(config: dict, kind: AgentKind) -> str:
    """Human-readable "Service (model)" label for a stage."""
    settings = config.get("agents", {}).get(kind.value, {})
    service = settings.get("service", "local")
    label = config.get("services", {}).get(service, {}).get("label", service)
    model = settings.get("model")
    return f"{label} ({model})" if model else label


def default_registry(config: Optional[dict] = None) -> StageRegistry:
    """The stage registry for the video analysis graph."""
    config = config or {}
    return register(
        StageDefinition(
            id=stage_id,
            name=name,
            agent_kind=kind,
            service_label=service_label(config, kind),
            depends_on=frozenset(deps),
        )
        for stage_id, name, kind, deps in STAGES
    )
