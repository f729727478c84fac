"""Shared test fixtures for ThoughtGraph tests."""

import asyncio
import copy
from typing import Callable, Dict, Iterable, List, Optional
from unittest.mock import AsyncMock

import pytest

from agents.base import AgentContext
from agents.pipeline import PipelineRun
from lib.media import MediaSource
from lib.registry import AgentKind, StageDefinition, register


def make_registry(graph: Dict[str, Iterable[str]], kind: AgentKind = AgentKind.UI_RENDER):
    """Registry from {stage id: dependencies}, in dict order."""
    return register(
        StageDefinition(id=sid, name=f"Stage {sid}", agent_kind=kind, service_label="Test", depends_on=deps)
        for sid, deps in graph.items()
    )


def agent_stage(kind: AgentKind, stage_id: str = "X") -> StageDefinition:
    return StageDefinition(id=stage_id, name=kind.value, agent_kind=kind, service_label="Test")


class FakeLLM:
    """Stands in for LLMClient; complete_json returns (or raises) the scripted replies in order."""

    def __init__(self, *replies):
        self.complete_json = AsyncMock(side_effect=list(replies))


def make_agent(cls, context: AgentContext, *replies, stage_id: str = "X"):
    """Instantiate an agent whose LLM calls return `replies`."""
    agent = cls(agent_stage(cls.kind, stage_id), context)
    fake = FakeLLM(*replies)
    agent.llm = lambda prefix="": fake
    agent.fake_llm = fake
    return agent


async def fake_resolver(reference: str) -> MediaSource:
    return MediaSource(reference=reference, kind="file", title="Test Video", duration_seconds=60.0)


class ScriptedAgent:
    def __init__(self, factory: "ScriptedFactory", stage: StageDefinition, context: AgentContext):
        self.factory = factory
        self.stage = stage
        self.context = context

    async def invoke(self, inputs: dict) -> dict:
        f = self.factory
        f.invocations.append(self.stage.id)
        f.inputs[self.stage.id] = dict(inputs)
        f.started_order.append(self.stage.id)
        f.running.add(self.stage.id)
        f.max_concurrent = max(f.max_concurrent, len(f.running))
        try:
            behavior = f.behaviors.get(self.stage.id)
            if behavior is None:
                await asyncio.sleep(0)
                return {"stage": self.stage.id}
            return await behavior(self.stage, self.context, inputs)
        finally:
            f.running.discard(self.stage.id)


class ScriptedFactory:
    """Agent factory whose agents follow a per-stage script.

    Stages without a behavior complete immediately with {"stage": <id>}.
    """

    def __init__(self, behaviors: Optional[Dict[str, Callable]] = None):
        self.behaviors = dict(behaviors or {})
        self.invocations: List[str] = []
        self.started_order: List[str] = []
        self.inputs: Dict[str, dict] = {}
        self.running = set()
        self.max_concurrent = 0

    def __call__(self, stage: StageDefinition, context: AgentContext) -> ScriptedAgent:
        return ScriptedAgent(self, stage, context)


def fails(message: str = "boom"):
    async def behavior(stage, context, inputs):
        await asyncio.sleep(0)
        raise RuntimeError(message)
    return behavior


def sleeps(seconds: float, output: Optional[dict] = None):
    async def behavior(stage, context, inputs):
        await asyncio.sleep(seconds)
        return dict(output or {"stage": stage.id})
    return behavior


def waits_for(event: asyncio.Event, started: Optional[asyncio.Event] = None):
    async def behavior(stage, context, inputs):
        if started is not None:
            started.set()
        await event.wait()
        return {"stage": stage.id}
    return behavior


def reports(values: Iterable[int]):
    async def behavior(stage, context, inputs):
        for value in values:
            context.progress(value)
            await asyncio.sleep(0)
        return {"stage": stage.id}
    return behavior


@pytest.fixture
def build_run(tmp_path):
    """Build a PipelineRun over a small graph with scripted agents."""

    def _build(graph, factory=None, report="R", reference="test.mp4", **kwargs):
        registry = graph if not isinstance(graph, dict) else make_registry(graph)
        kwargs.setdefault("policies", {})
        kwargs.setdefault("resolver", fake_resolver)
        return PipelineRun(
            registry,
            reference,
            {},
            agent_factory=factory or ScriptedFactory(),
            report_stage_id=report,
            work_dir=tmp_path / "work",
            **kwargs,
        )

    return _build


@pytest.fixture
def sample_config():
    """Return a minimal config dict."""
    return {
        "pipeline": {
            "report_stage": "N11",
            "default_timeout_seconds": 60,
            "max_video_seconds": 1800,
        },
        "services": {
            "google": {
                "label": "Google AI Studio",
                "base_url": "https://generativelanguage.googleapis.com/v1beta",
                "api_key_env": "GOOGLE_AI_STUDIO_KEY",
            },
            "openrouter": {
                "label": "OpenRouter",
                "base_url": "https://openrouter.ai/api/v1",
                "api_key_env": "OPENROUTER_API_KEY",
            },
            "deepgram": {
                "label": "Deepgram",
                "base_url": "https://api.deepgram.com/v1/listen",
                "api_key_env": "DEEPGRAM_API_KEY",
            },
            "youtube": {
                "label": "YouTube Data API",
                "base_url": "https://www.googleapis.com/youtube/v3",
                "api_key_env": "YOUTUBE_API_KEY",
            },
            "local": {"label": "Local"},
        },
        "agents": {
            "fetcher": {"service": "youtube", "model": "yt-dlp"},
            "speaker_identification": {
                "service": "google",
                "model": "gemini-1.5-pro",
                "frame_interval_seconds": 5,
                "scan_window_seconds": 120,
                "max_frames": 3,
            },
            "diarizer": {"service": "deepgram", "model": "nova-3", "language": "en"},
            "fact_check": {"service": "google", "model": "gemini-1.5-pro", "max_claims": 2},
            "credibility": {"service": "openrouter", "model": "anthropic/claude-3.5-sonnet"},
            "reporter": {"service": "openrouter", "model": "openai/gpt-4o"},
        },
        "stages": {
            "N3": {"timeout_seconds": 120, "max_attempts": 2, "backoff_seconds": 0.5},
        },
    }


@pytest.fixture
def media_source():
    return MediaSource(
        reference="https://www.youtube.com/watch?v=abcdefghijk",
        kind="youtube",
        title="Panel: The Future of AI",
        duration_seconds=600.0,
        video_id="abcdefghijk",
        description="With Dr. Jane Smith and host Bob Lee.",
        channel="Tech Talks",
    )


@pytest.fixture
def agent_context(tmp_path, sample_config, media_source):
    """Context for a real agent; progress values are collected in context.reported."""
    reported = []
    context = AgentContext(
        run_id="run_test",
        config=sample_config,
        source=media_source,
        work_dir=tmp_path / "work",
        progress=reported.append,
    )
    context.reported = reported
    return context


@pytest.fixture
def sample_segments():
    """Transcript segments for two diarized speakers."""
    return [
        {"speaker": 0, "start": 0.0, "end": 200.0, "text": "Welcome everyone to the panel today", "confidence": 0.9},
        {"speaker": 1, "start": 200.5, "end": 260.0, "text": "Thanks for having me", "confidence": 0.8},
        {"speaker": 0, "start": 261.0, "end": 400.0, "text": "Let us start with the first question", "confidence": 0.95},
    ]


@pytest.fixture
def analysis_outputs():
    """Completed outputs of N1-N11 as the real agents produce them."""
    speakers = [
        {
            "id": "speaker_1",
            "name": "Bob Lee",
            "confidence": 0.9,
            "role": "moderator",
            "segments": [{"start": 0.0, "end": 10.0, "text": "Welcome", "confidence": 0.9}],
            "time_spoken": 10.0,
        },
        {
            "id": "speaker_2",
            "name": "Dr. Jane Smith",
            "confidence": 0.8,
            "role": "panelist",
            "segments": [
                {"start": 10.0, "end": 20.0, "text": "Thanks", "confidence": 0.8},
                {"start": 21.0, "end": 30.0, "text": "Indeed", "confidence": 0.7},
            ],
            "time_spoken": 19.0,
        },
    ]
    outputs = {
        "N1": {"_agent": "fetcher", "title": "Panel: The Future of AI", "duration_seconds": 600.0},
        "N2": {"_agent": "speaker_identification", "speakers": [{"id": "speaker_1", "name": "Visual only"}]},
        "N3": {"_agent": "diarizer", "utterances": []},
        "N4": {"_agent": "transcriber", "segments": []},
        "N5": {"_agent": "speech_aggregation", "speakers": speakers, "transcript": "[00:00] Bob Lee: Welcome"},
        "N6": {
            "_agent": "emotion",
            "profiles": {
                "speaker_1": {"dominant": "joy", "scores": [{"emotion": "joy", "score": 0.7}]},
            },
            "segment_emotions": {
                "speaker_2": [
                    [{"emotion": "neutral", "score": 1.0}],
                    [{"emotion": "joy", "score": 0.6}, {"emotion": "neutral", "score": 0.4}],
                ],
            },
            "emotional_metrics": None,
            "overall_sentiment": 0.4,
        },
        "N7": {
            "_agent": "fact_check",
            "fact_checks": [
                {"claim": "AI doubles every year", "verdict": "FALSE", "confidence": 0.8, "sources": [], "explanation": "No"},
            ],
        },
        "N8": {
            "_agent": "bias",
            "biases": [{"type": "Authority Bias", "severity": "MEDIUM", "confidence": 0.6}],
            "bias_metrics": {
                "confirmation_bias": 40, "selection_bias": 30, "authority_bias": 55,
                "anchoring_bias": 20, "availability_bias": 25, "framing_effect": 35,
            },
        },
        "N9": {
            "_agent": "credibility",
            "credibility_metrics": {
                "source_reliability": 80, "fact_accuracy": 70, "citation_quality": 60,
                "expert_consensus": 65, "data_transparency": 50, "methodology_clarity": 75,
            },
        },
        "N10": {"_agent": "communication", "communication_metrics": None},
        "N11": {"_agent": "reporter", "title": "AI Panel Analysis", "summary": "A lively panel.", "key_findings": ["One false claim"]},
    }
    return copy.deepcopy(outputs)
