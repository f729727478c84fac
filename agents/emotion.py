"""Emotion analysis agent — per-segment emotion scores and per-speaker profiles.

Inputs:
    - speech aggregation output (speakers with segments, transcript)
Outputs:
    - profiles: speaker id -> EmotionProfile (dominant emotion, mean scores)
    - segment_emotions: speaker id -> per-segment score lists
    - emotional_metrics: six emotional-intelligence scores (0-100)
    - overall_sentiment: -1 .. 1
Dependencies:
    - numpy (score normalisation)
"""

from typing import List, Mapping, Optional

import numpy as np

from agents.base import BaseAgent, transcript_excerpt
from lib.registry import AgentKind
from lib.results import (
    EMOTIONS,
    EmotionalMetrics,
    EmotionProfile,
    EmotionScore,
    SpeakerProfile,
    parse_metrics,
)

SEGMENT_PROMPT = """Analyze the emotional content of each numbered statement by {name}.
Score every statement from 0 to 1 on: joy, sadness, anger, fear, surprise, disgust, neutral.

Statements:
{statements}

Return JSON:
{{"segments": [{{"index": 0, "scores": {{"joy": 0.1, "sadness": 0.0, "anger": 0.0, "fear": 0.0, "surprise": 0.0, "disgust": 0.0, "neutral": 0.9}}}}]}}"""

METRICS_PROMPT = """Evaluate the emotional intelligence displayed in this discussion and its overall sentiment.

Transcript:
{content}

Return JSON:
{{
  "emotional_metrics": {{"selfAwareness": 0-100, "empathy": 0-100, "emotionalRegulation": 0-100,
                         "socialSkills": 0-100, "motivation": 0-100, "adaptability": 0-100}},
  "overall_sentiment": -1.0 to 1.0
}}"""

NEUTRAL = EMOTIONS.index("neutral")


def score_matrix(payload, count: int) -> np.ndarray:
    """Per-segment scores as a (count, 7) array with rows normalised to sum 1.

    Segments the model skipped, and rows with no positive score, count as neutral.
    """
    matrix = np.zeros((count, len(EMOTIONS)))
    rows = payload.get("segments", []) if isinstance(payload, dict) else []
    for position, row in enumerate(rows):
        if not isinstance(row, dict):
            continue
        index = row.get("index", position)
        if not isinstance(index, int) or not 0 <= index < count:
            continue
        scores = row.get("scores") or {}
        for col, emotion in enumerate(EMOTIONS):
            try:
                matrix[index, col] = float(scores.get(emotion, 0.0))
            except (TypeError, ValueError):
                matrix[index, col] = 0.0

    matrix = np.clip(matrix, 0.0, 1.0)
    totals = matrix.sum(axis=1)
    empty = totals <= 0
    matrix[empty, NEUTRAL] = 1.0
    totals[empty] = 1.0
    return matrix / totals[:, None]


def profile_from_matrix(matrix: np.ndarray) -> EmotionProfile:
    means = matrix.mean(axis=0) if len(matrix) else np.eye(len(EMOTIONS))[NEUTRAL]
    order = np.argsort(-means, kind="stable")
    return EmotionProfile(
        dominant=EMOTIONS[int(order[0])],
        scores=[EmotionScore(emotion=EMOTIONS[int(i)], score=round(float(means[i]), 4)) for i in order],
    )


def row_scores(row: np.ndarray) -> List[dict]:
    return [{"emotion": e, "score": round(float(row[i]), 4)} for i, e in enumerate(EMOTIONS)]


def clamp_sentiment(value) -> Optional[float]:
    try:
        return round(min(1.0, max(-1.0, float(value))), 3)
    except (TypeError, ValueError):
        return None


class EmotionAgent(BaseAgent):
    kind = AgentKind.EMOTION
    name = "emotion"

    async def execute(self, inputs: Mapping[str, dict]) -> dict:
        aggregated = self.upstream(inputs, AgentKind.SPEECH_AGGREGATION)
        speakers = [SpeakerProfile.model_validate(s) for s in aggregated.get("speakers", [])]
        speaking = [s for s in speakers if s.segments]
        total_steps = len(speaking) + 1
        client = self.llm()

        profiles = {}
        segment_emotions = {}
        for step, speaker in enumerate(speaking, start=1):
            statements = "\n".join(f"{i}. {seg.text}" for i, seg in enumerate(speaker.segments))
            payload = await client.complete_json(
                SEGMENT_PROMPT.format(name=speaker.name, statements=transcript_excerpt(statements, 12000))
            )
            matrix = score_matrix(payload, len(speaker.segments))
            profiles[speaker.id] = profile_from_matrix(matrix).model_dump()
            segment_emotions[speaker.id] = [row_scores(row) for row in matrix]
            self.report_progress(step, total_steps, speaker.name)

        payload = await client.complete_json(
            METRICS_PROMPT.format(content=transcript_excerpt(aggregated.get("transcript", "")))
        )
        if not isinstance(payload, dict):
            payload = {}
        metrics = parse_metrics(
            EmotionalMetrics, payload.get("emotional_metrics") or payload.get("emotionalMetrics")
        )
        sentiment = clamp_sentiment(payload.get("overall_sentiment", payload.get("overallSentiment")))
        self.report_progress(total_steps, total_steps)

        dominant = {sid: p["dominant"] for sid, p in profiles.items()}
        self.logger.info(f"Dominant emotions: {dominant}, sentiment {sentiment}")
        return {
            "profiles": profiles,
            "segment_emotions": segment_emotions,
            "emotional_metrics": metrics.model_dump() if metrics else None,
            "overall_sentiment": sentiment,
        }
