"""Speech aggregation agent — fuse visual speaker profiles with diarized speech.

Inputs:
    - speaker identification output (visual profiles, names)
    - transcriber output (speaker-labelled segments)
Outputs:
    - speakers: fused SpeakerProfile dicts with segments, speaking time and role
    - transcript: "[MM:SS] Name: text" lines for the analysis agents
    - speaker_map: diarization label -> speaker id
"""

from collections import defaultdict
from typing import Dict, List, Sequence, Tuple

import numpy as np

from agents.base import BaseAgent
from agents.speaker_id import generic_name, honorific
from lib.registry import AgentKind
from lib.results import (
    AudioFeatures,
    ContextualClues,
    SpeakerProfile,
    SpeakerRole,
    SpeechSegment,
)

FREQUENT_SECONDS = 300
MODERATE_SECONDS = 120


def speaking_pattern(speaking_time: float) -> str:
    if speaking_time > FREQUENT_SECONDS:
        return "frequent"
    if speaking_time > MODERATE_SECONDS:
        return "moderate"
    return "occasional"


def assign_role(speaking_time: float, visual_role: SpeakerRole, title: str = "") -> SpeakerRole:
    """More than five minutes of speech makes a moderator, a Dr./Prof. title a panelist."""
    if visual_role == SpeakerRole.MODERATOR or speaking_time > FREQUENT_SECONDS:
        return SpeakerRole.MODERATOR
    if honorific(title or "") or speaking_time > MODERATE_SECONDS:
        return SpeakerRole.PANELIST
    return SpeakerRole.GUEST


def fmt_clock(seconds: float) -> str:
    seconds = int(max(0, seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class SpeechAggregationAgent(BaseAgent):
    kind = AgentKind.SPEECH_AGGREGATION
    name = "speech_aggregation"

    async def execute(self, inputs) -> dict:
        transcript = self.upstream(inputs, AgentKind.TRANSCRIBER)
        identified = self.upstream(inputs, AgentKind.SPEAKER_IDENTIFICATION)

        visual = [SpeakerProfile.model_validate(s) for s in identified.get("speakers", [])]
        segments = transcript.get("segments", [])
        speakers, speaker_map = fuse_speakers(segments, visual)
        self.report_progress(1, 2, f"{len(speakers)} speakers fused")

        names = {s.id: s.name for s in speakers}
        lines = [
            f"[{fmt_clock(seg['start'])}] {names[speaker_map[seg['speaker']]]}: {seg['text']}"
            for seg in segments
        ]
        self.report_progress(2, 2)

        return {
            "speakers": [s.model_dump() for s in speakers],
            "transcript": "\n".join(lines),
            "speaker_map": {str(k): v for k, v in speaker_map.items()},
        }


def fuse_speakers(
    segments: Sequence[dict],
    visual: Sequence[SpeakerProfile],
) -> Tuple[List[SpeakerProfile], Dict[object, str]]:
    """Pair diarized voices with visual profiles.

    Voices ranked by speaking time are paired with profiles ranked by screen
    time. Voices without a visual match get a new "Speaker X" profile; people
    who were seen but never spoke are dropped.
    """
    by_label: Dict[object, List[dict]] = defaultdict(list)
    for seg in segments:
        by_label[seg["speaker"]].append(seg)

    def talk_time(label) -> float:
        return sum(s["end"] - s["start"] for s in by_label[label])

    labels = sorted(by_label, key=lambda label: (-talk_time(label), str(label)))
    ranked_visual = sorted(visual, key=lambda p: -p.visual_features.screen_time)

    speakers: List[SpeakerProfile] = []
    speaker_map: Dict[object, str] = {}
    next_index = len(ranked_visual) + 1
    taken = {p.name for p in ranked_visual} | {p.id for p in ranked_visual}

    for rank, label in enumerate(labels):
        segs = by_label[label]
        speaking_time = talk_time(label)
        words = sum(len(s["text"].split()) for s in segs)
        audio_confidence = float(np.mean([s.get("confidence", 0.0) for s in segs]))

        if rank < len(ranked_visual):
            base = ranked_visual[rank]
            confidence = float(np.mean([base.confidence, audio_confidence]))
        else:
            while generic_name(next_index - 1) in taken or f"speaker_{next_index}" in taken:
                next_index += 1
            base = SpeakerProfile(id=f"speaker_{next_index}", name=generic_name(next_index - 1))
            next_index += 1
            confidence = audio_confidence

        clues = base.contextual_clues
        speakers.append(base.model_copy(update={
            "confidence": min(1.0, max(0.0, confidence)),
            "role": assign_role(speaking_time, base.role, clues.title_mentioned or ""),
            "audio_features": AudioFeatures(
                speaking_time=round(speaking_time, 2),
                speech_rate=round(words / (speaking_time / 60), 1) if speaking_time > 0 else 0.0,
            ),
            "contextual_clues": ContextualClues(
                introduced_as=clues.introduced_as,
                title_mentioned=clues.title_mentioned,
                expertise_area=clues.expertise_area,
                speaking_pattern=speaking_pattern(speaking_time),
            ),
            "segments": [
                SpeechSegment(start=s["start"], end=s["end"], text=s["text"], confidence=s.get("confidence", 0.0))
                for s in segs
            ],
            "time_spoken": round(speaking_time, 2),
        }))
        speaker_map[label] = base.id

    return speakers, speaker_map
